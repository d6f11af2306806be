"""Shared helpers for ScombZ page extractors.

Every extractor is a pure function of (html, context). The first step is
always parse_authenticated(), which fails fast when the portal served the
ADFS login form instead of the requested page (session expired).
"""

from datetime import datetime, timedelta, timezone

from bs4 import BeautifulSoup, Tag
from pydantic import BaseModel, Field

from src.scomb.errors import ExtractionError, SessionExpiredError

# The portal displays all times in JST (no daylight saving)
JST = timezone(timedelta(hours=9), "JST")

DEADLINE_FORMAT = "%Y/%m/%d %H:%M"

# Element only present on the identity provider's login form
LOGIN_MARKER_ID = "userNameInput"


class ExtractionContext(BaseModel):
    """Inputs an extractor needs besides the HTML itself."""

    base_url: str = "https://scombz.shibaura-it.ac.jp"
    year: int | None = None
    term: str | None = None
    # Course name -> LMS idnumber, used to link LMS news to their course
    course_ids: dict[str, str] = Field(default_factory=dict)
    # Community name -> community id, used to link COMMUNITY news
    community_ids: dict[str, str] = Field(default_factory=dict)


def parse_authenticated(html: str) -> BeautifulSoup:
    """Parse a page that must belong to the authenticated portal shell.

    Raises:
        ExtractionError: If the response body is empty.
        SessionExpiredError: If the page is the login form.
    """
    if not html or not html.strip():
        raise ExtractionError("Empty page body")
    soup = BeautifulSoup(html, "html.parser")
    if soup.find(id=LOGIN_MARKER_ID) is not None:
        raise SessionExpiredError()
    return soup


def element_children(tag: Tag) -> list[Tag]:
    """Direct child elements, skipping text nodes and comments."""
    return tag.find_all(recursive=False)


def child_at(tag: Tag, index: int) -> Tag:
    children = element_children(tag)
    if index >= len(children):
        raise ExtractionError(
            f"<{tag.name}> has {len(children)} children, expected > {index}"
        )
    return children[index]


def parse_deadline(text: str, fmt: str = DEADLINE_FORMAT) -> int:
    """Convert a displayed JST time like '2024/05/01 23:59' to epoch milliseconds."""
    try:
        parsed = datetime.strptime(text.strip(), fmt)
    except ValueError as e:
        raise ExtractionError(f"Unparseable deadline {text!r}") from e
    return int(parsed.replace(tzinfo=JST).timestamp() * 1000)
