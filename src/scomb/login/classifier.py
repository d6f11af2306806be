"""Classifies a loaded login-flow page into one of a fixed set of states.

Rules are evaluated in a fixed order and the first match wins. Pages that are
still settling can carry stale markup from an earlier step (an old error
banner, the previous 2FA number), so authenticated signals come first and an
already reported 2FA code is ignored.
"""

from enum import Enum

from bs4 import BeautifulSoup
from pydantic import BaseModel, Field

from src.scomb.config import ScombConfig


class PageKind(str, Enum):
    CREDENTIAL_ENTRY = "credential_entry"
    PROVIDER_SELECTION = "provider_selection"
    TWO_FACTOR_DISPLAY = "two_factor_display"
    ERROR_MESSAGE = "error_message"
    AUTHENTICATED_LANDING = "authenticated_landing"
    UNKNOWN = "unknown"


class PageSnapshot(BaseModel):
    """Serialized state of the browser after a page load."""

    url: str
    html: str = ""
    cookies: dict[str, str] = Field(default_factory=dict, repr=False)


class PageState(BaseModel):
    """Result of classification; payload fields depend on ``kind``."""

    kind: PageKind
    message: str | None = None  # ERROR_MESSAGE
    code: str | None = None  # TWO_FACTOR_DISPLAY
    token: str | None = Field(default=None, repr=False)  # AUTHENTICATED_LANDING via cookie


def _text(soup: BeautifulSoup, selector: str) -> str:
    element = soup.select_one(selector)
    return element.get_text(strip=True) if element is not None else ""


def classify_page(
    snapshot: PageSnapshot,
    config: ScombConfig | None = None,
    two_factor_reported: bool = False,
) -> PageState:
    """Classify a login-flow page.

    Args:
        snapshot: URL, HTML and cookie jar of the loaded page.
        config: Supplies the landing URL, cookie name and selectors.
        two_factor_reported: True once this login attempt has already
            surfaced a 2FA code; a second code display is then ignored.

    Returns:
        The first matching PageState.
    """
    config = config or ScombConfig()

    if snapshot.url.startswith(config.landing_url):
        return PageState(
            kind=PageKind.AUTHENTICATED_LANDING,
            token=snapshot.cookies.get(config.session_cookie_name) or None,
        )

    token = snapshot.cookies.get(config.session_cookie_name)
    if token:
        return PageState(kind=PageKind.AUTHENTICATED_LANDING, token=token)

    soup = BeautifulSoup(snapshot.html or "", "html.parser")

    message = _text(soup, config.error_selector)
    if message:
        return PageState(kind=PageKind.ERROR_MESSAGE, message=message)

    if not two_factor_reported:
        code = _text(soup, config.two_factor_code_selector)
        if code:
            return PageState(kind=PageKind.TWO_FACTOR_DISPLAY, code=code)

    provider_link = soup.select_one(config.provider_link_selector)
    if provider_link is not None and provider_link.get("href"):
        return PageState(kind=PageKind.PROVIDER_SELECTION)

    username_input = soup.select_one(config.username_selector)
    password_input = soup.select_one(config.password_selector)
    if username_input is not None and password_input is not None:
        # A pre-filled username means the credential was already injected
        if not (username_input.get("value") or "").strip():
            return PageState(kind=PageKind.CREDENTIAL_ENTRY)

    return PageState(kind=PageKind.UNKNOWN)
