"""Community list extractor for /portal/community/list.

DOM structure:
  a.linkToCommunitytop[id=communityId] -> community name

The name matches the domain column of COMMUNITY news, so the map links an
announcement to its community page.
"""

from src.scomb.logging import get_logger
from src.scomb.pages.base import parse_authenticated

log = get_logger(__name__)

URL_PATH = "/portal/community/list"

COMMUNITY_LINK_SELECTOR = "a.linkToCommunitytop"


def extract_community_ids(html: str) -> dict[str, str]:
    """Map community name -> community id.

    Links without a name or an id are ignored.

    Raises:
        SessionExpiredError: If the login form was served instead.
    """
    soup = parse_authenticated(html)

    community_ids: dict[str, str] = {}
    for link in soup.select(COMMUNITY_LINK_SELECTOR):
        name = link.get_text(strip=True)
        community_id = (link.get("id") or "").strip()
        if name and community_id:
            community_ids[name] = community_id

    log.info("communities_extracted", count=len(community_ids))
    return community_ids
