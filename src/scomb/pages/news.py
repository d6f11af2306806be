"""News list extractor for /portal/home/information/list.

DOM structure:
  .result-list (one per announcement)
    .portal-information-list-type      -> category ("LMS", "COMMUNITY", ...)
    .portal-information-list-division  -> domain (course or office name)
    .portal-information-list-date      -> <span>2024/04/08 10:15</span>
    a.link-txt[data1=newsId][data2=categoryCd] -> title

Every extracted item is unread; the repository restores read state on merge.
"""

from urllib.parse import urlencode

from bs4 import Tag

from src.scomb.errors import ExtractionError
from src.scomb.logging import get_logger
from src.scomb.models import NewsItem
from src.scomb.pages.base import ExtractionContext, child_at, parse_authenticated

log = get_logger(__name__)

URL_PATH = "/portal/home/information/list"

ROW_CLASS = "result-list"
TITLE_CLASS = "link-txt"
CATEGORY_CLASS = "portal-information-list-type"
DOMAIN_CLASS = "portal-information-list-division"
PUBLISH_TIME_CLASS = "portal-information-list-date"

LMS_CATEGORY = "LMS"
COMMUNITY_CATEGORY = "COMMUNITY"


def _text_of(row: Tag, class_name: str) -> str:
    element = row.find(class_=class_name)
    return element.get_text(strip=True) if element is not None else ""


def _parse_row(row: Tag, context: ExtractionContext) -> NewsItem:
    title_element = row.find(class_=TITLE_CLASS)
    if title_element is None:
        raise ExtractionError("title link missing")
    news_id = title_element.get("data1", "").strip()
    if not news_id:
        raise ExtractionError("news id missing")
    category_code = title_element.get("data2", "").strip()

    category = _text_of(row, CATEGORY_CLASS)
    domain = _text_of(row, DOMAIN_CLASS)

    publish_time = ""
    date_element = row.find(class_=PUBLISH_TIME_CLASS)
    if date_element is not None:
        publish_time = child_at(date_element, 0).get_text(strip=True)

    if category == LMS_CATEGORY:
        idnumber = context.course_ids.get(domain, "")
    elif category == COMMUNITY_CATEGORY:
        idnumber = context.community_ids.get(domain, "")
    else:
        idnumber = ""
    query = urlencode(
        {
            "informationId": news_id,
            "selectCategoryCd": category_code,
            "idnumber": idnumber,
        }
    )

    return NewsItem(
        news_id=news_id,
        category_code=category_code,
        title=title_element.get_text(strip=True),
        category=category,
        domain=domain,
        publish_time=publish_time,
        unread=True,
        url=f"{context.base_url}/portal/home/information/detail_direct?{query}",
    )


def extract_news(html: str, context: ExtractionContext | None = None) -> list[NewsItem]:
    """Extract announcements from the news list page.

    Raises:
        SessionExpiredError: If the login form was served instead.
    """
    context = context or ExtractionContext()
    soup = parse_authenticated(html)

    items: list[NewsItem] = []
    for index, row in enumerate(soup.find_all(class_=ROW_CLASS)):
        try:
            items.append(_parse_row(row, context))
        except ExtractionError as e:
            log.warning("news_row_skipped", index=index, reason=str(e))

    log.info("news_extracted", count=len(items))
    return items
