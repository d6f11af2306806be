"""Pure HTML extractors, one module per portal page."""

from src.scomb.pages.base import ExtractionContext
from src.scomb.pages.communities import extract_community_ids
from src.scomb.pages.news import extract_news
from src.scomb.pages.surveys import extract_surveys
from src.scomb.pages.tasks import extract_tasks
from src.scomb.pages.timetable import extract_timetable

__all__ = [
    "ExtractionContext",
    "extract_community_ids",
    "extract_news",
    "extract_surveys",
    "extract_tasks",
    "extract_timetable",
]
