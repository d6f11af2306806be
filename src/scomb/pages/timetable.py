"""Timetable extractor for /lms/timetable?year=&term=.

DOM structure:
  div.div-table-data-row (one per period, top to bottom)
    div.div-table-cell (one per weekday, Monday first)
      .timetable-course-top-btn#<classId> -> course name
      .div-table-cell-detail
        <span title="room"><span>teacher</span><span>teacher</span></span>

Empty cells have no children. Row index is the period and cell index the
weekday, so each scraped cell lands in a distinct slot by construction.
"""

from bs4 import Tag

from src.scomb.errors import ExtractionError
from src.scomb.logging import get_logger
from src.scomb.models import TIMETABLE_GRID_SIZE, ClassCell, make_timetable_title
from src.scomb.pages.base import (
    ExtractionContext,
    child_at,
    element_children,
    parse_authenticated,
)

log = get_logger(__name__)

URL_PATH = "/lms/timetable"

ROW_CLASS = "div-table-data-row"
CELL_CLASS = "div-table-cell"
HEADER_CLASS = "timetable-course-top-btn"
DETAIL_CLASS = "div-table-cell-detail"


def _parse_cell(
    cell: Tag, period: int, day_of_week: int, context: ExtractionContext
) -> ClassCell:
    header = cell.find(class_=HEADER_CLASS)
    detail = cell.find(class_=DETAIL_CLASS)
    if header is None or detail is None:
        raise ExtractionError("header or detail missing")

    class_id = header.get("id", "")
    if not class_id:
        raise ExtractionError("course id missing")

    info = child_at(detail, 0)
    teachers = ", ".join(
        span.get_text(strip=True) for span in info.find_all("span", recursive=False)
    )

    return ClassCell(
        class_id=class_id,
        period=period,
        day_of_week=day_of_week,
        is_user_class_cell=False,
        timetable_title=make_timetable_title(context.year, context.term),
        year=context.year,
        term=context.term,
        name=header.get_text(" ", strip=True),
        teachers=teachers,
        room=info.get("title", ""),
        url=f"{context.base_url}/lms/course?idnumber={class_id}",
    )


def extract_timetable(html: str, context: ExtractionContext) -> list[ClassCell]:
    """Extract class cells from the timetable grid.

    ``context.year`` and ``context.term`` are required; they make up the
    timetable title of every cell.

    Raises:
        ValueError: If year or term is missing from the context.
        SessionExpiredError: If the login form was served instead.
    """
    if context.year is None or not context.term:
        raise ValueError("Timetable extraction needs year and term")
    soup = parse_authenticated(html)

    cells: list[ClassCell] = []
    for period, row in enumerate(soup.find_all(class_=ROW_CLASS)):
        for day_of_week, cell in enumerate(row.find_all(class_=CELL_CLASS)):
            if not element_children(cell):
                continue
            if period >= TIMETABLE_GRID_SIZE or day_of_week >= TIMETABLE_GRID_SIZE:
                log.warning(
                    "timetable_cell_out_of_grid", period=period, day_of_week=day_of_week
                )
                continue
            try:
                cells.append(_parse_cell(cell, period, day_of_week, context))
            except ExtractionError as e:
                log.debug(
                    "timetable_cell_skipped",
                    period=period,
                    day_of_week=day_of_week,
                    reason=str(e),
                )

    log.info(
        "timetable_extracted",
        title=make_timetable_title(context.year, context.term),
        count=len(cells),
    )
    return cells
