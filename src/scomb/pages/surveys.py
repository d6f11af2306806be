"""Survey list extractor for /portal/surveys/list.

DOM structure (columns are indexed independently of the task list):
  .result-list (one per survey)
    child 0 -> <input value="surveyId">
    child 1 -> <input value="classId">  (empty for portal-wide surveys)
    child 2 -> first child holds the title text node, plus
               .portal-surveys-status ("済み" once answered)
    child 3 -> period: <span>start label</span><span>start</span><span>deadline</span>
    child 5 -> survey domain (course or office name)
"""

from bs4 import Tag

from src.scomb.errors import ExtractionError
from src.scomb.logging import get_logger
from src.scomb.models import Task, TaskType, make_task_id
from src.scomb.pages.base import (
    ExtractionContext,
    child_at,
    element_children,
    parse_authenticated,
    parse_deadline,
)

log = get_logger(__name__)

URL_PATH = "/portal/surveys/list"

ROW_CLASS = "result-list"
STATUS_CLASS = "portal-surveys-status"
DONE_MARKER = "済み"
MIN_COLUMNS = 7
SURVEY_DEADLINE_FORMAT = "%Y/%m/%d %H:%M"


def _parse_row(row: Tag, context: ExtractionContext) -> Task:
    columns = element_children(row)
    if len(columns) < MIN_COLUMNS:
        raise ExtractionError(f"expected {MIN_COLUMNS} columns, got {len(columns)}")

    survey_id = columns[0].get("value", "")
    class_id = columns[1].get("value", "")
    if not survey_id:
        raise ExtractionError("survey id missing")

    title_cell = columns[2]
    done = any(
        status.get_text(strip=True) == DONE_MARKER
        for status in title_cell.select(f".{STATUS_CLASS}")
    )
    title_nodes = child_at(title_cell, 0).find_all(string=True, recursive=False)
    title = next((s.strip() for s in title_nodes if s.strip()), "")

    deadline = parse_deadline(
        child_at(columns[3], 2).get_text(strip=True), SURVEY_DEADLINE_FORMAT
    )
    domain = columns[5].get_text(strip=True)

    if class_id:
        url = (
            f"{context.base_url}/lms/course/surveys/take"
            f"?idnumber={class_id}&surveyId={survey_id}"
        )
    else:
        url = f"{context.base_url}/portal/surveys/take?surveyId={survey_id}"

    return Task(
        id=make_task_id(TaskType.SURVEY, class_id, survey_id),
        title=title,
        class_name=domain,
        task_type=TaskType.SURVEY,
        deadline=deadline,
        url=url,
        class_id=class_id,
        report_id=survey_id,
        done=done,
    )


def extract_surveys(html: str, context: ExtractionContext | None = None) -> list[Task]:
    """Extract surveys as Task records of type SURVEY.

    Raises:
        SessionExpiredError: If the login form was served instead.
    """
    context = context or ExtractionContext()
    soup = parse_authenticated(html)

    surveys: list[Task] = []
    for index, row in enumerate(soup.find_all(class_=ROW_CLASS)):
        try:
            surveys.append(_parse_row(row, context))
        except (ExtractionError, ValueError) as e:
            log.warning("survey_row_skipped", index=index, reason=str(e))

    log.info("surveys_extracted", count=len(surveys))
    return surveys
