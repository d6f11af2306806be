"""Task list extractor for /lms/task.

DOM structure:
  div.result_list_line (one per task)
    child 0 -> course name
    child 1 -> task kind text ("課題", "テスト", "アンケート", ...)
    child 2 -> <a href="/lms/course/report/...?idnumber=...&reportId=...">title</a>
    child 3 -> .tasklist-deadline: <span>label</span><span>2024/05/01 23:59</span>
    child 4 -> submission status

Exams carry ``examinationId`` instead of ``reportId`` in the link.
"""

from urllib.parse import parse_qs, urlparse

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

URL_PATH = "/lms/task"

ROW_CLASS = "result_list_line"
DEADLINE_CLASS = "tasklist-deadline"
MIN_COLUMNS = 5

# Checked in order, first keyword found wins
TASK_TYPE_KEYWORDS: tuple[tuple[str, TaskType], ...] = (
    ("課題", TaskType.ASSIGNMENT),
    ("テスト", TaskType.EXAM),
    ("アンケート", TaskType.SURVEY),
)


def classify_task_type(text: str) -> TaskType:
    for keyword, task_type in TASK_TYPE_KEYWORDS:
        if keyword in text:
            return task_type
    return TaskType.OTHER


def _query_params(href: str) -> dict[str, str]:
    return {k: v[0] for k, v in parse_qs(urlparse(href).query).items()}


def _parse_row(row: Tag, context: ExtractionContext) -> Task:
    columns = element_children(row)
    if len(columns) < MIN_COLUMNS:
        raise ExtractionError(f"expected {MIN_COLUMNS} columns, got {len(columns)}")

    class_name = columns[0].get_text(strip=True)
    task_type = classify_task_type(columns[1].get_text(strip=True))

    anchor = columns[2].find(recursive=False)
    if anchor is None or not anchor.get("href"):
        raise ExtractionError("title link missing")
    title = anchor.get_text(strip=True)
    href = anchor["href"]

    deadline_cell = row.find(class_=DEADLINE_CLASS)
    if deadline_cell is None:
        raise ExtractionError("deadline column missing")
    deadline = parse_deadline(child_at(deadline_cell, 1).get_text(strip=True))

    params = _query_params(href)
    class_id = params.get("idnumber", "")
    report_id = params.get("reportId") or params.get("examinationId") or ""

    return Task(
        id=make_task_id(task_type, class_id, report_id),
        title=title,
        class_name=class_name,
        task_type=task_type,
        deadline=deadline,
        url=f"{context.base_url}{href}",
        class_id=class_id,
        report_id=report_id,
    )


def extract_tasks(html: str, context: ExtractionContext | None = None) -> list[Task]:
    """Extract tasks from the task list page.

    Malformed rows are logged and skipped; they never fail the whole page.

    Raises:
        SessionExpiredError: If the login form was served instead.
    """
    context = context or ExtractionContext()
    soup = parse_authenticated(html)

    tasks: list[Task] = []
    for index, row in enumerate(soup.find_all(class_=ROW_CLASS)):
        try:
            tasks.append(_parse_row(row, context))
        except (ExtractionError, ValueError) as e:
            log.warning("task_row_skipped", index=index, reason=str(e))

    log.info("tasks_extracted", count=len(tasks))
    return tasks
