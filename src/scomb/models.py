"""Pydantic models for ScombZ records.

All data structures use Pydantic v2 for validation, serialization, and type safety.
Each record exposes ``record_key`` (its identity in the record store) and
``record_subkey`` (an optional scope used for cache lookups).
"""

from enum import Enum, IntEnum

from pydantic import BaseModel, Field

# Timetable grid is 7 periods x 7 days (Mon..Sun), zero-based
TIMETABLE_GRID_SIZE = 7


class RecordKind(str, Enum):
    """Category of domain entity handled uniformly by the repository."""

    TASK = "task"
    CLASS_CELL = "class_cell"
    NEWS = "news"


class TaskType(IntEnum):
    ASSIGNMENT = 0
    EXAM = 1
    SURVEY = 2
    OTHER = 3


def make_task_id(task_type: TaskType, class_id: str, report_id: str) -> str:
    """Build the synthetic task id ``"{type}-{classId}-{reportId}"``."""
    return f"{int(task_type)}-{class_id}-{report_id}"


def make_timetable_title(year: int, term: str) -> str:
    return f"{year}-{term}"


class Credential(BaseModel):
    """Username/password pair held only for the duration of one login attempt."""

    username: str
    password: str = Field(repr=False)


class ClassCell(BaseModel):
    """A single slot of the weekly timetable.

    Scraped from div.div-table-cell on /lms/timetable, or added by the user
    (``is_user_class_cell=True``). The same course may occupy several slots.
    """

    class_id: str
    period: int = Field(ge=0, lt=TIMETABLE_GRID_SIZE)  # row index of the grid
    day_of_week: int = Field(ge=0, lt=TIMETABLE_GRID_SIZE)  # 0 = Monday
    is_user_class_cell: bool = False
    timetable_title: str  # "2024-1"
    year: int | None = None
    term: str | None = None
    name: str | None = None
    teachers: str | None = None  # comma-separated
    room: str | None = None
    custom_color: int | None = None
    url: str | None = None
    note: str | None = None
    syllabus_url: str | None = None
    number_of_credit: int | None = None

    @property
    def record_key(self) -> str:
        return "|".join(
            [
                self.class_id,
                str(self.period),
                str(self.day_of_week),
                str(int(self.is_user_class_cell)),
                self.timetable_title,
            ]
        )

    @property
    def record_subkey(self) -> str:
        return self.timetable_title


class Task(BaseModel):
    """An assignment, exam, survey or manually added to-do item."""

    id: str
    title: str
    class_name: str
    task_type: TaskType
    deadline: int  # epoch milliseconds
    url: str
    class_id: str
    report_id: str
    custom_color: int | None = None
    add_manually: bool = False
    done: bool = False

    @property
    def record_key(self) -> str:
        return self.id

    @property
    def record_subkey(self) -> None:
        return None


class NewsItem(BaseModel):
    """A portal announcement from /portal/home/information/list."""

    news_id: str
    category_code: str = ""  # data2 attribute, required for the detail URL
    title: str
    category: str = ""
    domain: str = ""
    publish_time: str = ""  # kept as displayed, e.g. "2024/04/08 10:15"
    tags: str = ""
    unread: bool = True
    read_time: str | None = None  # ISO timestamp set by mark_news_read
    url: str = ""

    @property
    def record_key(self) -> str:
        return self.news_id

    @property
    def record_subkey(self) -> None:
        return None


RECORD_TYPES: dict[RecordKind, type[BaseModel]] = {
    RecordKind.TASK: Task,
    RecordKind.CLASS_CELL: ClassCell,
    RecordKind.NEWS: NewsItem,
}
