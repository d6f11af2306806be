"""ScombZ portal client.

Logs in through the university's SAML/ADFS flow (with 2FA number matching),
then scrapes tasks, timetable, surveys and news into pydantic records that
are reconciled against a local record store.
"""

from src.scomb.client import ScombClient
from src.scomb.config import ScombConfig
from src.scomb.models import ClassCell, NewsItem, RecordKind, Task, TaskType
from src.scomb.repository import ScombRepository, SyncResult

__all__ = [
    "ClassCell",
    "NewsItem",
    "RecordKind",
    "ScombClient",
    "ScombConfig",
    "ScombRepository",
    "SyncResult",
    "Task",
    "TaskType",
]
