"""Reconciliation repository: cache-or-refresh per record kind.

For each record kind the repository either serves what the record store
already holds or scrapes the portal, merges the fresh records into the store
and returns the stored set. The merge rules protect user state: manual tasks
are never replaced, a task ticked off stays done, user-added timetable cells
survive a forced refresh, and read news stays read.

Kinds may be fetched concurrently; fetch_all only orders news after the
timetable, which news links against.
Concurrent forced refreshes of the *same* kind are not serialized here;
callers that need that must serialize them.
"""

import asyncio
import uuid
from datetime import date, datetime, timezone

from pydantic import BaseModel

from src.scomb.client import ScombClient
from src.scomb.config import ScombConfig
from src.scomb.errors import (
    ExtractionError,
    NetworkError,
    NotAuthenticatedError,
    RecordNotFoundError,
    SessionExpiredError,
)
from src.scomb.logging import get_logger
from src.scomb.models import (
    ClassCell,
    NewsItem,
    RecordKind,
    Task,
    TaskType,
    make_task_id,
    make_timetable_title,
)
from src.scomb.pages import (
    ExtractionContext,
    extract_community_ids,
    extract_news,
    extract_surveys,
    extract_tasks,
    extract_timetable,
)
from src.scomb.session import SESSION_KEY, SecretStore
from src.scomb.store import RecordStore

logger = get_logger(__name__)

# Cell fields a user may edit; everything else is owned by the scraper
SCRAPED_CELL_FIELDS = frozenset({"note", "custom_color"})
USER_CELL_FIELDS = SCRAPED_CELL_FIELDS | {"name", "room", "teachers"}


class SyncResult(BaseModel):
    tasks: list[Task]
    timetable: list[ClassCell]
    news: list[NewsItem]


def current_academic_term(today: date | None = None) -> tuple[int, str]:
    """Return (academic year, term) for a date.

    Term "1" runs April-September. Term "2" runs October-March, and its
    January-March part still belongs to the previous academic year.
    """
    today = today or date.today()
    if today.month < 4:
        return today.year - 1, "2"
    if today.month <= 9:
        return today.year, "1"
    return today.year, "2"


def _task_order(task: Task) -> tuple[int, str]:
    return task.deadline, task.id


def _cell_order(cell: ClassCell) -> tuple[int, int, bool, str]:
    return cell.period, cell.day_of_week, cell.is_user_class_cell, cell.class_id


class ScombRepository:
    """Serves tasks, timetable cells and news from the store or the portal."""

    def __init__(
        self,
        client: ScombClient,
        store: RecordStore,
        secret_store: SecretStore,
        config: ScombConfig | None = None,
    ) -> None:
        self.client = client
        self.store = store
        self.secret_store = secret_store
        self.config = config or ScombConfig()

    def _require_token(self) -> str:
        token = self.secret_store.get(SESSION_KEY)
        if not token:
            raise NotAuthenticatedError()
        return token

    def _session_expired(self, kind: RecordKind) -> None:
        # The stored token is useless from now on; force a fresh login
        logger.warning("session_expired", kind=kind.value)
        self.secret_store.clear(SESSION_KEY)

    def _context(self, **kwargs) -> ExtractionContext:
        return ExtractionContext(base_url=self.config.base_url, **kwargs)

    # Tasks

    def _stored_tasks(self) -> list[Task]:
        return sorted(self.store.get_all(RecordKind.TASK), key=_task_order)

    async def fetch_tasks(self, force_refresh: bool = False) -> list[Task]:
        """Return assignments, exams and surveys.

        Raises:
            NotAuthenticatedError: If no session token is stored.
            SessionExpiredError: If the portal served the login form.
            NetworkError: On transport failure.
        """
        token = self._require_token()

        if not force_refresh:
            cached = self._stored_tasks()
            if any(not t.add_manually for t in cached):
                logger.debug("cache_hit", kind=RecordKind.TASK.value, count=len(cached))
                return cached

        context = self._context()
        task_html, survey_html = await asyncio.gather(
            self.client.get_task_list(token), self.client.get_survey_list(token)
        )
        try:
            extracted = extract_tasks(task_html, context) + extract_surveys(survey_html, context)
        except SessionExpiredError:
            self._session_expired(RecordKind.TASK)
            raise

        # Last write wins on duplicate ids within one batch
        fresh: dict[str, Task] = {}
        for task in extracted:
            fresh[task.id] = task

        existing = {t.id: t for t in self.store.get_all(RecordKind.TASK)}
        for task in fresh.values():
            previous = existing.get(task.id)
            if previous is not None:
                if previous.add_manually:
                    logger.debug("manual_task_kept", task_id=task.id)
                    continue
                task.done = task.done or previous.done
                task.custom_color = previous.custom_color
            self.store.upsert(RecordKind.TASK, task)

        logger.info("tasks_refreshed", fetched=len(extracted), unique=len(fresh))
        return self._stored_tasks()

    def add_task(
        self,
        title: str,
        deadline: int,
        class_name: str = "",
        task_type: TaskType = TaskType.OTHER,
        url: str = "",
        class_id: str = "",
        custom_color: int | None = None,
    ) -> Task:
        """Store a manually added task. Syncs never overwrite it."""
        report_id = uuid.uuid4().hex[:12]
        task = Task(
            id=make_task_id(task_type, class_id, report_id),
            title=title,
            class_name=class_name,
            task_type=task_type,
            deadline=deadline,
            url=url,
            class_id=class_id,
            report_id=report_id,
            custom_color=custom_color,
            add_manually=True,
        )
        self.store.upsert(RecordKind.TASK, task)
        logger.info("manual_task_added", task_id=task.id)
        return task

    def _find_task(self, task_id: str) -> Task:
        for task in self.store.get_all(RecordKind.TASK):
            if task.id == task_id:
                return task
        raise RecordNotFoundError(f"No task with id {task_id!r}")

    def set_task_done(self, task_id: str, done: bool = True) -> Task:
        task = self._find_task(task_id)
        task.done = done
        self.store.upsert(RecordKind.TASK, task)
        return task

    def remove_task(self, task_id: str) -> None:
        removed = self.store.delete_where(RecordKind.TASK, lambda t: t.id == task_id)
        if not removed:
            raise RecordNotFoundError(f"No task with id {task_id!r}")
        logger.info("task_removed", task_id=task_id)

    # Timetable

    def _stored_cells(self, title: str) -> list[ClassCell]:
        return sorted(self.store.get_all(RecordKind.CLASS_CELL, title), key=_cell_order)

    async def fetch_timetable(
        self, year: int, term: str, force_refresh: bool = False
    ) -> list[ClassCell]:
        """Return the timetable for one academic year and term.

        A forced refresh replaces every scraped cell of that timetable, so
        slots a course no longer occupies disappear. User-added cells stay.
        """
        token = self._require_token()
        title = make_timetable_title(year, term)

        cached = self._stored_cells(title)
        if not force_refresh and any(not c.is_user_class_cell for c in cached):
            logger.debug("cache_hit", kind=RecordKind.CLASS_CELL.value, title=title)
            return cached

        html = await self.client.get_timetable(token, year, term)
        try:
            cells = extract_timetable(html, self._context(year=year, term=term))
        except SessionExpiredError:
            self._session_expired(RecordKind.CLASS_CELL)
            raise

        previous = {c.record_key: c for c in cached if not c.is_user_class_cell}
        if force_refresh:
            self.store.delete_where(
                RecordKind.CLASS_CELL,
                lambda c: c.timetable_title == title and not c.is_user_class_cell,
            )

        for cell in cells:
            old = previous.get(cell.record_key)
            if old is not None:
                cell.custom_color = old.custom_color
                cell.note = old.note
            self.store.upsert(RecordKind.CLASS_CELL, cell)

        logger.info("timetable_refreshed", title=title, cells=len(cells))
        return self._stored_cells(title)

    def add_class_cell(self, cell: ClassCell) -> ClassCell:
        """Store a user-added timetable cell. Refreshes never delete it.

        A slot holds at most one user cell: adding to an occupied slot
        replaces the cell already there.
        """
        cell = cell.model_copy(update={"is_user_class_cell": True})
        replaced = self.store.delete_where(
            RecordKind.CLASS_CELL,
            lambda c: c.is_user_class_cell
            and c.timetable_title == cell.timetable_title
            and c.period == cell.period
            and c.day_of_week == cell.day_of_week,
        )
        self.store.upsert(RecordKind.CLASS_CELL, cell)
        logger.info(
            "user_class_cell_added",
            title=cell.timetable_title,
            period=cell.period,
            day_of_week=cell.day_of_week,
            replaced=replaced,
        )
        return cell

    def _find_cell(self, cell: ClassCell) -> ClassCell:
        for stored in self.store.get_all(RecordKind.CLASS_CELL, cell.timetable_title):
            if stored.record_key == cell.record_key:
                return stored
        raise RecordNotFoundError(
            f"No class cell {cell.class_id!r} at period {cell.period}, "
            f"day {cell.day_of_week} in {cell.timetable_title}"
        )

    def update_class_cell(self, cell: ClassCell, **changes) -> ClassCell:
        """Change the user-editable fields of a stored cell.

        Scraped cells accept ``note`` and ``custom_color`` only; user cells
        may also change their name, room and teachers.

        Raises:
            RecordNotFoundError: If the cell is not stored.
            ValueError: If a field may not be changed on this cell.
        """
        stored = self._find_cell(cell)
        allowed = USER_CELL_FIELDS if stored.is_user_class_cell else SCRAPED_CELL_FIELDS
        invalid = sorted(set(changes) - allowed)
        if invalid:
            raise ValueError(f"Cannot change {', '.join(invalid)} on this class cell")

        updated = stored.model_copy(update=changes)
        self.store.upsert(RecordKind.CLASS_CELL, updated)
        logger.info("class_cell_updated", title=updated.timetable_title, fields=sorted(changes))
        return updated

    def remove_class_cell(self, cell: ClassCell) -> None:
        """Delete one stored cell, user-added or scraped.

        A removed scraped cell comes back with the next forced refresh.
        """
        key = cell.record_key
        removed = self.store.delete_where(RecordKind.CLASS_CELL, lambda c: c.record_key == key)
        if not removed:
            raise RecordNotFoundError(f"No class cell {cell.class_id!r} in {cell.timetable_title}")
        logger.info("class_cell_removed", title=cell.timetable_title)

    # News

    async def _fetch_community_ids(self, token: str) -> dict[str, str]:
        # Without the map COMMUNITY news still load, just unlinked
        try:
            return extract_community_ids(await self.client.get_community_list(token))
        except (NetworkError, ExtractionError) as e:
            logger.warning("community_ids_unavailable", error=str(e))
            return {}

    def _stored_news(self) -> list[NewsItem]:
        items = self.store.get_all(RecordKind.NEWS)
        return sorted(items, key=lambda n: (n.publish_time, n.news_id), reverse=True)

    async def fetch_news(self, force_refresh: bool = False) -> list[NewsItem]:
        """Return announcements, newest first.

        Read state survives every refresh: an item already marked read is
        never reported unread again. A forced refresh drops stored items the
        portal no longer lists.
        """
        token = self._require_token()

        cached = self._stored_news()
        if cached and not force_refresh:
            logger.debug("cache_hit", kind=RecordKind.NEWS.value, count=len(cached))
            return cached

        course_ids = {
            c.name: c.class_id
            for c in self.store.get_all(RecordKind.CLASS_CELL)
            if c.name and not c.is_user_class_cell
        }
        try:
            html, community_ids = await asyncio.gather(
                self.client.get_news_list(token), self._fetch_community_ids(token)
            )
            context = self._context(course_ids=course_ids, community_ids=community_ids)
            items = extract_news(html, context)
        except SessionExpiredError:
            self._session_expired(RecordKind.NEWS)
            raise

        existing = {n.news_id: n for n in cached}
        if force_refresh:
            fresh_ids = {n.news_id for n in items}
            self.store.delete_where(RecordKind.NEWS, lambda n: n.news_id not in fresh_ids)

        for item in items:
            previous = existing.get(item.news_id)
            if previous is not None:
                if not previous.unread:
                    item.unread = False
                    item.read_time = previous.read_time
                item.tags = item.tags or previous.tags
            self.store.upsert(RecordKind.NEWS, item)

        logger.info("news_refreshed", count=len(items))
        return self._stored_news()

    def mark_news_read(self, news_id: str) -> NewsItem:
        """Mark an announcement read. Marking twice keeps the first read time."""
        for item in self.store.get_all(RecordKind.NEWS):
            if item.news_id == news_id:
                break
        else:
            raise RecordNotFoundError(f"No news item with id {news_id!r}")

        if item.unread:
            item.unread = False
            item.read_time = datetime.now(timezone.utc).isoformat()
            self.store.upsert(RecordKind.NEWS, item)
            logger.info("news_marked_read", news_id=news_id)
        return item

    # Combined

    async def fetch_all(
        self,
        force_refresh: bool = False,
        year: int | None = None,
        term: str | None = None,
    ) -> SyncResult:
        """Fetch tasks alongside the timetable and news.

        News waits for the timetable: LMS announcements are linked to their
        course through the stored timetable cells.
        """
        if year is None or term is None:
            year, term = current_academic_term()

        async def timetable_then_news() -> tuple[list[ClassCell], list[NewsItem]]:
            timetable = await self.fetch_timetable(year, term, force_refresh)
            return timetable, await self.fetch_news(force_refresh)

        tasks, (timetable, news) = await asyncio.gather(
            self.fetch_tasks(force_refresh), timetable_then_news()
        )
        return SyncResult(tasks=tasks, timetable=timetable, news=news)

    async def sync_now(self) -> SyncResult:
        """Re-scrape everything. Safe to call repeatedly."""
        logger.info("sync_started")
        result = await self.fetch_all(force_refresh=True)
        logger.info(
            "sync_finished",
            tasks=len(result.tasks),
            cells=len(result.timetable),
            news=len(result.news),
        )
        return result
