"""
Unit tests for ScombRepository reconciliation.

Covers:
- cache hit vs. refresh per record kind
- user state surviving a refresh (manual tasks, done flag, user cells, read news)
- session expiry clearing the stored token
"""

import asyncio
import unittest
from datetime import date

from fakes import FakeClient, MemorySecretStore, load_fixture

from src.scomb.config import ScombConfig
from src.scomb.errors import (
    NetworkError,
    NotAuthenticatedError,
    RecordNotFoundError,
    SessionExpiredError,
)
from src.scomb.models import ClassCell, RecordKind, Task, TaskType
from src.scomb.repository import ScombRepository, current_academic_term
from src.scomb.session import SESSION_KEY
from src.scomb.store import JsonRecordStore

TOKEN = "tok-123"

THREE_CELL_TIMETABLE = """
<html><body><div class="div-table">
  <div class="div-table-data-row">
    <div class="div-table-cell">
      <div class="timetable-course-top-btn" id="C1">Course 1</div>
      <div class="div-table-cell-detail"><span title="R1"><span>T1</span></span></div>
    </div>
    <div class="div-table-cell">
      <div class="timetable-course-top-btn" id="C2">Course 2</div>
      <div class="div-table-cell-detail"><span title="R2"><span>T2</span></span></div>
    </div>
  </div>
  <div class="div-table-data-row">
    <div class="div-table-cell">
      <div class="timetable-course-top-btn" id="C3">Course 3</div>
      <div class="div-table-cell-detail"><span title="R3"><span>T3</span></span></div>
    </div>
  </div>
</div></body></html>
"""


def _cell(class_id: str, period: int, day: int, title: str = "2024-1", **kwargs) -> ClassCell:
    return ClassCell(
        class_id=class_id,
        period=period,
        day_of_week=day,
        timetable_title=title,
        name=f"name-{class_id}",
        **kwargs,
    )


class RepositoryTestCase(unittest.IsolatedAsyncioTestCase):
    def setUp(self) -> None:
        self.client = FakeClient()
        self.store = JsonRecordStore()
        self.secrets = MemorySecretStore({SESSION_KEY: TOKEN})
        self.repository = ScombRepository(
            self.client, self.store, self.secrets, ScombConfig(_env_file=None)
        )


class TestAuthentication(RepositoryTestCase):
    async def test_no_token_fails_without_network(self) -> None:
        self.secrets.clear(SESSION_KEY)
        with self.assertRaises(NotAuthenticatedError):
            await self.repository.fetch_tasks()
        with self.assertRaises(NotAuthenticatedError):
            await self.repository.fetch_timetable(2024, "1")
        with self.assertRaises(NotAuthenticatedError):
            await self.repository.fetch_news()
        self.assertEqual(self.client.calls, [])

    async def test_session_expired_clears_token(self) -> None:
        self.client.pages["tasks"] = load_fixture("adfs_sign_in.html")

        with self.assertRaises(SessionExpiredError):
            await self.repository.fetch_tasks(force_refresh=True)

        self.assertIsNone(self.secrets.get(SESSION_KEY))
        self.assertEqual(self.store.get_all(RecordKind.TASK), [])

    async def test_token_is_sent_to_client(self) -> None:
        await self.repository.fetch_news()
        self.assertCountEqual(
            self.client.calls, [("news", TOKEN), ("communities", TOKEN)]
        )


class TestFetchTasks(RepositoryTestCase):
    async def test_tasks_and_surveys_are_merged(self) -> None:
        tasks = await self.repository.fetch_tasks()

        ids = [t.id for t in tasks]
        self.assertEqual(len(ids), 5)
        self.assertEqual(len(set(ids)), 5)
        self.assertIn("2-202401001-S100", ids)
        # Ordered by deadline
        deadlines = [t.deadline for t in tasks]
        self.assertEqual(deadlines, sorted(deadlines))

    async def test_second_fetch_is_served_from_store(self) -> None:
        first = await self.repository.fetch_tasks()
        calls = len(self.client.calls)

        second = await self.repository.fetch_tasks()

        self.assertEqual(first, second)
        self.assertEqual(len(self.client.calls), calls)

    async def test_manual_tasks_alone_do_not_count_as_cache(self) -> None:
        self.repository.add_task("Read chapter 3", deadline=1714575540000)
        tasks = await self.repository.fetch_tasks()
        self.assertEqual(len(tasks), 6)
        self.assertTrue(self.client.calls)

    async def test_manual_task_survives_refresh(self) -> None:
        manual = self.repository.add_task(
            "Read chapter 3", deadline=1714575540000, class_name="線形代数"
        )
        self.assertTrue(manual.add_manually)

        await self.repository.fetch_tasks(force_refresh=True)
        tasks = await self.repository.fetch_tasks(force_refresh=True)

        stored = [t for t in tasks if t.id == manual.id]
        self.assertEqual(stored, [manual])

    async def test_manual_task_is_not_overwritten_by_scraped_row(self) -> None:
        manual = Task(
            id="0-202401001-R100",
            title="My own note",
            class_name="線形代数",
            task_type=TaskType.ASSIGNMENT,
            deadline=0,
            url="",
            class_id="202401001",
            report_id="R100",
            add_manually=True,
        )
        self.store.upsert(RecordKind.TASK, manual)

        tasks = await self.repository.fetch_tasks(force_refresh=True)

        kept = next(t for t in tasks if t.id == manual.id)
        self.assertEqual(kept.title, "My own note")

    async def test_done_flag_survives_refresh(self) -> None:
        await self.repository.fetch_tasks()
        self.repository.set_task_done("0-202401001-R100")

        tasks = await self.repository.fetch_tasks(force_refresh=True)

        done = {t.id: t.done for t in tasks}
        self.assertTrue(done["0-202401001-R100"])
        self.assertFalse(done["1-202401002-E200"])

    async def test_duplicate_rows_last_write_wins(self) -> None:
        # Turn the third row into a repost of the first assignment
        html = load_fixture("task_list.html")
        for old, new in [
            ("単語リスト", "第1回レポート(再掲)"),
            ("idnumber=202401003&amp;reportId=M300", "idnumber=202401001&amp;reportId=R100"),
            ('<div class="tasklist-contents">教材</div>', '<div class="tasklist-contents">課題</div>'),
        ]:
            html = html.replace(old, new)
        self.client.pages["tasks"] = html

        tasks = await self.repository.fetch_tasks(force_refresh=True)

        matching = [t for t in tasks if t.id == "0-202401001-R100"]
        self.assertEqual(len(matching), 1)
        self.assertEqual(matching[0].title, "第1回レポート(再掲)")

    async def test_remove_and_missing_tasks(self) -> None:
        await self.repository.fetch_tasks()
        self.repository.remove_task("0-202401001-R100")
        self.assertNotIn(
            "0-202401001-R100", [t.id for t in self.store.get_all(RecordKind.TASK)]
        )
        with self.assertRaises(RecordNotFoundError):
            self.repository.remove_task("0-202401001-R100")
        with self.assertRaises(RecordNotFoundError):
            self.repository.set_task_done("no-such-task")


class TestFetchTimetable(RepositoryTestCase):
    async def test_scrapes_requested_term(self) -> None:
        cells = await self.repository.fetch_timetable(2024, "1")

        self.assertEqual(len(cells), 4)
        self.assertEqual(self.client.calls, [("timetable", TOKEN, 2024, "1")])
        self.assertTrue(all(c.timetable_title == "2024-1" for c in cells))

    async def test_cached_term_is_not_refetched(self) -> None:
        await self.repository.fetch_timetable(2024, "1")
        await self.repository.fetch_timetable(2024, "1")
        self.assertEqual(len(self.client.calls), 1)

    async def test_forced_refresh_replaces_scraped_cells(self) -> None:
        for i in range(5):
            self.store.upsert(RecordKind.CLASS_CELL, _cell(f"OLD{i}", i, i))
        user_cell = self.repository.add_class_cell(_cell("MINE", 6, 6))
        other_term = _cell("OTHER", 0, 0, title="2023-2")
        self.store.upsert(RecordKind.CLASS_CELL, other_term)
        self.client.pages["timetable"] = THREE_CELL_TIMETABLE

        cells = await self.repository.fetch_timetable(2024, "1", force_refresh=True)

        scraped = [c for c in cells if not c.is_user_class_cell]
        self.assertEqual(sorted(c.class_id for c in scraped), ["C1", "C2", "C3"])
        self.assertIn(user_cell, cells)
        self.assertEqual(self.store.get_all(RecordKind.CLASS_CELL, "2023-2"), [other_term])

    async def test_cell_customisation_survives_refresh(self) -> None:
        cells = await self.repository.fetch_timetable(2024, "1")
        first = self.repository.update_class_cell(
            cells[0], custom_color=0xFF0000, note="bring laptop"
        )

        cells = await self.repository.fetch_timetable(2024, "1", force_refresh=True)

        refreshed = next(c for c in cells if c.record_key == first.record_key)
        self.assertEqual(refreshed.custom_color, 0xFF0000)
        self.assertEqual(refreshed.note, "bring laptop")


class TestClassCellEditing(RepositoryTestCase):
    def _user_cells(self, title: str = "2024-1") -> list[ClassCell]:
        return [
            c for c in self.store.get_all(RecordKind.CLASS_CELL, title) if c.is_user_class_cell
        ]

    def test_adding_to_an_occupied_slot_replaces_the_user_cell(self) -> None:
        self.repository.add_class_cell(_cell("FIRST", 2, 3))
        second = self.repository.add_class_cell(_cell("SECOND", 2, 3))

        self.assertEqual(self._user_cells(), [second])

    def test_slot_rule_ignores_other_slots_terms_and_scraped_cells(self) -> None:
        scraped = _cell("SCRAPED", 2, 3)
        self.store.upsert(RecordKind.CLASS_CELL, scraped)
        self.repository.add_class_cell(_cell("NEXT", 2, 4))
        self.repository.add_class_cell(_cell("LAST_TERM", 2, 3, title="2023-2"))

        self.repository.add_class_cell(_cell("MINE", 2, 3))

        self.assertEqual(sorted(c.class_id for c in self._user_cells()), ["MINE", "NEXT"])
        self.assertEqual(len(self._user_cells("2023-2")), 1)
        self.assertIn(scraped, self.store.get_all(RecordKind.CLASS_CELL, "2024-1"))

    def test_user_cell_fields_can_be_edited(self) -> None:
        cell = self.repository.add_class_cell(_cell("MINE", 1, 1))

        updated = self.repository.update_class_cell(cell, name="ゼミ", room="研究室", note="隔週")

        self.assertEqual(self._user_cells(), [updated])
        self.assertEqual((updated.name, updated.room, updated.note), ("ゼミ", "研究室", "隔週"))

    async def test_scraped_cell_only_accepts_note_and_color(self) -> None:
        cells = await self.repository.fetch_timetable(2024, "1")
        with self.assertRaises(ValueError):
            self.repository.update_class_cell(cells[0], name="renamed")
        self.assertEqual(self.repository._stored_cells("2024-1"), cells)

    def test_update_unknown_cell(self) -> None:
        with self.assertRaises(RecordNotFoundError):
            self.repository.update_class_cell(_cell("NOPE", 0, 0), note="x")

    async def test_remove_cells(self) -> None:
        cells = await self.repository.fetch_timetable(2024, "1")
        mine = self.repository.add_class_cell(_cell("MINE", 6, 6))

        self.repository.remove_class_cell(mine)
        self.repository.remove_class_cell(cells[0])

        remaining = self.store.get_all(RecordKind.CLASS_CELL, "2024-1")
        self.assertEqual(len(remaining), len(cells) - 1)
        self.assertNotIn(cells[0], remaining)
        with self.assertRaises(RecordNotFoundError):
            self.repository.remove_class_cell(mine)

        # A removed scraped cell is back after a forced refresh
        cells = await self.repository.fetch_timetable(2024, "1", force_refresh=True)
        self.assertEqual(len(cells), 4)


class TestFetchNews(RepositoryTestCase):
    async def test_read_news_stays_read(self) -> None:
        await self.repository.fetch_news()
        marked = self.repository.mark_news_read("N001")
        self.assertFalse(marked.unread)
        self.assertIsNotNone(marked.read_time)

        for force in (False, True):
            items = {n.news_id: n for n in await self.repository.fetch_news(force)}
            self.assertFalse(items["N001"].unread)
            self.assertEqual(items["N001"].read_time, marked.read_time)
            self.assertTrue(items["N002"].unread)

    async def test_mark_read_twice_keeps_first_read_time(self) -> None:
        await self.repository.fetch_news()
        first = self.repository.mark_news_read("N002")
        second = self.repository.mark_news_read("N002")
        self.assertEqual(first.read_time, second.read_time)

    async def test_forced_refresh_drops_stale_news(self) -> None:
        await self.repository.fetch_news()
        self.client.pages["news"] = load_fixture("news.html").replace('data1="N002"', 'data1="N003"')

        items = await self.repository.fetch_news(force_refresh=True)

        self.assertEqual(sorted(n.news_id for n in items), ["N001", "N003"])

    async def test_newest_first(self) -> None:
        items = await self.repository.fetch_news()
        self.assertEqual([n.news_id for n in items], ["N001", "N002"])

    async def test_lms_news_linked_through_stored_timetable(self) -> None:
        await self.repository.fetch_timetable(2024, "1")
        items = {n.news_id: n for n in await self.repository.fetch_news()}
        self.assertTrue(items["N001"].url.endswith("idnumber=202401001"))

    async def test_community_news_linked_through_community_list(self) -> None:
        self.client.pages["news"] = load_fixture("news.html").replace(">大学<", ">COMMUNITY<", 1)
        items = {n.news_id: n for n in await self.repository.fetch_news()}
        self.assertTrue(items["N002"].url.endswith("idnumber=COM0001"))

    async def test_community_list_failure_keeps_news(self) -> None:
        self.client.pages["news"] = load_fixture("news.html").replace(">大学<", ">COMMUNITY<", 1)
        self.client.errors["communities"] = NetworkError(
            "GET /portal/community/list returned 500", status_code=500
        )

        items = {n.news_id: n for n in await self.repository.fetch_news()}

        self.assertEqual(sorted(items), ["N001", "N002"])
        self.assertTrue(items["N002"].url.endswith("idnumber="))
        self.assertEqual(self.secrets.get(SESSION_KEY), TOKEN)

    def test_mark_unknown_news_read(self) -> None:
        with self.assertRaises(RecordNotFoundError):
            self.repository.mark_news_read("missing")


class TestSync(RepositoryTestCase):
    async def test_sync_now_refreshes_every_kind(self) -> None:
        await self.repository.fetch_all(year=2024, term="1")
        self.client.calls.clear()

        result = await self.repository.sync_now()

        kinds = {call[0] for call in self.client.calls}
        self.assertEqual(kinds, {"tasks", "surveys", "timetable", "news", "communities"})
        self.assertEqual(len(result.tasks), 5)
        self.assertEqual(len(result.news), 2)

    async def test_fetch_all_with_explicit_term(self) -> None:
        result = await self.repository.fetch_all(year=2024, term="1")
        self.assertEqual(len(result.timetable), 4)
        self.assertIn(("timetable", TOKEN, 2024, "1"), self.client.calls)

    async def test_first_sync_links_lms_news_to_course(self) -> None:
        fetch_timetable_page = self.client.get_timetable

        async def slow_timetable(*args) -> str:
            for _ in range(5):
                await asyncio.sleep(0)
            return await fetch_timetable_page(*args)

        self.client.get_timetable = slow_timetable

        result = await self.repository.fetch_all(year=2024, term="1")

        items = {n.news_id: n for n in result.news}
        self.assertTrue(items["N001"].url.endswith("idnumber=202401001"))


class TestCurrentAcademicTerm(unittest.TestCase):
    def test_terms(self) -> None:
        self.assertEqual(current_academic_term(date(2024, 4, 1)), (2024, "1"))
        self.assertEqual(current_academic_term(date(2024, 9, 30)), (2024, "1"))
        self.assertEqual(current_academic_term(date(2024, 10, 1)), (2024, "2"))
        self.assertEqual(current_academic_term(date(2025, 3, 31)), (2024, "2"))


if __name__ == "__main__":
    unittest.main()
