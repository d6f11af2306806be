"""Command-line client for the ScombZ portal.

Logs in through the browser, then scrapes tasks, the timetable and news as
JSON or a table. Scraped records are cached in data/state/records.json and
the session token in data/state/secrets.json.

Run with: python -m src.scomb.cli login
Tasks:    python -m src.scomb.cli tasks --refresh --table
Timetable: python -m src.scomb.cli timetable --year 2024 --term 1
News:     python -m src.scomb.cli news
Read:     python -m src.scomb.cli mark-read NEWS_ID
Sync:     python -m src.scomb.cli sync
Debug:    python -m src.scomb.cli --headed login

Exit codes:
  0 = success (JSON or table on stdout)
  1 = error (message on stderr)
  2 = not logged in / session expired (run `login` again)
"""

import argparse
import asyncio
import getpass
import json
import sys
from datetime import datetime
from pathlib import Path

from dotenv import load_dotenv

from src.scomb.client import ScombClient
from src.scomb.config import ScombConfig
from src.scomb.errors import AuthenticationError, ScombError
from src.scomb.logging import setup_logging
from src.scomb.login.driver import PlaywrightLoginDriver
from src.scomb.login.machine import LoginStateMachine
from src.scomb.models import ClassCell, NewsItem, Task
from src.scomb.pages.base import JST
from src.scomb.repository import ScombRepository, current_academic_term
from src.scomb.session import SESSION_KEY, USERNAME_KEY, FileSecretStore
from src.scomb.store import JsonRecordStore

EXIT_ERROR = 1
EXIT_LOGIN_REQUIRED = 2

_DAY_NAMES = ["Mon", "Tue", "Wed", "Thu", "Fri", "Sat", "Sun"]


def _log(msg: str) -> None:
    """Write diagnostic messages to stderr so stdout stays clean for JSON."""
    print(msg, file=sys.stderr)


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="scomb",
        description="Log in to ScombZ and scrape tasks, timetable and news.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument(
        "--headed",
        action="store_true",
        help="Launch the login browser in headed mode (visible window).",
    )
    parser.add_argument(
        "--table",
        action="store_true",
        help="Output a human-readable table instead of JSON.",
    )
    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("login", help="Log in through the identity provider.")
    sub.add_parser("logout", help="Forget the stored session token.")

    tasks = sub.add_parser("tasks", help="List assignments, exams and surveys.")
    tasks.add_argument("--refresh", action="store_true", help="Bypass the cache.")

    default_year, default_term = current_academic_term()
    timetable = sub.add_parser("timetable", help="Show the timetable of a term.")
    timetable.add_argument("--year", type=int, default=default_year)
    timetable.add_argument("--term", choices=["1", "2"], default=default_term)
    timetable.add_argument("--refresh", action="store_true", help="Bypass the cache.")

    news = sub.add_parser("news", help="List announcements.")
    news.add_argument("--refresh", action="store_true", help="Bypass the cache.")

    mark_read = sub.add_parser("mark-read", help="Mark an announcement as read.")
    mark_read.add_argument("news_id")

    sub.add_parser("sync", help="Re-scrape tasks, timetable and news.")
    return parser


def _format_table(headers: list[str], rows: list[list[str]]) -> str:
    """Format rows as a column-aligned table."""
    if not rows:
        return "(nothing to show)"

    widths = [len(h) for h in headers]
    for row in rows:
        for i, cell in enumerate(row):
            widths[i] = max(widths[i], len(cell))

    header_line = " | ".join(h.ljust(widths[i]) for i, h in enumerate(headers))
    separator = "-+-".join("-" * w for w in widths)
    row_lines = [
        " | ".join(cell.ljust(widths[i]) for i, cell in enumerate(row)) for row in rows
    ]
    return "\n".join([header_line, separator, *row_lines])


def _format_deadline(epoch_ms: int) -> str:
    return datetime.fromtimestamp(epoch_ms / 1000, JST).strftime("%Y/%m/%d %H:%M")


def _task_rows(tasks: list[Task]) -> list[list[str]]:
    return [
        [
            _format_deadline(t.deadline),
            t.task_type.name.lower(),
            t.class_name,
            t.title,
            "yes" if t.done else "",
        ]
        for t in tasks
    ]


def _cell_rows(cells: list[ClassCell]) -> list[list[str]]:
    return [
        [
            _DAY_NAMES[c.day_of_week],
            str(c.period + 1),
            c.name or "-",
            c.room or "-",
            c.teachers or "-",
        ]
        for c in cells
    ]


def _news_rows(items: list[NewsItem]) -> list[list[str]]:
    return [
        [n.publish_time, "*" if n.unread else "", n.category, n.domain, n.title, n.news_id]
        for n in items
    ]


def _emit(records: list, table: bool, headers: list[str], rows_fn) -> None:
    if table:
        print(_format_table(headers, rows_fn(records)))
    else:
        print(json.dumps([r.model_dump(mode="json") for r in records], indent=2, ensure_ascii=False))


async def _login(config: ScombConfig, secrets: FileSecretStore) -> None:
    username = config.username or secrets.get(USERNAME_KEY) or input("Username: ")
    password = config.password or getpass.getpass("Password: ")

    driver = await PlaywrightLoginDriver.launch(config)
    machine = LoginStateMachine(driver, config=config, secret_store=secrets)

    def _show_code(code: str) -> None:
        _log(f"  Confirm this number in your authenticator app: {code}")

    _log("login: starting")
    await machine.authenticate(username, password, on_two_factor_code=_show_code)
    _log("login: done")


async def run(args: argparse.Namespace, config: ScombConfig) -> None:
    secrets = FileSecretStore(config.state_dir)

    if args.command == "login":
        await _login(config, secrets)
        return
    if args.command == "logout":
        secrets.clear(SESSION_KEY)
        _log("logout: session forgotten")
        return

    store = JsonRecordStore(Path(config.state_dir) / "records.json")
    client = ScombClient(config)
    repository = ScombRepository(client, store, secrets, config)
    try:
        if args.command == "tasks":
            tasks = await repository.fetch_tasks(args.refresh)
            _emit(tasks, args.table, ["Deadline", "Type", "Class", "Title", "Done"], _task_rows)
        elif args.command == "timetable":
            cells = await repository.fetch_timetable(args.year, args.term, args.refresh)
            _emit(cells, args.table, ["Day", "Period", "Class", "Room", "Teachers"], _cell_rows)
        elif args.command == "news":
            items = await repository.fetch_news(args.refresh)
            _emit(
                items,
                args.table,
                ["Published", "New", "Category", "Domain", "Title", "Id"],
                _news_rows,
            )
        elif args.command == "mark-read":
            item = repository.mark_news_read(args.news_id)
            _emit(
                [item],
                args.table,
                ["Published", "New", "Category", "Domain", "Title", "Id"],
                _news_rows,
            )
        elif args.command == "sync":
            result = await repository.sync_now()
            _log(
                f"  Synced {len(result.tasks)} tasks, {len(result.timetable)} cells, "
                f"{len(result.news)} news"
            )
            print(result.model_dump_json(indent=2))
    finally:
        client.close()


def main(argv: list[str] | None = None) -> int:
    load_dotenv()
    args = _build_parser().parse_args(argv)

    config = ScombConfig()
    if args.headed:
        config = config.model_copy(update={"headless": False})
    setup_logging(json_output=config.log_json, log_level=config.effective_log_level)

    try:
        asyncio.run(run(args, config))
    except AuthenticationError as e:
        _log(f"ERROR: {e}")
        if args.command != "login":
            _log("  Run `scomb login` to sign in again.")
        return EXIT_LOGIN_REQUIRED
    except ScombError as e:
        _log(f"ERROR: {e}")
        return EXIT_ERROR
    return 0


if __name__ == "__main__":
    sys.exit(main())
