"""Persistent record storage.

The repository only needs three operations keyed by record identity:
get_all, upsert and delete_where. JsonRecordStore implements them on top of
a single JSON document, one object per record kind, so the CLI can cache
scraped data between runs. Passing ``path=None`` keeps everything in memory.
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Callable, Protocol

from pydantic import BaseModel, ValidationError

from src.scomb.errors import StorageError
from src.scomb.logging import get_logger
from src.scomb.models import RECORD_TYPES, RecordKind

logger = get_logger(__name__)


class RecordStore(Protocol):
    def get_all(self, kind: RecordKind, subkey: str | None = None) -> list: ...

    def upsert(self, kind: RecordKind, record: BaseModel) -> None: ...

    def delete_where(self, kind: RecordKind, predicate: Callable[[BaseModel], bool]) -> int: ...


class JsonRecordStore:
    """Record store persisted to a JSON file (or kept in memory)."""

    def __init__(self, path: str | Path | None = None) -> None:
        self.path = Path(path) if path is not None else None
        self._records: dict[RecordKind, dict[str, BaseModel]] = {
            kind: {} for kind in RecordKind
        }
        if self.path is not None and self.path.exists():
            self._load()

    def _load(self) -> None:
        if self.path is None:
            return
        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as e:
            raise StorageError(f"Cannot read {self.path}: {e}") from e

        for kind in RecordKind:
            model = RECORD_TYPES[kind]
            for raw in data.get(kind.value, []):
                try:
                    record = model.model_validate(raw)
                except ValidationError as e:
                    raise StorageError(f"Corrupt {kind.value} record in {self.path}") from e
                self._records[kind][record.record_key] = record

        logger.debug(
            "record_store_loaded",
            path=str(self.path),
            counts={k.value: len(v) for k, v in self._records.items()},
        )

    def _flush(self) -> None:
        if self.path is None:
            return
        payload = {
            kind.value: [r.model_dump(mode="json") for r in records.values()]
            for kind, records in self._records.items()
        }
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            self.path.write_text(
                json.dumps(payload, indent=2, ensure_ascii=False), encoding="utf-8"
            )
        except OSError as e:
            raise StorageError(f"Cannot write {self.path}: {e}") from e

    def get_all(self, kind: RecordKind, subkey: str | None = None) -> list:
        records = list(self._records[kind].values())
        if subkey is not None:
            records = [r for r in records if r.record_subkey == subkey]
        # Copies, so callers can't mutate stored state behind the store's back
        return [r.model_copy() for r in records]

    def upsert(self, kind: RecordKind, record: BaseModel) -> None:
        expected = RECORD_TYPES[kind]
        if not isinstance(record, expected):
            raise StorageError(
                f"Cannot store {type(record).__name__} as {kind.value} record"
            )
        self._records[kind][record.record_key] = record.model_copy()
        self._flush()

    def delete_where(self, kind: RecordKind, predicate: Callable[[BaseModel], bool]) -> int:
        """Delete every record of ``kind`` matching ``predicate``.

        Returns:
            Number of records removed.
        """
        doomed = [key for key, r in self._records[kind].items() if predicate(r)]
        for key in doomed:
            del self._records[kind][key]
        if doomed:
            self._flush()
        logger.debug("records_deleted", kind=kind.value, count=len(doomed))
        return len(doomed)
