from __future__ import annotations

import asyncio
import json
import sqlite3
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Sequence

from .errors import StorageError, SyncError
from .page_schema import RecordKind, parse_records, record_to_wire
from .record_store import RecordStore
from .run_log import ScreenLog
from .snapshot_schema import initialize_sqlite


def _utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _json_dumps(value: Any) -> str:
    return json.dumps(
        value,
        ensure_ascii=False,
        sort_keys=True,
        separators=(",", ":"),
        default=str,
    )


@dataclass(frozen=True)
class SnapshotRow:
    key: str
    kind: str
    payload_json: str
    item_count: int
    saved_at: str


class SQLiteSnapshotStore:
    """
    Keyed blob storage for list snapshots.

    One row per key; every write replaces the whole blob so a reader never sees
    a half-written list.
    """

    def __init__(self, conn: sqlite3.Connection) -> None:
        self._conn = conn
        self._conn.row_factory = sqlite3.Row

    @classmethod
    def open(cls, path: str | Path) -> "SQLiteSnapshotStore":
        db_path = str(path)
        if db_path != ":memory:":
            Path(db_path).parent.mkdir(parents=True, exist_ok=True)

        try:
            # Writes run on a worker thread (see SnapshotGateway), one at a time.
            conn = sqlite3.connect(db_path, check_same_thread=False)
        except sqlite3.DatabaseError as e:
            raise StorageError(f"Failed to open sqlite database: {db_path}: {e}") from e

        try:
            initialize_sqlite(conn)
        except Exception as e:
            conn.close()
            raise StorageError(f"Failed to initialize sqlite schema: {e}") from e

        return cls(conn)

    def close(self) -> None:
        self._conn.close()

    def __enter__(self) -> "SQLiteSnapshotStore":
        return self

    def __exit__(self, exc_type: object, exc: object, tb: object) -> None:
        self.close()

    def write(self, key: str, *, kind: str, items: Sequence[dict[str, Any]]) -> None:
        k = (key or "").strip()
        if not k:
            raise ValueError("key must be non-empty")

        try:
            with self._conn:
                self._conn.execute(
                    """
                    INSERT INTO snapshots(key, kind, payload_json, item_count, saved_at)
                    VALUES (?, ?, ?, ?, ?)
                    ON CONFLICT(key) DO UPDATE SET
                      kind = excluded.kind,
                      payload_json = excluded.payload_json,
                      item_count = excluded.item_count,
                      saved_at = excluded.saved_at
                    """.strip(),
                    (k, kind, _json_dumps(list(items)), len(items), _utc_now_iso()),
                )
        except sqlite3.DatabaseError as e:
            raise StorageError(f"Failed to write snapshot {k}: {e}") from e

    def read(self, key: str) -> SnapshotRow | None:
        k = (key or "").strip()
        if not k:
            raise ValueError("key must be non-empty")

        try:
            row = self._conn.execute(
                "SELECT key, kind, payload_json, item_count, saved_at FROM snapshots WHERE key = ?",
                (k,),
            ).fetchone()
        except sqlite3.DatabaseError as e:
            raise StorageError(f"Failed to read snapshot {k}: {e}") from e

        if row is None:
            return None

        return SnapshotRow(
            key=str(row["key"]),
            kind=str(row["kind"]),
            payload_json=str(row["payload_json"]),
            item_count=int(row["item_count"]),
            saved_at=str(row["saved_at"]),
        )

    def delete(self, key: str) -> None:
        try:
            with self._conn:
                self._conn.execute("DELETE FROM snapshots WHERE key = ?", (key,))
        except sqlite3.DatabaseError as e:
            raise StorageError(f"Failed to delete snapshot {key}: {e}") from e


class SnapshotGateway:
    """
    Persists one RecordStore under one key.

    Store changes schedule a flush; flushes are serialized and a burst of
    changes collapses into a single write of the latest items.
    """

    def __init__(
        self,
        storage: SQLiteSnapshotStore,
        *,
        key: str,
        kind: RecordKind,
        logger: ScreenLog | None = None,
    ) -> None:
        self._storage = storage
        self._key = key
        self._kind = kind
        self._log = logger
        self._lock = asyncio.Lock()
        self._latest: tuple[Any, ...] | None = None
        self._flush_task: asyncio.Task[None] | None = None
        self._last_error: StorageError | None = None

    @property
    def key(self) -> str:
        return self._key

    @property
    def last_error(self) -> StorageError | None:
        return self._last_error

    def load(self) -> list[Any]:
        """Return the saved records, or [] when nothing usable is stored."""
        try:
            row = self._storage.read(self._key)
        except StorageError as e:
            self._warn("snapshot_unreadable", error=str(e))
            return []

        if row is None:
            return []

        try:
            raw = json.loads(row.payload_json)
            if not isinstance(raw, list):
                raise ValueError("snapshot payload must be a list")
            records = list(parse_records(raw, self._kind))
        except (ValueError, SyncError) as e:
            self._warn("snapshot_unreadable", error=str(e))
            return []

        if self._log is not None:
            self._log.info("snapshot_restored", key=self._key, items=len(records))
        return records

    def hydrate(self, store: RecordStore) -> int:
        records = self.load()
        if records:
            store.seed(records)
        return len(records)

    def attach(self, store: RecordStore) -> None:
        store.add_listener(lambda s: self.schedule(s.items))

    def schedule(self, records: Sequence[Any]) -> None:
        self._latest = tuple(records)
        if self._flush_task is None or self._flush_task.done():
            try:
                loop = asyncio.get_running_loop()
            except RuntimeError:
                # No loop (synchronous caller): write straight through.
                self._write_now(self._take_latest())
                return
            self._flush_task = loop.create_task(self._flush_loop())

    async def flush(self) -> None:
        """Wait until every scheduled snapshot has been written."""
        while self._flush_task is not None and not self._flush_task.done():
            await self._flush_task
        if self._latest is not None:
            await self.save(self._take_latest())

    async def save(self, records: Sequence[Any]) -> None:
        async with self._lock:
            await asyncio.to_thread(self._write_now, tuple(records))

    async def _flush_loop(self) -> None:
        while self._latest is not None:
            await self.save(self._take_latest())

    def _take_latest(self) -> tuple[Any, ...]:
        items = self._latest or ()
        self._latest = None
        return items

    def _write_now(self, records: tuple[Any, ...]) -> None:
        try:
            self._storage.write(
                self._key,
                kind=self._kind,
                items=[record_to_wire(r) for r in records],
            )
        except StorageError as e:
            self._last_error = e
            self._warn("snapshot_write_failed", error=str(e))
            return

        self._last_error = None
        if self._log is not None:
            self._log.info("snapshot_saved", key=self._key, items=len(records))

    def _warn(self, event: str, **data: Any) -> None:
        if self._log is not None:
            self._log.warning(event, key=self._key, **data)
