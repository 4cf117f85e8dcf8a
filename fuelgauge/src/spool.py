"""
Append-only local snapshot store using async SQLite.

Snapshots are keyed by their UTC timestamp and stored as JSON payloads. The
pipeline only appends and reads an ordered window; rows are never updated in
place. Computed per-slot usage results are appended to a second table so a
later reader can pick up the latest results without recomputing them.

Operations:
- append(snapshot): INSERT one snapshot, rejecting a duplicate timestamp.
- read_window(since_ms): SELECT snapshots at or after since_ms, oldest first.
- latest_timestamp(): newest stored timestamp, or None.
- count(): number of stored snapshots.
- append_usage_slot(timestamp_ms, payload): INSERT a computed slot result.
- latest_usage_slot_timestamp(): newest computed slot timestamp, or None.
- delete_before(ts_ms): DELETE snapshots and slot results older than ts_ms.
- close(): Close the underlying database connection.

Supports async context manager protocol for clean resource management.

CHANGELOG:
- 2026-10-17: Add delete_before for retention pruning (STORY-012)
- 2026-10-17: Add usage_slots table for computed results (STORY-012)
- 2026-10-17: Initial creation (STORY-012)

TODO:
- None
"""

from __future__ import annotations

import sqlite3
from pathlib import Path

import aiosqlite

from fuelgauge.src.errors import InvalidSampleError
from fuelgauge.src.models import DeviceSnapshot

_CREATE_SNAPSHOTS_SQL = """\
CREATE TABLE IF NOT EXISTS snapshots (
    timestamp_ms INTEGER PRIMARY KEY,
    payload TEXT NOT NULL,
    created_at TEXT NOT NULL DEFAULT (datetime('now'))
);
"""

_CREATE_USAGE_SLOTS_SQL = """\
CREATE TABLE IF NOT EXISTS usage_slots (
    rowid INTEGER PRIMARY KEY AUTOINCREMENT,
    timestamp_ms INTEGER NOT NULL,
    payload TEXT NOT NULL
);
"""

_INSERT_SNAPSHOT_SQL = """\
INSERT INTO snapshots (timestamp_ms, payload) VALUES (?, ?);
"""

_WINDOW_SQL = """\
SELECT payload
FROM snapshots
WHERE timestamp_ms >= ?
ORDER BY timestamp_ms ASC;
"""

_LATEST_SQL = "SELECT MAX(timestamp_ms) FROM snapshots;"

_COUNT_SQL = "SELECT COUNT(*) FROM snapshots;"

_INSERT_USAGE_SLOT_SQL = """\
INSERT INTO usage_slots (timestamp_ms, payload) VALUES (?, ?);
"""

_LATEST_USAGE_SLOT_SQL = "SELECT MAX(timestamp_ms) FROM usage_slots;"

_DELETE_SNAPSHOTS_BEFORE_SQL = "DELETE FROM snapshots WHERE timestamp_ms < ?;"

_DELETE_USAGE_SLOTS_BEFORE_SQL = "DELETE FROM usage_slots WHERE timestamp_ms < ?;"


class SnapshotStore:
    """Append-only async store of DeviceSnapshots backed by SQLite.

    Uses WAL journal mode so the API process can read while the daemon
    appends.

    Args:
        path: Filesystem path for the SQLite database file.
              Accepts ``str`` or ``pathlib.Path``.

    Usage::

        async with SnapshotStore(path="/data/fuelgauge.db") as store:
            await store.append(snapshot)
            window = await store.read_window(since_ms)
    """

    def __init__(self, path: str | Path) -> None:
        self._path = Path(path)
        self._db: aiosqlite.Connection | None = None

    async def open(self) -> None:
        """Open the SQLite connection and initialize the schema."""
        self._db = await aiosqlite.connect(str(self._path))
        await self._db.execute("PRAGMA journal_mode=WAL;")
        await self._db.execute(_CREATE_SNAPSHOTS_SQL)
        await self._db.execute(_CREATE_USAGE_SLOTS_SQL)
        await self._db.commit()

    async def close(self) -> None:
        """Close the underlying SQLite connection."""
        if self._db is not None:
            await self._db.close()
            self._db = None

    async def __aenter__(self) -> SnapshotStore:
        """Enter async context manager: open the database."""
        await self.open()
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: object,
    ) -> None:
        """Exit async context manager: close the database."""
        await self.close()

    # ------------------------------------------------------------------
    # Snapshots
    # ------------------------------------------------------------------

    async def append(self, snapshot: DeviceSnapshot) -> None:
        """Append a snapshot.

        Raises:
            InvalidSampleError: If a snapshot with the same timestamp is
                already stored.
        """
        assert self._db is not None, "Store not opened. Call open() or use async with."
        try:
            await self._db.execute(
                _INSERT_SNAPSHOT_SQL,
                (snapshot.timestamp_ms, snapshot.model_dump_json()),
            )
        except sqlite3.IntegrityError as exc:
            raise InvalidSampleError(
                f"snapshot at {snapshot.timestamp_ms} already stored",
                timestamp_ms=snapshot.timestamp_ms,
            ) from exc
        await self._db.commit()

    async def read_window(self, since_ms: int = 0) -> list[DeviceSnapshot]:
        """Return snapshots with ``timestamp_ms >= since_ms``, oldest first."""
        assert self._db is not None, "Store not opened. Call open() or use async with."
        cursor = await self._db.execute(_WINDOW_SQL, (since_ms,))
        rows = await cursor.fetchall()
        return [DeviceSnapshot.model_validate_json(row[0]) for row in rows]

    async def latest_timestamp(self) -> int | None:
        assert self._db is not None, "Store not opened. Call open() or use async with."
        cursor = await self._db.execute(_LATEST_SQL)
        row = await cursor.fetchone()
        return row[0] if row else None

    async def count(self) -> int:
        """Return the number of stored snapshots."""
        assert self._db is not None, "Store not opened. Call open() or use async with."
        cursor = await self._db.execute(_COUNT_SQL)
        row = await cursor.fetchone()
        return row[0]

    # ------------------------------------------------------------------
    # Computed usage slots
    # ------------------------------------------------------------------

    async def append_usage_slot(self, timestamp_ms: int, payload: str) -> None:
        """Append one computed slot result (JSON) keyed by its end timestamp."""
        assert self._db is not None, "Store not opened. Call open() or use async with."
        await self._db.execute(_INSERT_USAGE_SLOT_SQL, (timestamp_ms, payload))
        await self._db.commit()

    async def latest_usage_slot_timestamp(self) -> int | None:
        assert self._db is not None, "Store not opened. Call open() or use async with."
        cursor = await self._db.execute(_LATEST_USAGE_SLOT_SQL)
        row = await cursor.fetchone()
        return row[0] if row else None

    # ------------------------------------------------------------------
    # Retention
    # ------------------------------------------------------------------

    async def delete_before(self, ts_ms: int) -> int:
        """Delete snapshots and computed slot results older than *ts_ms*.

        Rows at exactly *ts_ms* are kept, matching ``read_window(ts_ms)``.

        Args:
            ts_ms: Cutoff timestamp in milliseconds (exclusive).

        Returns:
            Number of snapshots removed.
        """
        assert self._db is not None, "Store not opened. Call open() or use async with."
        cursor = await self._db.execute(_DELETE_SNAPSHOTS_BEFORE_SQL, (ts_ms,))
        removed = cursor.rowcount
        await self._db.execute(_DELETE_USAGE_SLOTS_BEFORE_SQL, (ts_ms,))
        await self._db.commit()
        return removed
