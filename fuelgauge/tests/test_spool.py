"""
Unit tests for the async SQLite snapshot store.

Tests verify:
- Store creates SQLite DB with WAL mode at configurable path.
- append(snapshot) stores a snapshot; a duplicate timestamp is rejected.
- read_window(since_ms) returns snapshots oldest first, filtered by time.
- latest_timestamp() and count() reflect stored snapshots.
- Computed usage slots are appended and their latest timestamp tracked.
- delete_before(ts_ms) removes expired snapshots and slot results.
- Persistence across close/reopen.
- Using the store before open() fails loudly.

CHANGELOG:
- 2026-10-17: Cover retention pruning (STORY-012)
- 2026-10-17: Rewrite for DeviceSnapshot storage (STORY-012)
- 2026-02-14: Initial creation (STORY-005)

TODO:
- None
"""

from __future__ import annotations

import asyncio
import json
from pathlib import Path

import aiosqlite
import pytest
from fuelgauge.src.errors import InvalidSampleError
from fuelgauge.src.models import ConsumerKind, ConsumerRecord, DeviceSnapshot
from fuelgauge.src.spool import SnapshotStore

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _make_snapshot(ts: int, level: int = 80, power: float = 1.5) -> DeviceSnapshot:
    """Return a small snapshot with one app consumer."""
    return DeviceSnapshot(
        timestamp_ms=ts,
        timezone_id="Europe/Brussels",
        battery_level_percent=level,
        total_consumed_power_mah=power * 2,
        consumers=(
            ConsumerRecord(
                identity_key="10001",
                raw_id=10001,
                kind=ConsumerKind.APP,
                consumed_power_mah=power,
                foreground_time_ms=60_000,
                package_hint="com.example.app",
            ),
        ),
    )


# ---------------------------------------------------------------------------
# DB creation
# ---------------------------------------------------------------------------


class TestStoreCreation:
    """Store creates a SQLite database with WAL journal mode."""

    @pytest.mark.asyncio
    async def test_creates_db_file_at_configured_path(self, tmp_path: Path) -> None:
        db_path = tmp_path / "store.db"
        store = SnapshotStore(path=db_path)
        await store.open()

        assert db_path.exists()
        await store.close()

    @pytest.mark.asyncio
    async def test_wal_mode_enabled(self, tmp_path: Path) -> None:
        """WAL journal mode is set so readers do not block the writer."""
        db_path = tmp_path / "wal_test.db"
        store = SnapshotStore(path=db_path)
        await store.open()

        async with aiosqlite.connect(str(db_path)) as conn:
            cursor = await conn.execute("PRAGMA journal_mode;")
            row = await cursor.fetchone()

        assert row[0] == "wal"
        await store.close()

    @pytest.mark.asyncio
    async def test_accepts_string_path(self, tmp_path: Path) -> None:
        db_path = str(tmp_path / "str_path.db")
        async with SnapshotStore(path=db_path):
            assert Path(db_path).exists()

    @pytest.mark.asyncio
    async def test_use_before_open_fails(self, tmp_path: Path) -> None:
        store = SnapshotStore(path=tmp_path / "closed.db")
        with pytest.raises(AssertionError, match="not opened"):
            await store.count()

    @pytest.mark.asyncio
    async def test_close_twice_is_safe(self, tmp_path: Path) -> None:
        store = SnapshotStore(path=tmp_path / "store.db")
        await store.open()
        await store.close()
        await store.close()


# ---------------------------------------------------------------------------
# append + read_window
# ---------------------------------------------------------------------------


class TestAppendAndRead:
    """append stores snapshots; read_window returns them in order."""

    @pytest.mark.asyncio
    async def test_round_trip_preserves_snapshot(self, tmp_path: Path) -> None:
        async with SnapshotStore(path=tmp_path / "store.db") as store:
            snapshot = _make_snapshot(1_000)
            await store.append(snapshot)

            (returned,) = await store.read_window()

            assert returned == snapshot

    @pytest.mark.asyncio
    async def test_read_window_oldest_first(self, tmp_path: Path) -> None:
        async with SnapshotStore(path=tmp_path / "store.db") as store:
            for ts in (3_000, 1_000, 2_000):
                await store.append(_make_snapshot(ts))

            window = await store.read_window()

            assert [s.timestamp_ms for s in window] == [1_000, 2_000, 3_000]

    @pytest.mark.asyncio
    async def test_read_window_since_is_inclusive(self, tmp_path: Path) -> None:
        async with SnapshotStore(path=tmp_path / "store.db") as store:
            for ts in (1_000, 2_000, 3_000):
                await store.append(_make_snapshot(ts))

            window = await store.read_window(since_ms=2_000)

            assert [s.timestamp_ms for s in window] == [2_000, 3_000]

    @pytest.mark.asyncio
    async def test_read_window_empty(self, tmp_path: Path) -> None:
        async with SnapshotStore(path=tmp_path / "store.db") as store:
            assert await store.read_window() == []

    @pytest.mark.asyncio
    async def test_duplicate_timestamp_rejected(self, tmp_path: Path) -> None:
        async with SnapshotStore(path=tmp_path / "store.db") as store:
            await store.append(_make_snapshot(1_000, level=80))

            with pytest.raises(InvalidSampleError) as exc_info:
                await store.append(_make_snapshot(1_000, level=70))

            assert exc_info.value.timestamp_ms == 1_000
            (kept,) = await store.read_window()
            assert kept.battery_level_percent == 80


# ---------------------------------------------------------------------------
# latest_timestamp + count
# ---------------------------------------------------------------------------


class TestLatestAndCount:
    """latest_timestamp() and count() track stored snapshots."""

    @pytest.mark.asyncio
    async def test_empty_store(self, tmp_path: Path) -> None:
        async with SnapshotStore(path=tmp_path / "store.db") as store:
            assert await store.latest_timestamp() is None
            assert await store.count() == 0

    @pytest.mark.asyncio
    async def test_after_appends(self, tmp_path: Path) -> None:
        async with SnapshotStore(path=tmp_path / "store.db") as store:
            for ts in (1_000, 5_000, 3_000):
                await store.append(_make_snapshot(ts))

            assert await store.latest_timestamp() == 5_000
            assert await store.count() == 3


# ---------------------------------------------------------------------------
# Computed usage slots
# ---------------------------------------------------------------------------


class TestUsageSlots:
    """Computed slot results are appended, never replaced."""

    @pytest.mark.asyncio
    async def test_latest_usage_slot_empty(self, tmp_path: Path) -> None:
        async with SnapshotStore(path=tmp_path / "store.db") as store:
            assert await store.latest_usage_slot_timestamp() is None

    @pytest.mark.asyncio
    async def test_append_usage_slot(self, tmp_path: Path) -> None:
        async with SnapshotStore(path=tmp_path / "store.db") as store:
            await store.append_usage_slot(7_200_000, json.dumps({"entries": []}))
            await store.append_usage_slot(14_400_000, json.dumps({"entries": []}))

            assert await store.latest_usage_slot_timestamp() == 14_400_000
            # Slots live in their own table.
            assert await store.count() == 0


# ---------------------------------------------------------------------------
# Retention
# ---------------------------------------------------------------------------


class TestDeleteBefore:
    """delete_before() drops expired snapshots and slot results."""

    @pytest.mark.asyncio
    async def test_deletes_older_snapshots(self, tmp_path: Path) -> None:
        async with SnapshotStore(path=tmp_path / "store.db") as store:
            for ts in (1_000, 2_000, 3_000, 4_000):
                await store.append(_make_snapshot(ts))

            removed = await store.delete_before(3_000)

            assert removed == 2
            assert [s.timestamp_ms for s in await store.read_window()] == [3_000, 4_000]
            assert await store.latest_timestamp() == 4_000

    @pytest.mark.asyncio
    async def test_deletes_older_usage_slots(self, tmp_path: Path) -> None:
        async with SnapshotStore(path=tmp_path / "store.db") as store:
            await store.append_usage_slot(1_000, json.dumps({"hour_index": 0}))
            await store.append_usage_slot(5_000, json.dumps({"hour_index": 1}))

            await store.delete_before(2_000)

            async with store._db.execute("SELECT timestamp_ms FROM usage_slots") as cur:
                rows = await cur.fetchall()
            assert [row[0] for row in rows] == [5_000]

    @pytest.mark.asyncio
    async def test_nothing_expired(self, tmp_path: Path) -> None:
        async with SnapshotStore(path=tmp_path / "store.db") as store:
            await store.append(_make_snapshot(5_000))

            assert await store.delete_before(1_000) == 0
            assert await store.count() == 1


# ---------------------------------------------------------------------------
# Concurrency + persistence
# ---------------------------------------------------------------------------


class TestConcurrency:
    """Concurrent appends and reads do not corrupt the store."""

    @pytest.mark.asyncio
    async def test_concurrent_appends(self, tmp_path: Path) -> None:
        async with SnapshotStore(path=tmp_path / "store.db") as store:
            await asyncio.gather(*(store.append(_make_snapshot(ts)) for ts in range(1, 21)))

            window = await store.read_window()
            assert [s.timestamp_ms for s in window] == list(range(1, 21))


class TestPersistence:
    """Snapshots survive close and reopen."""

    @pytest.mark.asyncio
    async def test_reopen_keeps_snapshots(self, tmp_path: Path) -> None:
        db_path = tmp_path / "persist.db"
        async with SnapshotStore(path=db_path) as store:
            await store.append(_make_snapshot(1_000))
            await store.append(_make_snapshot(2_000))

        async with SnapshotStore(path=db_path) as store:
            assert await store.count() == 2
            assert await store.latest_timestamp() == 2_000
