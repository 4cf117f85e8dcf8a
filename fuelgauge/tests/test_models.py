"""
Unit tests for the battery usage data models.

Tests verify:
- Identity keys are prefixed per kind so id spaces never collide.
- DeviceSnapshot rejects duplicate identity keys and out-of-range levels.
- Snapshots are immutable and round-trip through JSON.
- DiffEntry total usage time and BatteryLevelSeries accessors.

CHANGELOG:
- 2026-10-17: Initial creation (STORY-002)

TODO:
- None
"""

import pytest
from fuelgauge.src.models import (
    SELECT_ALL,
    BatteryLevelPoint,
    BatteryLevelSeries,
    ConsumerKind,
    ConsumerRecord,
    DeviceSnapshot,
    DiffEntry,
    identity_key_for,
)
from pydantic import ValidationError


def _record(key: str, raw_id: int, power: float = 1.0) -> ConsumerRecord:
    return ConsumerRecord(
        identity_key=key,
        raw_id=raw_id,
        kind=ConsumerKind.APP,
        consumed_power_mah=power,
    )


class TestIdentityKey:
    """identity_key_for builds kind-specific keys."""

    def test_app_key_is_uid(self) -> None:
        assert identity_key_for(ConsumerKind.APP, 10042) == "10042"

    def test_system_key_is_prefixed(self) -> None:
        assert identity_key_for(ConsumerKind.SYSTEM, 7) == "S|7"

    def test_user_key_is_prefixed(self) -> None:
        assert identity_key_for(ConsumerKind.USER, 7) == "U|7"

    def test_same_raw_id_different_kinds_do_not_collide(self) -> None:
        keys = {identity_key_for(kind, 3) for kind in ConsumerKind}
        assert len(keys) == 3

    def test_select_all_sentinel(self) -> None:
        assert SELECT_ALL == -1


class TestDeviceSnapshot:
    """DeviceSnapshot invariants."""

    def test_duplicate_identity_keys_rejected(self) -> None:
        with pytest.raises(ValidationError, match="duplicate identity_key"):
            DeviceSnapshot(
                timestamp_ms=1,
                timezone_id="UTC",
                battery_level_percent=50,
                total_consumed_power_mah=2.0,
                consumers=(_record("10001", 10001), _record("10001", 10001)),
            )

    @pytest.mark.parametrize("level", [-1, 101])
    def test_level_out_of_range_rejected(self, level: int) -> None:
        with pytest.raises(ValidationError):
            DeviceSnapshot(
                timestamp_ms=1,
                timezone_id="UTC",
                battery_level_percent=level,
                total_consumed_power_mah=0.0,
            )

    def test_snapshot_is_frozen(self) -> None:
        snapshot = DeviceSnapshot(
            timestamp_ms=1,
            timezone_id="UTC",
            battery_level_percent=50,
            total_consumed_power_mah=0.0,
        )
        with pytest.raises(ValidationError):
            snapshot.battery_level_percent = 10  # type: ignore[misc]

    def test_json_round_trip(self) -> None:
        snapshot = DeviceSnapshot(
            timestamp_ms=1_700_000_000_000,
            timezone_id="Europe/Brussels",
            battery_level_percent=80,
            total_consumed_power_mah=12.5,
            discharge_percent=3,
            consumers=(_record("10001", 10001, 4.0), _record("10002", 10002, 2.0)),
        )
        assert DeviceSnapshot.model_validate_json(snapshot.model_dump_json()) == snapshot

    def test_consumer_map_keyed_by_identity(self) -> None:
        snapshot = DeviceSnapshot(
            timestamp_ms=1,
            timezone_id="UTC",
            battery_level_percent=50,
            total_consumed_power_mah=3.0,
            consumers=(_record("10001", 10001), _record("10002", 10002)),
        )
        assert set(snapshot.consumer_map()) == {"10001", "10002"}


class TestDiffEntryAndSeries:
    """Derived record helpers."""

    def test_total_usage_time(self) -> None:
        entry = DiffEntry(
            identity_key="10001",
            kind=ConsumerKind.APP,
            consumed_power_delta_mah=1.0,
            foreground_delta_ms=1_000,
            background_delta_ms=500,
        )
        assert entry.total_usage_time_ms == 1_500

    def test_series_accessors(self) -> None:
        series = BatteryLevelSeries(
            points=(
                BatteryLevelPoint(timestamp_ms=1, level=90),
                BatteryLevelPoint(timestamp_ms=2, level=85),
            )
        )
        assert series.timestamps == [1, 2]
        assert series.levels == [90, 85]
        assert len(series) == 2

    def test_empty_series(self) -> None:
        assert len(BatteryLevelSeries()) == 0
