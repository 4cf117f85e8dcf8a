"""
Diff engine: per-consumer consumption between two boundary snapshots.

Consumer counters in a snapshot are cumulative since the last stats reset.
For a slot ``(start, end)`` each consumer present in both snapshots
contributes ``end - start`` per field. Counters reset on a recharge or a
stats reset, so a negative delta is replaced by the raw end value: the slot
is treated as "since last reset" and negative deltas never reach the ranking
stage. Consumers seen only at ``end`` contribute their full end value;
consumers seen only at ``start`` (e.g. uninstalled apps) contribute nothing.

The percentage denominator of a slot is the device-reported total at
``end``, never the sum of the deltas.

CHANGELOG:
- 2026-10-17: Clamp negative usage-time deltas like power deltas (STORY-007)
- 2026-10-17: Initial creation (STORY-007)

TODO:
- None
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from fuelgauge.src.models import ConsumerKind, ConsumerRecord, DeviceSnapshot, DiffEntry

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SlotDiff:
    """Unranked deltas for one slot.

    Attributes:
        entries: One entry per identity key present at ``end``, ascending by
            key.
        total_consumed_power_mah: Device-reported total at ``end``.
    """

    entries: tuple[DiffEntry, ...] = ()
    total_consumed_power_mah: float = 0.0

    @property
    def is_empty(self) -> bool:
        return not self.entries


def _delta(end_value: float, start_value: float) -> float:
    delta = end_value - start_value
    return end_value if delta < 0 else delta


def _diff_record(end: ConsumerRecord, start: ConsumerRecord | None) -> DiffEntry:
    if start is None:
        power = end.consumed_power_mah
        foreground = end.foreground_time_ms
        background = end.background_time_ms
    else:
        power = _delta(end.consumed_power_mah, start.consumed_power_mah)
        foreground = int(_delta(end.foreground_time_ms, start.foreground_time_ms))
        background = int(_delta(end.background_time_ms, start.background_time_ms))
    return DiffEntry(
        identity_key=end.identity_key,
        kind=end.kind,
        consumed_power_delta_mah=power,
        foreground_delta_ms=foreground,
        background_delta_ms=background,
        is_system_kind=end.kind is ConsumerKind.SYSTEM,
        package_hint=end.package_hint,
        is_policy_hidden=end.is_policy_hidden,
    )


def compute_diff(
    start: DeviceSnapshot | None,
    end: DeviceSnapshot | None,
) -> SlotDiff:
    """Compute per-consumer deltas between two boundary snapshots.

    Args:
        start: Snapshot at the start of the slot, or None if missing.
        end: Snapshot at the end of the slot, or None if missing.

    Returns:
        A :class:`SlotDiff`. Empty (insufficient data) when either boundary
        is missing.
    """
    if start is None or end is None:
        logger.debug("Insufficient data for diff: missing slot boundary")
        return SlotDiff()

    start_map = start.consumer_map()
    end_map = end.consumer_map()
    dropped = start_map.keys() - end_map.keys()
    if dropped:
        logger.debug(
            "Diff %d..%d: %d consumer(s) vanished",
            start.timestamp_ms,
            end.timestamp_ms,
            len(dropped),
        )

    entries = tuple(
        _diff_record(end_map[key], start_map.get(key)) for key in sorted(end_map)
    )
    return SlotDiff(
        entries=entries,
        total_consumed_power_mah=end.total_consumed_power_mah,
    )
