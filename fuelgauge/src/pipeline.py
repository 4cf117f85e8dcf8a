"""
Full recomputation: snapshot sequence -> immutable UsageIndex.

Partitions the retained snapshots, diffs every slot (each hour slot, each
whole day, and the whole window), ranks every diff, and packs the results
with the battery level series into a UsageIndex. The whole-window aggregate
diffs the first and last snapshot directly rather than summing slot diffs,
so usage is never double counted across slot boundaries.

Pure and CPU-bound: the worker runs it in a thread and publishes the result.

CHANGELOG:
- 2026-10-17: Record closed hour slots (STORY-012)
- 2026-10-17: Initial creation (STORY-011)

TODO:
- None
"""

from __future__ import annotations

import logging
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from types import MappingProxyType

from fuelgauge.src.diff_engine import compute_diff
from fuelgauge.src.errors import InsufficientDataError
from fuelgauge.src.models import (
    SELECT_ALL,
    BatteryLevelSeries,
    DeviceSnapshot,
    DiffEntry,
    SeriesScope,
)
from fuelgauge.src.partitioner import partition
from fuelgauge.src.policy import PolicyProvider
from fuelgauge.src.ranking import DEFAULT_MAX_ENTRIES, rank_entries

logger = logging.getLogger(__name__)

SlotKey = tuple[int, int]


def _frozen_mapping(data: dict) -> Mapping:
    return MappingProxyType(dict(data))


@dataclass(frozen=True)
class UsageIndex:
    """Immutable result of one recomputation.

    Attributes:
        generation: Start-order number of the run that built this index.
        diff_index: Ranked entries per ``(day_index, hour_index)`` key,
            including ``(day, SELECT_ALL)`` and ``(SELECT_ALL, SELECT_ALL)``.
        slot_bounds: ``(start_ts, end_ts)`` per key.
        daily_series: Day-boundary levels, empty for a single day.
        hourly_series: Hour-boundary levels per day.
        snapshot_count: Number of snapshots the index was built from.
        closed_slots: Hour slot keys that later snapshots can no longer
            change.
    """

    generation: int = 0
    diff_index: Mapping[SlotKey, tuple[DiffEntry, ...]] = field(
        default_factory=lambda: _frozen_mapping({})
    )
    slot_bounds: Mapping[SlotKey, tuple[int, int]] = field(
        default_factory=lambda: _frozen_mapping({})
    )
    daily_series: BatteryLevelSeries = field(default_factory=BatteryLevelSeries)
    hourly_series: tuple[BatteryLevelSeries, ...] = ()
    snapshot_count: int = 0
    closed_slots: frozenset[SlotKey] = frozenset()

    @property
    def day_count(self) -> int:
        return len(self.hourly_series)

    @property
    def is_single_day(self) -> bool:
        return self.day_count == 1

    def entries(self, day_index: int, hour_index: int) -> tuple[DiffEntry, ...]:
        """Return the ranked entries for a slot.

        Raises:
            InsufficientDataError: If no slot with two boundaries exists at
                the key.
        """
        try:
            return self.diff_index[(day_index, hour_index)]
        except KeyError:
            raise InsufficientDataError(
                f"no usage data for slot ({day_index}, {hour_index})"
            ) from None

    def level_series(
        self,
        scope: SeriesScope,
        day_index: int = SELECT_ALL,
    ) -> BatteryLevelSeries:
        """Return the daily series, or the hourly series of *day_index*."""
        if scope is SeriesScope.DAILY:
            return self.daily_series
        if 0 <= day_index < len(self.hourly_series):
            return self.hourly_series[day_index]
        return BatteryLevelSeries()


def build_usage_index(
    snapshots: Sequence[DeviceSnapshot],
    *,
    policy: PolicyProvider,
    max_entries: int = DEFAULT_MAX_ENTRIES,
    show_all: bool = False,
    generation: int = 0,
) -> UsageIndex:
    """Run partition, diff and ranking over a retained snapshot window.

    Args:
        snapshots: Snapshots in strictly increasing timestamp order.
        policy: Visibility sets and coalescing identities.
        max_entries: Cap per slot list.
        show_all: Include show-all-only consumers.
        generation: Start-order number stamped on the result.

    Returns:
        The immutable :class:`UsageIndex`.
    """
    result = partition(snapshots)

    diff_index: dict[SlotKey, tuple[DiffEntry, ...]] = {}
    slot_bounds: dict[SlotKey, tuple[int, int]] = {}
    for slot in result.iter_slots():
        diff = compute_diff(slot.start, slot.end)
        diff_index[slot.key] = rank_entries(
            diff, policy=policy, max_entries=max_entries, show_all=show_all
        )
        slot_bounds[slot.key] = (slot.start.timestamp_ms, slot.end.timestamp_ms)

    logger.info(
        "Built usage index generation=%d from %d snapshots: %d day(s), %d slot(s)",
        generation,
        len(snapshots),
        result.day_count,
        len(diff_index),
    )
    return UsageIndex(
        generation=generation,
        diff_index=_frozen_mapping(diff_index),
        slot_bounds=_frozen_mapping(slot_bounds),
        daily_series=result.daily_series,
        hourly_series=result.hourly_series,
        snapshot_count=len(snapshots),
        closed_slots=frozenset(slot.key for slot in result.closed_hour_slots()),
    )
