"""
Time-slot partitioner: buckets snapshots into calendar days and 2-hour windows.

Each snapshot's local calendar date comes from its own timezone id; a later
change of device timezone never reinterprets older snapshots. Days with fewer
than two snapshots cannot be charted and are folded into the neighbouring day
instead of being dropped. Within a day, snapshots fall into twelve fixed
2-hour windows; a window's boundaries are its first and last snapshot, and a
window holding fewer than two snapshots is skipped.

Battery level series are read directly off the slot boundaries and never
interpolated. Recharges do not split slots; the diff engine handles them.

CHANGELOG:
- 2026-10-17: Report hour slots that can no longer change (STORY-012)
- 2026-10-17: Fold single-snapshot days into their neighbour (STORY-006)
- 2026-10-17: Initial creation (STORY-005)

TODO:
- None
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from dataclasses import dataclass, field
from datetime import date, datetime, time, timedelta
from functools import lru_cache
from zoneinfo import ZoneInfo

from fuelgauge.src.errors import InsufficientDataError, InvalidSampleError
from fuelgauge.src.models import (
    SELECT_ALL,
    BatteryLevelPoint,
    BatteryLevelSeries,
    DeviceSnapshot,
)

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

HOURS_PER_SLOT: int = 2
"""Width of one hourly slot in hours."""

SLOTS_PER_DAY: int = 24 // HOURS_PER_SLOT
"""Number of hourly slots in a calendar day (0..11)."""

SLOT_DURATION_MS: int = HOURS_PER_SLOT * 60 * 60 * 1000
"""Width of one hourly slot in milliseconds."""


# ---------------------------------------------------------------------------
# Result types
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class TimeSlot:
    """A pair of boundary snapshots.

    Attributes:
        day_index: Day bucket index, or SELECT_ALL for the whole window.
        hour_index: 2-hour window index 0..11, or SELECT_ALL for a whole day.
        start: First snapshot of the slot.
        end: Last snapshot of the slot.
    """

    day_index: int
    hour_index: int
    start: DeviceSnapshot
    end: DeviceSnapshot

    @property
    def key(self) -> tuple[int, int]:
        return (self.day_index, self.hour_index)

    def level_points(self) -> tuple[BatteryLevelPoint, BatteryLevelPoint]:
        return (
            BatteryLevelPoint(
                timestamp_ms=self.start.timestamp_ms,
                level=self.start.battery_level_percent,
            ),
            BatteryLevelPoint(
                timestamp_ms=self.end.timestamp_ms,
                level=self.end.battery_level_percent,
            ),
        )


@dataclass(frozen=True)
class DaySegment:
    """All snapshots of one day bucket and its hourly slots."""

    day_index: int
    date: date
    snapshots: tuple[DeviceSnapshot, ...]
    slots: tuple[TimeSlot, ...] = field(default=())

    @property
    def whole_day(self) -> TimeSlot:
        return TimeSlot(
            day_index=self.day_index,
            hour_index=SELECT_ALL,
            start=self.snapshots[0],
            end=self.snapshots[-1],
        )

    def slot(self, hour_index: int) -> TimeSlot | None:
        for slot in self.slots:
            if slot.hour_index == hour_index:
                return slot
        return None

    def closed_slots(self, newest_ms: int) -> tuple[TimeSlot, ...]:
        """Hour slots that later snapshots can no longer extend.

        A slot is closed once a snapshot newer than its end exists, or once
        its end sits exactly on the window's top boundary.
        """
        return tuple(
            slot
            for slot in self.slots
            if slot.end.timestamp_ms < newest_ms
            or local_datetime(slot.end).replace(tzinfo=None)
            == _window_top(self.date, slot.hour_index)
        )

    def hourly_series(self) -> BatteryLevelSeries:
        points: list[BatteryLevelPoint] = []
        for slot in self.slots:
            points.extend(slot.level_points())
        return BatteryLevelSeries(points=_dedupe_points(points))


@dataclass(frozen=True)
class PartitionResult:
    """Day buckets derived from one snapshot sequence."""

    days: tuple[DaySegment, ...] = ()

    @property
    def day_count(self) -> int:
        return len(self.days)

    @property
    def is_single_day(self) -> bool:
        """True when the retained window spans exactly one day bucket."""
        return len(self.days) == 1

    @property
    def whole_window(self) -> TimeSlot | None:
        """Slot spanning the first and last snapshot of the retained window."""
        if not self.days:
            return None
        return TimeSlot(
            day_index=SELECT_ALL,
            hour_index=SELECT_ALL,
            start=self.days[0].snapshots[0],
            end=self.days[-1].snapshots[-1],
        )

    @property
    def daily_series(self) -> BatteryLevelSeries:
        """Day-boundary levels; empty when the window spans a single day."""
        if len(self.days) < 2:
            return BatteryLevelSeries()
        points: list[BatteryLevelPoint] = []
        for day in self.days:
            points.extend(day.whole_day.level_points())
        return BatteryLevelSeries(points=_dedupe_points(points))

    @property
    def hourly_series(self) -> tuple[BatteryLevelSeries, ...]:
        return tuple(day.hourly_series() for day in self.days)

    def closed_hour_slots(self) -> list[TimeSlot]:
        """Closed hour slots of every day, in key order."""
        if not self.days:
            return []
        newest_ms = self.days[-1].snapshots[-1].timestamp_ms
        slots: list[TimeSlot] = []
        for day in self.days:
            slots.extend(day.closed_slots(newest_ms))
        return slots

    def iter_slots(self) -> list[TimeSlot]:
        """Every slot in key order: hours, then the whole day, per day."""
        slots: list[TimeSlot] = []
        for day in self.days:
            slots.extend(day.slots)
            slots.append(day.whole_day)
        whole = self.whole_window
        if whole is not None:
            slots.append(whole)
        return slots

    def find_slot(self, day_index: int, hour_index: int) -> TimeSlot:
        """Return the slot at ``(day_index, hour_index)``.

        Raises:
            InsufficientDataError: If the slot has fewer than two boundary
                snapshots or does not exist.
        """
        if day_index == SELECT_ALL:
            whole = self.whole_window
            if hour_index == SELECT_ALL and whole is not None:
                return whole
        elif 0 <= day_index < len(self.days):
            day = self.days[day_index]
            if hour_index == SELECT_ALL:
                return day.whole_day
            slot = day.slot(hour_index)
            if slot is not None:
                return slot
        raise InsufficientDataError(
            f"no slot with two boundary snapshots at ({day_index}, {hour_index})"
        )


# ---------------------------------------------------------------------------
# Local time helpers
# ---------------------------------------------------------------------------


@lru_cache(maxsize=64)
def _zone(timezone_id: str) -> ZoneInfo:
    return ZoneInfo(timezone_id)


def local_datetime(snapshot: DeviceSnapshot) -> datetime:
    """Return the snapshot's wall-clock time in its own timezone."""
    return datetime.fromtimestamp(
        snapshot.timestamp_ms / 1000, tz=_zone(snapshot.timezone_id)
    )


def _hour_index(snapshot: DeviceSnapshot, bucket_date: date) -> int:
    local = local_datetime(snapshot)
    local_date = local.date()
    if local_date < bucket_date:
        return 0
    if local_date > bucket_date:
        return SLOTS_PER_DAY - 1
    return local.hour // HOURS_PER_SLOT


def _window_top(bucket_date: date, hour_index: int) -> datetime:
    """Naive local wall-clock time at which window *hour_index* ends."""
    return datetime.combine(bucket_date, time()) + timedelta(
        hours=HOURS_PER_SLOT * (hour_index + 1)
    )


def _is_midnight(local: datetime) -> bool:
    return (
        local.hour == 0
        and local.minute == 0
        and local.second == 0
        and local.microsecond == 0
    )


def _closes_previous_window(snapshot: DeviceSnapshot, bucket_date: date) -> bool:
    """True when the snapshot sits exactly on an inner 2-hour boundary.

    Windows are closed at the top: a sample taken exactly at 02:00 is the
    end boundary of window 0 as well as the start boundary of window 1.
    """
    local = local_datetime(snapshot)
    return (
        local.date() == bucket_date
        and local.hour > 0
        and local.hour % HOURS_PER_SLOT == 0
        and local.minute == 0
        and local.second == 0
        and local.microsecond == 0
    )


def _dedupe_points(points: Sequence[BatteryLevelPoint]) -> tuple[BatteryLevelPoint, ...]:
    """Drop consecutive points that share a timestamp (shared boundaries)."""
    result: list[BatteryLevelPoint] = []
    for point in points:
        if result and result[-1].timestamp_ms == point.timestamp_ms:
            continue
        result.append(point)
    return tuple(result)


# ---------------------------------------------------------------------------
# Grouping
# ---------------------------------------------------------------------------


def _group_by_local_date(
    snapshots: Sequence[DeviceSnapshot],
) -> list[tuple[date, list[DeviceSnapshot]]]:
    """Group consecutive snapshots by local date.

    A snapshot whose local date is earlier than the current bucket (the
    device moved west across midnight) stays in the current bucket so day
    indices never go backwards.
    """
    buckets: list[tuple[date, list[DeviceSnapshot]]] = []
    for snapshot in snapshots:
        local_date = local_datetime(snapshot).date()
        if not buckets or local_date > buckets[-1][0]:
            buckets.append((local_date, [snapshot]))
        else:
            buckets[-1][1].append(snapshot)
    return buckets


def _merge_sparse_days(
    buckets: list[tuple[date, list[DeviceSnapshot]]],
) -> list[tuple[date, list[DeviceSnapshot]]]:
    """Fold day buckets with fewer than two snapshots into a neighbour.

    A sparse day joins the previous bucket; a sparse first day is carried
    forward into the next one.
    """
    merged: list[tuple[date, list[DeviceSnapshot]]] = []
    carry: list[DeviceSnapshot] = []
    for bucket_date, snapshots in buckets:
        snapshots = carry + snapshots
        carry = []
        if len(snapshots) >= 2:
            merged.append((bucket_date, snapshots))
        elif merged:
            logger.debug("Folding sparse day %s into %s", bucket_date, merged[-1][0])
            merged[-1][1].extend(snapshots)
        else:
            carry = snapshots
    if carry:
        logger.debug("Dropping %d snapshot(s): not enough data for a day", len(carry))
    return merged


def _share_midnight_boundaries(
    buckets: list[tuple[date, list[DeviceSnapshot]]],
) -> list[tuple[date, list[DeviceSnapshot]]]:
    """Let a snapshot taken exactly at midnight also close the previous day.

    Mirrors the 2-hour window rule so consecutive days stay contiguous.
    """
    result: list[tuple[date, list[DeviceSnapshot]]] = []
    for index, (bucket_date, members) in enumerate(buckets):
        members = list(members)
        if index + 1 < len(buckets):
            next_date, next_members = buckets[index + 1]
            first = local_datetime(next_members[0])
            if (
                next_date == bucket_date + timedelta(days=1)
                and first.date() == next_date
                and _is_midnight(first)
            ):
                members.append(next_members[0])
        result.append((bucket_date, members))
    return result


def _build_hour_slots(
    day_index: int,
    bucket_date: date,
    snapshots: Sequence[DeviceSnapshot],
) -> tuple[TimeSlot, ...]:
    windows: dict[int, list[DeviceSnapshot]] = {}
    for snapshot in snapshots:
        hour_index = _hour_index(snapshot, bucket_date)
        if hour_index > 0 and _closes_previous_window(snapshot, bucket_date):
            windows.setdefault(hour_index - 1, []).append(snapshot)
        windows.setdefault(hour_index, []).append(snapshot)

    slots: list[TimeSlot] = []
    for hour_index in sorted(windows):
        members = windows[hour_index]
        if len(members) < 2:
            continue
        slots.append(
            TimeSlot(
                day_index=day_index,
                hour_index=hour_index,
                start=members[0],
                end=members[-1],
            )
        )
    return tuple(slots)


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def partition(snapshots: Sequence[DeviceSnapshot]) -> PartitionResult:
    """Partition an ordered snapshot sequence into day and hour slots.

    Args:
        snapshots: Snapshots in strictly increasing timestamp order.

    Returns:
        A :class:`PartitionResult`; empty when fewer than two snapshots are
        available.

    Raises:
        InvalidSampleError: If the sequence is not strictly increasing.
    """
    for prev, cur in zip(snapshots, snapshots[1:]):
        if cur.timestamp_ms <= prev.timestamp_ms:
            raise InvalidSampleError(
                f"snapshots out of order at {cur.timestamp_ms}",
                timestamp_ms=cur.timestamp_ms,
            )

    merged = _share_midnight_boundaries(
        _merge_sparse_days(_group_by_local_date(snapshots))
    )
    days = tuple(
        DaySegment(
            day_index=day_index,
            date=bucket_date,
            snapshots=tuple(members),
            slots=_build_hour_slots(day_index, bucket_date, members),
        )
        for day_index, (bucket_date, members) in enumerate(merged)
    )
    logger.debug(
        "Partitioned %d snapshots into %d day(s), %d hour slot(s)",
        len(snapshots),
        len(days),
        sum(len(day.slots) for day in days),
    )
    return PartitionResult(days=days)
