"""
Ranking / normalization stage: turns raw slot diffs into displayable lists.

Steps, in order:

1. percent_of_total = delta / total * 100 (0 when the total is 0).
2. Entries rounding below 1% are dropped, except the OS-system bucket.
3. Always-hidden entries are dropped; show-all-only entries are dropped
   unless "show all consumers" is enabled.
4. Sort by consumed power descending, ties by identity key ascending.
5. Cap at max_entries. Whatever is removed or unattributed is folded into
   the OS-system bucket so the displayed power adds up to the slot total.

CHANGELOG:
- 2026-10-17: Add usage-time sanity check for concrete slots (STORY-009)
- 2026-10-17: Fold removed power into the OS-system bucket (STORY-008)
- 2026-10-17: Initial creation (STORY-008)

TODO:
- None
"""

from __future__ import annotations

import logging
from collections.abc import Iterable

from fuelgauge.src.diff_engine import SlotDiff
from fuelgauge.src.models import ConsumerKind, DiffEntry
from fuelgauge.src.partitioner import SLOT_DURATION_MS
from fuelgauge.src.policy import PolicyProvider

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

DEFAULT_MAX_ENTRIES: int = 20
"""Maximum number of entries per slot list, OS-system bucket included."""

MIN_DISPLAY_PERCENT: int = 1
"""Entries whose rounded share is below this are treated as noise."""

VALID_USAGE_TIME_MS: int = SLOT_DURATION_MS
"""Usage time above this inside one hour slot indicates bad input data."""


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def percent_of(power_mah: float, total_mah: float) -> float:
    """Return *power_mah* as a percentage of *total_mah*, 0 for a zero total."""
    if total_mah <= 0:
        return 0.0
    return power_mah / total_mah * 100.0


def _rounded_percent(percent: float) -> int:
    return int(percent + 0.5)


def sort_key(entry: DiffEntry) -> tuple[float, str]:
    """Descending power, then ascending identity key."""
    return (-entry.consumed_power_delta_mah, entry.identity_key)


def validate_usage_time(entry: DiffEntry) -> bool:
    """Return False (and log) when the entry's usage time exceeds a slot.

    Only meaningful for concrete 2-hour slots; whole-day and whole-window
    aggregates legitimately exceed the slot width.
    """
    if (
        entry.foreground_delta_ms > VALID_USAGE_TIME_MS
        or entry.background_delta_ms > VALID_USAGE_TIME_MS
        or entry.total_usage_time_ms > VALID_USAGE_TIME_MS
    ):
        logger.error(
            "Usage time exceeds slot width for %s: foreground=%dms background=%dms",
            entry.identity_key,
            entry.foreground_delta_ms,
            entry.background_delta_ms,
        )
        return False
    return True


def split_app_and_system(
    entries: Iterable[DiffEntry],
) -> tuple[list[DiffEntry], list[DiffEntry]]:
    """Split a ranked list into app entries and system entries, order kept."""
    apps: list[DiffEntry] = []
    systems: list[DiffEntry] = []
    for entry in entries:
        (systems if entry.is_system_kind else apps).append(entry)
    return apps, systems


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def rank_entries(
    diff: SlotDiff,
    *,
    policy: PolicyProvider,
    max_entries: int = DEFAULT_MAX_ENTRIES,
    show_all: bool = False,
) -> tuple[DiffEntry, ...]:
    """Normalize, filter, sort and cap one slot's diff entries.

    Args:
        diff: Raw deltas for the slot.
        policy: Visibility sets and the OS-system identity.
        max_entries: Maximum list length, OS-system bucket included.
        show_all: Include entries that are only shown in show-all mode.

    Returns:
        The ranked entries. Empty when the slot had insufficient data.
    """
    if diff.is_empty:
        return ()

    total = diff.total_consumed_power_mah
    system_key = policy.os_system_key
    system_entry: DiffEntry | None = None
    removed_power = 0.0
    candidates: list[DiffEntry] = []

    for entry in diff.entries:
        power = entry.consumed_power_delta_mah
        if entry.identity_key == system_key:
            system_entry = entry
            continue
        if policy.is_always_hidden(entry.identity_key, entry.package_hint):
            removed_power += power
            continue
        if not show_all and policy.is_show_all_only(
            entry.identity_key, entry.package_hint, entry.is_policy_hidden
        ):
            removed_power += power
            continue
        percent = percent_of(power, total)
        if _rounded_percent(percent) < MIN_DISPLAY_PERCENT:
            removed_power += power
            continue
        candidates.append(
            entry.model_copy(
                update={
                    "percent_of_total": percent,
                    "show_usage_time": policy.shows_usage_time(entry.package_hint),
                }
            )
        )

    candidates.sort(key=sort_key)
    kept_power = sum(entry.consumed_power_delta_mah for entry in candidates)
    unattributed = total - kept_power - removed_power
    if system_entry is not None:
        unattributed -= system_entry.consumed_power_delta_mah

    needs_bucket = (
        system_entry is not None
        or removed_power > 0
        or len(candidates) > max_entries
        or unattributed > 1e-9
    )
    if not needs_bucket:
        return tuple(candidates)

    kept = candidates[: max(max_entries - 1, 0)]
    capped = candidates[len(kept) :]
    if capped:
        logger.debug("Capping %d entries into %s", len(capped), system_key)

    own_power = system_entry.consumed_power_delta_mah if system_entry else 0.0
    absorbed = own_power + removed_power + sum(e.consumed_power_delta_mah for e in capped)
    remainder = total - sum(e.consumed_power_delta_mah for e in kept)
    system_power = max(absorbed, remainder) if total > 0 else absorbed

    bucket = DiffEntry(
        identity_key=system_key,
        kind=ConsumerKind.APP,
        consumed_power_delta_mah=system_power,
        foreground_delta_ms=system_entry.foreground_delta_ms if system_entry else 0,
        background_delta_ms=system_entry.background_delta_ms if system_entry else 0,
        percent_of_total=percent_of(system_power, total),
        is_system_kind=True,
        package_hint=system_entry.package_hint if system_entry else None,
        show_usage_time=(
            system_entry is not None and policy.shows_usage_time(system_entry.package_hint)
        ),
    )
    return tuple(sorted([*kept, bucket], key=sort_key))
