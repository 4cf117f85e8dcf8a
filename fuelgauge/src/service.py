"""
Read facade over the published usage index for renderers.

Every read goes through the index the worker has currently published, so a
reader sees one consistent generation even while a recomputation runs.
Missing slots are reported as empty lists rather than errors.

CHANGELOG:
- 2026-10-17: Add label resolution for selected entries (STORY-013)
- 2026-10-17: Initial creation (STORY-011)

TODO:
- None
"""

from __future__ import annotations

import logging

from pydantic import BaseModel, ConfigDict

from fuelgauge.src.errors import InsufficientDataError
from fuelgauge.src.labels import LabelResolver
from fuelgauge.src.models import SELECT_ALL, BatteryLevelSeries, DiffEntry, SeriesScope
from fuelgauge.src.pipeline import UsageIndex
from fuelgauge.src.ranking import split_app_and_system, validate_usage_time
from fuelgauge.src.selection import SelectionController
from fuelgauge.src.worker import RecomputeWorker

logger = logging.getLogger(__name__)


def _entries_or_empty(index: UsageIndex, day_index: int, hour_index: int) -> list[DiffEntry]:
    try:
        return list(index.entries(day_index, hour_index))
    except InsufficientDataError:
        logger.debug("No entries for slot (%d, %d)", day_index, hour_index)
        return []


class SelectedEntries(BaseModel):
    """Entries of the selected slot, split into app and system groups."""

    model_config = ConfigDict(frozen=True)

    day_index: int
    hour_index: int
    start_ms: int | None = None
    end_ms: int | None = None
    apps: list[DiffEntry]
    systems: list[DiffEntry]


class UsageService:
    """Facade combining the worker's published index with the selection.

    Args:
        worker: Worker that owns the published index.
        selection: Selection controller shared with the worker.
        resolver: Optional display label resolver.
    """

    def __init__(
        self,
        worker: RecomputeWorker,
        selection: SelectionController,
        resolver: LabelResolver | None = None,
    ) -> None:
        self._worker = worker
        self._selection = selection
        self._resolver = resolver

    @property
    def index(self) -> UsageIndex:
        return self._worker.index

    @property
    def selection(self) -> SelectionController:
        return self._selection

    # ------------------------------------------------------------------
    # Level series and diff entries
    # ------------------------------------------------------------------

    def get_level_series(
        self,
        scope: SeriesScope,
        day_index: int = SELECT_ALL,
    ) -> BatteryLevelSeries:
        return self.index.level_series(scope, day_index)

    def get_diff_entries(self, day_index: int, hour_index: int) -> list[DiffEntry]:
        """Return the ranked entries of a slot, empty when it has no data."""
        return _entries_or_empty(self.index, day_index, hour_index)

    def is_single_day(self) -> bool:
        return self.index.is_single_day

    # ------------------------------------------------------------------
    # Selection
    # ------------------------------------------------------------------

    def get_selection(self) -> tuple[int, int]:
        return self._selection.get_selection()

    def select(self, day_index: int, hour_index: int) -> None:
        """Select a slot; raises InvalidSelectionError when invalid."""
        self._selection.select(day_index, hour_index)

    def get_selected_entries(self) -> SelectedEntries:
        """Return the selected slot's entries split into apps and systems."""
        day_index, hour_index = self._selection.get_selection()
        return self.get_slot_entries(day_index, hour_index)

    def get_slot_entries(self, day_index: int, hour_index: int) -> SelectedEntries:
        """Return a slot's entries split into apps and systems.

        Entries of a concrete hour slot are checked for impossible usage
        times; offenders are logged but still returned.
        """
        index = self.index
        entries = _entries_or_empty(index, day_index, hour_index)
        if day_index != SELECT_ALL and hour_index != SELECT_ALL:
            for entry in entries:
                validate_usage_time(entry)
        apps, systems = split_app_and_system(entries)
        bounds = index.slot_bounds.get((day_index, hour_index))
        return SelectedEntries(
            day_index=day_index,
            hour_index=hour_index,
            start_ms=bounds[0] if bounds else None,
            end_ms=bounds[1] if bounds else None,
            apps=apps,
            systems=systems,
        )

    # ------------------------------------------------------------------
    # Labels
    # ------------------------------------------------------------------

    async def resolve_labels(
        self,
        entries: list[DiffEntry],
        *,
        locale: str = "",
    ) -> dict[str, str]:
        """Return display labels for *entries*.

        Without a resolver, the package hint (or the identity key) is used.
        """
        if self._resolver is None:
            return {
                entry.identity_key: entry.package_hint or entry.identity_key
                for entry in entries
            }
        return await self._resolver.resolve(
            (entry.identity_key for entry in entries), locale=locale
        )
