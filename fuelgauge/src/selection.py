"""
Selection controller: the day/hour cursor over the published usage index.

State is ``(day_index, hour_index)``, each either SELECT_ALL or a concrete
index. Selecting a day resets the hour to SELECT_ALL; selecting an hour
requires a concrete day. Invalid requests raise InvalidSelectionError and
leave the previous selection untouched. The two integers are saved and
restored explicitly so the cursor survives view or process recreation.

CHANGELOG:
- 2026-10-17: Defer restores until days are known; state file helpers (STORY-010)
- 2026-10-17: Reset out-of-range selection when the day count shrinks (STORY-010)
- 2026-10-17: Initial creation (STORY-010)

TODO:
- None
"""

from __future__ import annotations

import json
import logging
import threading
from collections.abc import Mapping
from pathlib import Path

from fuelgauge.src.errors import InvalidSelectionError
from fuelgauge.src.models import SELECT_ALL
from fuelgauge.src.partitioner import SLOTS_PER_DAY

logger = logging.getLogger(__name__)

KEY_DAILY_CHART_INDEX = "daily_chart_index"
KEY_HOURLY_CHART_INDEX = "hourly_chart_index"


class SelectionController:
    """Day/hour selection state machine.

    Args:
        day_count: Number of day buckets in the current index.
    """

    def __init__(self, day_count: int = 0) -> None:
        self._lock = threading.Lock()
        self._day_count = day_count
        self._day_index = SELECT_ALL
        self._hour_index = SELECT_ALL
        self._pending_restore: tuple[int, int] | None = None

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    @property
    def day_count(self) -> int:
        return self._day_count

    def get_selection(self) -> tuple[int, int]:
        """Return the current ``(day_index, hour_index)``."""
        with self._lock:
            return (self._day_index, self._hour_index)

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    def select(self, day_index: int, hour_index: int) -> None:
        """Select a day and hour together.

        Raises:
            InvalidSelectionError: If an hour is requested without a concrete
                day, or either index is out of range.
        """
        with self._lock:
            self._validate(day_index, hour_index)
            self._set(day_index, hour_index)

    def select_day(self, day_index: int) -> None:
        """Select a day (or SELECT_ALL); the hour resets to SELECT_ALL."""
        self.select(day_index, SELECT_ALL)

    def select_hour(self, hour_index: int) -> None:
        """Select an hour slot within the currently selected day."""
        with self._lock:
            self._validate(self._day_index, hour_index)
            self._set(self._day_index, hour_index)

    def set_day_count(self, day_count: int) -> None:
        """Adopt a new day count, resetting a selection that fell out of range.

        A deferred restore is applied by the first day count above zero.
        """
        with self._lock:
            self._day_count = day_count
            if self._pending_restore is not None and day_count > 0:
                day_index, hour_index = self._pending_restore
                self._pending_restore = None
                self._apply_restore(day_index, hour_index)
                return
            if self._day_index != SELECT_ALL and self._day_index >= day_count:
                logger.info(
                    "Selection (%d, %d) out of range for %d day(s); resetting",
                    self._day_index,
                    self._hour_index,
                    day_count,
                )
                self._set(SELECT_ALL, SELECT_ALL)

    # ------------------------------------------------------------------
    # Save / restore
    # ------------------------------------------------------------------

    def save_state(self) -> dict[str, int]:
        """Return the selection as two integers.

        A restore still waiting for the first index is returned as saved.
        """
        with self._lock:
            day_index, hour_index = self._pending_restore or (
                self._day_index,
                self._hour_index,
            )
            return {
                KEY_DAILY_CHART_INDEX: day_index,
                KEY_HOURLY_CHART_INDEX: hour_index,
            }

    def restore_state(self, state: Mapping[str, int] | None) -> None:
        """Restore a saved selection; invalid saved state is ignored.

        Before any index with days has been adopted the concrete selection
        cannot be validated yet, so it is kept pending and applied by the
        first :meth:`set_day_count` with at least one day.
        """
        if not state:
            return
        try:
            day_index = int(state.get(KEY_DAILY_CHART_INDEX, SELECT_ALL))
            hour_index = int(state.get(KEY_HOURLY_CHART_INDEX, SELECT_ALL))
        except (TypeError, ValueError):
            logger.warning("Ignoring malformed saved selection %r", dict(state))
            return
        with self._lock:
            if day_index != SELECT_ALL and self._day_count == 0:
                self._pending_restore = (day_index, hour_index)
                logger.debug(
                    "Deferring saved selection (%d, %d) until days are known",
                    day_index,
                    hour_index,
                )
                return
            self._apply_restore(day_index, hour_index)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _apply_restore(self, day_index: int, hour_index: int) -> None:
        try:
            self._validate(day_index, hour_index)
        except InvalidSelectionError:
            logger.warning(
                "Ignoring saved selection (%d, %d)", day_index, hour_index
            )
            return
        self._set(day_index, hour_index)

    def _validate(self, day_index: int, hour_index: int) -> None:
        if day_index == SELECT_ALL:
            if hour_index != SELECT_ALL:
                raise InvalidSelectionError(
                    "hour selection requires a concrete day",
                    day_index=day_index,
                    hour_index=hour_index,
                )
            return
        if not 0 <= day_index < self._day_count:
            raise InvalidSelectionError(
                f"day index {day_index} outside [0, {self._day_count})",
                day_index=day_index,
                hour_index=hour_index,
            )
        if hour_index != SELECT_ALL and not 0 <= hour_index < SLOTS_PER_DAY:
            raise InvalidSelectionError(
                f"hour index {hour_index} outside [0, {SLOTS_PER_DAY})",
                day_index=day_index,
                hour_index=hour_index,
            )

    def _set(self, day_index: int, hour_index: int) -> None:
        # An explicit selection overrides a deferred restore.
        self._pending_restore = None
        if (day_index, hour_index) != (self._day_index, self._hour_index):
            logger.debug("Selection changed to (%d, %d)", day_index, hour_index)
        self._day_index = day_index
        self._hour_index = hour_index


# ---------------------------------------------------------------------------
# Selection state file
# ---------------------------------------------------------------------------


def read_state_file(path: str | Path) -> dict[str, int] | None:
    """Read a saved selection written by :func:`write_state_file`.

    A missing file yields None; an unreadable one is logged and ignored.
    """
    path = Path(path)
    try:
        data = json.loads(path.read_text())
    except FileNotFoundError:
        return None
    except (OSError, ValueError):
        logger.warning("Ignoring unreadable selection file %s", path, exc_info=True)
        return None
    if not isinstance(data, dict):
        logger.warning("Ignoring selection file %s: not a JSON object", path)
        return None
    return data


def write_state_file(path: str | Path, state: Mapping[str, int]) -> None:
    """Write a saved selection as a JSON object."""
    Path(path).write_text(json.dumps(dict(state)))
