"""
Error taxonomy for the battery usage pipeline.

None of these errors is fatal to the daemon. Invalid samples are logged and
dropped, insufficient data becomes an empty result at the read boundary, and
invalid selections are rejected while the previous selection is kept.

CHANGELOG:
- 2026-10-17: Initial creation (STORY-002)

TODO:
- None
"""

from __future__ import annotations


class FuelGaugeError(Exception):
    """Base class for all battery usage pipeline errors."""


class InvalidSampleError(FuelGaugeError):
    """A sample batch is malformed or arrived out of order.

    Attributes:
        timestamp_ms: Timestamp of the rejected batch, when known.
    """

    def __init__(self, message: str, *, timestamp_ms: int | None = None) -> None:
        super().__init__(message)
        self.timestamp_ms = timestamp_ms


class InsufficientDataError(FuelGaugeError):
    """A requested slot has fewer than two boundary snapshots."""


class InvalidSelectionError(FuelGaugeError):
    """A day/hour selection violates the selection rules.

    Attributes:
        day_index: Requested day index.
        hour_index: Requested hour index.
    """

    def __init__(self, message: str, *, day_index: int, hour_index: int) -> None:
        super().__init__(message)
        self.day_index = day_index
        self.hour_index = hour_index
