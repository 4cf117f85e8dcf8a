"""
Pure normalizer that turns a RawSampleBatch into a validated DeviceSnapshot.

Validates the device-level fields and every consumer tuple, rejects batches
that arrive out of order, coalesces consumer identities and seals the result
into an immutable DeviceSnapshot.

This is a pure function: no side effects, no I/O, no clock. The timestamp of
the previously accepted snapshot is passed in by the caller.

CHANGELOG:
- 2026-10-17: Reject duplicate raw ids of the same kind (STORY-004)
- 2026-10-17: Initial creation (STORY-002)

TODO:
- None
"""

from __future__ import annotations

import logging
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from pydantic import ValidationError

from fuelgauge.src.coalescer import coalesce
from fuelgauge.src.errors import InvalidSampleError
from fuelgauge.src.models import DeviceSnapshot, RawConsumerTuple, RawSampleBatch
from fuelgauge.src.policy import PolicyProvider

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Validation helpers
# ---------------------------------------------------------------------------


def _validate_device_fields(batch: RawSampleBatch) -> None:
    ts = batch.timestamp_ms
    if not 0 <= batch.battery_level_percent <= 100:
        raise InvalidSampleError(
            f"battery level {batch.battery_level_percent} outside 0..100",
            timestamp_ms=ts,
        )
    if batch.total_consumed_power_mah < 0:
        raise InvalidSampleError(
            f"negative total consumed power {batch.total_consumed_power_mah}",
            timestamp_ms=ts,
        )
    try:
        ZoneInfo(batch.timezone_id)
    except (ZoneInfoNotFoundError, ValueError) as exc:
        raise InvalidSampleError(
            f"unknown timezone id {batch.timezone_id!r}",
            timestamp_ms=ts,
        ) from exc


def _validate_consumers(batch: RawSampleBatch) -> None:
    seen: set[tuple[str, int]] = set()
    for consumer in batch.consumers:
        _validate_consumer(consumer, batch.timestamp_ms)
        ident = (consumer.kind.value, consumer.raw_id)
        if ident in seen:
            raise InvalidSampleError(
                f"duplicate raw id {consumer.raw_id} of kind {consumer.kind.value}",
                timestamp_ms=batch.timestamp_ms,
            )
        seen.add(ident)


def _validate_consumer(consumer: RawConsumerTuple, ts: int) -> None:
    if consumer.consumed_power_mah < 0:
        raise InvalidSampleError(
            f"negative consumed power {consumer.consumed_power_mah} "
            f"for raw id {consumer.raw_id}",
            timestamp_ms=ts,
        )
    if consumer.foreground_time_ms < 0 or consumer.background_time_ms < 0:
        raise InvalidSampleError(
            f"negative usage time for raw id {consumer.raw_id}",
            timestamp_ms=ts,
        )


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def build_snapshot(
    batch: RawSampleBatch,
    *,
    policy: PolicyProvider,
    previous_timestamp_ms: int | None = None,
) -> DeviceSnapshot:
    """Validate, coalesce and seal one sampling batch.

    Args:
        batch: Raw batch from the sample source.
        policy: Coalescing ranges for the identity coalescer.
        previous_timestamp_ms: Timestamp of the last accepted snapshot, or
            ``None`` when this is the first one.

    Returns:
        The immutable :class:`DeviceSnapshot` for this batch.

    Raises:
        InvalidSampleError: If the batch is malformed, out of order, or a
            duplicate of the previous timestamp.
    """
    if previous_timestamp_ms is not None and batch.timestamp_ms <= previous_timestamp_ms:
        raise InvalidSampleError(
            f"timestamp {batch.timestamp_ms} not after previous "
            f"{previous_timestamp_ms}",
            timestamp_ms=batch.timestamp_ms,
        )

    _validate_device_fields(batch)
    _validate_consumers(batch)

    records = coalesce(batch.consumers, policy)
    logger.debug(
        "Snapshot %d: %d raw consumers coalesced into %d",
        batch.timestamp_ms,
        len(batch.consumers),
        len(records),
    )
    try:
        return DeviceSnapshot(
            timestamp_ms=batch.timestamp_ms,
            timezone_id=batch.timezone_id,
            battery_level_percent=batch.battery_level_percent,
            total_consumed_power_mah=batch.total_consumed_power_mah,
            discharge_percent=max(batch.discharge_percent, 0),
            consumers=tuple(records),
        )
    except ValidationError as exc:
        raise InvalidSampleError(str(exc), timestamp_ms=batch.timestamp_ms) from exc
