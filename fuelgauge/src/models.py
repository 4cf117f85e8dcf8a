"""
Pydantic models for battery usage samples and derived usage records.

Defines the raw batch shape delivered by the sample source, the immutable
DeviceSnapshot assembled from it after identity coalescing, and the derived
DiffEntry / BatteryLevelSeries records handed to renderers.

CHANGELOG:
- 2026-10-17: Add show_usage_time and is_policy_hidden to DiffEntry (STORY-009)
- 2026-10-17: Initial creation (STORY-002)

TODO:
- None
"""

from __future__ import annotations

from enum import StrEnum

from pydantic import BaseModel, ConfigDict, Field, model_validator

SELECT_ALL: int = -1
"""Sentinel index meaning "aggregate across the whole retained window"."""


class ConsumerKind(StrEnum):
    """Closed set of power consumer kinds."""

    APP = "app"
    SYSTEM = "system"
    USER = "user"


def identity_key_for(kind: ConsumerKind, raw_id: int) -> str:
    """Return the identity key for a consumer of *kind* with *raw_id*.

    Apps are keyed by uid, system components by drain type and users by
    user id, with a kind prefix so the three id spaces never collide.
    """
    match kind:
        case ConsumerKind.APP:
            return str(raw_id)
        case ConsumerKind.SYSTEM:
            return f"S|{raw_id}"
        case ConsumerKind.USER:
            return f"U|{raw_id}"
    raise ValueError(f"Unknown consumer kind: {kind!r}")


class RawConsumerTuple(BaseModel):
    """One consumer's attribution as delivered by the sample source.

    Attributes:
        raw_id: uid for apps, drain type for system components, user id for
            users.
        kind: Consumer kind.
        consumed_power_mah: Cumulative consumed power in mAh.
        foreground_time_ms: Cumulative foreground usage time in ms.
        background_time_ms: Cumulative background usage time in ms.
        package_hint: Package or process name with the highest drain, if known.
        is_policy_hidden: Shown only when "show all consumers" is enabled.
    """

    raw_id: int
    kind: ConsumerKind
    consumed_power_mah: float
    foreground_time_ms: int = 0
    background_time_ms: int = 0
    package_hint: str | None = None
    is_policy_hidden: bool = False


class RawSampleBatch(BaseModel):
    """Device-level sample plus every consumer tuple for one sampling instant."""

    timestamp_ms: int
    timezone_id: str
    battery_level_percent: int
    total_consumed_power_mah: float
    discharge_percent: int = 0
    consumers: list[RawConsumerTuple] = Field(default_factory=list)


class ConsumerRecord(BaseModel):
    """A coalesced consumer record, sealed into a DeviceSnapshot."""

    model_config = ConfigDict(frozen=True)

    identity_key: str
    raw_id: int
    kind: ConsumerKind
    consumed_power_mah: float
    foreground_time_ms: int = 0
    background_time_ms: int = 0
    package_hint: str | None = None
    is_policy_hidden: bool = False


class DeviceSnapshot(BaseModel):
    """One timestamped, device-wide sample.

    Created once per sampling event and never mutated. ``identity_key`` is
    unique across ``consumers``.
    """

    model_config = ConfigDict(frozen=True)

    timestamp_ms: int
    timezone_id: str
    battery_level_percent: int = Field(ge=0, le=100)
    total_consumed_power_mah: float
    discharge_percent: int = 0
    consumers: tuple[ConsumerRecord, ...] = ()

    @model_validator(mode="after")
    def _identity_keys_unique(self) -> DeviceSnapshot:
        seen: set[str] = set()
        for record in self.consumers:
            if record.identity_key in seen:
                raise ValueError(
                    f"duplicate identity_key {record.identity_key!r} in snapshot "
                    f"at {self.timestamp_ms}"
                )
            seen.add(record.identity_key)
        return self

    def consumer_map(self) -> dict[str, ConsumerRecord]:
        """Return consumers keyed by identity key."""
        return {record.identity_key: record for record in self.consumers}


class DiffEntry(BaseModel):
    """Consumption of one consumer between the two boundaries of a slot.

    Attributes:
        identity_key: Coalesced consumer identity.
        kind: Consumer kind.
        consumed_power_delta_mah: Power consumed inside the slot.
        foreground_delta_ms: Foreground usage time inside the slot.
        background_delta_ms: Background usage time inside the slot.
        percent_of_total: Share of the slot's device-reported total, 0-100.
        is_system_kind: True for system components and the OS-system bucket.
        package_hint: Package hint carried from the end snapshot.
        is_policy_hidden: Entry only shown in "show all consumers" mode.
        show_usage_time: False when the usage-time summary must be hidden.
    """

    model_config = ConfigDict(frozen=True)

    identity_key: str
    kind: ConsumerKind
    consumed_power_delta_mah: float
    foreground_delta_ms: int = 0
    background_delta_ms: int = 0
    percent_of_total: float = 0.0
    is_system_kind: bool = False
    package_hint: str | None = None
    is_policy_hidden: bool = False
    show_usage_time: bool = True

    @property
    def total_usage_time_ms(self) -> int:
        """Foreground plus background usage time."""
        return self.foreground_delta_ms + self.background_delta_ms


class SeriesScope(StrEnum):
    """Granularity of a battery level series."""

    DAILY = "daily"
    HOURLY = "hourly"


class BatteryLevelPoint(BaseModel):
    """Battery level at a slot boundary."""

    model_config = ConfigDict(frozen=True)

    timestamp_ms: int
    level: int


class BatteryLevelSeries(BaseModel):
    """Ordered battery level points for the level chart."""

    model_config = ConfigDict(frozen=True)

    points: tuple[BatteryLevelPoint, ...] = ()

    @property
    def timestamps(self) -> list[int]:
        return [point.timestamp_ms for point in self.points]

    @property
    def levels(self) -> list[int]:
        return [point.level for point in self.points]

    def __len__(self) -> int:
        return len(self.points)
