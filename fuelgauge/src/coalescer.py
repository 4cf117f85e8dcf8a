"""
Identity coalescer: merges consumer records that describe the same entity.

Some platform processes run under synthetic uids. Multi-process apps (e.g.
dex2oat compiling an app) run under a shared group id that exists for every
user; OS services each get their own sandbox uid. Before a snapshot is
assembled these are folded onto one canonical identity:

1. A shared group id is rewritten to the owning application uid.
2. A uid in the OS-reserved range is rewritten to the OS-system uid, unless
   its package hint is an excluded service name (mediaserver is reported as
   its own item).
3. Records that now share an identity key are summed.

Only APP records are rewritten; SYSTEM and USER records are merged by key
only. The function is pure and idempotent.

CHANGELOG:
- 2026-10-17: Initial creation (STORY-004)

TODO:
- None
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import dataclass

from fuelgauge.src.models import (
    ConsumerKind,
    ConsumerRecord,
    RawConsumerTuple,
    identity_key_for,
)
from fuelgauge.src.policy import PolicyProvider

logger = logging.getLogger(__name__)


def canonical_raw_id(
    kind: ConsumerKind,
    raw_id: int,
    package_hint: str | None,
    policy: PolicyProvider,
) -> int:
    """Return the canonical raw id for a consumer.

    Args:
        kind: Consumer kind; only APP ids are rewritten.
        raw_id: The raw uid / drain type / user id.
        package_hint: Package or process name with the highest drain.
        policy: Coalescing ranges.

    Returns:
        The raw id after the shared-gid and OS-reserved rules are applied.
    """
    match kind:
        case ConsumerKind.SYSTEM | ConsumerKind.USER:
            return raw_id
        case ConsumerKind.APP:
            real_uid = raw_id
            owner = policy.shared_gid_owner(real_uid)
            if owner is not None:
                real_uid = owner
            if (
                policy.is_os_reserved(real_uid)
                and package_hint not in policy.excluded_service_names
            ):
                real_uid = policy.os_system_uid
            return real_uid
    raise ValueError(f"Unknown consumer kind: {kind!r}")


@dataclass
class _Accumulator:
    """Mutable running sum for one identity key."""

    identity_key: str
    raw_id: int
    kind: ConsumerKind
    consumed_power_mah: float = 0.0
    foreground_time_ms: int = 0
    background_time_ms: int = 0
    package_hint: str | None = None
    is_policy_hidden: bool = False

    def add(self, record: RawConsumerTuple | ConsumerRecord) -> None:
        self.consumed_power_mah += record.consumed_power_mah
        self.foreground_time_ms += record.foreground_time_ms
        self.background_time_ms += record.background_time_ms
        if self.package_hint is None:
            self.package_hint = record.package_hint
        self.is_policy_hidden = self.is_policy_hidden or record.is_policy_hidden

    def seal(self) -> ConsumerRecord:
        return ConsumerRecord(
            identity_key=self.identity_key,
            raw_id=self.raw_id,
            kind=self.kind,
            consumed_power_mah=self.consumed_power_mah,
            foreground_time_ms=self.foreground_time_ms,
            background_time_ms=self.background_time_ms,
            package_hint=self.package_hint,
            is_policy_hidden=self.is_policy_hidden,
        )


def coalesce(
    records: Iterable[RawConsumerTuple | ConsumerRecord],
    policy: PolicyProvider,
) -> list[ConsumerRecord]:
    """Canonicalize identities and merge records sharing an identity key.

    Accepts raw tuples or already-coalesced records; re-running on its own
    output returns an equal list.

    Args:
        records: Consumer records for a single sampling instant.
        policy: Coalescing ranges.

    Returns:
        Sealed records in first-seen order, unique by identity key.
    """
    merged: dict[str, _Accumulator] = {}
    for record in records:
        raw_id = canonical_raw_id(record.kind, record.raw_id, record.package_hint, policy)
        key = identity_key_for(record.kind, raw_id)
        acc = merged.get(key)
        if acc is None:
            acc = _Accumulator(identity_key=key, raw_id=raw_id, kind=record.kind)
            merged[key] = acc
        elif raw_id != record.raw_id:
            logger.debug("Coalescing raw id %d into %s", record.raw_id, key)
        acc.add(record)
    return [acc.seal() for acc in merged.values()]
