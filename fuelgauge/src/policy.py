"""
Policy provider for identity coalescing and entry visibility.

Supplies the OS-reserved uid range, the shared-group-id range and the
excluded service names used by the coalescer, and the visibility sets used
by the ranking stage:

- hidden_entries: never shown, not even in "show all consumers" mode.
- show_all_only_entries: shown only in "show all consumers" mode.
- hide_summary_packages: shown, but without a usage-time summary.

Entries are matched by identity key or package hint.

CHANGELOG:
- 2026-10-17: Initial creation (STORY-003)

TODO:
- None
"""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict

from fuelgauge.src.config import FuelGaugeSettings, parse_name_list
from fuelgauge.src.models import ConsumerKind, identity_key_for


class PolicyProvider(BaseModel):
    """Coalescing ranges and visibility sets.

    Defaults follow the platform uid layout: uids are partitioned per user in
    blocks of ``per_user_range``; within a block, ``[os_reserved_first,
    os_reserved_last)`` belongs to OS services and shared group ids
    ``[first_shared_gid, last_shared_gid]`` map onto application ids starting
    at ``first_application_uid``.
    """

    model_config = ConfigDict(frozen=True)

    hidden_entries: frozenset[str] = frozenset()
    show_all_only_entries: frozenset[str] = frozenset()
    hide_summary_packages: frozenset[str] = frozenset()
    excluded_service_names: frozenset[str] = frozenset({"mediaserver"})
    os_system_uid: int = 1000
    os_reserved_first: int = 1000
    os_reserved_last: int = 10000
    first_shared_gid: int = 50000
    last_shared_gid: int = 59999
    first_application_uid: int = 10000
    per_user_range: int = 100000

    @classmethod
    def from_settings(cls, settings: FuelGaugeSettings) -> PolicyProvider:
        """Build a policy from the daemon settings."""
        return cls(
            hidden_entries=parse_name_list(settings.hidden_entries),
            show_all_only_entries=parse_name_list(settings.show_all_only_entries),
            hide_summary_packages=parse_name_list(settings.hide_summary_packages),
            excluded_service_names=parse_name_list(settings.excluded_service_names),
            os_system_uid=settings.os_system_uid,
            os_reserved_first=settings.os_reserved_first,
            os_reserved_last=settings.os_reserved_last,
            first_shared_gid=settings.first_shared_gid,
            last_shared_gid=settings.last_shared_gid,
            first_application_uid=settings.first_application_uid,
            per_user_range=settings.per_user_range,
        )

    # ------------------------------------------------------------------
    # uid arithmetic
    # ------------------------------------------------------------------

    def app_id(self, uid: int) -> int:
        """Return the per-user application id of *uid*."""
        return uid % self.per_user_range

    def shared_gid_owner(self, uid: int) -> int | None:
        """Return the owning application uid for a shared group id, else None.

        The owner is always resolved in the system user (user 0).
        """
        app_id = self.app_id(uid)
        if self.first_shared_gid <= app_id <= self.last_shared_gid:
            return app_id - self.first_shared_gid + self.first_application_uid
        return None

    def is_os_reserved(self, uid: int) -> bool:
        """True when *uid* belongs to an OS service sandbox."""
        return self.os_reserved_first <= self.app_id(uid) < self.os_reserved_last

    @property
    def os_system_key(self) -> str:
        """Identity key of the OS-system aggregate bucket."""
        return identity_key_for(ConsumerKind.APP, self.os_system_uid)

    # ------------------------------------------------------------------
    # Visibility
    # ------------------------------------------------------------------

    def is_always_hidden(self, identity_key: str, package_hint: str | None) -> bool:
        return _matches(self.hidden_entries, identity_key, package_hint)

    def is_show_all_only(
        self,
        identity_key: str,
        package_hint: str | None,
        flagged: bool = False,
    ) -> bool:
        return flagged or _matches(self.show_all_only_entries, identity_key, package_hint)

    def shows_usage_time(self, package_hint: str | None) -> bool:
        return package_hint is None or package_hint not in self.hide_summary_packages


def _matches(names: frozenset[str], identity_key: str, package_hint: str | None) -> bool:
    if identity_key in names:
        return True
    return package_hint is not None and package_hint in names
