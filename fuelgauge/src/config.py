"""
Fuel-gauge daemon configuration loaded from environment variables.

Uses Pydantic BaseSettings for automatic env var loading and validation.
All configuration values come from environment variables or .env files;
no hardcoded URLs or credentials.

Name lists (hidden entries, show-all-only entries, ...) are plain
comma-separated strings, parsed with :func:`parse_name_list`.

CHANGELOG:
- 2026-10-17: Add selection_path; numeric system key in name list example (STORY-010)
- 2026-10-17: Add coalescing ranges and visibility lists (STORY-003)
- 2026-10-17: Initial creation (STORY-001)

TODO:
- None
"""

import logging

from pydantic import field_validator, model_validator
from pydantic_settings import BaseSettings

logger = logging.getLogger(__name__)


def parse_name_list(raw: str) -> frozenset[str]:
    """Parse a comma-separated name list into a set.

    Format: "com.example.a,1013,S|3"

    Leading/trailing whitespace is stripped; empty entries are skipped.

    Args:
        raw: The raw comma-separated string.

    Returns:
        frozenset[str]: The non-empty names.
    """
    if not raw or not raw.strip():
        return frozenset()
    return frozenset(name.strip() for name in raw.split(",") if name.strip())


class FuelGaugeSettings(BaseSettings):
    """Fuel-gauge daemon configuration.

    All values are loaded from environment variables. Every variable has a
    default, so the daemon starts without a sample source and only serves
    what is already in the store.

    Attributes:
        store_path: SQLite snapshot store file path.
        health_path: JSON health file path.
        selection_path: JSON file holding the saved day/hour selection.
        sample_interval_s: Seconds between sample source polls (min 60).
        retention_hours: Hours of snapshots kept in the recomputed window.
        max_entries: Cap per slot list, OS-system bucket included.
        show_all_consumers: Include show-all-only consumers in the lists.
        source_base_url: Sample source base URL (must be HTTPS). Empty
            disables polling.
        source_token: Bearer token for the sample source.
        hidden_entries: Comma-separated keys/packages that are never shown.
        show_all_only_entries: Comma-separated keys/packages shown only in
            show-all mode.
        hide_summary_packages: Comma-separated packages shown without a
            usage-time summary.
        excluded_service_names: Comma-separated service names exempt from
            OS-system coalescing.
        os_system_uid: Uid of the OS-system aggregate bucket.
        os_reserved_first: First OS-reserved application id (inclusive).
        os_reserved_last: Last OS-reserved application id (exclusive).
        first_shared_gid: First shared group id (inclusive).
        last_shared_gid: Last shared group id (inclusive).
        first_application_uid: Application id mapped from first_shared_gid.
        per_user_range: Uid block size per device user.
        api_token: Bearer token required by the read API. Empty disables
            authentication.
        api_host: Read API bind address.
        api_port: Read API port.
    """

    store_path: str = "/data/fuelgauge.db"
    health_path: str = "/data/health.json"
    selection_path: str = "/data/selection.json"
    sample_interval_s: int = 900
    retention_hours: int = 168
    max_entries: int = 20
    show_all_consumers: bool = False
    source_base_url: str = ""
    source_token: str = ""
    hidden_entries: str = ""
    show_all_only_entries: str = ""
    hide_summary_packages: str = ""
    excluded_service_names: str = "mediaserver"
    os_system_uid: int = 1000
    os_reserved_first: int = 1000
    os_reserved_last: int = 10000
    first_shared_gid: int = 50000
    last_shared_gid: int = 59999
    first_application_uid: int = 10000
    per_user_range: int = 100000
    api_token: str = ""
    api_host: str = "127.0.0.1"
    api_port: int = 8080

    @field_validator("source_base_url")
    @classmethod
    def source_base_url_must_be_https(cls, v: str) -> str:
        """Validate that a configured sample source uses HTTPS.

        An empty value disables polling; any other value must start with
        ``https://``.
        """
        if v and not v.startswith("https://"):
            raise ValueError(
                "SOURCE_BASE_URL must use HTTPS (got: " f"'{v[:20]}...')."
            )
        return v

    @field_validator("sample_interval_s")
    @classmethod
    def sample_interval_must_be_reasonable(cls, v: int) -> int:
        """Validate the sample interval is at least one minute."""
        if v < 60:
            raise ValueError("SAMPLE_INTERVAL_S must be >= 60")
        return v

    @field_validator("retention_hours")
    @classmethod
    def retention_hours_must_be_valid(cls, v: int) -> int:
        """Validate retention is between 1 hour and 30 days."""
        if v < 1 or v > 720:
            raise ValueError("RETENTION_HOURS must be >= 1 and <= 720")
        return v

    @field_validator("max_entries")
    @classmethod
    def max_entries_must_fit_bucket(cls, v: int) -> int:
        """Validate the cap leaves room for one entry plus the OS-system bucket."""
        if v < 2:
            raise ValueError("MAX_ENTRIES must be >= 2")
        return v

    @field_validator("per_user_range")
    @classmethod
    def per_user_range_must_be_positive(cls, v: int) -> int:
        if v < 1:
            raise ValueError("PER_USER_RANGE must be >= 1")
        return v

    @field_validator("api_port")
    @classmethod
    def api_port_must_be_valid(cls, v: int) -> int:
        """Validate the API port is in valid range."""
        if v < 1 or v > 65535:
            raise ValueError("API_PORT must be between 1 and 65535")
        return v

    @model_validator(mode="after")
    def _check_ranges(self) -> "FuelGaugeSettings":
        """Validate the uid ranges are well ordered."""
        if self.os_reserved_first > self.os_reserved_last:
            raise ValueError("OS_RESERVED_FIRST must be <= OS_RESERVED_LAST")
        if self.first_shared_gid > self.last_shared_gid:
            raise ValueError("FIRST_SHARED_GID must be <= LAST_SHARED_GID")
        if self.source_base_url and not self.source_token:
            logger.warning("SOURCE_BASE_URL set without SOURCE_TOKEN")
        return self

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8"}
