"""
Shared test fixtures for fuel gauge daemon tests.

Provides environment variable fixtures for FuelGaugeSettings configuration
tests and a default policy. All fuel gauge env vars are cleaned before each
test to ensure isolation.

CHANGELOG:
- 2026-10-17: Switch to FuelGaugeSettings env vars, add policy fixture
- 2026-02-14: Initial creation (STORY-001)

TODO:
- None
"""

from __future__ import annotations

import pytest
from fuelgauge.src.policy import PolicyProvider

# All FuelGaugeSettings environment variable names, used for cleanup.
_ALL_FUELGAUGE_ENV_VARS = (
    "STORE_PATH",
    "HEALTH_PATH",
    "SELECTION_PATH",
    "SAMPLE_INTERVAL_S",
    "RETENTION_HOURS",
    "MAX_ENTRIES",
    "SHOW_ALL_CONSUMERS",
    "SOURCE_BASE_URL",
    "SOURCE_TOKEN",
    "HIDDEN_ENTRIES",
    "SHOW_ALL_ONLY_ENTRIES",
    "HIDE_SUMMARY_PACKAGES",
    "EXCLUDED_SERVICE_NAMES",
    "OS_SYSTEM_UID",
    "OS_RESERVED_FIRST",
    "OS_RESERVED_LAST",
    "FIRST_SHARED_GID",
    "LAST_SHARED_GID",
    "FIRST_APPLICATION_UID",
    "PER_USER_RANGE",
    "API_TOKEN",
    "API_HOST",
    "API_PORT",
)


@pytest.fixture(autouse=True)
def _clean_fuelgauge_env(monkeypatch: pytest.MonkeyPatch, tmp_path: str) -> None:
    """Remove all fuel gauge env vars and isolate from .env files before each test.

    This runs automatically for every test in the suite. Individual tests or
    fixtures then set only the vars they need. Changes working directory to
    tmp_path so no .env file is accidentally loaded by Pydantic BaseSettings.
    """
    for var in _ALL_FUELGAUGE_ENV_VARS:
        monkeypatch.delenv(var, raising=False)
    monkeypatch.chdir(tmp_path)


@pytest.fixture()
def env_vars_full(monkeypatch: pytest.MonkeyPatch) -> dict[str, str]:
    """Set every FuelGaugeSettings environment variable.

    Returns the dict of env var names to values for assertion convenience.
    """
    env = {
        "STORE_PATH": "/tmp/test-fuelgauge.db",
        "HEALTH_PATH": "/tmp/test-health.json",
        "SAMPLE_INTERVAL_S": "600",
        "RETENTION_HOURS": "48",
        "MAX_ENTRIES": "10",
        "SHOW_ALL_CONSUMERS": "true",
        "SOURCE_BASE_URL": "https://collector.example.com",
        "SOURCE_TOKEN": "source-token",
        "HIDDEN_ENTRIES": "com.example.hidden, 1013",
        "SHOW_ALL_ONLY_ENTRIES": "S|3",
        "HIDE_SUMMARY_PACKAGES": "com.example.launcher",
        "EXCLUDED_SERVICE_NAMES": "mediaserver,cameraserver",
        "OS_SYSTEM_UID": "1000",
        "OS_RESERVED_FIRST": "1000",
        "OS_RESERVED_LAST": "10000",
        "FIRST_SHARED_GID": "50000",
        "LAST_SHARED_GID": "59999",
        "FIRST_APPLICATION_UID": "10000",
        "PER_USER_RANGE": "100000",
        "API_TOKEN": "api-token",
        "API_HOST": "0.0.0.0",
        "API_PORT": "9090",
    }
    for key, value in env.items():
        monkeypatch.setenv(key, value)
    return env


@pytest.fixture()
def policy() -> PolicyProvider:
    """Default policy with platform uid ranges and empty visibility sets."""
    return PolicyProvider()
