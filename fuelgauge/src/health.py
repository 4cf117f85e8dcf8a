"""
Health file writer for the fuel-gauge daemon.

Writes a JSON health file at a configurable path with four fields:
- last_sample_ts: ISO timestamp of the most recently accepted sample.
- last_recompute_ts: ISO timestamp of the most recent published index.
- snapshot_count: Number of snapshots in the local store.
- published_generation: Generation number of the published usage index.

The file is rewritten on every state change, providing a simple liveness
signal that Docker HEALTHCHECK or monitoring can inspect.

CHANGELOG:
- 2026-10-17: Track recomputation instead of uploads (STORY-015)
- 2026-02-14: Initial creation (STORY-015)

TODO:
- None
"""

from __future__ import annotations

import json
from datetime import UTC, datetime
from pathlib import Path


class HealthWriter:
    """Writes daemon health status to a JSON file.

    Each mutating method updates the in-memory state and immediately
    rewrites the health file so it always reflects the latest status.

    Args:
        path: Filesystem path for the health JSON file. Accepts str or Path.
    """

    def __init__(self, path: str | Path) -> None:
        self.path = Path(path)
        self._last_sample_ts: str | None = None
        self._last_recompute_ts: str | None = None
        self._snapshot_count: int = 0
        self._published_generation: int = 0

    def record_sample(self, snapshot_count: int) -> None:
        """Record an accepted sample and write health file.

        Args:
            snapshot_count: Number of snapshots now in the store.
        """
        self._last_sample_ts = datetime.now(tz=UTC).isoformat()
        self._snapshot_count = snapshot_count
        self._write()

    def record_recompute(self, generation: int) -> None:
        """Record a published usage index and write health file."""
        self._last_recompute_ts = datetime.now(tz=UTC).isoformat()
        self._published_generation = generation
        self._write()

    def snapshot(self) -> dict[str, str | int | None]:
        """Return the current health state as a dict."""
        return {
            "last_sample_ts": self._last_sample_ts,
            "last_recompute_ts": self._last_recompute_ts,
            "snapshot_count": self._snapshot_count,
            "published_generation": self._published_generation,
        }

    def _write(self) -> None:
        """Write the health JSON file with current state."""
        self.path.write_text(json.dumps(self.snapshot()))
