"""
HTTPS sample source pulling raw battery usage batches from a collector.

GETs ``{base_url}/v1/samples?since={cursor}`` with Bearer token
authentication and parses the ``samples`` array into RawSampleBatch models.
The cursor advances to the newest timestamp received, so each batch is
delivered once. Implements exponential backoff on failure (1s -> 2s -> 4s ->
... -> MAX_BACKOFF_S max). Validates HTTPS at construction and always uses
TLS certificate verification.

Operations:
- next_samples(): Fetch batches newer than the cursor, oldest first.
- resume_from(timestamp_ms): Move the cursor, e.g. to the newest stored
  snapshot at startup.
- fetch_label(identity_key): Display label lookup for the label resolver.
- current_backoff: Current backoff delay in seconds (read-only property).

CHANGELOG:
- 2026-10-17: Pull raw sample batches instead of pushing spool rows (STORY-006)
- 2026-02-14: Initial creation (STORY-006)

TODO:
- None
"""

from __future__ import annotations

import logging

import httpx
from pydantic import ValidationError

from fuelgauge.src.models import RawSampleBatch

logger = logging.getLogger(__name__)

_INITIAL_BACKOFF_S = 1.0
_DEFAULT_MAX_BACKOFF_S = 300.0
_DEFAULT_TIMEOUT_S = 10.0


class HttpSampleSource:
    """HTTPS client for the sample collector endpoint.

    On failure (non-200 status, timeout, connection error, malformed body)
    :meth:`next_samples` returns an empty list, the cursor stays put and the
    internal backoff delay doubles (capped at ``max_backoff_s``). On success
    the backoff resets to 1 second.

    Individual batches that fail validation are logged and skipped.

    Args:
        base_url: Base URL of the collector. Must start with ``https://``.
        token: Bearer token for the collector.
        max_backoff_s: Maximum backoff delay in seconds (default 300).
        timeout_s: Per-request timeout in seconds.
        transport: Optional httpx transport, used by tests.

    Raises:
        ValueError: If *base_url* does not start with ``https://``.

    Usage::

        source = HttpSampleSource(
            base_url="https://collector.example.com",
            token="tok-123",
        )
        batches = await source.next_samples()
    """

    def __init__(
        self,
        base_url: str,
        token: str,
        max_backoff_s: float = _DEFAULT_MAX_BACKOFF_S,
        timeout_s: float = _DEFAULT_TIMEOUT_S,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        if not base_url.lower().startswith("https://"):
            raise ValueError(f"Sample source URL must use HTTPS (got: '{base_url}').")
        self._base_url = base_url.rstrip("/")
        self._token = token
        self._max_backoff_s = max_backoff_s
        self._timeout_s = timeout_s
        self._transport = transport
        self._cursor = 0
        self._current_backoff = _INITIAL_BACKOFF_S

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    @property
    def current_backoff(self) -> float:
        """Current backoff delay in seconds.

        Starts at 1s, doubles on each consecutive failure, capped at
        ``max_backoff_s``. Resets to 1s on a successful fetch.
        """
        return self._current_backoff

    @property
    def cursor(self) -> int:
        """Timestamp of the newest batch received so far."""
        return self._cursor

    def resume_from(self, timestamp_ms: int | None) -> None:
        """Only request batches newer than *timestamp_ms*."""
        if timestamp_ms is not None and timestamp_ms > self._cursor:
            self._cursor = timestamp_ms

    async def next_samples(self) -> list[RawSampleBatch]:
        """Fetch the batches newer than the cursor.

        Returns:
            Batches in ascending timestamp order; empty when nothing new
            arrived or the request failed.
        """
        try:
            async with httpx.AsyncClient(
                verify=True,
                timeout=self._timeout_s,
                transport=self._transport,
            ) as client:
                response = await client.get(
                    f"{self._base_url}/v1/samples",
                    params={"since": self._cursor},
                    headers={"Authorization": f"Bearer {self._token}"},
                )
        except (httpx.ConnectError, httpx.TimeoutException) as exc:
            logger.warning("Sample fetch failed (network error): %s", exc)
            self._increase_backoff()
            return []

        if response.status_code != 200:
            logger.warning(
                "Sample fetch failed (HTTP %d), will retry after %.1fs backoff.",
                response.status_code,
                self._current_backoff,
            )
            self._increase_backoff()
            return []

        try:
            items = response.json()["samples"]
        except (ValueError, KeyError, TypeError):
            logger.warning("Sample fetch returned a malformed body", exc_info=True)
            self._increase_backoff()
            return []

        batches = self._parse_batches(items)
        self._reset_backoff()
        if batches:
            logger.info(
                "Fetched %d sample batch(es), cursor %d -> %d",
                len(batches),
                self._cursor,
                batches[-1].timestamp_ms,
            )
            self._cursor = max(self._cursor, batches[-1].timestamp_ms)
        return batches

    async def fetch_label(self, identity_key: str) -> str | None:
        """Return the collector's display label for *identity_key*, or None.

        Raises:
            httpx.HTTPError: On transport failure or a non-2xx, non-404
                status.
        """
        async with httpx.AsyncClient(
            verify=True,
            timeout=self._timeout_s,
            transport=self._transport,
        ) as client:
            response = await client.get(
                f"{self._base_url}/v1/labels/{identity_key}",
                headers={"Authorization": f"Bearer {self._token}"},
            )
        if response.status_code == 404:
            return None
        response.raise_for_status()
        return response.json().get("label")

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    def _parse_batches(self, items: list[dict]) -> list[RawSampleBatch]:
        batches: list[RawSampleBatch] = []
        for idx, item in enumerate(items):
            try:
                batches.append(RawSampleBatch.model_validate(item))
            except ValidationError:
                logger.warning("Skipping malformed sample batch at position %d", idx)
        batches.sort(key=lambda batch: batch.timestamp_ms)
        return [batch for batch in batches if batch.timestamp_ms > self._cursor]

    def _increase_backoff(self) -> None:
        """Double the backoff delay, capped at max_backoff_s."""
        self._current_backoff = min(
            self._current_backoff * 2,
            self._max_backoff_s,
        )

    def _reset_backoff(self) -> None:
        """Reset backoff to the initial value (1s)."""
        self._current_backoff = _INITIAL_BACKOFF_S
