"""
Unit tests for the display label cache and resolver.

Tests verify:
- The cache is cleared when the locale changes, and only then.
- Missing labels are looked up once and cached.
- A missing label falls back to the identity key; a failing lookup is skipped.
- Lookups in flight never exceed max_concurrency.
- A newer request cancels the one still in flight; cancelling the caller
  still propagates.

CHANGELOG:
- 2026-10-17: Initial creation (STORY-013)

TODO:
- None
"""

from __future__ import annotations

import asyncio

import pytest
from fuelgauge.src.labels import LabelCache, LabelResolver

# ---------------------------------------------------------------------------
# LabelCache
# ---------------------------------------------------------------------------


class TestLabelCache:
    """Locale-scoped cache."""

    def test_first_locale_adopted(self) -> None:
        cache = LabelCache()
        assert cache.invalidate_for_locale("en") is True
        assert cache.locale == "en"

    def test_same_locale_keeps_labels(self) -> None:
        cache = LabelCache()
        cache.invalidate_for_locale("en")
        cache.put("10001", "Example")

        assert cache.invalidate_for_locale("en") is False
        assert cache.get("10001") == "Example"

    def test_new_locale_clears_labels(self) -> None:
        cache = LabelCache()
        cache.invalidate_for_locale("en")
        cache.put("10001", "Example")

        assert cache.invalidate_for_locale("nl") is True
        assert "10001" not in cache
        assert len(cache) == 0


# ---------------------------------------------------------------------------
# LabelResolver
# ---------------------------------------------------------------------------


class TestLabelResolver:
    """Lookup, caching and fallbacks."""

    def test_invalid_concurrency_rejected(self) -> None:
        async def lookup(key: str) -> str | None:
            return key

        with pytest.raises(ValueError, match="max_concurrency"):
            LabelResolver(lookup, max_concurrency=0)

    @pytest.mark.asyncio
    async def test_cached_keys_not_looked_up_again(self) -> None:
        calls: list[str] = []

        async def lookup(key: str) -> str | None:
            calls.append(key)
            return f"label-{key}"

        resolver = LabelResolver(lookup)

        first = await resolver.resolve(["10001", "10002", "10001"], locale="en")
        second = await resolver.resolve(["10002", "10003"], locale="en")

        assert first == {"10001": "label-10001", "10002": "label-10002"}
        assert second == {"10002": "label-10002", "10003": "label-10003"}
        assert calls == ["10001", "10002", "10003"]

    @pytest.mark.asyncio
    async def test_locale_change_triggers_new_lookups(self) -> None:
        calls: list[str] = []

        async def lookup(key: str) -> str | None:
            calls.append(key)
            return key.upper()

        resolver = LabelResolver(lookup)
        await resolver.resolve(["s|0"], locale="en")
        await resolver.resolve(["s|0"], locale="fr")

        assert calls == ["s|0", "s|0"]
        assert resolver.cache.locale == "fr"

    @pytest.mark.asyncio
    async def test_missing_label_falls_back_to_key(self) -> None:
        async def lookup(key: str) -> str | None:
            return None if key == "U|0" else ""

        labels = await LabelResolver(lookup).resolve(["U|0", "10001"])

        assert labels == {"U|0": "U|0", "10001": "10001"}

    @pytest.mark.asyncio
    async def test_failing_lookup_skipped(self, caplog: pytest.LogCaptureFixture) -> None:
        async def lookup(key: str) -> str | None:
            if key == "10002":
                raise RuntimeError("collector down")
            return "ok"

        resolver = LabelResolver(lookup)
        labels = await resolver.resolve(["10001", "10002"])

        assert labels == {"10001": "ok"}
        assert "10002" not in resolver.cache
        assert "Label lookup failed for 10002" in caplog.text

    @pytest.mark.asyncio
    async def test_concurrency_bounded(self) -> None:
        active = 0
        peak = 0

        async def lookup(key: str) -> str | None:
            nonlocal active, peak
            active += 1
            peak = max(peak, active)
            await asyncio.sleep(0.01)
            active -= 1
            return key

        resolver = LabelResolver(lookup, max_concurrency=2)
        labels = await resolver.resolve([str(10001 + i) for i in range(8)])

        assert len(labels) == 8
        assert peak == 2


# ---------------------------------------------------------------------------
# Cancellation
# ---------------------------------------------------------------------------


class TestCancellation:
    """Superseded and cancelled requests."""

    @pytest.mark.asyncio
    async def test_newer_request_supersedes_inflight(self) -> None:
        started = asyncio.Event()
        release = asyncio.Event()

        async def lookup(key: str) -> str | None:
            if key == "slow":
                started.set()
                await release.wait()
            return key.upper()

        resolver = LabelResolver(lookup)
        first = asyncio.create_task(resolver.resolve(["slow"]))
        await started.wait()

        second = await resolver.resolve(["fast"])
        release.set()

        assert second == {"fast": "FAST"}
        assert await first == {}
        assert "slow" not in resolver.cache

    @pytest.mark.asyncio
    async def test_cancelling_caller_propagates(self) -> None:
        started = asyncio.Event()

        async def lookup(key: str) -> str | None:
            started.set()
            await asyncio.Event().wait()
            return key

        resolver = LabelResolver(lookup)
        request = asyncio.create_task(resolver.resolve(["10001"]))
        await started.wait()

        request.cancel()
        with pytest.raises(asyncio.CancelledError):
            await request
