"""
Display label cache and bounded async resolver for consumer identities.

LabelCache maps identity keys to display labels for one locale. Seeing a new
locale clears it, since every cached label was rendered for the old one.

LabelResolver looks up the labels a renderer needs for a list of identity
keys. Lookups run concurrently, bounded by a semaphore; cached keys are not
looked up again. A new request cancels the one still in flight, since only
the latest list is on screen.

CHANGELOG:
- 2026-10-17: Initial creation (STORY-013)

TODO:
- None
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable, Iterable

logger = logging.getLogger(__name__)

LabelLookup = Callable[[str], Awaitable[str | None]]

_DEFAULT_MAX_CONCURRENCY = 4


class LabelCache:
    """Identity key -> display label, valid for a single locale."""

    def __init__(self) -> None:
        self._labels: dict[str, str] = {}
        self._locale: str | None = None

    @property
    def locale(self) -> str | None:
        return self._locale

    def get(self, identity_key: str) -> str | None:
        return self._labels.get(identity_key)

    def put(self, identity_key: str, label: str) -> None:
        self._labels[identity_key] = label

    def clear(self) -> None:
        self._labels.clear()

    def invalidate_for_locale(self, locale: str) -> bool:
        """Clear the cache when *locale* differs from the cached one.

        Returns:
            True if the cache was cleared.
        """
        if locale == self._locale:
            return False
        if self._labels:
            logger.info(
                "Locale changed %s -> %s, dropping %d cached label(s)",
                self._locale,
                locale,
                len(self._labels),
            )
        self._labels.clear()
        self._locale = locale
        return True

    def __contains__(self, identity_key: object) -> bool:
        return identity_key in self._labels

    def __len__(self) -> int:
        return len(self._labels)


class LabelResolver:
    """Resolves display labels through *lookup*, caching the results.

    Args:
        lookup: Async callable returning the label for an identity key, or
            None when the key has no label.
        cache: Cache shared with readers; a fresh one is created if omitted.
        max_concurrency: Maximum lookups in flight at once.
    """

    def __init__(
        self,
        lookup: LabelLookup,
        *,
        cache: LabelCache | None = None,
        max_concurrency: int = _DEFAULT_MAX_CONCURRENCY,
    ) -> None:
        if max_concurrency < 1:
            raise ValueError("max_concurrency must be >= 1")
        self._lookup = lookup
        self._cache = cache if cache is not None else LabelCache()
        self._max_concurrency = max_concurrency
        self._inflight: asyncio.Task[None] | None = None

    @property
    def cache(self) -> LabelCache:
        return self._cache

    async def resolve(self, keys: Iterable[str], *, locale: str = "") -> dict[str, str]:
        """Return labels for *keys*, looking up the ones not cached yet.

        A request superseded by a newer one stops early and returns only
        the labels resolved so far.

        Args:
            keys: Identity keys to label.
            locale: Locale the labels are rendered for.

        Returns:
            Mapping of identity key -> label for every resolved key.
        """
        wanted = list(dict.fromkeys(keys))
        self._cache.invalidate_for_locale(locale)

        if self._inflight is not None and not self._inflight.done():
            self._inflight.cancel()
            logger.debug("Cancelled superseded label request")

        missing = [key for key in wanted if key not in self._cache]
        task = asyncio.create_task(self._resolve_missing(missing))
        self._inflight = task
        try:
            await task
        except asyncio.CancelledError:
            current = asyncio.current_task()
            if current is not None and current.cancelling():
                raise
            logger.debug("Label request for %d key(s) superseded", len(wanted))
        finally:
            if self._inflight is task:
                self._inflight = None

        labels: dict[str, str] = {}
        for key in wanted:
            label = self._cache.get(key)
            if label is not None:
                labels[key] = label
        return labels

    async def _resolve_missing(self, keys: list[str]) -> None:
        if not keys:
            return
        semaphore = asyncio.Semaphore(self._max_concurrency)

        async def _one(key: str) -> None:
            async with semaphore:
                try:
                    label = await self._lookup(key)
                except Exception:
                    logger.warning("Label lookup failed for %s", key, exc_info=True)
                    return
            self._cache.put(key, label if label else key)

        await asyncio.gather(*(_one(key) for key in keys))
