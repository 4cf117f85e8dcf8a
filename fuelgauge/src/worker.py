"""
Background recomputation worker: ingest, recompute, publish.

A single asyncio runner task owns ingestion and recomputation:

1. ``submit(batch)`` queues a raw batch and marks the worker dirty. It never
   blocks and never waits for the recomputation.
2. The runner drains every queued batch, builds and appends the snapshots,
   reads the retained window back from the store and rebuilds the
   UsageIndex in a worker thread.
3. The new index is published by a single reference swap, but only if its
   generation (taken when the run started) is newer than the published one.

Batches arriving while a run is in progress set the dirty flag again, which
triggers exactly one follow-up run that picks all of them up. A failing run
is logged and leaves the previously published index in place; batches the
store could not take are queued again for the next run.

After a publish, closed hour slots are persisted once and rows older than
the retention window are deleted from the store.

CHANGELOG:
- 2026-10-17: Persist closed slots only, prune past retention, requeue on store errors (STORY-012)
- 2026-10-17: Persist newly completed hour slots after publish (STORY-012)
- 2026-10-17: Initial creation (STORY-011)

TODO:
- None
"""

from __future__ import annotations

import asyncio
import contextlib
import json
import logging
from collections.abc import Iterable

from fuelgauge.src.errors import InvalidSampleError
from fuelgauge.src.health import HealthWriter
from fuelgauge.src.models import RawSampleBatch
from fuelgauge.src.normalizer import build_snapshot
from fuelgauge.src.pipeline import UsageIndex, build_usage_index
from fuelgauge.src.policy import PolicyProvider
from fuelgauge.src.ranking import DEFAULT_MAX_ENTRIES
from fuelgauge.src.selection import SelectionController
from fuelgauge.src.spool import SnapshotStore

logger = logging.getLogger(__name__)

_MS_PER_HOUR = 3_600_000


class RecomputeWorker:
    """Owns the published UsageIndex and keeps it current.

    Args:
        store: Opened snapshot store.
        policy: Coalescing and visibility policy.
        retention_hours: Hours of snapshots, counted back from the newest,
            that each recomputation covers. Older rows are deleted.
        max_entries: Cap per slot list.
        show_all: Include show-all-only consumers.
        selection: Selection controller whose day count follows the
            published index, or None.
        health: HealthWriter instance, or None to skip health writes.
    """

    def __init__(
        self,
        store: SnapshotStore,
        *,
        policy: PolicyProvider,
        retention_hours: int = 168,
        max_entries: int = DEFAULT_MAX_ENTRIES,
        show_all: bool = False,
        selection: SelectionController | None = None,
        health: HealthWriter | None = None,
    ) -> None:
        self._store = store
        self._policy = policy
        self._retention_ms = retention_hours * _MS_PER_HOUR
        self._max_entries = max_entries
        self._show_all = show_all
        self._selection = selection
        self._health = health

        self._pending: list[RawSampleBatch] = []
        self._dirty = asyncio.Event()
        self._idle = asyncio.Event()
        self._idle.set()
        self._task: asyncio.Task[None] | None = None

        self._index = UsageIndex()
        self._next_generation = 0
        self._last_timestamp_ms: int | None = None
        self._last_persisted_slot_end_ms = 0

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    @property
    def index(self) -> UsageIndex:
        """The currently published index."""
        return self._index

    @property
    def show_all(self) -> bool:
        return self._show_all

    def submit(self, batch: RawSampleBatch) -> None:
        """Queue a raw batch for ingestion. Returns immediately."""
        self._pending.append(batch)
        self._mark_dirty()

    def submit_many(self, batches: Iterable[RawSampleBatch]) -> None:
        for batch in batches:
            self._pending.append(batch)
        self._mark_dirty()

    def request_recompute(self) -> None:
        """Schedule a recomputation without new input."""
        self._mark_dirty()

    def set_show_all(self, show_all: bool) -> None:
        """Toggle show-all-only consumers and schedule a recomputation."""
        if show_all != self._show_all:
            self._show_all = show_all
            self._mark_dirty()

    async def start(self) -> None:
        """Resume from the store and start the runner task.

        The first run builds an index from whatever the store already holds.
        """
        self._last_timestamp_ms = await self._store.latest_timestamp()
        latest_slot = await self._store.latest_usage_slot_timestamp()
        self._last_persisted_slot_end_ms = latest_slot or 0
        self._task = asyncio.create_task(self._run(), name="recompute-worker")
        self._mark_dirty()
        logger.info(
            "Recompute worker started (latest snapshot=%s)", self._last_timestamp_ms
        )

    async def stop(self) -> None:
        """Cancel the runner task and wait for it to finish."""
        if self._task is None:
            return
        self._task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await self._task
        self._task = None
        logger.info("Recompute worker stopped")

    async def wait_idle(self) -> None:
        """Wait until no batch is queued and no run is in progress."""
        await self._idle.wait()

    async def run_once(self) -> bool:
        """Ingest queued batches, recompute and publish.

        Returns:
            True if a new index was published.
        """
        self._next_generation += 1
        generation = self._next_generation
        batches, self._pending = self._pending, []
        try:
            await self._ingest(batches)
            index = await self._recompute(generation)
        except Exception:
            logger.error(
                "Recomputation generation=%d failed; keeping generation=%d",
                generation,
                self._index.generation,
                exc_info=True,
            )
            return False
        return await self._publish(index)

    # ------------------------------------------------------------------
    # Runner
    # ------------------------------------------------------------------

    def _mark_dirty(self) -> None:
        self._idle.clear()
        self._dirty.set()

    async def _run(self) -> None:
        while True:
            await self._dirty.wait()
            self._dirty.clear()
            try:
                await self.run_once()
            except Exception:
                logger.error("Recompute worker iteration error", exc_info=True)
            if not self._dirty.is_set():
                self._idle.set()

    # ------------------------------------------------------------------
    # Stages
    # ------------------------------------------------------------------

    async def _ingest(self, batches: list[RawSampleBatch]) -> int:
        accepted = 0
        for position, batch in enumerate(batches):
            try:
                snapshot = build_snapshot(
                    batch,
                    policy=self._policy,
                    previous_timestamp_ms=self._last_timestamp_ms,
                )
            except InvalidSampleError as exc:
                logger.warning("Dropping sample: %s", exc)
                continue
            try:
                await self._store.append(snapshot)
            except InvalidSampleError as exc:
                logger.warning("Dropping sample: %s", exc)
                continue
            except Exception:
                self._pending[:0] = batches[position:]
                logger.warning(
                    "Store append failed; requeued %d batch(es)",
                    len(batches) - position,
                )
                raise
            self._last_timestamp_ms = snapshot.timestamp_ms
            accepted += 1

        if accepted and self._health is not None:
            try:
                self._health.record_sample(await self._store.count())
            except Exception:
                logger.warning("Failed to write health file", exc_info=True)
        return accepted

    async def _recompute(self, generation: int) -> UsageIndex:
        latest = await self._store.latest_timestamp()
        if latest is None:
            snapshots = []
        else:
            snapshots = await self._store.read_window(latest - self._retention_ms)
        return await asyncio.to_thread(
            build_usage_index,
            snapshots,
            policy=self._policy,
            max_entries=self._max_entries,
            show_all=self._show_all,
            generation=generation,
        )

    async def _publish(self, index: UsageIndex) -> bool:
        if index.generation <= self._index.generation:
            logger.info(
                "Discarding stale index generation=%d (published=%d)",
                index.generation,
                self._index.generation,
            )
            return False

        self._index = index
        if self._selection is not None:
            self._selection.set_day_count(index.day_count)
        if self._health is not None:
            try:
                self._health.record_recompute(index.generation)
            except Exception:
                logger.warning("Failed to write health file", exc_info=True)
        await self._persist_new_slots(index)
        await self._prune()
        return True

    async def _persist_new_slots(self, index: UsageIndex) -> None:
        """Append closed hour slots whose end lies past the last persisted slot.

        A window that is still open is left alone until a later snapshot
        closes it, so every slot is written once with its final bounds.
        """
        new_slots = sorted(
            (index.slot_bounds[key][1], key)
            for key in index.closed_slots
            if index.slot_bounds[key][1] > self._last_persisted_slot_end_ms
        )
        try:
            for end_ms, (day_index, hour_index) in new_slots:
                start_ms = index.slot_bounds[(day_index, hour_index)][0]
                payload = json.dumps(
                    {
                        "day_index": day_index,
                        "hour_index": hour_index,
                        "start_ms": start_ms,
                        "end_ms": end_ms,
                        "entries": [
                            entry.model_dump(mode="json")
                            for entry in index.diff_index[(day_index, hour_index)]
                        ],
                    }
                )
                await self._store.append_usage_slot(end_ms, payload)
                self._last_persisted_slot_end_ms = end_ms
        except Exception:
            logger.warning("Failed to persist usage slots", exc_info=True)

    async def _prune(self) -> None:
        """Delete snapshots and slot results older than the retention window."""
        try:
            latest = await self._store.latest_timestamp()
            if latest is None:
                return
            removed = await self._store.delete_before(latest - self._retention_ms)
        except Exception:
            logger.warning("Failed to prune expired rows", exc_info=True)
            return
        if removed:
            logger.info("Pruned %d snapshot(s) past retention", removed)
