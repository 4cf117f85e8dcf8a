"""
Fuel-gauge daemon main loop.

Runs two concurrent asyncio tasks next to the recompute worker:
1. **Sample loop**: pulls raw batches from the HTTPS sample source and
   submits them to the RecomputeWorker, which ingests, recomputes and
   publishes the usage index in the background.
2. **API server**: serves the read API over the published index.

The sample loop is resilient: an exception in one iteration is logged and
does not crash the loop. Graceful shutdown on SIGTERM/SIGINT sets a shared
asyncio.Event; the sample loop finishes its iteration, the API server exits
and the worker is stopped before the store is closed.

Structured JSON logging is used for all events.

CHANGELOG:
- 2026-10-17: Restore and save the selection across restarts (STORY-014)
- 2026-10-17: Replace poll/upload loops with sample loop + read API (STORY-014)
- 2026-02-14: Replace inline health writer with HealthWriter (STORY-015)
- 2026-02-14: Initial creation (STORY-014)

TODO:
- None
"""

from __future__ import annotations

import asyncio
import contextlib
import hashlib
import json
import logging
import signal
import sys
from datetime import UTC, datetime
from typing import TYPE_CHECKING

import uvicorn

from fuelgauge.src.selection import read_state_file, write_state_file

if TYPE_CHECKING:
    from fuelgauge.src.config import FuelGaugeSettings
    from fuelgauge.src.selection import SelectionController
    from fuelgauge.src.source import HttpSampleSource
    from fuelgauge.src.worker import RecomputeWorker

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Structured JSON logging setup
# ---------------------------------------------------------------------------


def configure_logging() -> None:
    """Configure structured JSON logging for the daemon.

    Sets up the root logger with a JSON-formatted handler writing to stderr.
    """

    class _JsonFormatter(logging.Formatter):
        """Minimal JSON log formatter."""

        def format(self, record: logging.LogRecord) -> str:
            log_entry = {
                "ts": datetime.fromtimestamp(record.created, tz=UTC).isoformat(),
                "level": record.levelname,
                "logger": record.name,
                "msg": record.getMessage(),
            }
            if record.exc_info and record.exc_info[1] is not None:
                log_entry["exception"] = self.formatException(record.exc_info)
            return json.dumps(log_entry)

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(_JsonFormatter())
    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(logging.INFO)


def _masked_token(value: str | None) -> str:
    """Return a short non-reversible token fingerprint for diagnostics."""
    if not value:
        return "empty"
    digest = hashlib.sha256(value.encode("utf-8")).hexdigest()[:10]
    return f"len={len(value)} sha256={digest}"


# ---------------------------------------------------------------------------
# Startup config logging
# ---------------------------------------------------------------------------


def log_config_summary(settings: FuelGaugeSettings) -> None:
    """Log a config summary at startup, excluding secrets.

    Tokens are logged only as a masked fingerprint.

    Args:
        settings: A FuelGaugeSettings instance.
    """
    logger.info(
        "Fuel gauge daemon starting with config: "
        "store_path=%s, health_path=%s, selection_path=%s, sample_interval_s=%s, "
        "retention_hours=%s, max_entries=%s, show_all_consumers=%s, "
        "source_base_url=%s, api=%s:%s, "
        "source_token_masked=%s, api_token_masked=%s",
        settings.store_path,
        settings.health_path,
        settings.selection_path,
        settings.sample_interval_s,
        settings.retention_hours,
        settings.max_entries,
        settings.show_all_consumers,
        settings.source_base_url or "disabled",
        settings.api_host,
        settings.api_port,
        _masked_token(settings.source_token),
        _masked_token(settings.api_token),
    )


# ---------------------------------------------------------------------------
# Single-iteration functions (easily testable)
# ---------------------------------------------------------------------------


async def _sample_once(
    *,
    source: HttpSampleSource,
    worker: RecomputeWorker,
) -> int:
    """Fetch new batches and hand them to the worker.

    Catches all exceptions so that the caller's loop is never broken.

    Args:
        source: The HTTPS sample source.
        worker: The recompute worker receiving the batches.

    Returns:
        Number of batches submitted.
    """
    try:
        batches = await source.next_samples()
    except Exception:
        logger.error("Sample cycle error", exc_info=True)
        return 0

    if not batches:
        logger.debug("No new samples")
        return 0
    worker.submit_many(batches)
    logger.info("Submitted %d sample batch(es)", len(batches))
    return len(batches)


# ---------------------------------------------------------------------------
# Loop runners
# ---------------------------------------------------------------------------


async def _sample_loop(
    *,
    source: HttpSampleSource,
    worker: RecomputeWorker,
    sample_interval_s: float,
    shutdown_event: asyncio.Event,
) -> None:
    """Run the sample loop until shutdown_event is set.

    Executes _sample_once, then sleeps for sample_interval_s, or for the
    source's backoff delay while the source is failing.

    Args:
        source: The HTTPS sample source.
        worker: The recompute worker.
        sample_interval_s: Seconds between sample cycles.
        shutdown_event: Event to signal graceful shutdown.
    """
    logger.info("Sample loop started (interval=%ss)", sample_interval_s)
    while not shutdown_event.is_set():
        await _sample_once(source=source, worker=worker)
        delay = sample_interval_s
        if source.current_backoff > 1.0:
            delay = min(source.current_backoff, sample_interval_s)
        # Use wait with timeout so we can check shutdown between sleeps
        with contextlib.suppress(TimeoutError):
            await asyncio.wait_for(shutdown_event.wait(), timeout=delay)
    logger.info("Sample loop stopped")


async def _serve_api(server: uvicorn.Server, shutdown_event: asyncio.Event) -> None:
    """Serve the read API until shutdown_event is set or the server exits.

    A server that exits on its own (bind failure, signal) shuts the daemon
    down as well.
    """
    serve_task = asyncio.create_task(server.serve())
    stop_task = asyncio.create_task(shutdown_event.wait())
    await asyncio.wait({serve_task, stop_task}, return_when=asyncio.FIRST_COMPLETED)
    server.should_exit = True
    shutdown_event.set()
    stop_task.cancel()
    await serve_task


# ---------------------------------------------------------------------------
# Concurrent runner with graceful shutdown
# ---------------------------------------------------------------------------


async def run_daemon(
    *,
    worker: RecomputeWorker,
    source: HttpSampleSource | None,
    server: uvicorn.Server | None,
    sample_interval_s: float,
    shutdown_event: asyncio.Event,
    selection: SelectionController | None = None,
    selection_path: str | None = None,
) -> None:
    """Run the worker, sample loop and API server until shutdown.

    The saved selection is restored before the worker publishes its first
    index and written back once the worker has stopped.

    Args:
        worker: The recompute worker; started here, stopped on exit.
        source: The HTTPS sample source, or None to only serve stored data.
        server: The API server, or None to run headless.
        sample_interval_s: Seconds between sample cycles.
        shutdown_event: Event to signal graceful shutdown.
        selection: Selection controller to restore and save, or None.
        selection_path: JSON file holding the saved selection.
    """
    persist_selection = selection is not None and bool(selection_path)
    if persist_selection:
        selection.restore_state(read_state_file(selection_path))

    await worker.start()
    tasks = []
    if source is not None:
        tasks.append(
            _sample_loop(
                source=source,
                worker=worker,
                sample_interval_s=sample_interval_s,
                shutdown_event=shutdown_event,
            )
        )
    else:
        logger.info("No sample source configured, serving stored data only")
    if server is not None:
        tasks.append(_serve_api(server, shutdown_event))
    tasks.append(shutdown_event.wait())

    try:
        await asyncio.gather(*tasks)
    finally:
        await worker.stop()
        if persist_selection:
            try:
                write_state_file(selection_path, selection.save_state())
            except OSError:
                logger.warning("Failed to save selection", exc_info=True)
    logger.info("Shutdown complete")


# ---------------------------------------------------------------------------
# Entrypoint
# ---------------------------------------------------------------------------


async def async_main() -> None:
    """Async entrypoint: load config, build components, run the daemon.

    Sets up SIGTERM/SIGINT handlers to trigger graceful shutdown.
    """
    configure_logging()

    from fuelgauge.src.api import create_app
    from fuelgauge.src.config import FuelGaugeSettings
    from fuelgauge.src.health import HealthWriter
    from fuelgauge.src.labels import LabelResolver
    from fuelgauge.src.policy import PolicyProvider
    from fuelgauge.src.selection import SelectionController
    from fuelgauge.src.service import UsageService
    from fuelgauge.src.source import HttpSampleSource
    from fuelgauge.src.spool import SnapshotStore
    from fuelgauge.src.worker import RecomputeWorker

    settings = FuelGaugeSettings()
    log_config_summary(settings)

    shutdown_event = asyncio.Event()

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(
            sig,
            lambda: _handle_signal(shutdown_event),
        )

    health = HealthWriter(settings.health_path)
    selection = SelectionController()
    policy = PolicyProvider.from_settings(settings)

    source = None
    resolver = None
    if settings.source_base_url:
        source = HttpSampleSource(
            base_url=settings.source_base_url,
            token=settings.source_token,
        )
        resolver = LabelResolver(source.fetch_label)

    async with SnapshotStore(settings.store_path) as store:
        worker = RecomputeWorker(
            store,
            policy=policy,
            retention_hours=settings.retention_hours,
            max_entries=settings.max_entries,
            show_all=settings.show_all_consumers,
            selection=selection,
            health=health,
        )
        if source is not None:
            source.resume_from(await store.latest_timestamp())

        service = UsageService(worker, selection, resolver)
        app = create_app(service, health=health, api_token=settings.api_token)
        server = uvicorn.Server(
            uvicorn.Config(
                app,
                host=settings.api_host,
                port=settings.api_port,
                log_config=None,
            )
        )
        await run_daemon(
            worker=worker,
            source=source,
            server=server,
            sample_interval_s=settings.sample_interval_s,
            shutdown_event=shutdown_event,
            selection=selection,
            selection_path=settings.selection_path,
        )


def _handle_signal(shutdown_event: asyncio.Event) -> None:
    """Handle SIGTERM/SIGINT by setting the shutdown event.

    Args:
        shutdown_event: The event to set for graceful shutdown.
    """
    logger.info("Received shutdown signal, initiating graceful shutdown")
    shutdown_event.set()


def main() -> None:
    """Synchronous entrypoint for the fuel gauge daemon."""
    asyncio.run(async_main())


if __name__ == "__main__":
    main()
