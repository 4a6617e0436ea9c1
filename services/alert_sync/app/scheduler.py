"""Scheduled and on-demand triggers for sync passes."""

from __future__ import annotations

import asyncio
import logging
import time

from libs.observability.metrics import observe_sync_pass

from .context import SyncContext
from .errors import SyncCancelled, SyncFailedError
from .sync import AlertSynchronizer, SyncReport

logger = logging.getLogger("alert-sync.scheduler")

TRIGGER_STARTUP = "startup"
TRIGGER_SCHEDULED = "scheduled"
TRIGGER_MANUAL = "manual"


class SyncScheduler:
    """Drive :class:`AlertSynchronizer` on an interval and on request.

    Every pass runs under its own :class:`SyncContext` whose parent is the
    scheduler's shutdown event, so :meth:`stop` reaches passes that are
    already in flight.

    The interval is measured from the end of the previous scheduled pass,
    not on a fixed-rate clock. A pass that takes time ``d`` pushes the next
    scheduled pass to roughly ``d + interval`` after it started, so ticks
    drift by the pass duration. Manual and startup passes do not move the
    schedule.
    """

    def __init__(
        self,
        synchronizer: AlertSynchronizer,
        *,
        interval: float,
        pass_timeout: float = 300.0,
        shutdown_grace: float = 30.0,
        exclusive: bool = False,
    ) -> None:
        self._synchronizer = synchronizer
        self._interval = interval
        self._pass_timeout = pass_timeout
        self._shutdown_grace = shutdown_grace
        self._exclusive = exclusive
        self._stop_event = asyncio.Event()
        self._task: asyncio.Task[None] | None = None
        self._passes: set[asyncio.Task[SyncReport | None]] = set()
        self._active_passes = 0

    @property
    def running(self) -> bool:
        return self._task is not None

    @property
    def active_passes(self) -> int:
        return self._active_passes

    async def start(self, *, initial_pass: bool = True) -> None:
        if self._task is not None:
            return
        self._stop_event.clear()
        if initial_pass:
            self._spawn(TRIGGER_STARTUP)
        logger.info("Starting periodic sync every %.1fs", self._interval)
        self._task = asyncio.create_task(self._run_periodic())

    async def stop(self, grace: float | None = None) -> None:
        grace = self._shutdown_grace if grace is None else grace
        self._stop_event.set()
        pending: set[asyncio.Task] = set(self._passes)
        if self._task is not None:
            pending.add(self._task)
        if pending:
            _, still_running = await asyncio.wait(pending, timeout=grace)
            for task in still_running:
                task.cancel()
            if still_running:
                logger.warning(
                    "Cancelled %s sync task(s) after %.1fs grace", len(still_running), grace
                )
                await asyncio.gather(*still_running, return_exceptions=True)
        self._task = None

    def trigger_now(self) -> asyncio.Task[SyncReport | None]:
        """Start a manual pass in the background and return its task."""

        return self._spawn(TRIGGER_MANUAL)

    async def run_pass(self, trigger: str) -> SyncReport | None:
        """Run one pass and log its outcome; returns ``None`` when it did not complete."""

        if self._exclusive and trigger == TRIGGER_SCHEDULED and self._active_passes:
            logger.info("Skipping %s sync, a pass is already in progress", trigger)
            observe_sync_pass(trigger, "skipped")
            return None

        ctx = SyncContext(timeout=self._pass_timeout, parent=self._stop_event)
        started = time.perf_counter()
        self._active_passes += 1
        try:
            report = await self._synchronizer.perform_sync(ctx)
        except SyncCancelled as exc:
            logger.warning("[%s] Sync cancelled: %s", trigger, exc.reason)
            observe_sync_pass(trigger, "cancelled", time.perf_counter() - started)
            return None
        except SyncFailedError as exc:
            logger.error("[%s] Sync failed: %s", trigger, exc)
            observe_sync_pass(trigger, "failed", time.perf_counter() - started)
            return None
        except Exception:  # noqa: BLE001
            logger.exception("[%s] Sync crashed", trigger)
            observe_sync_pass(trigger, "failed", time.perf_counter() - started)
            return None
        finally:
            self._active_passes -= 1
        logger.info(
            "[%s] Sync completed successfully",
            trigger,
            extra={"fetched": report.fetched, "persisted": report.persisted, "failed": report.failed},
        )
        observe_sync_pass(trigger, "success", time.perf_counter() - started)
        return report

    def _spawn(self, trigger: str) -> asyncio.Task[SyncReport | None]:
        task = asyncio.create_task(self.run_pass(trigger))
        self._passes.add(task)
        task.add_done_callback(self._passes.discard)
        return task

    async def _run_periodic(self) -> None:
        while not self._stop_event.is_set():
            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=self._interval)
            except asyncio.TimeoutError:
                await self._spawn(TRIGGER_SCHEDULED)
        logger.info("Stopping periodic sync")


__all__ = ["SyncScheduler", "TRIGGER_MANUAL", "TRIGGER_SCHEDULED", "TRIGGER_STARTUP"]
