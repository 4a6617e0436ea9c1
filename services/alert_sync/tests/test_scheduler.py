from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable

from services.alert_sync.app.context import SyncContext
from services.alert_sync.app.errors import SyncCancelled, SyncFailedError
from services.alert_sync.app.scheduler import (
    TRIGGER_MANUAL,
    TRIGGER_SCHEDULED,
    SyncScheduler,
)
from services.alert_sync.app.sync import AlertSynchronizer, SyncReport
from services.alert_sync.tests.fakes import utc


class ScriptedSynchronizer(AlertSynchronizer):
    """Synchronizer whose passes run a supplied coroutine instead of real I/O."""

    def __init__(self, behaviour: Callable[[SyncContext], Awaitable[None]] | None = None) -> None:
        self.behaviour = behaviour
        self.contexts: list[SyncContext] = []
        self.calls = 0

    async def perform_sync(self, ctx: SyncContext, *, pass_id: str | None = None) -> SyncReport:
        self.calls += 1
        self.contexts.append(ctx)
        if self.behaviour is not None:
            await self.behaviour(ctx)
        return SyncReport(pass_id=pass_id or f"pass-{self.calls}", started_at=utc(2024, 5, 1))


async def _wait_until_cancelled(ctx: SyncContext) -> None:
    while True:
        await ctx.sleep(60)


def test_trigger_now_runs_a_manual_pass() -> None:
    synchronizer = ScriptedSynchronizer()
    scheduler = SyncScheduler(synchronizer, interval=60)

    async def _run():
        return await scheduler.trigger_now()

    report = asyncio.run(_run())

    assert synchronizer.calls == 1
    assert isinstance(report, SyncReport)
    assert scheduler.active_passes == 0


def test_failed_pass_returns_none() -> None:
    async def _fail(ctx: SyncContext) -> None:
        raise SyncFailedError("failed to fetch alerts from upstream")

    scheduler = SyncScheduler(ScriptedSynchronizer(_fail), interval=60)

    assert asyncio.run(scheduler.run_pass(TRIGGER_MANUAL)) is None
    assert scheduler.active_passes == 0


def test_unexpected_error_is_contained() -> None:
    async def _crash(ctx: SyncContext) -> None:
        raise RuntimeError("boom")

    scheduler = SyncScheduler(ScriptedSynchronizer(_crash), interval=60)

    assert asyncio.run(scheduler.run_pass(TRIGGER_MANUAL)) is None


def test_pass_deadline_cancels_pass() -> None:
    synchronizer = ScriptedSynchronizer(_wait_until_cancelled)
    scheduler = SyncScheduler(synchronizer, interval=60, pass_timeout=0.05)

    assert asyncio.run(scheduler.run_pass(TRIGGER_MANUAL)) is None
    assert synchronizer.calls == 1


def test_exclusive_mode_skips_overlapping_scheduled_pass() -> None:
    async def _run() -> None:
        release = asyncio.Event()

        async def _gated(ctx: SyncContext) -> None:
            await release.wait()

        synchronizer = ScriptedSynchronizer(_gated)
        scheduler = SyncScheduler(synchronizer, interval=60, exclusive=True)

        manual = scheduler.trigger_now()
        await asyncio.sleep(0)
        assert scheduler.active_passes == 1

        skipped = await scheduler.run_pass(TRIGGER_SCHEDULED)
        assert skipped is None
        assert synchronizer.calls == 1

        release.set()
        assert await manual is not None

    asyncio.run(_run())


def test_overlapping_passes_run_when_not_exclusive() -> None:
    async def _run() -> None:
        release = asyncio.Event()

        async def _gated(ctx: SyncContext) -> None:
            await release.wait()

        synchronizer = ScriptedSynchronizer(_gated)
        scheduler = SyncScheduler(synchronizer, interval=60)

        first = scheduler.trigger_now()
        await asyncio.sleep(0)
        second = asyncio.create_task(scheduler.run_pass(TRIGGER_SCHEDULED))
        await asyncio.sleep(0)
        assert scheduler.active_passes == 2

        release.set()
        results = await asyncio.gather(first, second)
        assert all(result is not None for result in results)
        assert synchronizer.calls == 2

    asyncio.run(_run())


def test_stop_cancels_in_flight_pass_with_shutdown_reason() -> None:
    reasons: list[str] = []

    async def _observe(ctx: SyncContext) -> None:
        try:
            await _wait_until_cancelled(ctx)
        except SyncCancelled as exc:
            reasons.append(exc.reason)
            raise

    async def _run() -> None:
        scheduler = SyncScheduler(ScriptedSynchronizer(_observe), interval=60, shutdown_grace=5)
        await scheduler.start()
        await asyncio.sleep(0.05)
        assert scheduler.running
        assert scheduler.active_passes == 1

        loop = asyncio.get_running_loop()
        started = loop.time()
        await scheduler.stop()
        assert loop.time() - started < 1
        assert not scheduler.running
        assert scheduler.active_passes == 0

    asyncio.run(_run())

    assert reasons == ["shutdown"]


def test_stop_cancels_pass_that_ignores_shutdown_after_grace() -> None:
    async def _stubborn(ctx: SyncContext) -> None:
        await asyncio.sleep(60)

    async def _run() -> None:
        scheduler = SyncScheduler(ScriptedSynchronizer(_stubborn), interval=60)
        await scheduler.start()
        await asyncio.sleep(0.01)

        loop = asyncio.get_running_loop()
        started = loop.time()
        await scheduler.stop(grace=0.05)
        assert loop.time() - started < 1
        assert scheduler.active_passes == 0

    asyncio.run(_run())


def test_periodic_loop_runs_scheduled_passes() -> None:
    synchronizer = ScriptedSynchronizer()

    async def _run() -> None:
        scheduler = SyncScheduler(synchronizer, interval=0.05)
        await scheduler.start(initial_pass=False)
        await asyncio.sleep(0.2)
        await scheduler.stop(grace=1)

    asyncio.run(_run())

    assert synchronizer.calls >= 2


def test_start_runs_initial_pass() -> None:
    synchronizer = ScriptedSynchronizer()

    async def _run() -> None:
        scheduler = SyncScheduler(synchronizer, interval=60)
        await scheduler.start()
        await asyncio.sleep(0.01)
        await scheduler.stop(grace=1)

    asyncio.run(_run())

    assert synchronizer.calls == 1


def test_interval_is_measured_from_end_of_previous_pass() -> None:
    started: list[float] = []
    finished: list[float] = []

    async def _slow(ctx: SyncContext) -> None:
        loop = asyncio.get_running_loop()
        started.append(loop.time())
        await asyncio.sleep(0.1)
        finished.append(loop.time())

    synchronizer = ScriptedSynchronizer(_slow)

    async def _run() -> None:
        scheduler = SyncScheduler(synchronizer, interval=0.05)
        await scheduler.start(initial_pass=False)
        await asyncio.sleep(0.5)
        await scheduler.stop(grace=1)

    asyncio.run(_run())

    assert len(started) >= 2
    for previous_end, next_start in zip(finished, started[1:]):
        assert next_start - previous_end >= 0.04
