"""Cancellation handle carried through a single sync pass."""

from __future__ import annotations

import asyncio
import time
from collections.abc import Awaitable, Callable
from typing import TypeVar

from .errors import SyncCancelled

T = TypeVar("T")

DEADLINE_EXCEEDED = "deadline exceeded"
SHUTDOWN = "shutdown"


class SyncContext:
    """Combine a pass deadline, a local cancel flag and the process shutdown event.

    Network calls are raced against the context with :meth:`guard`, backoff
    waits go through :meth:`sleep`, and loops poll :meth:`raise_if_cancelled`.
    Each of them raises :class:`SyncCancelled` once the context is done.
    """

    def __init__(
        self,
        *,
        timeout: float | None = None,
        parent: asyncio.Event | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._clock = clock
        self._deadline = None if timeout is None else clock() + timeout
        self._parent = parent
        self._cancel_event = asyncio.Event()
        self._cancel_reason = "cancelled"

    def cancel(self, reason: str = "cancelled") -> None:
        if not self._cancel_event.is_set():
            self._cancel_reason = reason
            self._cancel_event.set()

    def remaining(self) -> float | None:
        if self._deadline is None:
            return None
        return max(0.0, self._deadline - self._clock())

    @property
    def cancelled(self) -> bool:
        return self._signalled() or self.remaining() == 0.0

    def raise_if_cancelled(self) -> None:
        if self.cancelled:
            raise SyncCancelled(self._reason())

    async def sleep(self, delay: float) -> None:
        """Wait ``delay`` seconds unless the context is cancelled first."""

        self.raise_if_cancelled()
        remaining = self.remaining()
        capped = remaining is not None and remaining <= delay
        timeout = remaining if capped else delay
        waiters = self._signal_waiters()
        try:
            done, _ = await asyncio.wait(
                waiters, timeout=timeout, return_when=asyncio.FIRST_COMPLETED
            )
        finally:
            for waiter in waiters:
                waiter.cancel()
        if done or capped:
            raise SyncCancelled(self._reason())

    async def guard(self, awaitable: Awaitable[T]) -> T:
        """Await ``awaitable`` and abandon it as soon as the context is cancelled."""

        self.raise_if_cancelled()
        task = asyncio.ensure_future(awaitable)
        waiters = self._signal_waiters()
        try:
            done, _ = await asyncio.wait(
                [task, *waiters],
                timeout=self.remaining(),
                return_when=asyncio.FIRST_COMPLETED,
            )
        except asyncio.CancelledError:
            task.cancel()
            raise
        finally:
            for waiter in waiters:
                waiter.cancel()
        if task in done:
            return task.result()
        task.cancel()
        await asyncio.gather(task, return_exceptions=True)
        raise SyncCancelled(self._reason())

    def _signalled(self) -> bool:
        return self._cancel_event.is_set() or (
            self._parent is not None and self._parent.is_set()
        )

    def _reason(self) -> str:
        if self._cancel_event.is_set():
            return self._cancel_reason
        if self._parent is not None and self._parent.is_set():
            return SHUTDOWN
        return DEADLINE_EXCEEDED

    def _signal_waiters(self) -> list[asyncio.Future[bool]]:
        events = [self._cancel_event]
        if self._parent is not None:
            events.append(self._parent)
        return [asyncio.ensure_future(event.wait()) for event in events]


__all__ = ["DEADLINE_EXCEEDED", "SHUTDOWN", "SyncContext"]
