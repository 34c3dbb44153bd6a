"""Delayed and periodic callbacks for one round, with bulk cancellation.

Every callback a round needs goes through a ``TimingController``; the
controller remembers each handle it hands out so ``cancel_all`` can drop the
whole chain at once. The clock and the delayed-call primitive come from an
injected ``Scheduler`` so tests can drive time by hand.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Callable, Protocol

logger = logging.getLogger(__name__)

Callback = Callable[[], None]


class Cancellable(Protocol):
    def cancel(self) -> None: ...


class Scheduler(Protocol):
    def now(self) -> float:
        """Current time in milliseconds."""

    def call_later(self, delay_ms: float, callback: Callback) -> Cancellable: ...


class AsyncioScheduler:
    """Scheduler backed by the running asyncio event loop."""

    def __init__(self, loop: asyncio.AbstractEventLoop | None = None):
        self._loop = loop

    def _event_loop(self) -> asyncio.AbstractEventLoop:
        return self._loop or asyncio.get_running_loop()

    def now(self) -> float:
        return self._event_loop().time() * 1000

    def call_later(self, delay_ms: float, callback: Callback) -> asyncio.TimerHandle:
        return self._event_loop().call_later(max(delay_ms, 0) / 1000, callback)


def shuffle_duration_ms(stage: int) -> int:
    return min(9800, 3000 + stage * 650)


def shuffle_interval_ms(stage: int) -> int:
    return max(130, 620 - stage * 45)


def progress_ratio(started_at: float, duration_ms: float, now: float) -> float:
    if duration_ms <= 0:
        return 100.0
    return min(100.0, 100 * (now - started_at) / duration_ms)


class _OnceHandle:
    def __init__(self, controller: TimingController, callback: Callback):
        self._controller = controller
        self._callback = callback
        self._pending: Cancellable | None = None
        self.cancelled = False

    def _fire(self) -> None:
        self._controller._forget(self)
        if not self.cancelled:
            self._callback()

    def cancel(self) -> None:
        self.cancelled = True
        self._controller._forget(self)
        if self._pending is not None:
            self._pending.cancel()
            self._pending = None


class _RepeatingHandle:
    def __init__(self, controller: TimingController, interval_ms: float, callback: Callback):
        self._controller = controller
        self._interval_ms = interval_ms
        self._callback = callback
        self._pending: Cancellable | None = None
        self.cancelled = False

    def _arm(self) -> None:
        self._pending = self._controller._scheduler.call_later(self._interval_ms, self._fire)

    def _fire(self) -> None:
        if self.cancelled:
            return
        # Re-arm before running so a cancel issued by the callback also drops the next tick.
        self._arm()
        self._callback()

    def cancel(self) -> None:
        self.cancelled = True
        self._controller._forget(self)
        if self._pending is not None:
            self._pending.cancel()
            self._pending = None


class TimingController:
    def __init__(self, scheduler: Scheduler):
        self._scheduler = scheduler
        self._handles: set[_OnceHandle | _RepeatingHandle] = set()

    def now(self) -> float:
        return self._scheduler.now()

    @property
    def pending(self) -> int:
        return len(self._handles)

    def schedule_once(self, delay_ms: float, callback: Callback) -> Cancellable:
        handle = _OnceHandle(self, callback)
        handle._pending = self._scheduler.call_later(delay_ms, handle._fire)
        self._handles.add(handle)
        return handle

    def schedule_repeating(self, interval_ms: float, callback: Callback) -> Cancellable:
        if interval_ms <= 0:
            raise ValueError(f"repeating interval must be positive, got {interval_ms}")
        handle = _RepeatingHandle(self, interval_ms, callback)
        handle._arm()
        self._handles.add(handle)
        return handle

    def cancel_all(self) -> None:
        handles, self._handles = self._handles, set()
        for handle in handles:
            handle.cancel()
        if handles:
            logger.debug("Cancelled %d scheduled callback(s)", len(handles))

    def _forget(self, handle: _OnceHandle | _RepeatingHandle) -> None:
        self._handles.discard(handle)
