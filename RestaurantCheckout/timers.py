"""Timer primitives over the asyncio event loop.

Components never call ``loop.call_later`` or ``asyncio.sleep`` directly; they receive a
``Scheduler`` so tests can drive time by hand. Every timer returned here can be
cancelled explicitly, and cancelling twice is harmless.
"""
import asyncio
import time
from typing import Callable, List, Optional


class TimerHandle:
    """Cancellable handle of a scheduled callback."""

    def __init__(self, cancel: Callable[[], None]):
        self._cancel = cancel
        self.cancelled = False

    def cancel(self) -> None:
        if not self.cancelled:
            self.cancelled = True
            self._cancel()


class Scheduler:
    """Clock and timer source. Times are milliseconds."""

    def monotonic_ms(self) -> float:
        raise NotImplementedError

    def epoch_ms(self) -> int:
        raise NotImplementedError

    def call_later(self, delay_ms: float, callback: Callable[[], None]) -> TimerHandle:
        raise NotImplementedError

    async def sleep(self, delay_ms: float) -> None:
        raise NotImplementedError

    def call_every(self, interval_ms: float, callback: Callable[[], None]) -> TimerHandle:
        """Run ``callback`` every ``interval_ms`` until the returned handle is cancelled."""
        current: List[Optional[TimerHandle]] = [None]
        handle = TimerHandle(lambda: current[0].cancel() if current[0] else None)

        def fire() -> None:
            if handle.cancelled:
                return
            current[0] = self.call_later(interval_ms, fire)
            callback()

        current[0] = self.call_later(interval_ms, fire)
        return handle


class LoopScheduler(Scheduler):
    """Scheduler backed by the running asyncio loop."""

    def monotonic_ms(self) -> float:
        return asyncio.get_running_loop().time() * 1000

    def epoch_ms(self) -> int:
        return int(time.time() * 1000)

    def call_later(self, delay_ms: float, callback: Callable[[], None]) -> TimerHandle:
        handle = asyncio.get_running_loop().call_later(max(0.0, delay_ms) / 1000, callback)
        return TimerHandle(handle.cancel)

    async def sleep(self, delay_ms: float) -> None:
        await asyncio.sleep(max(0.0, delay_ms) / 1000)


class TimerPair:
    """A countdown tick and an absolute timeout owned together.

    Both are cancelled by ``cancel``; starting a new pair cancels the previous one.
    """

    def __init__(self, scheduler: Scheduler):
        self._scheduler = scheduler
        self._tick: Optional[TimerHandle] = None
        self._timeout: Optional[TimerHandle] = None

    @property
    def active(self) -> bool:
        return self._tick is not None or self._timeout is not None

    def start(self,
              tick_ms: float,
              on_tick: Callable[[], None],
              timeout_ms: float,
              on_timeout: Callable[[], None]) -> None:
        self.cancel()
        self._tick = self._scheduler.call_every(tick_ms, on_tick)
        self._timeout = self._scheduler.call_later(timeout_ms, on_timeout)

    def cancel(self) -> None:
        if self._tick is not None:
            self._tick.cancel()
            self._tick = None
        if self._timeout is not None:
            self._timeout.cancel()
            self._timeout = None
