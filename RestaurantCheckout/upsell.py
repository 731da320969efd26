"""Upsell prompt controller.

A single promotional prompt with an 8 second countdown. Once the customer accepts,
cancels or lets it time out, the prompt stays suppressed until ``reset``.
"""
from typing import Callable, List, Optional

import structlog

from RestaurantCheckout.enums import UpsellState
from RestaurantCheckout.models import Product
from RestaurantCheckout.timers import Scheduler, TimerPair

logger = structlog.get_logger()

COUNTDOWN_START = 8
TICK_MS = 1000

UpsellListener = Callable[["UpsellController"], None]


class UpsellController:
    """Session-scoped state machine of the upsell prompt.

    IDLE -> SHOWING -> ACCEPTED | CANCELLED_SESSION | TIMED_OUT_SESSION

    The countdown tick and the absolute timeout are owned as one ``TimerPair`` and
    are cancelled together on every transition out of SHOWING and on ``close``.
    """

    def __init__(self, scheduler: Scheduler, countdown_start: int = COUNTDOWN_START):
        self._timers = TimerPair(scheduler)
        self._countdown_start = countdown_start
        self._listeners: List[UpsellListener] = []
        self._closed = False
        self.state = UpsellState.IDLE
        self.countdown = countdown_start
        self.item: Optional[Product] = None

    @property
    def is_open(self) -> bool:
        return self.state == UpsellState.SHOWING

    @property
    def accepted(self) -> bool:
        return self.state == UpsellState.ACCEPTED

    @property
    def suppressed(self) -> bool:
        return self.state in (UpsellState.ACCEPTED, UpsellState.CANCELLED_SESSION, UpsellState.TIMED_OUT_SESSION)

    @property
    def timers_active(self) -> bool:
        return self._timers.active

    def subscribe(self, listener: UpsellListener) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def show(self, item: Product) -> bool:
        """Open the prompt for ``item``. Returns False when suppressed, closed or already open."""
        if self._closed or self.suppressed or self.is_open:
            return False
        self.item = item
        self.countdown = self._countdown_start
        self.state = UpsellState.SHOWING
        self._timers.start(TICK_MS, self._on_tick, self._countdown_start * TICK_MS, self._on_timeout)
        logger.debug("upsell_shown", item=item.key)
        self._notify()
        return True

    def accept(self) -> None:
        if self.state != UpsellState.SHOWING:
            return
        self._finish(UpsellState.ACCEPTED)

    def cancel(self) -> None:
        if self.state != UpsellState.SHOWING and self.state != UpsellState.IDLE:
            return
        self._finish(UpsellState.CANCELLED_SESSION)

    def reset(self) -> None:
        self._timers.cancel()
        self.state = UpsellState.IDLE
        self.countdown = self._countdown_start
        self.item = None
        self._notify()

    def close(self) -> None:
        """Tear down: cancel the timers and stop reacting to anything."""
        self._timers.cancel()
        self._closed = True
        self._listeners.clear()

    def _finish(self, state: UpsellState) -> None:
        self._timers.cancel()
        self.state = state
        self.countdown = self._countdown_start
        self.item = None
        logger.debug("upsell_finished", state=state.value)
        self._notify()

    def _on_tick(self) -> None:
        if self._closed or self.state != UpsellState.SHOWING:
            return
        self.countdown = max(self.countdown - 1, 0)
        self._notify()

    def _on_timeout(self) -> None:
        if self._closed or self.state != UpsellState.SHOWING:
            return
        self._finish(UpsellState.TIMED_OUT_SESSION)

    def _notify(self) -> None:
        for listener in list(self._listeners):
            listener(self)
