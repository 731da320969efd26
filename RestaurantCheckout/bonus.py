"""Loyalty bonus prompt.

IDLE -> PRE -> COUNTDOWN -> REWARD -> IDLE

A purchase unlocks the bonus when the API says so or, failing that, when the purchase
counter lands on a bonus threshold. The unlock is persisted as a pending bonus marker
first, so a customer who leaves before claiming it still sees it in the account
summary. Starting the countdown or redeeming clears the marker; "later" keeps it.
"""
from typing import Callable, List, Optional

import structlog

from RestaurantCheckout.enums import BonusStage
from RestaurantCheckout.storage import CustomerStorage
from RestaurantCheckout.timers import Scheduler, TimerPair

logger = structlog.get_logger()

BONUS_COUNTDOWN_START = 60
TICK_MS = 1000

BonusListener = Callable[["BonusPrompt"], None]


def is_bonus_threshold(count: int) -> bool:
    return count >= 3 and (count % 7 == 3 or count % 7 == 0)


class BonusPrompt:
    """Stages of the bonus claim for one checkout session.

    Args:
        scheduler: Clock and timers
        customer_storage: Where the pending bonus marker lives
        countdown_start: Seconds between starting the countdown and the reward
    """

    def __init__(self, scheduler: Scheduler, customer_storage: CustomerStorage,
                 countdown_start: int = BONUS_COUNTDOWN_START):
        self.customer_storage = customer_storage
        self._timers = TimerPair(scheduler)
        self._countdown_start = countdown_start
        self._listeners: List[BonusListener] = []
        self._closed = False
        self.stage = BonusStage.IDLE
        self.countdown = countdown_start
        self.total_purchases: Optional[int] = None

    @property
    def active(self) -> bool:
        return self.stage != BonusStage.IDLE

    def subscribe(self, listener: BonusListener) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def offer(self, total_purchases: int) -> bool:
        """Show the bonus for ``total_purchases``. Returns False when closed or already showing."""
        if self._closed or self.active:
            return False
        self.total_purchases = total_purchases
        self._move(BonusStage.PRE)
        return True

    def start_countdown(self) -> None:
        if self._closed or self.stage != BonusStage.PRE:
            return
        self.customer_storage.clear_pending_bonus()
        self.countdown = self._countdown_start
        self._timers.start(TICK_MS, self._on_tick, self._countdown_start * TICK_MS, self._on_timeout)
        self._move(BonusStage.COUNTDOWN)

    def redeem(self) -> None:
        if self._closed or not self.active:
            return
        self._timers.cancel()
        self.customer_storage.clear_pending_bonus()
        logger.info("bonus_redeemed", total_purchases=self.total_purchases)
        self._finish()

    def later(self) -> None:
        """Postpone the claim. The marker is written again so the summary keeps showing it."""
        if self._closed or not self.active:
            return
        self._timers.cancel()
        if self.total_purchases:
            self.customer_storage.mark_pending_bonus(self.total_purchases)
        logger.info("bonus_postponed", total_purchases=self.total_purchases)
        self._finish()

    def close(self) -> None:
        self._timers.cancel()
        self._closed = True
        self._listeners.clear()

    def _finish(self) -> None:
        self.total_purchases = None
        self.countdown = self._countdown_start
        self._move(BonusStage.IDLE)

    def _move(self, stage: BonusStage) -> None:
        self.stage = stage
        logger.debug("bonus_stage_changed", stage=stage.value)
        for listener in list(self._listeners):
            listener(self)

    def _on_tick(self) -> None:
        if self._closed or self.stage != BonusStage.COUNTDOWN:
            return
        self.countdown = max(self.countdown - 1, 0)

    def _on_timeout(self) -> None:
        if self._closed or self.stage != BonusStage.COUNTDOWN:
            return
        self._timers.cancel()
        self.countdown = 0
        self._move(BonusStage.REWARD)
