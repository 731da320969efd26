"""Confirmation screen shown after a finalized checkout.

Reads the last-order context left in session storage, opens the WhatsApp deep link
once the trigger delay has passed, and redirects home when the countdown ends.
"""
from typing import Callable, Optional

import structlog

from RestaurantCheckout.models import LastOrderContext
from RestaurantCheckout.storage import SessionContext
from RestaurantCheckout.timers import Scheduler, TimerHandle

logger = structlog.get_logger()

HOME_PATH = "/"
TICK_MS = 1000

LinkOpener = Callable[[str], None]


class ConfirmationScreen:

    def __init__(self,
                 session_context: SessionContext,
                 scheduler: Scheduler,
                 open_link: LinkOpener,
                 navigator: Callable[[str], None]):
        self.session_context = session_context
        self.scheduler = scheduler
        self.open_link = open_link
        self.navigator = navigator
        self.context: Optional[LastOrderContext] = None
        self.countdown = 0
        self._tick: Optional[TimerHandle] = None
        self._whatsapp_timer: Optional[TimerHandle] = None
        self._done = False

    @property
    def title(self) -> str:
        if self.context is not None and self.context.code:
            return f"Pedido {self.context.code}"
        return "Tu pedido"

    def start(self) -> Optional[LastOrderContext]:
        """Load the context; without one the customer is sent home right away."""
        self.context = self.session_context.load_last_order()
        if self.context is None:
            self._leave()
            return None
        now = self.scheduler.epoch_ms()
        self.countdown = self.context.remaining_seconds(now)
        if self.countdown <= 0:
            self._leave()
            return self.context
        self._tick = self.scheduler.call_every(TICK_MS, self._on_tick)
        if self.context.whatsapp_opened_at is None:
            trigger_at = self.context.redirect_started_at + self.context.whatsapp_trigger_delay_ms
            self._whatsapp_timer = self.scheduler.call_later(max(0, trigger_at - now), self.open_whatsapp)
        return self.context

    def open_whatsapp(self) -> None:
        self._whatsapp_timer = None
        if self._done or self.context is None or self.context.whatsapp_opened_at is not None:
            return
        self.open_link(self.context.whatsapp_url)
        self.context = self.session_context.mark_whatsapp_opened(self.scheduler.epoch_ms()) or self.context
        logger.info("whatsapp_opened", order_code=self.context.code)

    def _on_tick(self) -> None:
        if self._done or self.context is None:
            return
        self.countdown = self.context.remaining_seconds(self.scheduler.epoch_ms())
        if self.countdown <= 0:
            self._leave()

    def _leave(self) -> None:
        self.close()
        self.session_context.clear_last_order()
        self.navigator(HOME_PATH)

    def close(self) -> None:
        self._done = True
        for handle in (self._tick, self._whatsapp_timer):
            if handle is not None:
                handle.cancel()
        self._tick = self._whatsapp_timer = None
