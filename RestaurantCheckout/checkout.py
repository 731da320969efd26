"""Checkout state machine.

EDITING -> SUBMITTING -> FINALIZED | FAILED

A ``CheckoutSession`` owns the form, the upsell trigger and the submit flow of one
visit to the checkout screen. Guests and registered customers share the state shape
but diverge on submit:

- guest: the order is created in the background, the message and deep link are
  built from local data, and navigation waits for the guest floor.
- registered: order creation is awaited (a failure aborts the submit and re-enables
  the form), the message carries the order code, profile and loyalty sync run in the
  background, and navigation waits for the registered floor.

A purchase that unlocks the loyalty bonus opens the session's ``bonus`` prompt.

The cart and the form are cleared only after navigation to the confirmation screen
succeeded. After ``close`` no timer, awaited call or background completion touches
the session state again.
"""
import re
from dataclasses import replace
from datetime import datetime, timezone
from decimal import Decimal
from typing import Callable, List, Optional

import structlog

from RestaurantCheckout.api import OrdersApiClient
from RestaurantCheckout.bonus import BonusPrompt, is_bonus_threshold
from RestaurantCheckout.cart import CartStore
from RestaurantCheckout.config import Settings
from RestaurantCheckout.enums import CheckoutMode, CheckoutPhase
from RestaurantCheckout.exceptions import CheckoutException, OrderSubmissionFailed
from RestaurantCheckout.formatting import format_ars, format_order_code, wa_link
from RestaurantCheckout.messages import build_order_message
from RestaurantCheckout.models import (
    CartLine,
    CustomerIdentity,
    LastOrderContext,
    OrderForm,
    ResolvedDiscount,
    StoredPurchase,
    StoredPurchaseItem,
)
from RestaurantCheckout.reconciliation import PROFILE_ADDRESS_LABEL
from RestaurantCheckout.repository import CatalogRepository
from RestaurantCheckout.schemas import (
    AddressPayload,
    CreateOrderPayload,
    DeliveryPayload,
    OrderItemPayload,
    UpdateProfilePayload,
)
from RestaurantCheckout.service import DiscountService
from RestaurantCheckout.storage import CustomerStorage, SessionContext
from RestaurantCheckout.tasks import BackgroundTasks, critical
from RestaurantCheckout.timers import Scheduler, TimerHandle
from RestaurantCheckout.upsell import UpsellController

logger = structlog.get_logger()

CONFIRMATION_PATH = "/thanks"
EMAIL_PATTERN = re.compile(r".+@.+\..+")
PREFILL_NOTICE = "Dirección predeterminada cargada automáticamente. Podés editarla antes de enviar."
GUEST_PROMO_NOTICE = "Registrate para acceder al deshuesado de cortesía."
SUBMIT_FAILED_NOTICE = "No pudimos registrar tu pedido. Revisá tu conexión y probá nuevamente."

Navigator = Callable[[str], None]

FORM_FIELDS = ("customer_name", "delivery_address", "email", "phone_number", "payment_method")


class CheckoutView:
    """UI hooks the checkout drives. The defaults do nothing."""

    def blur_field(self, field: str) -> None:
        pass

    def scroll_to_form_top(self) -> bool:
        """Scroll the form into view. Returns False when there is no form to scroll to."""
        return False

    def focus_field(self, field: str) -> bool:
        """Give focus back to ``field``. Returns False when the field is gone."""
        return False

    def alert(self, message: str) -> None:
        pass


class CheckoutSession:
    """One visit to the checkout screen.

    Args:
        cart: The customer's cart
        discounts: Owner of the applied discount
        upsell: Upsell prompt controller for this session
        api: Ordering API client
        customer_storage: Per-customer device storage, bound to the checkout identity
        session_context: Session-only values shared with the confirmation screen
        catalog: Product catalog, provides the promo item
        scheduler: Clock and timers
        navigator: Called with the path of the next screen
        settings: Store number and timing constants
        view: UI hooks (blur, scroll, focus, alerts)
        background: Owner of the fire-and-forget calls
        bonus: Loyalty bonus prompt; built from the scheduler and storage when omitted
    """

    def __init__(self,
                 cart: CartStore,
                 discounts: DiscountService,
                 upsell: UpsellController,
                 api: OrdersApiClient,
                 customer_storage: CustomerStorage,
                 session_context: SessionContext,
                 catalog: CatalogRepository,
                 scheduler: Scheduler,
                 navigator: Navigator,
                 settings: Optional[Settings] = None,
                 view: Optional[CheckoutView] = None,
                 background: Optional[BackgroundTasks] = None,
                 bonus: Optional[BonusPrompt] = None):
        self.cart = cart
        self.discounts = discounts
        self.upsell = upsell
        self.api = api
        self.customer_storage = customer_storage
        self.session_context = session_context
        self.catalog = catalog
        self.scheduler = scheduler
        self.navigator = navigator
        self.settings = settings or Settings()
        self.view = view or CheckoutView()
        self.background = background or BackgroundTasks()
        self.bonus = bonus or BonusPrompt(scheduler, customer_storage)

        self.form = OrderForm()
        self.phase = CheckoutPhase.EDITING
        self.notice: Optional[str] = None
        self.prefill_notice: Optional[str] = None
        self.last_message: Optional[str] = None
        self.last_link: Optional[str] = None

        self._closed = False
        self._promo_triggered = False
        self._form_interacted = False
        self._pending_focus: Optional[str] = None
        self._upsell_was_open = False
        self._show_timer: Optional[TimerHandle] = None
        self._auto_upsell_timer: Optional[TimerHandle] = None
        self._focus_timer: Optional[TimerHandle] = None
        self._last_subtotal = cart.subtotal
        self._unsubscribers: List[Callable[[], None]] = []

    # -- derived state -------------------------------------------------------

    @property
    def identity(self) -> CustomerIdentity:
        return self.customer_storage.identity

    @property
    def mode(self) -> CheckoutMode:
        return self.identity.mode

    @property
    def is_submitting(self) -> bool:
        return self.phase == CheckoutPhase.SUBMITTING

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def subtotal(self) -> Decimal:
        return self.cart.subtotal

    @property
    def discount_amount(self) -> Decimal:
        return self.discounts.amount

    @property
    def net_total(self) -> Decimal:
        return self.discounts.net_total(self.cart.subtotal)

    @property
    def total_label(self) -> str:
        return format_ars(self.net_total)

    @property
    def is_form_valid(self) -> bool:
        if self.cart.is_empty:
            return False
        return bool(
            self.form.customer_name.strip()
            and self.form.delivery_address.strip()
            and EMAIL_PATTERN.search(self.form.email.strip())
            and self.form.payment_method.strip()
        )

    @property
    def can_submit(self) -> bool:
        return not self._closed and not self.is_submitting and self.phase != CheckoutPhase.FINALIZED and self.is_form_valid

    # -- lifecycle -----------------------------------------------------------

    async def start(self) -> None:
        """Prefill the form, wire the listeners and run the discount lifecycle."""
        self._promo_triggered = False
        self._pending_focus = None
        self.upsell.reset()
        self._unsubscribers.append(self.cart.subscribe(self._on_cart_change))
        self._unsubscribers.append(self.upsell.subscribe(self._on_upsell_change))

        restored = self._restore_profile()
        if restored and self._upsell_allowed():
            self._auto_upsell_timer = self.scheduler.call_later(
                self.settings.timings.restored_profile_upsell_ms, self._auto_show_promo
            )
        await self._start_discounts()

    def close(self) -> None:
        """Tear down: cancel every timer and detach from the shared stores."""
        if self._closed:
            return
        self._closed = True
        for handle in (self._show_timer, self._auto_upsell_timer, self._focus_timer):
            if handle is not None:
                handle.cancel()
        self._show_timer = self._auto_upsell_timer = self._focus_timer = None
        for unsubscribe in self._unsubscribers:
            unsubscribe()
        self._unsubscribers.clear()
        self.upsell.close()
        self.bonus.close()

    def _restore_profile(self) -> bool:
        profile = self.customer_storage.load_profile(self.form)
        if profile is None:
            self.prefill_notice = None
            return False
        self.form = profile
        self.prefill_notice = PREFILL_NOTICE
        return True

    async def _start_discounts(self) -> None:
        if not self.identity.is_registered:
            return
        await self.discounts.load_codes(self.identity.backend_user_id)
        if self._closed:
            return
        pending_code = self.session_context.pop_discount_to_apply()
        if pending_code:
            self.discounts.apply_code(pending_code, self.cart.subtotal)
        else:
            self.discounts.revalidate(self.cart.subtotal)

    # -- form ----------------------------------------------------------------

    def update_field(self, field: str, value: str) -> None:
        if self._closed or field not in FORM_FIELDS:
            return
        if field == "payment_method":
            value = value.strip()
        setattr(self.form, field, value)

    def apply_discount_code(self, raw: str) -> ResolvedDiscount:
        return self.discounts.apply_code(raw, self.cart.subtotal)

    def remove_discount(self) -> None:
        self.discounts.clear()

    def _on_cart_change(self, cart: CartStore) -> None:
        if self._closed or cart.subtotal == self._last_subtotal:
            return
        self._last_subtotal = cart.subtotal
        self.discounts.revalidate(cart.subtotal)

    # -- upsell --------------------------------------------------------------

    def _upsell_allowed(self) -> bool:
        return (
            not self._closed
            and self.identity.is_registered
            and self.catalog.promo_item() is not None
            and not self.upsell.suppressed
        )

    def handle_form_focus(self, field: str) -> bool:
        """First focus on a form field: blur it, scroll to the form and show the promo.

        Returns:
            bool: True when the prompt was scheduled
        """
        self._form_interacted = True
        if not self._upsell_allowed() or self._promo_triggered or self.upsell.is_open:
            return False
        self._promo_triggered = True
        self._pending_focus = field
        self.view.blur_field(field)
        scrolled = self.view.scroll_to_form_top()
        timings = self.settings.timings
        delay = timings.upsell_show_delay_ms if scrolled else timings.upsell_show_delay_no_scroll_ms
        if self._show_timer is not None:
            self._show_timer.cancel()
        self._show_timer = self.scheduler.call_later(delay, self._show_promo)
        return True

    def _show_promo(self) -> None:
        self._show_timer = None
        if self._closed:
            return
        promo = self.catalog.promo_item()
        if promo is not None:
            self.upsell.show(promo)

    def _auto_show_promo(self) -> None:
        self._auto_upsell_timer = None
        if self._closed or self._form_interacted or self._promo_triggered:
            return
        self._form_interacted = True
        self._promo_triggered = True
        self._show_promo()

    def accept_upsell(self) -> bool:
        """Add the promo item for free. Guests are told to register and the prompt is cancelled."""
        if self._closed or not self.upsell.is_open:
            return False
        if not self.identity.is_registered:
            self.view.alert(GUEST_PROMO_NOTICE)
            self.upsell.cancel()
            return False
        promo = self.catalog.promo_item()
        if promo is not None:
            self.cart.add_item(replace(promo, price=Decimal(0), original_price=promo.price))
        self.upsell.accept()
        return True

    def cancel_upsell(self) -> None:
        if self._closed:
            return
        self.upsell.cancel()

    def _on_upsell_change(self, upsell: UpsellController) -> None:
        was_open, self._upsell_was_open = self._upsell_was_open, upsell.is_open
        if was_open and not upsell.is_open:
            self._resume_pending_focus()

    def _resume_pending_focus(self) -> None:
        field, self._pending_focus = self._pending_focus, None
        if field is None or self._closed:
            return
        if self._focus_timer is not None:
            self._focus_timer.cancel()
        self._focus_timer = self.scheduler.call_later(
            self.settings.timings.focus_resume_delay_ms, lambda: self._focus(field)
        )

    def _focus(self, field: str) -> None:
        self._focus_timer = None
        if not self._closed:
            self.view.focus_field(field)

    # -- submit --------------------------------------------------------------

    def build_message(self, order_code: Optional[str] = None) -> str:
        return build_order_message(
            lines=self.cart.items,
            form=self.form,
            identity=self.identity if (self.identity.display_name or self.identity.email) else None,
            total_label=self.total_label,
            promo_accepted=self.upsell.accepted,
            discount_code=self.discounts.code,
            discount_amount=self.discounts.amount,
            order_code=order_code,
        )

    def build_order_payload(self, whatsapp_link: Optional[str] = None) -> CreateOrderPayload:
        code = self.discounts.code
        phone = self.form.phone_number.strip()
        return CreateOrderPayload(
            user_id=self.identity.backend_user_id,
            customer_name=self.form.customer_name.strip(),
            customer_email=self.form.email.strip(),
            customer_phone=phone or None,
            delivery=DeliveryPayload(address_line=self.form.delivery_address.strip()),
            payment_method=self.form.payment_method,
            items=[self._item_payload(line) for line in self.cart.items],
            total_gross=float(self.cart.subtotal),
            total_net=float(self.net_total),
            discount_code=code,
            discount_total=float(self.discounts.amount) if code else None,
            whatsapp_link=whatsapp_link,
            metadata={"checkoutMode": self.mode.value, "promoAccepted": self.upsell.accepted},
        )

    @staticmethod
    def _item_payload(line: CartLine) -> OrderItemPayload:
        original = line.original_unit_price if line.is_promotional else None
        return OrderItemPayload(
            product_id=str(line.product.id),
            label=line.product.label.strip(),
            quantity=line.quantity,
            unit_price=float(line.unit_price),
            original_unit_price=float(original) if original is not None else None,
            discount_value=float(original - line.unit_price) if original is not None else None,
            line_total=float(line.line_total),
            side=line.side,
            type=line.product.kind.value,
            metadata={"promotion": "upsell"} if original is not None else None,
        )

    def _freeze_purchase(self) -> StoredPurchase:
        placed_at = datetime.fromtimestamp(self.scheduler.epoch_ms() / 1000, tz=timezone.utc)
        return StoredPurchase(
            placed_at=placed_at.isoformat(),
            total_label=self.total_label,
            items=[
                StoredPurchaseItem(
                    product_id=str(line.product.id),
                    label=line.product.label,
                    qty=line.quantity,
                    kind=line.product.kind,
                    side=line.side,
                )
                for line in self.cart.items
            ],
        )

    async def _wait_floor(self, started_ms: float, floor_ms: int) -> None:
        remaining = max(0.0, floor_ms - (self.scheduler.monotonic_ms() - started_ms))
        if remaining > 0:
            await self.scheduler.sleep(remaining)

    async def handle_submit(self) -> bool:
        """Submit the order.

        Returns:
            bool: True when the checkout finalized and navigated to the confirmation
            screen; False when submission was not possible, failed, or the session
            was closed meanwhile
        """
        if not self.can_submit:
            return False
        self.phase = CheckoutPhase.SUBMITTING
        self.notice = None
        started_ms = self.scheduler.monotonic_ms()
        purchase = self._freeze_purchase()
        self.customer_storage.save_profile(self.form)
        log = logger.bind(mode=self.mode.value, user_id=self.identity.backend_user_id)
        log.info("checkout_submit_started", items=self.cart.count, total_net=str(self.net_total))

        if self.identity.is_registered:
            return await self._submit_registered(started_ms, purchase, log)
        return await self._submit_guest(started_ms, purchase, log)

    async def _submit_guest(self, started_ms: float, purchase: StoredPurchase, log) -> bool:
        message = self.build_message()
        link = wa_link(self.settings.whatsapp_number, message)
        # TODO: correlate the background order with the message once the API returns a guest order code
        self.background.spawn("create_guest_order", self.api.create_order(self.build_order_payload(link)))
        await self._wait_floor(started_ms, self.settings.timings.guest_floor_ms)
        if self._closed:
            return False
        timings = self.settings.timings
        return self._finalize(purchase, message, link, timings.guest_redirect_ms, timings.guest_whatsapp_delay_ms, log)

    async def _submit_registered(self, started_ms: float, purchase: StoredPurchase, log) -> bool:
        try:
            order = await critical("create_order", self.api.create_order(self.build_order_payload()))
        except OrderSubmissionFailed as error:
            if self._closed:
                return False
            self.phase = CheckoutPhase.FAILED
            self.notice = SUBMIT_FAILED_NOTICE
            log.warning("checkout_submit_failed", error=str(error))
            return False
        if self._closed:
            return False

        code = format_order_code(order.number)
        message = self.build_message(order_code=code)
        link = wa_link(self.settings.whatsapp_number, message)
        self.background.spawn("sync_customer", self._sync_customer(self.identity.backend_user_id, replace(self.form)))
        await self._wait_floor(started_ms, self.settings.timings.registered_floor_ms)
        if self._closed:
            return False
        timings = self.settings.timings
        return self._finalize(
            purchase, message, link,
            timings.registered_redirect_ms, timings.registered_whatsapp_delay_ms, log,
            code=code, number=order.number,
        )

    async def _sync_customer(self, user_id: str, form: OrderForm) -> None:
        name = form.customer_name.strip()
        first_name, *rest = name.split() or [""]
        last_name = " ".join(rest)
        address = form.delivery_address.strip()
        profile = UpdateProfilePayload(
            first_name=first_name or None,
            last_name=last_name or None,
            display_name=name or None,
            phone=form.phone_number or None,
            address=AddressPayload(line1=address, label=PROFILE_ADDRESS_LABEL) if address else None,
        )
        try:
            await self.api.update_user_profile(user_id, profile)
        except CheckoutException as error:
            logger.warning("profile_update_failed", user_id=user_id, error=str(error))

        total, unlocked = 0, False
        try:
            result = await self.api.register_purchase(user_id)
            total, unlocked = result.total_purchases, result.unlock_bonus
            logger.info("purchase_registered", user_id=user_id, total_purchases=total, unlock_bonus=unlocked)
        except CheckoutException as error:
            logger.warning("purchase_register_failed", user_id=user_id, error=str(error))
        if total <= 0:
            total = self.customer_storage.read_purchase_count() + 1
        self._record_purchase(total, unlocked)

    def _record_purchase(self, total: int, unlocked: bool = False) -> None:
        """Store the purchase counter and unlock the bonus on a threshold the API did not report."""
        self.customer_storage.write_purchase_count(total)
        if not unlocked and not is_bonus_threshold(total):
            return
        self.customer_storage.mark_pending_bonus(total)
        if not self._closed:
            self.bonus.offer(total)

    def _finalize(self,
                  purchase: StoredPurchase,
                  message: str,
                  link: str,
                  redirect_ms: int,
                  whatsapp_delay_ms: int,
                  log,
                  code: Optional[str] = None,
                  number: Optional[int] = None) -> bool:
        self.last_message = message
        self.last_link = link
        self.customer_storage.save_last_purchase(purchase)
        if self.mode == CheckoutMode.GUEST:
            self._record_purchase(self.customer_storage.read_purchase_count() + 1)
        self.session_context.save_last_order(LastOrderContext(
            mode=self.mode,
            whatsapp_url=link,
            redirect_started_at=self.scheduler.epoch_ms(),
            redirect_duration_ms=redirect_ms,
            whatsapp_trigger_delay_ms=whatsapp_delay_ms,
            code=code,
            number=number,
        ))
        try:
            self.navigator(CONFIRMATION_PATH)
        except Exception as error:
            self.phase = CheckoutPhase.FAILED
            self.notice = SUBMIT_FAILED_NOTICE
            log.error("checkout_navigation_failed", error=str(error))
            return False

        self.phase = CheckoutPhase.FINALIZED
        self.discounts.clear()
        self.cart.clear()
        self.form = OrderForm()
        log.info("checkout_finalized", order_code=code)
        return True
