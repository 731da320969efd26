"""Service layer for the discount applied at checkout.

This module contains the service class that owns the single discount selected for
the current checkout. It sits between the checkout state machine and the discount
repository: it loads the customer's codes, resolves typed codes through the pure
resolution functions, and keeps the selection valid while the cart changes.
"""
from datetime import datetime, timezone
from decimal import Decimal
from typing import Callable, List, Optional

import structlog

from RestaurantCheckout import discounts
from RestaurantCheckout.enums import DiscountOutcome
from RestaurantCheckout.exceptions import CheckoutException
from RestaurantCheckout.formatting import format_ars
from RestaurantCheckout.models import DiscountCode, ResolvedDiscount
from RestaurantCheckout.repository import DiscountRepository

logger = structlog.get_logger()

# (selection, reason) -> None; selection is None after the discount was cleared
DiscountListener = Callable[[Optional[ResolvedDiscount], Optional[str]], None]

FEEDBACK_NOT_FOUND = "No encontramos un descuento activo con ese código."
FEEDBACK_ZERO_VALUE = "Ese descuento no tiene saldo para aplicar a este pedido."
FEEDBACK_CLEARED = "El descuento aplicado dejó de ser válido y se quitó del pedido."


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class DiscountService:
    """Service owning the discount applied to the current checkout.

    Exactly one discount can be selected at a time: applying a new code replaces
    the previous selection, it never stacks. Every subtotal change is followed by
    ``revalidate``, which recomputes the amount and clears the selection (notifying
    listeners) when the code stopped being usable.
    """

    def __init__(self,
                 discount_repository: Optional[DiscountRepository] = None,
                 clock: Callable[[], datetime] = utc_now):
        """Initialize the discount service.

        Args:
            discount_repository: Cached access to the customer's codes, None for guests
            clock: Source of the current time used for expiry checks
        """
        self._discount_repository = discount_repository
        self._clock = clock
        self._codes: List[DiscountCode] = []
        self._selected: Optional[ResolvedDiscount] = None
        self._listeners: List[DiscountListener] = []
        self.feedback: Optional[str] = None

    @property
    def codes(self) -> List[DiscountCode]:
        return list(self._codes)

    @property
    def selected(self) -> Optional[ResolvedDiscount]:
        return self._selected

    @property
    def code(self) -> Optional[str]:
        return self._selected.code if self._selected else None

    @property
    def amount(self) -> Decimal:
        return self._selected.amount if self._selected else Decimal(0)

    def net_total(self, subtotal: Decimal) -> Decimal:
        return discounts.net_total(subtotal, self.amount)

    def subscribe(self, listener: DiscountListener) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def set_codes(self, codes: List[DiscountCode]) -> None:
        self._codes = list(codes)

    async def load_codes(self, user_id: Optional[str], force: bool = False) -> List[DiscountCode]:
        """Fetch the customer's codes through the repository cache.

        Args:
            user_id: Backend identifier of the customer; guests have no codes
            force: Bypass the repository cache

        Returns:
            List[DiscountCode]: The snapshot now held by the service. A failed fetch
            is logged and leaves the previous snapshot in place.
        """
        if not user_id or self._discount_repository is None:
            return self.codes
        try:
            self._codes = list(await self._discount_repository.get_codes(user_id, force=force))
        except CheckoutException as error:
            logger.warning("discount_codes_unavailable", user_id=user_id, error=str(error))
        return self.codes

    def apply_code(self, raw: str, subtotal: Decimal) -> ResolvedDiscount:
        """Resolve ``raw`` against the loaded codes and select it when it applies.

        Args:
            raw: Code as typed by the customer
            subtotal: Current cart subtotal

        Returns:
            ResolvedDiscount: The resolution. Only an APPLIED result replaces the
            current selection; NOT_FOUND and ZERO_VALUE leave it unchanged.
        """
        result = discounts.resolve_by_code(self._codes, raw, subtotal, self._clock())
        if result.outcome == DiscountOutcome.APPLIED:
            self._selected = result
            self.feedback = f"Descuento {result.code} aplicado: -{format_ars(result.amount)}"
            logger.info("discount_applied", code=result.code, amount=str(result.amount))
            self._notify(result, None)
        elif result.outcome == DiscountOutcome.NOT_FOUND:
            self.feedback = FEEDBACK_NOT_FOUND
        else:
            self.feedback = FEEDBACK_ZERO_VALUE
        return result

    def revalidate(self, subtotal: Decimal) -> Optional[ResolvedDiscount]:
        """Recompute the selected discount against ``subtotal`` and the loaded codes.

        Returns:
            Optional[ResolvedDiscount]: The refreshed selection, or None when there was
            none or it was cleared because it no longer applies
        """
        if self._selected is None:
            return None
        result = discounts.resolve_by_code(self._codes, self._selected.code, subtotal, self._clock())
        if result.outcome != DiscountOutcome.APPLIED:
            logger.warning("discount_revalidation_failed", code=self._selected.code, outcome=result.outcome.value)
            self.clear(reason=FEEDBACK_CLEARED)
            return None
        if result.amount != self._selected.amount:
            self._selected = result
            self._notify(result, None)
        return self._selected

    def clear(self, reason: Optional[str] = None) -> None:
        if self._selected is None:
            return
        self._selected = None
        self.feedback = reason
        self._notify(None, reason)

    def _notify(self, selection: Optional[ResolvedDiscount], reason: Optional[str]) -> None:
        for listener in list(self._listeners):
            listener(selection, reason)
