"""Discount resolution.

Pure functions over a snapshot of the discount codes a customer owns. Nothing here
raises on a bad code: lookups answer with a ``ResolvedDiscount`` whose outcome is
APPLIED, NOT_FOUND or ZERO_VALUE.
"""
from datetime import datetime
from decimal import Decimal, InvalidOperation
from typing import Iterable, List, Optional, Tuple

from RestaurantCheckout.enums import DiscountOutcome
from RestaurantCheckout.formatting import format_order_code
from RestaurantCheckout.models import (
    ActiveDiscount,
    DiscountCode,
    DiscountHistoryEntry,
    DiscountRedemption,
    ResolvedDiscount,
)
from RestaurantCheckout.strategy import select_strategy

ZERO = Decimal(0)


def normalize_code(raw: Optional[str]) -> str:
    return (raw or "").strip().upper()


def list_active(codes: Iterable[DiscountCode], now: datetime) -> List[ActiveDiscount]:
    """Return the codes with uses remaining that have not expired, in input order."""
    return [
        ActiveDiscount(discount=code, uses_remaining=code.uses_remaining, total_uses=code.total_uses)
        for code in codes
        if code.is_active(now)
    ]


def compute_amount(discount: DiscountCode, subtotal: Decimal) -> Decimal:
    """Amount ``discount`` takes off ``subtotal``.

    The percentage is applied when present, the fixed value otherwise. The result
    is clamped to ``[0, subtotal]``; anything that is not a finite number is 0.
    """
    if not isinstance(subtotal, Decimal) or not subtotal.is_finite() or subtotal <= ZERO:
        return ZERO
    strategy = select_strategy(discount)
    if strategy is None:
        return ZERO
    try:
        applied, amount = strategy.apply_discounts(discount, subtotal)
    except InvalidOperation:
        return ZERO
    if not applied or not isinstance(amount, Decimal) or not amount.is_finite():
        return ZERO
    return min(max(amount, ZERO), subtotal)


def find_active(codes: Iterable[DiscountCode], raw: Optional[str], now: datetime) -> Optional[DiscountCode]:
    normalized = normalize_code(raw)
    if not normalized:
        return None
    for active in list_active(codes, now):
        if normalize_code(active.code) == normalized:
            return active.discount
    return None


def resolve_by_code(codes: Iterable[DiscountCode],
                    raw: Optional[str],
                    subtotal: Decimal,
                    now: datetime) -> ResolvedDiscount:
    """Match ``raw`` (trimmed, case-insensitive) against the active codes.

    Returns:
        ResolvedDiscount: NOT_FOUND when nothing matches, ZERO_VALUE when the amount
        against ``subtotal`` is not positive, APPLIED with code and amount otherwise
    """
    discount = find_active(codes, raw, now)
    if discount is None:
        return ResolvedDiscount(outcome=DiscountOutcome.NOT_FOUND)
    code = normalize_code(discount.code)
    amount = compute_amount(discount, subtotal)
    if amount <= ZERO:
        return ResolvedDiscount(outcome=DiscountOutcome.ZERO_VALUE, code=code, discount=discount)
    return ResolvedDiscount(outcome=DiscountOutcome.APPLIED, code=code, amount=amount, discount=discount)


def net_total(subtotal: Decimal, amount: Decimal) -> Decimal:
    return max(subtotal - amount, ZERO)


def build_history(redemptions: Iterable[DiscountRedemption]) -> List[DiscountHistoryEntry]:
    """Redemption history, most recent first."""
    entries = [
        DiscountHistoryEntry(
            id=redemption.id,
            code=redemption.code,
            value_applied=redemption.value_applied,
            redeemed_at=redemption.redeemed_at,
            order_code=format_order_code(redemption.order_number) if redemption.order_number is not None else None,
        )
        for redemption in redemptions
    ]
    entries.sort(key=lambda entry: entry.redeemed_at, reverse=True)
    return entries


def history_totals(history: List[DiscountHistoryEntry]) -> Tuple[Decimal, int]:
    """Return ``(total_savings, total_redemptions)``."""
    total_savings = sum((entry.value_applied for entry in history if entry.value_applied.is_finite()), ZERO)
    return total_savings, len(history)
