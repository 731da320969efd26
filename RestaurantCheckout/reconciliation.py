"""Reconciliation between remote records and local state.

Maps a remote order's items back to catalog products (to repeat the order) and a
remote user detail record to editable profile values, discount summaries and
profile statistics.
"""
from datetime import datetime
from typing import List, NamedTuple, Optional

from RestaurantCheckout.cart import CartStore
from RestaurantCheckout.discounts import build_history, history_totals, list_active
from RestaurantCheckout.enums import OrderStatus
from RestaurantCheckout.models import (
    DiscountSnapshot,
    OrderProductMatch,
    ProfileFormValues,
    ProfileStats,
    ReorderResult,
    to_money,
)
from RestaurantCheckout.repository import CatalogRepository
from RestaurantCheckout.schemas import AddressPayload, ApiOrder, ApiUserDetail, ApiUserEngagement, UpdateProfilePayload

REORDERABLE_STATUSES = (OrderStatus.CONFIRMED, OrderStatus.FULFILLED)
REORDER_UNAVAILABLE = "Algunos productos ya no están disponibles para repetir este pedido."
PROFILE_ADDRESS_LABEL = "Entrega"


class OrderItemReference(NamedTuple):
    product_key: Optional[str]
    quantity: int
    side: Optional[str]


def order_item_references(order: ApiOrder) -> List[OrderItemReference]:
    """Item references of ``order``; normalized items win over the metadata snapshot."""
    if order.normalized_items:
        return [
            OrderItemReference(item.product_key, item.quantity, item.side)
            for item in order.normalized_items
        ]
    items = order.metadata.items if order.metadata else []
    return [OrderItemReference(item.product_id, item.quantity, item.side) for item in items]


def map_order_items(order: ApiOrder, catalog: CatalogRepository) -> List[OrderProductMatch]:
    """Resolve every usable item of ``order``, skipping missing keys, zero quantities and unknown products."""
    matches: List[OrderProductMatch] = []
    for reference in order_item_references(order):
        if not reference.product_key or reference.quantity <= 0:
            continue
        product = catalog.find_product(reference.product_key)
        if product is None:
            continue
        matches.append(OrderProductMatch(product=product, quantity=reference.quantity, side=reference.side or None))
    return matches


def can_reorder(order: ApiOrder, catalog: CatalogRepository) -> bool:
    if order.status not in REORDERABLE_STATUSES:
        return False
    references = order_item_references(order)
    if not references:
        return False
    return all(
        reference.product_key
        and reference.quantity > 0
        and catalog.find_product(reference.product_key) is not None
        for reference in references
    )


def map_order_to_reorderable(order: ApiOrder, catalog: CatalogRepository) -> List[OrderProductMatch]:
    """All of the order's products, or nothing when any item does not resolve."""
    if not can_reorder(order, catalog):
        return []
    return map_order_items(order, catalog)


def reorder_into_cart(order: ApiOrder, catalog: CatalogRepository, cart: CartStore) -> ReorderResult:
    """Replace the cart contents with ``order``'s products.

    The cart is left untouched when the order cannot be repeated in full.
    """
    matches = map_order_to_reorderable(order, catalog)
    if not matches:
        return ReorderResult(ok=False, message=REORDER_UNAVAILABLE)
    cart.clear()
    for match in matches:
        cart.add_item(match.product, match.quantity, match.side)
    return ReorderResult(ok=True, matches=matches)


def build_profile_form_from_detail(detail: ApiUserDetail) -> ProfileFormValues:
    primary = next((address for address in detail.addresses if address.is_primary), None)
    if primary is None and detail.addresses:
        primary = detail.addresses[0]
    return ProfileFormValues(
        email=detail.email or "",
        first_name=detail.first_name or "",
        last_name=detail.last_name or "",
        display_name=detail.display_name or detail.first_name or "",
        phone=detail.phone or "",
        address_line=primary.line1 if primary else "",
        address_notes=(primary.notes or "") if primary else "",
    )


def profile_update_from_values(values: ProfileFormValues) -> UpdateProfilePayload:
    address_line = values.address_line.strip()
    return UpdateProfilePayload(
        first_name=values.first_name.strip() or None,
        last_name=values.last_name.strip() or None,
        display_name=values.display_name.strip() or None,
        phone=values.phone.strip() or None,
        address=AddressPayload(
            line1=address_line,
            label=PROFILE_ADDRESS_LABEL,
            notes=values.address_notes.strip() or None,
        ) if address_line else None,
    )


def summarize_discounts(detail: ApiUserDetail, now: datetime) -> DiscountSnapshot:
    codes = [code.to_domain() for code in detail.discount_codes_owned]
    history = build_history(redemption.to_domain() for redemption in detail.discount_redemptions)
    coupons = [coupon.to_domain() for coupon in detail.share_coupons]
    coupons.sort(key=lambda coupon: coupon.code)
    coupons.sort(key=lambda coupon: (coupon.year, coupon.month), reverse=True)
    total_savings, total_redemptions = history_totals(history)
    return DiscountSnapshot(
        active=list_active(codes, now),
        history=history,
        share_coupons=coupons,
        total_savings=total_savings,
        total_redemptions=total_redemptions,
    )


def build_profile_stats(engagement: ApiUserEngagement, snapshot: DiscountSnapshot) -> ProfileStats:
    lifetime_net = to_money(engagement.lifetime_net_sales)
    return ProfileStats(
        monthly_orders=engagement.monthly_orders,
        lifetime_orders=engagement.lifetime_orders,
        lifetime_net_sales=lifetime_net if lifetime_net.is_finite() else to_money(0),
        discount_usage=snapshot.total_savings,
        qualifies_for_bonus=engagement.qualifies_for_bonus,
    )
