"""Admin console helpers: the order board and the discounts overview.

Order transitions are checked against the actions the board offers for the order's
current status before any request is sent.
"""
import asyncio
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Callable, Dict, Iterable, List, Optional, Tuple

import structlog

from RestaurantCheckout.api import OrdersApiClient
from RestaurantCheckout.enums import MessageAuthor, OrderAction, OrderStatus, ShareCouponStatus
from RestaurantCheckout.exceptions import CheckoutException, InvalidTransition
from RestaurantCheckout.models import DiscountCode, ShareCoupon, to_money
from RestaurantCheckout.schemas import ApiOrder, ApiOrderMessage, ApiOrderPage, CreateUserDiscountPayload
from RestaurantCheckout.service import utc_now

logger = structlog.get_logger()

ORDER_ACTIONS: Dict[OrderStatus, Tuple[OrderAction, ...]] = {
    OrderStatus.PENDING: (OrderAction.PREPARE, OrderAction.CONFIRM, OrderAction.CANCEL),
    OrderStatus.PREPARING: (OrderAction.CONFIRM, OrderAction.FULFILL, OrderAction.CANCEL),
    OrderStatus.CONFIRMED: (OrderAction.FULFILL, OrderAction.CANCEL),
}

TOP_AMBASSADORS = 5
LOYALTY_LABEL = "Premio fidelidad"
GRANT_INVALID_VALUE = "Ingresá un monto válido para el descuento."
GRANT_SUCCEEDED = "Asignamos un nuevo descuento de cortesía."
GRANT_FAILED = "No pudimos otorgar el descuento. Probá nuevamente."


def available_actions(status: OrderStatus) -> Tuple[OrderAction, ...]:
    return ORDER_ACTIONS.get(status, ())


def loyalty_label(now: datetime) -> str:
    return f"{LOYALTY_LABEL} {now.month}/{now.year}"


@dataclass
class Ambassador:
    user_id: str
    name: str
    email: str
    total: int = 0


@dataclass
class DiscountsOverview:
    """Share coupon counts per status, the balance still available on fixed-value
    codes and the customers who shared the most coupons."""
    issued: int = 0
    activated: int = 0
    redeemed: int = 0
    available_balance: Decimal = Decimal(0)
    top_ambassadors: List[Ambassador] = field(default_factory=list)


def build_discounts_overview(coupons: Iterable[ShareCoupon], codes: Iterable[DiscountCode]) -> DiscountsOverview:
    overview = DiscountsOverview()
    ambassadors: Dict[str, Ambassador] = {}
    for coupon in coupons:
        if coupon.status == ShareCouponStatus.ISSUED:
            overview.issued += 1
        elif coupon.status == ShareCouponStatus.ACTIVATED:
            overview.activated += 1
        elif coupon.status == ShareCouponStatus.REDEEMED:
            overview.redeemed += 1
        if not coupon.user_id:
            continue
        entry = ambassadors.setdefault(coupon.user_id, Ambassador(
            user_id=coupon.user_id,
            name=coupon.user_name or coupon.user_email or "",
            email=coupon.user_email or "",
        ))
        if coupon.status in (ShareCouponStatus.ACTIVATED, ShareCouponStatus.REDEEMED):
            entry.total += 1

    overview.available_balance = sum(
        (code.value for code in codes if code.uses_remaining > 0 and code.value.is_finite()),
        Decimal(0),
    )
    # stable sort keeps first-seen order among ties
    overview.top_ambassadors = sorted(ambassadors.values(), key=lambda entry: entry.total, reverse=True)[:TOP_AMBASSADORS]
    return overview


class AdminOrderService:
    """Order board operations for staff.

    Args:
        api: Ordering API client holding a staff session
    """

    def __init__(self, api: OrdersApiClient):
        self.api = api

    async def pending_orders(self, take: int = 50) -> ApiOrderPage:
        return await self.api.list_orders(status=OrderStatus.PENDING, take=take)

    async def list_orders(self,
                          status: Optional[OrderStatus] = None,
                          skip: Optional[int] = None,
                          take: Optional[int] = None) -> ApiOrderPage:
        return await self.api.list_orders(status=status, skip=skip, take=take)

    async def transition(self, order: ApiOrder, action: OrderAction, reason: Optional[str] = None) -> ApiOrder:
        """Apply ``action`` to ``order``.

        Raises:
            InvalidTransition: If the board does not offer ``action`` for the order's status;
                no request is sent in that case
            ApiError: If the API rejected the transition
        """
        if action not in available_actions(order.status):
            raise InvalidTransition(f"Order {order.id} in {order.status.value} cannot {action.value}")
        updated = await self.api.transition_order(order.id, action, reason)
        logger.info("order_transitioned", order_id=order.id, action=action.value, status=updated.status.value)
        return updated

    async def messages(self, order_id: str) -> List[ApiOrderMessage]:
        return await self.api.list_order_messages(order_id)

    async def reply(self, order_id: str, text: str) -> Optional[ApiOrderMessage]:
        message = text.strip()
        if not message:
            return None
        return await self.api.post_order_message(order_id, MessageAuthor.ADMIN, message)


class AdminDiscountService:
    """Discounts overview and loyalty grants.

    Args:
        api: Ordering API client holding a staff session
        clock: Source of the current time, used for the grant label
    """

    def __init__(self, api: OrdersApiClient, clock: Callable[[], datetime] = utc_now):
        self.api = api
        self._clock = clock

    async def overview(self,
                       status: Optional[ShareCouponStatus] = None,
                       active_only: bool = False) -> DiscountsOverview:
        coupons, codes = await asyncio.gather(
            self.api.list_share_coupons(status),
            self.api.list_discount_codes(active_only=active_only),
        )
        return build_discounts_overview(
            [coupon.to_domain() for coupon in coupons],
            [code.to_domain() for code in codes],
        )

    async def grant_loyalty_discount(self, user_id: str, value) -> Tuple[bool, str]:
        """Give ``user_id`` a fixed-value courtesy discount.

        Returns:
            Tuple[bool, str]: Whether the grant succeeded and the feedback to show
        """
        amount = to_money(value, default=Decimal("NaN"))
        if not amount.is_finite() or amount <= 0:
            return False, GRANT_INVALID_VALUE
        payload = CreateUserDiscountPayload(value=float(amount), label=loyalty_label(self._clock()))
        try:
            await self.api.create_user_discount(user_id, payload)
        except CheckoutException as error:
            logger.warning("loyalty_grant_failed", user_id=user_id, error=str(error))
            return False, GRANT_FAILED
        logger.info("loyalty_granted", user_id=user_id, value=str(amount))
        return True, GRANT_SUCCEEDED

    async def issue_share_coupons(self, user_id: str) -> List[ShareCoupon]:
        coupons = await self.api.issue_share_coupons(user_id)
        return [coupon.to_domain() for coupon in coupons]

    async def activate_share_coupon(self, user_id: str, coupon: ShareCoupon) -> ShareCoupon:
        """Mark ``coupon`` as shared on behalf of its owner.

        Raises:
            InvalidTransition: If the coupon is already activated or redeemed
        """
        if coupon.status != ShareCouponStatus.ISSUED:
            raise InvalidTransition(f"Share coupon {coupon.code} is already {coupon.status.value}")
        updated = await self.api.activate_share_coupon(user_id, coupon.code)
        coupon.advance(ShareCouponStatus.ACTIVATED, updated.activated_at)
        return coupon
