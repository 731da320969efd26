"""Service layer for the signed-in customer's account screens.

Loads the profile form, statistics and discount snapshot from the cached user
data, saves profile edits, shares referral coupons, repeats past orders and posts
order messages. Remote failures become user-facing feedback strings; nothing
here raises to the caller except where noted.
"""
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, List, Optional
from urllib.parse import quote

import structlog

from RestaurantCheckout import reconciliation
from RestaurantCheckout.api import OrdersApiClient
from RestaurantCheckout.cart import CartStore
from RestaurantCheckout.enums import MessageAuthor, ShareCouponStatus
from RestaurantCheckout.exceptions import CheckoutException, InvalidTransition
from RestaurantCheckout.formatting import URI_COMPONENT_SAFE
from RestaurantCheckout.models import (
    DiscountSnapshot,
    ProfileFormValues,
    ProfileStats,
    ReorderResult,
    ShareCoupon,
)
from RestaurantCheckout.repository import CatalogRepository, UserDataRepository
from RestaurantCheckout.schemas import ApiOrder, ApiOrderMessage
from RestaurantCheckout.service import utc_now
from RestaurantCheckout.storage import SessionContext

logger = structlog.get_logger()

SHARE_SITE_URL = "https://www.pollostellos.com.ar"
PROFILE_SAVED = "Guardamos tus datos correctamente."
PROFILE_SAVE_FAILED = "No pudimos guardar los cambios. Reintentá en unos segundos."
PROFILE_LOAD_FAILED = "No pudimos cargar tu perfil. Reintentá en un momento."
SIGN_IN_REQUIRED = "Necesitás iniciar sesión para ver tu perfil."
ORDERS_LOAD_FAILED = "No pudimos cargar los pedidos. Intentalo de nuevo en unos segundos."
CANCEL_FAILED = "No pudimos cancelar el pedido. Probá nuevamente."

LinkOpener = Callable[[str], None]


def share_message(code: str) -> str:
    return (
        "🔥 Probá Pollos Tello's y conseguí descuentos para tu próximo pedido. "
        f"Usá mi código {code} en {SHARE_SITE_URL}"
    )


def share_link(code: str) -> str:
    return f"https://wa.me/?text={quote(share_message(code), safe=URI_COMPONENT_SAFE)}"


@dataclass
class ProfileView:
    values: ProfileFormValues
    stats: ProfileStats
    discounts: DiscountSnapshot


@dataclass
class ActionFeedback:
    ok: bool
    message: Optional[str] = None


class CustomerAccountService:
    """Account operations for one backend user.

    Args:
        user_id: Backend identifier, None when the customer has not signed in
        user_data: Cache of the detail and engagement records
        catalog: Product catalog used to repeat orders
        cart: The customer's cart
        session_context: Receives the code chosen to apply on the next checkout
        clock: Source of the current time for discount expiry
    """

    def __init__(self,
                 user_id: Optional[str],
                 user_data: UserDataRepository,
                 catalog: CatalogRepository,
                 cart: CartStore,
                 session_context: SessionContext,
                 clock: Callable[[], datetime] = utc_now):
        self.user_id = user_id
        self.user_data = user_data
        self.catalog = catalog
        self.cart = cart
        self.session_context = session_context
        self._clock = clock
        self.view: Optional[ProfileView] = None
        self.error: Optional[str] = None

    @property
    def _api(self) -> OrdersApiClient:
        return self.user_data.api

    async def load(self, force: bool = False) -> Optional[ProfileView]:
        """Build the profile view from the cached user records.

        Returns:
            Optional[ProfileView]: The view, or None when signed out or the records
            could not be fetched (``error`` then holds the message to show)
        """
        if not self.user_id:
            self.error = SIGN_IN_REQUIRED
            return None
        try:
            records = await self.user_data.ensure_user_data(self.user_id, force=force)
        except CheckoutException as error:
            logger.warning("profile_load_failed", user_id=self.user_id, error=str(error))
            self.error = PROFILE_LOAD_FAILED
            return None
        if records is None:
            self.error = PROFILE_LOAD_FAILED
            return None
        detail, engagement = records
        snapshot = reconciliation.summarize_discounts(detail, self._clock())
        self.view = ProfileView(
            values=reconciliation.build_profile_form_from_detail(detail),
            stats=reconciliation.build_profile_stats(engagement, snapshot),
            discounts=snapshot,
        )
        self.error = None
        return self.view

    async def save(self, values: ProfileFormValues) -> ActionFeedback:
        if not self.user_id:
            return ActionFeedback(ok=False, message=SIGN_IN_REQUIRED)
        try:
            await self._api.update_user_profile(self.user_id, reconciliation.profile_update_from_values(values))
        except CheckoutException as error:
            logger.warning("profile_save_failed", user_id=self.user_id, error=str(error))
            return ActionFeedback(ok=False, message=PROFILE_SAVE_FAILED)
        await self.load(force=True)
        return ActionFeedback(ok=True, message=PROFILE_SAVED)

    def choose_discount(self, code: str) -> None:
        """Remember ``code`` so the next checkout applies it on start."""
        self.session_context.set_discount_to_apply(code)

    async def share_coupon(self, coupon: ShareCoupon, open_link: LinkOpener) -> ShareCoupon:
        """Open the share link and mark the coupon as shared.

        Already activated or redeemed coupons are shared again without calling the
        API. A failed activation is logged and the coupon is returned unchanged.

        Raises:
            InvalidTransition: If the customer is not signed in
        """
        if not self.user_id:
            raise InvalidTransition("Sharing a coupon requires a signed-in customer")
        open_link(share_link(coupon.code))
        if coupon.status != ShareCouponStatus.ISSUED:
            return coupon
        try:
            updated = await self._api.activate_share_coupon(self.user_id, coupon.code)
        except CheckoutException as error:
            logger.warning("share_coupon_activation_failed", code=coupon.code, error=str(error))
            return coupon
        coupon.advance(ShareCouponStatus.ACTIVATED, updated.activated_at)
        await self.load(force=True)
        return coupon

    async def recent_orders(self, take: int = 10) -> List[ApiOrder]:
        if not self.user_id:
            return []
        try:
            return await self._api.get_user_orders(self.user_id, take=take)
        except CheckoutException as error:
            logger.warning("orders_load_failed", user_id=self.user_id, error=str(error))
            self.error = ORDERS_LOAD_FAILED
            return []

    async def active_orders(self, take: int = 50) -> List[ApiOrder]:
        if not self.user_id:
            return []
        try:
            return await self._api.get_active_user_orders(self.user_id, take=take)
        except CheckoutException as error:
            logger.warning("active_orders_load_failed", user_id=self.user_id, error=str(error))
            return []

    def reorder(self, order: ApiOrder) -> ReorderResult:
        result = reconciliation.reorder_into_cart(order, self.catalog, self.cart)
        if not result.ok:
            self.error = result.message
        logger.info("reorder_requested", order_id=order.id, ok=result.ok)
        return result

    async def cancel_order(self, order_id: str, reason: Optional[str] = None) -> ActionFeedback:
        try:
            await self._api.cancel_order(order_id, reason)
        except CheckoutException as error:
            logger.warning("order_cancel_failed", order_id=order_id, error=str(error))
            return ActionFeedback(ok=False, message=CANCEL_FAILED)
        return ActionFeedback(ok=True)

    async def send_order_message(self, order_id: str, text: str) -> Optional[ApiOrderMessage]:
        """Post a customer message on ``order_id``. Blank messages are ignored.

        Raises:
            ApiError: If the API rejected the message
        """
        message = text.strip()
        if not message:
            return None
        return await self._api.post_order_message(order_id, MessageAuthor.USER, message)
