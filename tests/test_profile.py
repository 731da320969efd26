"""Tests for the customer account service."""
import asyncio
from decimal import Decimal
from urllib.parse import unquote

import pytest

from conftest import FIXED_NOW, api_discount_code, user_detail

from RestaurantCheckout.enums import ShareCouponStatus
from RestaurantCheckout.exceptions import ApiError, InvalidTransition
from RestaurantCheckout.models import ProfileFormValues, ShareCoupon
from RestaurantCheckout.profile import (
    CANCEL_FAILED,
    PROFILE_LOAD_FAILED,
    PROFILE_SAVE_FAILED,
    PROFILE_SAVED,
    SIGN_IN_REQUIRED,
    CustomerAccountService,
    share_link,
)
from RestaurantCheckout.reconciliation import REORDER_UNAVAILABLE
from RestaurantCheckout.repository import UserDataRepository
from RestaurantCheckout.storage import MemoryStore, SessionContext

ENGAGEMENT = {"monthlyOrders": 1, "lifetimeOrders": 4, "lifetimeNetSales": "90000", "qualifiesForBonus": False}
ORDER = {"id": "o1", "number": 42, "status": "FULFILLED", "normalizedItems": [{"productKey": "101", "quantity": 2}]}


def _coupon(status=ShareCouponStatus.ISSUED) -> ShareCoupon:
    return ShareCoupon(id="s1", code="AMIGO-1", status=status, month=6, year=2025)


@pytest.fixture
def make_account(fake_api, catalog, cart):
    def factory(user_id="u1"):
        return CustomerAccountService(
            user_id=user_id,
            user_data=UserDataRepository(fake_api.client()),
            catalog=catalog,
            cart=cart,
            session_context=SessionContext(MemoryStore()),
            clock=lambda: FIXED_NOW,
        )

    return factory


def _user_routes(fake_api, **detail) -> None:
    fake_api.on("GET", "/users/u1", user_detail(codes=[api_discount_code("PROMO10")], **detail))
    fake_api.on("GET", "/users/u1/engagement", ENGAGEMENT)


class TestProfileLoad:

    def test_view_is_built_from_both_records(self, make_account, fake_api):
        _user_routes(fake_api, addresses=[{"id": "a1", "line1": "Calle 1", "isPrimary": True}])
        account = make_account()

        view = asyncio.run(account.load())

        assert view.values.address_line == "Calle 1"
        assert view.stats.lifetime_orders == 4
        assert view.stats.lifetime_net_sales == Decimal(90000)
        assert [active.code for active in view.discounts.active] == ["PROMO10"]
        assert account.error is None

    def test_records_are_cached_until_forced(self, make_account, fake_api):
        _user_routes(fake_api)
        account = make_account()

        async def scenario():
            await account.load()
            await account.load()
            await account.load(force=True)

        asyncio.run(scenario())

        assert len(fake_api.calls("GET", "/users/u1")) == 2

    def test_signed_out_customer_gets_a_message(self, make_account, fake_api):
        account = make_account(user_id=None)

        assert asyncio.run(account.load()) is None
        assert account.error == SIGN_IN_REQUIRED
        assert fake_api.requests == []

    def test_failed_fetch_gets_a_message(self, make_account, fake_api):
        fake_api.on("GET", "/users/u1", user_detail())
        fake_api.on("GET", "/users/u1/engagement", {"message": "down"}, status=503)
        account = make_account()

        assert asyncio.run(account.load()) is None
        assert account.error == PROFILE_LOAD_FAILED


class TestProfileSave:

    def test_saving_sends_the_update_and_reloads(self, make_account, fake_api):
        _user_routes(fake_api)
        fake_api.on("PATCH", "/users/u1/profile", status=204)
        account = make_account()

        feedback = asyncio.run(account.save(ProfileFormValues(first_name="Ana", address_line="Calle 9")))

        assert feedback.ok
        assert feedback.message == PROFILE_SAVED
        assert fake_api.body("PATCH", "/users/u1/profile") == {
            "firstName": "Ana", "address": {"line1": "Calle 9", "label": "Entrega"},
        }
        assert account.view is not None

    def test_rejected_save_reports_failure(self, make_account, fake_api):
        fake_api.on("PATCH", "/users/u1/profile", {"message": "bad"}, status=400)
        account = make_account()

        feedback = asyncio.run(account.save(ProfileFormValues(first_name="Ana")))

        assert not feedback.ok
        assert feedback.message == PROFILE_SAVE_FAILED


class TestDiscountActions:

    def test_chosen_code_is_left_for_the_next_checkout(self, make_account):
        account = make_account()

        account.choose_discount("PROMO10")

        assert account.session_context.pop_discount_to_apply() == "PROMO10"

    def test_sharing_an_issued_coupon_activates_it(self, make_account, fake_api):
        _user_routes(fake_api)
        fake_api.on("POST", "/users/u1/share-coupons/AMIGO-1/activate", {
            "id": "s1", "code": "AMIGO-1", "status": "ACTIVATED", "month": 6, "year": 2025,
            "activatedAt": "2025-06-01T12:00:00Z",
        })
        opened = []

        coupon = asyncio.run(make_account().share_coupon(_coupon(), opened.append))

        assert opened == [share_link("AMIGO-1")]
        assert "AMIGO-1" in unquote(opened[0])
        assert opened[0].startswith("https://wa.me/?text=")
        assert coupon.status == ShareCouponStatus.ACTIVATED
        assert coupon.activated_at == FIXED_NOW

    def test_sharing_again_skips_the_api(self, make_account, fake_api):
        opened = []

        coupon = asyncio.run(make_account().share_coupon(_coupon(ShareCouponStatus.REDEEMED), opened.append))

        assert coupon.status == ShareCouponStatus.REDEEMED
        assert len(opened) == 1
        assert fake_api.requests == []

    def test_failed_activation_keeps_the_coupon(self, make_account, fake_api):
        fake_api.on("POST", "/users/u1/share-coupons/AMIGO-1/activate", {"message": "no"}, status=409)

        coupon = asyncio.run(make_account().share_coupon(_coupon(), lambda url: None))

        assert coupon.status == ShareCouponStatus.ISSUED

    def test_sharing_requires_a_signed_in_customer(self, make_account):
        with pytest.raises(InvalidTransition):
            asyncio.run(make_account(user_id=None).share_coupon(_coupon(), lambda url: None))


class TestOrders:

    def test_recent_and_active_orders(self, make_account, fake_api):
        fake_api.on("GET", "/orders/user/u1", [ORDER])
        fake_api.on("GET", "/orders/user/u1/active", {"message": "down"}, status=500)
        account = make_account()

        recent = asyncio.run(account.recent_orders())
        active = asyncio.run(account.active_orders())

        assert [order.number for order in recent] == [42]
        assert active == []

    def test_repeat_a_fulfilled_order(self, make_account, fake_api, cart):
        fake_api.on("GET", "/orders/user/u1", [ORDER])
        account = make_account()
        order = asyncio.run(account.recent_orders())[0]

        result = account.reorder(order)

        assert result.ok
        assert cart.get_line("101").quantity == 2

    def test_pending_order_cannot_be_repeated(self, make_account, fake_api, cart):
        fake_api.on("GET", "/orders/user/u1", [dict(ORDER, status="PENDING")])
        account = make_account()
        order = asyncio.run(account.recent_orders())[0]

        result = account.reorder(order)

        assert not result.ok
        assert account.error == REORDER_UNAVAILABLE
        assert cart.is_empty

    def test_cancel_reports_failure(self, make_account, fake_api):
        fake_api.on("PATCH", "/orders/o1/cancel", {"message": "no"}, status=409)

        feedback = asyncio.run(make_account().cancel_order("o1", "me equivoqué"))

        assert not feedback.ok
        assert feedback.message == CANCEL_FAILED

    def test_blank_messages_are_not_sent(self, make_account, fake_api):
        assert asyncio.run(make_account().send_order_message("o1", "   ")) is None
        assert fake_api.requests == []

    def test_rejected_message_raises(self, make_account, fake_api):
        fake_api.on("POST", "/orders/o1/messages", {"message": "closed"}, status=422)

        with pytest.raises(ApiError):
            asyncio.run(make_account().send_order_message("o1", "Hola"))
