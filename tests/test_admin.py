"""Tests for the admin order board and discounts overview."""
import asyncio
from datetime import datetime, timezone
from decimal import Decimal

import pytest

from conftest import FIXED_NOW, discount_code

from RestaurantCheckout.admin import (
    GRANT_FAILED,
    GRANT_INVALID_VALUE,
    GRANT_SUCCEEDED,
    AdminDiscountService,
    AdminOrderService,
    available_actions,
    build_discounts_overview,
    loyalty_label,
)
from RestaurantCheckout.enums import OrderAction, OrderStatus, ShareCouponStatus
from RestaurantCheckout.exceptions import InvalidTransition
from RestaurantCheckout.models import ShareCoupon
from RestaurantCheckout.schemas import ApiOrder

PENDING = {"id": "o1", "number": 42, "status": "PENDING"}


def _coupon(code, status, user_id=None, name=None) -> ShareCoupon:
    return ShareCoupon(id=code, code=code, status=status, month=6, year=2025,
                       user_id=user_id, user_name=name, user_email=f"{user_id}@example.com" if user_id else None)


class TestOrderBoard:

    def test_actions_per_status(self):
        assert available_actions(OrderStatus.PENDING) == (OrderAction.PREPARE, OrderAction.CONFIRM, OrderAction.CANCEL)
        assert OrderAction.PREPARE not in available_actions(OrderStatus.CONFIRMED)
        assert available_actions(OrderStatus.FULFILLED) == ()
        assert available_actions(OrderStatus.CANCELLED) == ()

    def test_pending_orders_are_listed_with_the_staff_session(self, fake_api):
        fake_api.on("GET", "/orders", {"items": [PENDING], "total": 1, "skip": 0, "take": 50})

        page = asyncio.run(AdminOrderService(fake_api.client()).pending_orders())

        request = fake_api.calls("GET", "/orders")[0]
        assert page.total == 1
        assert page.items[0].number == 42
        assert request.url.params["status"] == "PENDING"
        assert request.headers["Authorization"] == "Bearer token-1"

    def test_transition_sends_the_action(self, fake_api):
        fake_api.on("PATCH", "/orders/o1/prepare", dict(PENDING, status="PREPARING"))
        order = ApiOrder.model_validate(PENDING)

        updated = asyncio.run(AdminOrderService(fake_api.client()).transition(order, OrderAction.PREPARE))

        assert updated.status == OrderStatus.PREPARING

    def test_unavailable_transition_is_rejected_locally(self, fake_api):
        order = ApiOrder.model_validate(dict(PENDING, status="FULFILLED"))

        with pytest.raises(InvalidTransition):
            asyncio.run(AdminOrderService(fake_api.client()).transition(order, OrderAction.CANCEL))

        assert fake_api.requests == []

    def test_reply_posts_as_admin(self, fake_api):
        fake_api.on("POST", "/orders/o1/messages", {"id": "m1", "author": "ADMIN", "payload": {"message": "En camino"}})
        service = AdminOrderService(fake_api.client())

        message = asyncio.run(service.reply("o1", " En camino "))
        blank = asyncio.run(service.reply("o1", ""))

        assert message.message == "En camino"
        assert blank is None
        assert fake_api.body("POST", "/orders/o1/messages")["author"] == "ADMIN"
        assert len(fake_api.requests) == 1


class TestDiscountsOverview:

    def test_counts_balance_and_ambassadors(self):
        coupons = [
            _coupon("A", ShareCouponStatus.ISSUED, "u1", "Ana"),
            _coupon("B", ShareCouponStatus.ACTIVATED, "u1", "Ana"),
            _coupon("C", ShareCouponStatus.REDEEMED, "u2", "Beto"),
            _coupon("D", ShareCouponStatus.REDEEMED, "u2", "Beto"),
            _coupon("E", ShareCouponStatus.ACTIVATED),
        ]
        codes = [
            discount_code("FIJO", value="1500", percentage=None),
            discount_code("USADO", value="800", percentage=None, used=1),
            discount_code("PCT", value="0"),
        ]

        overview = build_discounts_overview(coupons, codes)

        assert (overview.issued, overview.activated, overview.redeemed) == (1, 2, 2)
        assert overview.available_balance == Decimal(1500)
        assert [(entry.user_id, entry.total) for entry in overview.top_ambassadors] == [("u2", 2), ("u1", 1)]
        assert overview.top_ambassadors[0].name == "Beto"

    def test_ties_keep_first_seen_order_and_cap_at_five(self):
        coupons = [_coupon(f"C{index}", ShareCouponStatus.ACTIVATED, f"u{index}") for index in range(7)]

        overview = build_discounts_overview(coupons, [])

        assert [entry.user_id for entry in overview.top_ambassadors] == ["u0", "u1", "u2", "u3", "u4"]
        assert overview.top_ambassadors[0].name == "u0@example.com"

    def test_overview_fetches_coupons_and_codes(self, fake_api):
        fake_api.on("GET", "/users/share-coupons", [
            {"id": "s1", "code": "A", "status": "REDEEMED", "month": 6, "year": 2025,
             "user": {"id": "u1", "email": "ana@example.com", "displayName": "Ana"}},
        ])
        fake_api.on("GET", "/users/discount-codes", [{"id": "d1", "code": "FIJO", "value": "2000"}])
        service = AdminDiscountService(fake_api.client(), clock=lambda: FIXED_NOW)

        overview = asyncio.run(service.overview(ShareCouponStatus.REDEEMED, active_only=True))

        assert overview.redeemed == 1
        assert overview.available_balance == Decimal(2000)
        assert overview.top_ambassadors[0].name == "Ana"
        assert fake_api.calls("GET", "/users/share-coupons")[0].url.params["status"] == "REDEEMED"


class TestLoyaltyGrant:

    def test_label_carries_month_and_year(self):
        assert loyalty_label(datetime(2025, 3, 9, tzinfo=timezone.utc)) == "Premio fidelidad 3/2025"

    def test_grant_posts_the_labelled_discount(self, fake_api):
        fake_api.on("POST", "/users/u1/discounts", {"id": "d1", "code": "FID-1", "value": "2500"})
        service = AdminDiscountService(fake_api.client(), clock=lambda: FIXED_NOW)

        ok, feedback = asyncio.run(service.grant_loyalty_discount("u1", "2500"))

        assert ok
        assert feedback == GRANT_SUCCEEDED
        assert fake_api.body("POST", "/users/u1/discounts") == {"value": 2500.0, "label": "Premio fidelidad 6/2025"}

    @pytest.mark.parametrize("value", [0, -10, "abc", None])
    def test_invalid_values_are_rejected_without_a_request(self, fake_api, value):
        service = AdminDiscountService(fake_api.client(), clock=lambda: FIXED_NOW)

        ok, feedback = asyncio.run(service.grant_loyalty_discount("u1", value))

        assert not ok
        assert feedback == GRANT_INVALID_VALUE
        assert fake_api.requests == []

    def test_rejected_grant_reports_failure(self, fake_api):
        fake_api.on("POST", "/users/u1/discounts", {"message": "forbidden"}, status=403)
        service = AdminDiscountService(fake_api.client(), clock=lambda: FIXED_NOW)

        assert asyncio.run(service.grant_loyalty_discount("u1", 1000)) == (False, GRANT_FAILED)


class TestShareCoupons:

    def test_issue_returns_domain_coupons(self, fake_api):
        fake_api.on("POST", "/users/u1/share-coupons", [
            {"id": "s1", "code": "AMIGO-1", "status": "ISSUED", "month": 6, "year": 2025},
            {"id": "s2", "code": "AMIGO-2", "status": "ISSUED", "month": 6, "year": 2025},
        ])

        coupons = asyncio.run(AdminDiscountService(fake_api.client()).issue_share_coupons("u1"))

        assert [coupon.code for coupon in coupons] == ["AMIGO-1", "AMIGO-2"]

    def test_activation_moves_an_issued_coupon_forward(self, fake_api):
        fake_api.on("POST", "/users/u1/share-coupons/AMIGO-1/activate", {
            "id": "s1", "code": "AMIGO-1", "status": "ACTIVATED", "month": 6, "year": 2025,
        })
        coupon = _coupon("AMIGO-1", ShareCouponStatus.ISSUED)

        asyncio.run(AdminDiscountService(fake_api.client()).activate_share_coupon("u1", coupon))

        assert coupon.status == ShareCouponStatus.ACTIVATED

    def test_activated_coupon_cannot_be_activated_again(self, fake_api):
        coupon = _coupon("AMIGO-1", ShareCouponStatus.ACTIVATED)

        with pytest.raises(InvalidTransition):
            asyncio.run(AdminDiscountService(fake_api.client()).activate_share_coupon("u1", coupon))

        assert fake_api.requests == []
