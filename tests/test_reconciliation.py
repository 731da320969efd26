"""Tests for mapping remote orders and user records to local state."""
import math
from datetime import datetime, timezone
from decimal import Decimal

from conftest import FIXED_NOW, api_discount_code, user_detail

from RestaurantCheckout.enums import ShareCouponStatus
from RestaurantCheckout.models import ProfileFormValues
from RestaurantCheckout.reconciliation import (
    REORDER_UNAVAILABLE,
    build_profile_form_from_detail,
    build_profile_stats,
    can_reorder,
    map_order_items,
    map_order_to_reorderable,
    profile_update_from_values,
    reorder_into_cart,
    summarize_discounts,
)
from RestaurantCheckout.schemas import ApiOrder, ApiUserDetail, ApiUserEngagement


def _order(status="FULFILLED", normalized=None, metadata_items=None) -> ApiOrder:
    data = {"id": "o1", "number": 7, "status": status}
    if normalized is not None:
        data["normalizedItems"] = normalized
    if metadata_items is not None:
        data["metadata"] = {"items": metadata_items}
    return ApiOrder.model_validate(data)


class TestReorder:

    def test_normalized_items_take_precedence(self, catalog):
        order = _order(
            normalized=[{"productKey": "1", "quantity": 2, "side": "Papas fritas"}],
            metadata_items=[{"productId": "101", "quantity": 1}],
        )

        matches = map_order_items(order, catalog)

        assert [(match.product.id, match.quantity, match.side) for match in matches] == [(1, 2, "Papas fritas")]

    def test_metadata_items_are_the_fallback(self, catalog):
        order = _order(metadata_items=[{"productId": "101", "quantity": 1}, {"productId": "deshuesado", "quantity": 1}])

        matches = map_order_items(order, catalog)

        assert [match.product.id for match in matches] == [101, "deshuesado"]

    def test_unusable_items_are_skipped_when_mapping(self, catalog):
        order = _order(normalized=[
            {"productKey": None, "quantity": 1},
            {"productKey": "101", "quantity": 0},
            {"productKey": "999", "quantity": 1},
            {"productKey": "102", "quantity": 3},
        ])

        assert [match.product.id for match in map_order_items(order, catalog)] == [102]

    def test_only_confirmed_or_fulfilled_orders_can_be_repeated(self, catalog):
        items = [{"productKey": "101", "quantity": 1}]

        assert can_reorder(_order("CONFIRMED", normalized=items), catalog)
        assert can_reorder(_order("FULFILLED", normalized=items), catalog)
        assert not can_reorder(_order("PENDING", normalized=items), catalog)
        assert not can_reorder(_order("CANCELLED", normalized=items), catalog)
        assert not can_reorder(_order("FULFILLED", normalized=[]), catalog)

    def test_one_unknown_product_blocks_the_whole_order(self, catalog):
        order = _order(normalized=[{"productKey": "101", "quantity": 1}, {"productKey": "999", "quantity": 1}])

        assert map_order_to_reorderable(order, catalog) == []

    def test_reorder_replaces_the_cart(self, catalog, cart):
        cart.add_item(catalog.get_product("103"))
        order = _order(normalized=[{"productKey": "1", "quantity": 1, "side": "Ensalada"}, {"productKey": "101", "quantity": 2}])

        result = reorder_into_cart(order, catalog, cart)

        assert result.ok
        assert [line.key for line in cart.items] == ["1-Ensalada", "101"]
        assert cart.count == 3

    def test_failed_reorder_leaves_the_cart_alone(self, catalog, cart):
        cart.add_item(catalog.get_product("103"))

        result = reorder_into_cart(_order("PENDING", normalized=[{"productKey": "101", "quantity": 1}]), catalog, cart)

        assert not result.ok
        assert result.message == REORDER_UNAVAILABLE
        assert [line.key for line in cart.items] == ["103"]


class TestProfileMapping:

    def test_primary_address_is_preferred(self):
        detail = ApiUserDetail.model_validate(user_detail(
            lastName="Gómez",
            addresses=[
                {"id": "a1", "line1": "Calle 1"},
                {"id": "a2", "line1": "Calle 2", "notes": "Timbre B", "isPrimary": True},
            ],
        ))

        values = build_profile_form_from_detail(detail)

        assert values.address_line == "Calle 2"
        assert values.address_notes == "Timbre B"
        assert values.display_name == "Ana"
        assert values.last_name == "Gómez"
        assert values.phone == ""

    def test_first_address_without_a_primary(self):
        detail = ApiUserDetail.model_validate(user_detail(addresses=[{"id": "a1", "line1": "Calle 1"}]))

        assert build_profile_form_from_detail(detail).address_line == "Calle 1"

    def test_missing_fields_become_empty_strings(self):
        detail = ApiUserDetail.model_validate({"id": "u1", "email": "ana@example.com"})

        values = build_profile_form_from_detail(detail)

        assert values == ProfileFormValues(email="ana@example.com")

    def test_update_payload_trims_and_drops_empty_values(self):
        payload = profile_update_from_values(ProfileFormValues(
            first_name=" Ana ", display_name="", phone="  ", address_line=" Calle 1 ", address_notes="",
        ))

        assert payload.to_wire() == {"firstName": "Ana", "address": {"line1": "Calle 1", "label": "Entrega"}}

    def test_update_payload_without_address(self):
        assert profile_update_from_values(ProfileFormValues(first_name="Ana")).to_wire() == {"firstName": "Ana"}


class TestDiscountSummary:

    def test_snapshot_orders_coupons_and_history(self):
        detail = ApiUserDetail.model_validate(user_detail(
            codes=[api_discount_code("PROMO10"), api_discount_code("FIJO", value="500", percentage=None)],
            discountRedemptions=[
                {"id": "r1", "codeId": "c1", "valueApplied": "500", "redeemedAt": "2025-05-01T10:00:00Z",
                 "order": {"id": "o1", "number": 12}},
                {"id": "r2", "codeId": "c2", "valueApplied": "1500", "redeemedAt": "2025-05-20T10:00:00Z"},
            ],
            shareCoupons=[
                {"id": "s1", "code": "B", "status": "ISSUED", "month": 5, "year": 2025},
                {"id": "s2", "code": "A", "status": "ACTIVATED", "month": 5, "year": 2025},
                {"id": "s3", "code": "C", "status": "REDEEMED", "month": 12, "year": 2024},
                {"id": "s4", "code": "D", "status": "ISSUED", "month": 6, "year": 2025},
            ],
        ))

        snapshot = summarize_discounts(detail, FIXED_NOW)

        assert [active.code for active in snapshot.active] == ["PROMO10", "FIJO"]
        assert [coupon.code for coupon in snapshot.share_coupons] == ["D", "A", "B", "C"]
        assert snapshot.share_coupons[1].status == ShareCouponStatus.ACTIVATED
        assert [entry.id for entry in snapshot.history] == ["r2", "r1"]
        assert snapshot.history[1].order_code == "PT-00012"
        assert snapshot.total_savings == Decimal(2000)
        assert snapshot.total_redemptions == 2

    def test_expired_codes_are_not_active(self):
        expired = dict(api_discount_code("OLD"), expiresAt="2025-01-01T00:00:00Z")
        detail = ApiUserDetail.model_validate(user_detail(codes=[expired]))

        assert summarize_discounts(detail, datetime(2025, 6, 1, tzinfo=timezone.utc)).active == []


class TestProfileStats:

    def test_stats_combine_engagement_and_savings(self):
        detail = ApiUserDetail.model_validate(user_detail(discountRedemptions=[
            {"id": "r1", "valueApplied": "750", "redeemedAt": "2025-05-01T10:00:00Z"},
        ]))
        engagement = ApiUserEngagement.model_validate({
            "monthlyOrders": 2, "lifetimeOrders": 9, "lifetimeNetSales": "180000.5", "qualifiesForBonus": True,
        })

        stats = build_profile_stats(engagement, summarize_discounts(detail, FIXED_NOW))

        assert stats.monthly_orders == 2
        assert stats.lifetime_orders == 9
        assert stats.lifetime_net_sales == Decimal("180000.5")
        assert stats.discount_usage == Decimal(750)
        assert stats.qualifies_for_bonus

    def test_non_numeric_sales_become_zero(self):
        engagement = ApiUserEngagement.model_validate({"lifetimeNetSales": "NaN"})
        detail = ApiUserDetail.model_validate(user_detail())

        stats = build_profile_stats(engagement, summarize_discounts(detail, FIXED_NOW))

        assert stats.lifetime_net_sales == Decimal(0)
        assert not math.isnan(stats.lifetime_net_sales)
