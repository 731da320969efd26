"""Tests for discount resolution and the amount strategies."""
from datetime import timedelta
from decimal import Decimal

from conftest import FIXED_NOW, discount_code

from RestaurantCheckout import discounts
from RestaurantCheckout.enums import DiscountOutcome
from RestaurantCheckout.models import DiscountRedemption
from RestaurantCheckout.strategy import (
    FixedAmountDiscountStrategy,
    PercentageDiscountStrategy,
    select_strategy,
)


class TestComputeAmount:

    def test_percentage_of_subtotal(self):
        assert discounts.compute_amount(discount_code(percentage="10"), Decimal(24000)) == Decimal(2400)

    def test_percentage_wins_over_fixed_value(self):
        code = discount_code(value="5000", percentage="10")

        assert discounts.compute_amount(code, Decimal(24000)) == Decimal(2400)
        assert isinstance(select_strategy(code), PercentageDiscountStrategy)

    def test_fixed_value_without_percentage(self):
        code = discount_code(value="3000", percentage=None)

        assert discounts.compute_amount(code, Decimal(24000)) == Decimal(3000)
        assert isinstance(select_strategy(code), FixedAmountDiscountStrategy)

    def test_amount_is_clamped_to_subtotal(self):
        assert discounts.compute_amount(discount_code(percentage="150"), Decimal(100)) == Decimal(100)
        assert discounts.compute_amount(discount_code(value="500", percentage=None), Decimal(100)) == Decimal(100)

    def test_negative_and_non_finite_values_give_zero(self):
        assert discounts.compute_amount(discount_code(value="-50", percentage=None), Decimal(100)) == 0
        assert discounts.compute_amount(discount_code(percentage="NaN"), Decimal(100)) == 0
        assert discounts.compute_amount(discount_code(percentage="10"), Decimal("NaN")) == 0
        assert discounts.compute_amount(discount_code(percentage="10"), Decimal(0)) == 0


class TestActiveCodes:

    def test_exhausted_and_expired_codes_are_inactive(self):
        codes = [
            discount_code("LIVE"),
            discount_code("USED", used=1),
            discount_code("OLD", expires_at=FIXED_NOW - timedelta(days=1)),
            discount_code("SOON", expires_at=FIXED_NOW + timedelta(days=1), max_redemptions=3, used=1),
        ]

        active = discounts.list_active(codes, FIXED_NOW)

        assert [entry.code for entry in active] == ["LIVE", "SOON"]
        assert active[1].uses_remaining == 2
        assert active[1].total_uses == 1

    def test_uses_remaining_never_goes_negative(self):
        assert discount_code(max_redemptions=1, used=3).uses_remaining == 0


class TestResolveByCode:

    def test_match_is_trimmed_and_case_insensitive(self):
        result = discounts.resolve_by_code([discount_code("PROMO10")], "  promo10 ", Decimal(24000), FIXED_NOW)

        assert result.outcome == DiscountOutcome.APPLIED
        assert result.code == "PROMO10"
        assert result.amount == Decimal(2400)

    def test_unknown_or_inactive_code_is_not_found(self):
        codes = [discount_code("PROMO10", used=1)]

        assert discounts.resolve_by_code(codes, "PROMO10", Decimal(100), FIXED_NOW).outcome == DiscountOutcome.NOT_FOUND
        assert discounts.resolve_by_code(codes, "OTHER", Decimal(100), FIXED_NOW).outcome == DiscountOutcome.NOT_FOUND
        assert discounts.resolve_by_code(codes, "   ", Decimal(100), FIXED_NOW).outcome == DiscountOutcome.NOT_FOUND

    def test_zero_amount_is_reported(self):
        result = discounts.resolve_by_code([discount_code(value="0", percentage=None)], "PROMO10",
                                           Decimal(100), FIXED_NOW)

        assert result.outcome == DiscountOutcome.ZERO_VALUE
        assert result.code == "PROMO10"
        assert result.amount == 0

    def test_net_total_never_negative(self):
        assert discounts.net_total(Decimal(24000), Decimal(2400)) == Decimal(21600)
        assert discounts.net_total(Decimal(100), Decimal(150)) == 0


class TestHistory:

    def test_history_is_newest_first_with_order_codes(self):
        redemptions = [
            DiscountRedemption(id="a", code="A", value_applied=Decimal(500), redeemed_at=FIXED_NOW - timedelta(days=2),
                               order_number=7),
            DiscountRedemption(id="b", code="B", value_applied=Decimal("1500.5"), redeemed_at=FIXED_NOW),
        ]

        history = discounts.build_history(redemptions)
        total_savings, total_redemptions = discounts.history_totals(history)

        assert [entry.id for entry in history] == ["b", "a"]
        assert history[1].order_code == "PT-00007"
        assert history[0].order_code is None
        assert total_savings == Decimal("2000.5")
        assert total_redemptions == 2
