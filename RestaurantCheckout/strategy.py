from decimal import Decimal
from typing import List, Optional, Tuple

from RestaurantCheckout.models import DiscountCode


class DiscountStrategy:

    def __init__(self, name: str):
        self.name = name

    def apply_discounts(self, discount: DiscountCode, subtotal: Decimal) -> Tuple[bool, Decimal]:
        raise NotImplementedError

    def validate_discount_code(self, discount: DiscountCode) -> bool:
        raise NotImplementedError


class PercentageDiscountStrategy(DiscountStrategy):

    def __init__(self, name: str = "PercentageDiscount"):
        super().__init__(name=name)

    def apply_discounts(self, discount: DiscountCode, subtotal: Decimal) -> Tuple[bool, Decimal]:
        if not self.validate_discount_code(discount):
            return False, Decimal(0)
        return True, subtotal * discount.percentage / Decimal(100)

    def validate_discount_code(self, discount: DiscountCode) -> bool:
        return discount.percentage is not None


class FixedAmountDiscountStrategy(DiscountStrategy):

    def __init__(self, name: str = "FixedAmountDiscount"):
        super().__init__(name=name)

    def apply_discounts(self, discount: DiscountCode, subtotal: Decimal) -> Tuple[bool, Decimal]:
        if not self.validate_discount_code(discount):
            return False, Decimal(0)
        return True, discount.value

    def validate_discount_code(self, discount: DiscountCode) -> bool:
        # a percentage, when present, overrides the fixed value
        return discount.percentage is None


# evaluated in order, the first strategy that accepts the code wins
DEFAULT_STRATEGIES: List[DiscountStrategy] = [
    PercentageDiscountStrategy(),
    FixedAmountDiscountStrategy(),
]


def select_strategy(discount: DiscountCode,
                    strategies: Optional[List[DiscountStrategy]] = None) -> Optional[DiscountStrategy]:
    for strategy in strategies or DEFAULT_STRATEGIES:
        if strategy.validate_discount_code(discount):
            return strategy
    return None
