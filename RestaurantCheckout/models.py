"""Data models for the ordering application.

This module defines the core data structures used throughout the checkout core,
including catalog products, cart lines, discount codes, customer profile snapshots
and the loyalty summary.
"""

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, List, Optional, Union

from RestaurantCheckout.enums import CheckoutMode, DiscountOutcome, PaymentMethod, ProductKind, ShareCouponStatus
from RestaurantCheckout.exceptions import InvalidTransition


def to_money(value: Any, default: Decimal = Decimal(0)) -> Decimal:
    """Coerce a wire value (int, float, numeric string) into a Decimal.

    Values that cannot be parsed come back as ``default``; non-finite values
    (NaN, Infinity) are kept so callers can decide how to treat them.
    """
    if value is None or value == "":
        return default
    if isinstance(value, Decimal):
        return value
    try:
        return Decimal(str(value))
    except (InvalidOperation, ValueError):
        return default


class Product:
    """Base class of the catalog product variants.

    Every product has a stable identifier unique within its catalog, a display
    label and a non-negative price. Subclasses are dataclasses.
    """

    kind: ProductKind

    @property
    def key(self) -> str:
        return str(self.id)

    def to_dict(self) -> Dict[str, Any]:
        raise NotImplementedError

    @staticmethod
    def from_dict(data: Dict[str, Any]) -> "Product":
        kind = ProductKind(data["kind"])
        product_cls = _PRODUCT_CLASSES[kind]
        return product_cls.from_dict(data)


@dataclass
class Combo(Product):
    """A combo meal. Combos may require a side chosen from ``side_options``.

    Attributes:
        id: Numeric catalog identifier
        name: Display name
        price: Unit price
        description: Short description shown below the name
        has_side: Whether a side must be selected
        side_options: Allowed side selections
        original_price: Price before a promotion, when the line was discounted
    """
    id: int
    name: str
    price: Decimal
    description: str = ""
    has_side: bool = False
    side_options: List[str] = field(default_factory=list)
    image: Optional[str] = None
    original_price: Optional[Decimal] = None

    kind = ProductKind.COMBO

    @property
    def label(self) -> str:
        return self.name

    def to_dict(self) -> Dict[str, Any]:
        return {
            "kind": self.kind.value,
            "id": self.id,
            "name": self.name,
            "price": str(self.price),
            "description": self.description,
            "hasSide": self.has_side,
            "sideOptions": list(self.side_options),
            "image": self.image,
            "originalPrice": str(self.original_price) if self.original_price is not None else None,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Combo":
        return cls(
            id=int(data["id"]),
            name=str(data["name"]),
            price=to_money(data["price"]),
            description=data.get("description") or "",
            has_side=bool(data.get("hasSide", False)),
            side_options=list(data.get("sideOptions") or []),
            image=data.get("image"),
            original_price=to_money(data["originalPrice"]) if data.get("originalPrice") is not None else None,
        )


@dataclass
class IndividualItem(Product):
    """A single item sold on its own (no side selection)."""
    id: int
    name: str
    price: Decimal
    description: str = ""
    image: Optional[str] = None
    original_price: Optional[Decimal] = None

    kind = ProductKind.INDIVIDUAL

    @property
    def label(self) -> str:
        return self.name

    def to_dict(self) -> Dict[str, Any]:
        return {
            "kind": self.kind.value,
            "id": self.id,
            "name": self.name,
            "price": str(self.price),
            "description": self.description,
            "image": self.image,
            "originalPrice": str(self.original_price) if self.original_price is not None else None,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "IndividualItem":
        return cls(
            id=int(data["id"]),
            name=str(data["name"]),
            price=to_money(data["price"]),
            description=data.get("description") or "",
            image=data.get("image"),
            original_price=to_money(data["originalPrice"]) if data.get("originalPrice") is not None else None,
        )


@dataclass
class Extra(Product):
    """An add-on (extra piece, dessert, service). Identified by a string id."""
    id: str
    label: str
    price: Decimal
    image: Optional[str] = None
    original_price: Optional[Decimal] = None

    kind = ProductKind.EXTRA

    def to_dict(self) -> Dict[str, Any]:
        return {
            "kind": self.kind.value,
            "id": self.id,
            "label": self.label,
            "price": str(self.price),
            "image": self.image,
            "originalPrice": str(self.original_price) if self.original_price is not None else None,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Extra":
        return cls(
            id=str(data["id"]),
            label=str(data["label"]),
            price=to_money(data["price"]),
            image=data.get("image"),
            original_price=to_money(data["originalPrice"]) if data.get("originalPrice") is not None else None,
        )


_PRODUCT_CLASSES = {
    ProductKind.COMBO: Combo,
    ProductKind.INDIVIDUAL: IndividualItem,
    ProductKind.EXTRA: Extra,
}


@dataclass
class CartLine:
    """Represents a line in the shopping cart.

    Attributes:
        product: The product being purchased
        quantity: Number of units, always positive while the line exists
        key: Composite identity, product id plus side when present
        side: Selected side for combos that declare one
    """
    product: Product
    quantity: int
    key: str
    side: Optional[str] = None

    @staticmethod
    def compose_key(product_id: Union[int, str], side: Optional[str] = None) -> str:
        base_id = str(product_id)
        return f"{base_id}-{side}" if side else base_id

    @property
    def unit_price(self) -> Decimal:
        return self.product.price

    @property
    def line_total(self) -> Decimal:
        return self.product.price * self.quantity

    @property
    def original_unit_price(self) -> Optional[Decimal]:
        return self.product.original_price

    @property
    def is_promotional(self) -> bool:
        original = self.product.original_price
        return original is not None and original > self.product.price

    def to_dict(self) -> Dict[str, Any]:
        return {
            "key": self.key,
            "qty": self.quantity,
            "side": self.side,
            "product": self.product.to_dict(),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "CartLine":
        quantity = int(data["qty"])
        if quantity <= 0:
            raise ValueError(f"Cart line {data.get('key')} has non-positive quantity {quantity}")
        product = Product.from_dict(data["product"])
        side = data.get("side") or None
        return cls(product=product, quantity=quantity, key=cls.compose_key(product.id, side), side=side)


@dataclass
class DiscountRedemption:
    """A single redemption of a discount code. Immutable once created."""
    id: str
    code: str
    value_applied: Decimal
    redeemed_at: datetime
    order_id: Optional[str] = None
    order_number: Optional[int] = None


@dataclass
class DiscountCode:
    """A discount code owned by a customer.

    Either ``value`` (fixed amount) or ``percentage`` is meaningful; when both are
    present the percentage takes precedence.

    Attributes:
        id: Remote identifier
        code: The code the customer types (matched case-insensitively)
        value: Fixed monetary value
        percentage: Percentage discount (0-100), optional
        max_redemptions: How many times the code can be used
        redemptions: Redemptions already recorded against this code
        expires_at: When the code stops being valid, if ever
        label: Short label (the code type)
        description: Optional human description
    """
    id: str
    code: str
    value: Decimal = Decimal(0)
    percentage: Optional[Decimal] = None
    max_redemptions: int = 1
    redemptions: List[DiscountRedemption] = field(default_factory=list)
    expires_at: Optional[datetime] = None
    starts_at: Optional[datetime] = None
    label: Optional[str] = None
    description: Optional[str] = None

    @property
    def total_uses(self) -> int:
        return len(self.redemptions)

    @property
    def uses_remaining(self) -> int:
        return max(self.max_redemptions - self.total_uses, 0)

    def is_expired(self, now: datetime) -> bool:
        return self.expires_at is not None and self.expires_at < now

    def is_active(self, now: datetime) -> bool:
        return self.uses_remaining > 0 and not self.is_expired(now)


@dataclass
class ActiveDiscount:
    """An active discount code together with its computed remaining uses."""
    discount: DiscountCode
    uses_remaining: int
    total_uses: int

    @property
    def code(self) -> str:
        return self.discount.code


@dataclass
class ResolvedDiscount:
    """The result of resolving a candidate code against the customer's codes.

    Attributes:
        outcome: APPLIED, NOT_FOUND or ZERO_VALUE
        code: The normalized code when it matched an active discount
        amount: Monetary amount to subtract from the subtotal
        discount: The matched discount code
    """
    outcome: DiscountOutcome
    code: Optional[str] = None
    amount: Decimal = Decimal(0)
    discount: Optional[DiscountCode] = None

    @property
    def applied(self) -> bool:
        return self.outcome == DiscountOutcome.APPLIED


@dataclass
class ShareCoupon:
    """A monthly referral coupon. Lifecycle ISSUED -> ACTIVATED -> REDEEMED."""
    id: str
    code: str
    status: ShareCouponStatus
    month: int
    year: int
    activated_at: Optional[datetime] = None
    redeemed_at: Optional[datetime] = None
    user_id: Optional[str] = None
    user_name: Optional[str] = None
    user_email: Optional[str] = None

    _ORDER = (ShareCouponStatus.ISSUED, ShareCouponStatus.ACTIVATED, ShareCouponStatus.REDEEMED)

    def advance(self, status: ShareCouponStatus, at: Optional[datetime] = None) -> None:
        """Move the coupon forward in its lifecycle.

        Raises:
            InvalidTransition: If ``status`` is not strictly after the current status
        """
        if self._ORDER.index(status) <= self._ORDER.index(self.status):
            raise InvalidTransition(
                f"Share coupon {self.code} cannot move from {self.status.value} to {status.value}"
            )
        self.status = status
        if status == ShareCouponStatus.ACTIVATED:
            self.activated_at = at or self.activated_at
        elif status == ShareCouponStatus.REDEEMED:
            self.redeemed_at = at or self.redeemed_at


@dataclass
class OrderForm:
    """Checkout form values, held locally while the customer edits them."""
    customer_name: str = ""
    delivery_address: str = ""
    email: str = ""
    phone_number: str = ""
    payment_method: str = PaymentMethod.CASH.value

    def to_dict(self) -> Dict[str, str]:
        return {
            "customerName": self.customer_name,
            "deliveryAddress": self.delivery_address,
            "email": self.email,
            "phoneNumber": self.phone_number,
            "paymentMethod": self.payment_method,
        }

    def merged_with(self, data: Dict[str, Any]) -> "OrderForm":
        """Return a copy overlaid with the string fields present in ``data``."""
        current = self.to_dict()
        for name in current:
            value = data.get(name)
            if isinstance(value, str):
                current[name] = value
        return OrderForm(
            customer_name=current["customerName"],
            delivery_address=current["deliveryAddress"],
            email=current["email"],
            phone_number=current["phoneNumber"],
            payment_method=current["paymentMethod"],
        )


@dataclass
class StoredPurchaseItem:
    product_id: str
    label: str
    qty: int
    kind: ProductKind
    side: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "productId": self.product_id,
            "label": self.label,
            "qty": self.qty,
            "side": self.side,
            "type": self.kind.value,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "StoredPurchaseItem":
        return cls(
            product_id=str(data["productId"]),
            label=str(data["label"]),
            qty=int(data["qty"]),
            kind=ProductKind(data.get("type", ProductKind.COMBO.value)),
            side=data.get("side"),
        )


@dataclass
class StoredPurchase:
    """Snapshot of a submitted cart, kept locally for display only."""
    placed_at: str
    total_label: str
    items: List[StoredPurchaseItem] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "placedAt": self.placed_at,
            "totalLabel": self.total_label,
            "items": [item.to_dict() for item in self.items],
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "StoredPurchase":
        return cls(
            placed_at=str(data["placedAt"]),
            total_label=str(data["totalLabel"]),
            items=[StoredPurchaseItem.from_dict(item) for item in data.get("items", [])],
        )


@dataclass
class PendingBonusState:
    total_purchases: int
    created_at: str

    def to_dict(self) -> Dict[str, Any]:
        return {"totalPurchases": self.total_purchases, "createdAt": self.created_at}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "PendingBonusState":
        return cls(total_purchases=int(data["totalPurchases"]), created_at=str(data["createdAt"]))


@dataclass
class Milestones:
    previous: int
    next: int
    progress: float
    remaining: int


@dataclass
class CustomerSummary:
    """Loyalty progress shown on the profile surfaces."""
    total_purchases: int = 0
    progress: float = 0.0
    remaining_to_next: int = 3
    next_milestone: int = 3
    previous_milestone: int = 0
    last_purchase: Optional[StoredPurchase] = None
    pending_bonus: bool = False
    pending_bonus_info: Optional[PendingBonusState] = None


@dataclass
class DiscountHistoryEntry:
    id: str
    code: str
    value_applied: Decimal
    redeemed_at: datetime
    order_code: Optional[str] = None


@dataclass
class DiscountSnapshot:
    """Aggregated view of a customer's discounts, redemptions and share coupons."""
    active: List[ActiveDiscount]
    history: List[DiscountHistoryEntry]
    share_coupons: List[ShareCoupon]
    total_savings: Decimal
    total_redemptions: int


@dataclass
class OrderProductMatch:
    product: Product
    quantity: int
    side: Optional[str] = None


@dataclass
class ProfileFormValues:
    """Editable profile fields. Missing remote values are empty strings, never None."""
    email: str = ""
    first_name: str = ""
    last_name: str = ""
    display_name: str = ""
    phone: str = ""
    address_line: str = ""
    address_notes: str = ""


@dataclass
class ProfileStats:
    monthly_orders: int = 0
    lifetime_orders: int = 0
    lifetime_net_sales: Decimal = Decimal(0)
    discount_usage: Decimal = Decimal(0)
    qualifies_for_bonus: bool = False


@dataclass
class ReorderResult:
    """Outcome of repeating a past order. ``message`` is shown when nothing was added."""
    ok: bool
    matches: List[OrderProductMatch] = field(default_factory=list)
    message: Optional[str] = None


@dataclass
class CustomerIdentity:
    """Who is checking out.

    Attributes:
        backend_user_id: Identifier assigned by the ordering API, None for guests
        auth_uid: Identifier from the identity provider, when signed in
        display_name: Name shown in the order message
        email: Email from the identity provider
    """
    backend_user_id: Optional[str] = None
    auth_uid: Optional[str] = None
    display_name: Optional[str] = None
    email: Optional[str] = None

    @property
    def is_registered(self) -> bool:
        return bool(self.backend_user_id)

    @property
    def mode(self) -> CheckoutMode:
        return CheckoutMode.REGISTERED if self.is_registered else CheckoutMode.GUEST


@dataclass
class LastOrderContext:
    """Navigation context handed to the confirmation screen through session storage."""
    mode: CheckoutMode
    whatsapp_url: str
    redirect_started_at: int
    redirect_duration_ms: int
    whatsapp_trigger_delay_ms: int
    code: Optional[str] = None
    number: Optional[int] = None
    whatsapp_opened_at: Optional[int] = None

    def remaining_seconds(self, now_ms: int) -> int:
        deadline = self.redirect_started_at + self.redirect_duration_ms
        remaining_ms = max(0, deadline - now_ms)
        return -(-remaining_ms // 1000)

    def should_open_whatsapp(self, now_ms: int) -> bool:
        if self.whatsapp_opened_at is not None:
            return False
        return now_ms >= self.redirect_started_at + self.whatsapp_trigger_delay_ms

    def to_dict(self) -> Dict[str, Any]:
        data = {
            "mode": self.mode.value,
            "whatsappUrl": self.whatsapp_url,
            "code": self.code,
            "number": self.number,
            "redirectStartedAt": self.redirect_started_at,
            "redirectDurationMs": self.redirect_duration_ms,
            "whatsappTriggerDelayMs": self.whatsapp_trigger_delay_ms,
            "whatsappOpenedAt": self.whatsapp_opened_at,
        }
        return {key: value for key, value in data.items() if value is not None}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "LastOrderContext":
        return cls(
            mode=CheckoutMode(data.get("mode", CheckoutMode.GUEST.value)),
            whatsapp_url=str(data["whatsappUrl"]),
            redirect_started_at=int(data["redirectStartedAt"]),
            redirect_duration_ms=int(data["redirectDurationMs"]),
            whatsapp_trigger_delay_ms=int(data["whatsappTriggerDelayMs"]),
            code=data.get("code"),
            number=data.get("number"),
            whatsapp_opened_at=data.get("whatsappOpenedAt"),
        )
