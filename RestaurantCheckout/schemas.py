"""
Wire schemas for the ordering API.

Each pydantic model mirrors a JSON document exchanged with the API. Field names are
snake_case in Python and camelCase on the wire (``totalGross``, ``isPrimary``...).

Responses:
- ApiOrder / ApiOrderPage: orders and paginated order listings
- ApiOrderMessage: order-scoped chat entries between customer and staff
- ApiUserDetail / ApiUserEngagement / ApiUserListItem: customer records
- ApiDiscountCode / ApiDiscountRedemption / ApiShareCoupon: benefits

Requests:
- CreateOrderPayload, UpdateProfilePayload, UpsertUserPayload,
  CreateUserDiscountPayload, OrderMessagePayload
"""
from __future__ import annotations

from datetime import datetime, timezone
from typing import Annotated, Any, Dict, List, Optional, Union

from pydantic import AfterValidator, BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from RestaurantCheckout.enums import MessageAuthor, OrderStatus, ShareCouponStatus
from RestaurantCheckout.models import DiscountCode, DiscountRedemption, ShareCoupon, to_money


def as_utc(value: datetime) -> datetime:
    """Timestamps sent without an offset are UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


UtcDatetime = Annotated[datetime, AfterValidator(as_utc)]

# Amounts arrive as decimal strings or JSON numbers; ``to_money`` normalizes both.
WireDecimal = Union[str, int, float]


class ApiModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")

    def to_wire(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True, mode="json")


# ---------------------------
# Customers
# ---------------------------
class ApiAddress(ApiModel):
    id: str
    label: Optional[str] = None
    line1: str = ""
    line2: Optional[str] = None
    city: Optional[str] = None
    province: Optional[str] = None
    postal_code: Optional[str] = None
    notes: Optional[str] = None
    is_primary: bool = False
    created_at: Optional[UtcDatetime] = None
    updated_at: Optional[UtcDatetime] = None


class ApiDiscountCodeRef(ApiModel):
    id: str
    code: str
    type: Optional[str] = None


class ApiOrderRef(ApiModel):
    id: str
    number: int
    placed_at: Optional[UtcDatetime] = None


class ApiDiscountRedemption(ApiModel):
    id: str
    code_id: str = ""
    user_id: Optional[str] = None
    order_id: Optional[str] = None
    value_applied: WireDecimal = Field("0", description="Amount subtracted from the order")
    redeemed_at: UtcDatetime
    code: Optional[ApiDiscountCodeRef] = None
    order: Optional[ApiOrderRef] = None

    def to_domain(self) -> DiscountRedemption:
        return DiscountRedemption(
            id=self.id,
            code=self.code.code if self.code else self.code_id,
            value_applied=to_money(self.value_applied),
            redeemed_at=self.redeemed_at,
            order_id=self.order.id if self.order else self.order_id,
            order_number=self.order.number if self.order else None,
        )


class ApiDiscountCode(ApiModel):
    id: str
    code: str
    type: str = ""
    scope: str = ""
    value: WireDecimal = Field("0", description="Fixed amount")
    percentage: Optional[WireDecimal] = Field(None, description="Takes precedence over value")
    max_redemptions: int = 1
    starts_at: Optional[UtcDatetime] = None
    expires_at: Optional[UtcDatetime] = None
    metadata: Optional[Dict[str, Any]] = None
    redemptions: List[ApiDiscountRedemption] = Field(default_factory=list)

    def to_domain(self) -> DiscountCode:
        metadata = self.metadata or {}
        return DiscountCode(
            id=self.id,
            code=self.code,
            value=to_money(self.value),
            percentage=to_money(self.percentage) if self.percentage not in (None, "") else None,
            max_redemptions=self.max_redemptions,
            redemptions=[redemption.to_domain() for redemption in self.redemptions],
            expires_at=self.expires_at,
            starts_at=self.starts_at,
            label=metadata.get("label") or self.type or None,
            description=metadata.get("description"),
        )


class ApiShareCouponUser(ApiModel):
    id: str
    email: str = ""
    display_name: Optional[str] = None


class ApiShareCoupon(ApiModel):
    id: str
    code: str
    status: ShareCouponStatus
    month: int
    year: int
    activated_at: Optional[UtcDatetime] = None
    redeemed_at: Optional[UtcDatetime] = None
    user: Optional[ApiShareCouponUser] = None

    def to_domain(self) -> ShareCoupon:
        return ShareCoupon(
            id=self.id,
            code=self.code,
            status=self.status,
            month=self.month,
            year=self.year,
            activated_at=self.activated_at,
            redeemed_at=self.redeemed_at,
            user_id=self.user.id if self.user else None,
            user_name=(self.user.display_name or self.user.email) if self.user else None,
            user_email=self.user.email if self.user else None,
        )


class ApiUserDetail(ApiModel):
    id: str
    email: str
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    display_name: Optional[str] = None
    phone: Optional[str] = None
    addresses: List[ApiAddress] = Field(default_factory=list)
    discount_codes_owned: List[ApiDiscountCode] = Field(default_factory=list)
    discount_redemptions: List[ApiDiscountRedemption] = Field(default_factory=list)
    share_coupons: List[ApiShareCoupon] = Field(default_factory=list)


class ApiUserEngagement(ApiModel):
    monthly_orders: int = 0
    lifetime_orders: int = 0
    lifetime_net_sales: WireDecimal = "0"
    last_order_at: Optional[UtcDatetime] = None
    share_events: int = 0
    loyalty_events: int = 0
    referral_profile: Optional[Any] = None
    discount_usage: int = 0
    qualifies_for_bonus: bool = False


class ApiUserListItem(ApiModel):
    id: str
    email: str
    display_name: Optional[str] = None
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    phone: Optional[str] = None
    created_at: Optional[UtcDatetime] = None


class ApiUserRef(ApiModel):
    id: str


class RegisterPurchaseResult(ApiModel):
    total_purchases: int = 0
    unlock_bonus: bool = False


# ---------------------------
# Orders
# ---------------------------
class OrderCustomerMetadata(ApiModel):
    name: str
    email: str
    phone: Optional[str] = None


class OrderDeliveryMetadata(ApiModel):
    address_line: str
    notes: Optional[str] = None


class OrderItemMetadata(ApiModel):
    product_id: Optional[str] = None
    label: str = ""
    quantity: int = 0
    unit_price: float = 0
    line_total: float = 0
    side: Optional[str] = None
    type: Optional[str] = None
    metadata: Optional[Dict[str, Any]] = None


class OrderMetadata(ApiModel):
    customer: Optional[OrderCustomerMetadata] = None
    delivery: Optional[OrderDeliveryMetadata] = None
    payment_method: Optional[str] = None
    items: List[OrderItemMetadata] = Field(default_factory=list)
    notes: Optional[str] = None
    extra: Optional[Dict[str, Any]] = None


class ApiNormalizedItem(ApiModel):
    product_key: Optional[str] = None
    label: Optional[str] = None
    quantity: int = 0
    side: Optional[str] = None


class ApiOrder(ApiModel):
    id: str
    number: int
    status: OrderStatus
    total_gross: float = 0
    total_net: Optional[float] = None
    discount_total: float = 0
    metadata: Optional[OrderMetadata] = None
    normalized_items: List[ApiNormalizedItem] = Field(default_factory=list)
    whatsapp_link: Optional[str] = None
    user_id: Optional[str] = None
    created_at: Optional[UtcDatetime] = None
    updated_at: Optional[UtcDatetime] = None
    placed_at: Optional[UtcDatetime] = None
    confirmed_at: Optional[UtcDatetime] = None
    cancelled_at: Optional[UtcDatetime] = None
    cancellation_reason: Optional[str] = None
    note: Optional[str] = None


class ApiOrderPage(ApiModel):
    items: List[ApiOrder] = Field(default_factory=list)
    total: int = 0
    skip: int = 0
    take: int = 0


class ApiOrderMessage(ApiModel):
    id: str
    order_id: Optional[str] = None
    author: MessageAuthor
    payload: Dict[str, Any] = Field(default_factory=dict)
    created_at: Optional[UtcDatetime] = None

    @property
    def message(self) -> str:
        return str(self.payload.get("message", ""))


class DeliveryPayload(ApiModel):
    address_line: str
    notes: Optional[str] = None


class OrderItemPayload(ApiModel):
    product_id: Optional[str] = None
    label: str
    quantity: int = Field(..., ge=1)
    unit_price: float = Field(..., ge=0)
    original_unit_price: Optional[float] = Field(None, ge=0, description="Catalog price when a promotion lowered it")
    discount_value: Optional[float] = Field(None, ge=0, description="Per-unit reduction from the promotion")
    line_total: float = Field(..., ge=0)
    side: Optional[str] = None
    type: Optional[str] = None
    metadata: Optional[Dict[str, Any]] = None


class CreateOrderPayload(ApiModel):
    user_id: Optional[str] = None
    customer_name: str
    customer_email: str
    customer_phone: Optional[str] = None
    delivery: DeliveryPayload
    payment_method: str
    notes: Optional[str] = None
    items: List[OrderItemPayload]
    total_gross: float = Field(..., ge=0)
    total_net: Optional[float] = Field(None, ge=0)
    discount_code: Optional[str] = None
    discount_total: Optional[float] = Field(None, ge=0)
    whatsapp_link: Optional[str] = None
    metadata: Optional[Dict[str, Any]] = None


class AddressPayload(ApiModel):
    line1: str
    line2: Optional[str] = None
    city: Optional[str] = None
    province: Optional[str] = None
    postal_code: Optional[str] = None
    label: Optional[str] = None
    notes: Optional[str] = None


class UpdateProfilePayload(ApiModel):
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    display_name: Optional[str] = None
    phone: Optional[str] = None
    address: Optional[AddressPayload] = None


class UpsertUserPayload(ApiModel):
    email: str
    external_auth_id: Optional[str] = None
    display_name: Optional[str] = None
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    phone: Optional[str] = None
    terms_accepted_at: Optional[UtcDatetime] = None


class CreateUserDiscountPayload(ApiModel):
    value: float = Field(..., gt=0)
    label: str
    percentage: Optional[float] = Field(None, gt=0, le=100)
    max_redemptions: Optional[int] = Field(None, ge=1)
    expires_at: Optional[UtcDatetime] = None


class OrderMessagePayload(ApiModel):
    author: MessageAuthor
    payload: Dict[str, Any]

    @field_validator("payload")
    @classmethod
    def validate_message(cls, v: Dict[str, Any]) -> Dict[str, Any]:
        """Every order message carries a non-blank ``message`` string.

        Raises:
            ValueError: If ``message`` is missing, not a string or blank
        """
        message = v.get("message")
        if not isinstance(message, str) or not message.strip():
            raise ValueError("payload.message must be a non-empty string")
        return v
