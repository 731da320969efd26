from enum import Enum


# Enums for product kinds, order lifecycle, discounts and checkout states

class ProductKind(str, Enum):
    COMBO = "combo"
    EXTRA = "extra"
    INDIVIDUAL = "individual"


class OrderStatus(str, Enum):
    DRAFT = "DRAFT"
    PENDING = "PENDING"
    PREPARING = "PREPARING"
    CONFIRMED = "CONFIRMED"
    FULFILLED = "FULFILLED"
    CANCELLED = "CANCELLED"


class OrderAction(str, Enum):
    PREPARE = "prepare"
    CONFIRM = "confirm"
    FULFILL = "fulfill"
    CANCEL = "cancel"


class ShareCouponStatus(str, Enum):
    ISSUED = "ISSUED"
    ACTIVATED = "ACTIVATED"
    REDEEMED = "REDEEMED"


class MessageAuthor(str, Enum):
    ADMIN = "ADMIN"
    USER = "USER"


class AuthMode(str, Enum):
    NONE = "NONE"
    OPTIONAL = "OPTIONAL"
    REQUIRED = "REQUIRED"


class DiscountOutcome(str, Enum):
    APPLIED = "APPLIED"
    NOT_FOUND = "NOT_FOUND"
    ZERO_VALUE = "ZERO_VALUE"


class CheckoutMode(str, Enum):
    GUEST = "guest"
    REGISTERED = "registered"


class CheckoutPhase(str, Enum):
    EDITING = "EDITING"
    SUBMITTING = "SUBMITTING"
    FINALIZED = "FINALIZED"
    FAILED = "FAILED"


class UpsellState(str, Enum):
    IDLE = "IDLE"
    SHOWING = "SHOWING"
    ACCEPTED = "ACCEPTED"
    CANCELLED_SESSION = "CANCELLED_SESSION"
    TIMED_OUT_SESSION = "TIMED_OUT_SESSION"


class BonusStage(str, Enum):
    IDLE = "IDLE"
    PRE = "PRE"
    COUNTDOWN = "COUNTDOWN"
    REWARD = "REWARD"


class PaymentMethod(str, Enum):
    CASH = "Efectivo"
    MERCADO_PAGO = "Mercado Pago"


class Theme(str, Enum):
    LIGHT = "light"
    DARK = "dark"
