from decimal import ROUND_HALF_UP, Decimal
from typing import Union
from urllib.parse import quote

NBSP = "\u00a0"
ORDER_CODE_PREFIX = "PT"
ORDER_CODE_WIDTH = 5
# marks kept literal inside the encoded message
URI_COMPONENT_SAFE = "!~*'()"


def format_ars(value: Union[Decimal, int, float]) -> str:
    """
    Format an amount the way es-AR renders ARS currency.
    Thousands use '.', decimals use ',' and are only shown when non-zero.
    Example: 24000 -> "$ 24.000", 1234.5 -> "$ 1.234,5"
    """
    amount = Decimal(str(value)).quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)
    sign = "-" if amount < 0 else ""
    integer_part, _, fraction = f"{abs(amount):.2f}".partition(".")
    grouped = f"{int(integer_part):,}".replace(",", ".")
    fraction = fraction.rstrip("0")
    body = f"{grouped},{fraction}" if fraction else grouped
    return f"{sign}${NBSP}{body}"


def format_order_code(order_number: int) -> str:
    return f"{ORDER_CODE_PREFIX}-{str(order_number).zfill(ORDER_CODE_WIDTH)}"


def wa_link(phone: str, text: str) -> str:
    # only the leading '+' is dropped, matching what wa.me expects
    number = phone.replace("+", "", 1)
    return f"https://wa.me/{number}?text={quote(text, safe=URI_COMPONENT_SAFE)}"
