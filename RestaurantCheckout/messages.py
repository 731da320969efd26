"""Order summary message sent to the store through the WhatsApp deep link."""
from decimal import Decimal
from typing import List, Optional

from RestaurantCheckout.formatting import format_ars
from RestaurantCheckout.models import CartLine, CustomerIdentity, OrderForm

HEADER = "🍗 NUEVO PEDIDO - POLLOS TELLO’S\n\n"
# tab plus zero-width space keeps WhatsApp from trimming the indentation
LINE_PREFIX = "\t\u200b"
GUEST_NAME = "Invitado"


def format_cart_line(line: CartLine) -> str:
    label = line.product.label
    side = f" ({line.side})" if line.side else ""
    price = format_ars(line.line_total)
    if line.is_promotional:
        price = f"{price} (antes {format_ars(line.original_unit_price * line.quantity)})"
    text = f"{LINE_PREFIX}- {label}{side} x{line.quantity} — {price}"
    description = getattr(line.product, "description", "")
    if description:
        text += f"\n{LINE_PREFIX}  _{description}_"
    return text


def build_order_message(lines: List[CartLine],
                        form: OrderForm,
                        identity: Optional[CustomerIdentity],
                        total_label: str,
                        promo_accepted: bool,
                        discount_code: Optional[str] = None,
                        discount_amount: Optional[Decimal] = None,
                        order_code: Optional[str] = None) -> str:
    """Build the order message.

    Field order is fixed. Email, phone, order code and discount lines are left out
    entirely when there is nothing to show.

    Args:
        lines: Cart lines in cart order
        form: Checkout form values
        identity: Signed-in customer, None for guests
        total_label: Formatted amount to charge (net of the discount)
        promo_accepted: Whether the upsell promotion was accepted
        discount_code: Applied discount code, if any
        discount_amount: Amount the discount subtracts
        order_code: Code of the created order, registered checkouts only
    """
    display_name = identity.display_name if identity else None
    user_label = (identity.display_name or identity.email) if identity else None

    text = HEADER
    if order_code:
        text += f"{LINE_PREFIX}🧾 Pedido: {order_code}\n"
    text += f"{LINE_PREFIX}👤 Cliente: {form.customer_name or display_name or GUEST_NAME}\n"
    if form.email:
        text += f"{LINE_PREFIX}📧 Email: {form.email}\n"
    if form.phone_number:
        text += f"{LINE_PREFIX}📱 Teléfono: {form.phone_number}\n"
    text += f"{LINE_PREFIX}📍 Dirección: {form.delivery_address}\n\n"
    text += f"{LINE_PREFIX}🛒 CARRITO:\n"
    text += "\n".join(format_cart_line(line) for line in lines)
    text += "\n\n"
    text += f"{LINE_PREFIX}💰 TOTAL: {total_label}"
    if discount_code and discount_amount:
        text += f"\n{LINE_PREFIX}🏷️ Descuento ({discount_code}): -{format_ars(discount_amount)}"
    text += f"\n{LINE_PREFIX}🍖 Pollo deshuesado: {'Sí' if promo_accepted else 'No'}"
    text += f"\n{LINE_PREFIX}💳 Método de pago: {form.payment_method}"
    text += f"\n{LINE_PREFIX}👤 Usuario: {user_label or GUEST_NAME}"
    return text
