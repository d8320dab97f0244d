# app/services/messaging.py
"""
WhatsApp hand-off for online PIX delivery orders.

Only builds the wa.me link; sending is up to the operator's phone.
"""
import re
from urllib.parse import quote

from app.models.establishment import Establishment
from app.models.order import Order
from app.services.classifier import Channel, ONLINE_CHANNELS

DEFAULT_DDD = "11"
MAX_ADDRESS_CHARS = 100

_ADDRESS = re.compile(r"Endere[çc]o:\s*(.+?)(?:\n|$)", re.IGNORECASE)


def normalize_phone_br(phone: str | None) -> str:
    """
    Normalise a Brazilian phone number to E.164 digits without "+".

    "(11) 98765-4321" -> "5511987654321". Returns "" for numbers too short
    to be dialled.
    """
    if not phone:
        return ""
    digits = re.sub(r"\D", "", phone)
    if not digits:
        return ""
    digits = digits.lstrip("0") or "0"

    if digits.startswith("55") and len(digits) >= 11:
        if len(digits) in (13, 14):
            return digits
        if len(digits) == 12:
            # 55 + DDD + 8 digits: mobile missing its leading 9
            return digits[:4] + "9" + digits[4:]
        if len(digits) == 11:
            return digits if digits[2] == "9" else digits[:4] + "9" + digits[4:]
        return digits[:14]

    if len(digits) in (10, 11):
        return "55" + digits
    if len(digits) == 8:
        return "55" + DEFAULT_DDD + "9" + digits
    if len(digits) == 9:
        return "55" + DEFAULT_DDD + digits
    if len(digits) < 8:
        return ""
    return "55" + digits


def format_brl(value: float) -> str:
    """1234.5 -> "R$ 1.234,50"."""
    text = f"{value:,.2f}"
    return "R$ " + text.replace(",", "_").replace(".", ",").replace("_", ".")


def _is_delivery(order: Order) -> bool:
    return order.order_type == "delivery"


def should_offer_whatsapp(order: Order, channel: Channel) -> bool:
    """PIX + delivery + customer phone + online order."""
    if (order.payment_method or "").lower() != "pix":
        return False
    if not (order.customer_phone or "").strip():
        return False
    if not _is_delivery(order):
        return False
    return channel in ONLINE_CHANNELS or (order.order_number or "").startswith("ONLINE-")


def _short_address(notes: str | None) -> str:
    if not notes:
        return ""
    match = _ADDRESS.search(notes.replace("*", ""))
    if not match:
        return ""
    address = match.group(1).strip()
    if len(address) > MAX_ADDRESS_CHARS:
        address = address[: MAX_ADDRESS_CHARS - 3] + "..."
    return address


def build_whatsapp_message(order: Order, establishment: Establishment) -> str:
    pix_key = (establishment.pix_key_value or "").strip()
    order_code = order.order_number or str(order.id)[:8].upper()
    address = _short_address(order.notes)
    if _is_delivery(order) and address:
        delivery_info = f"\n• Entrega em: {address}"
    else:
        delivery_info = "\n• Tipo: Retirada no local"

    return (
        f"Olá, aqui é do {establishment.name} 👋\n\n"
        "Recebemos seu pedido pelo site e o método selecionado foi PIX.\n\n"
        f"💳 Nossa chave PIX é:\n{pix_key}\n\n"
        "Por favor, envie o comprovante aqui neste chat para confirmarmos seu pedido.\n\n"
        "Resumo:\n"
        f"• Nome: {order.customer_name or 'Cliente'}\n"
        f"• Pedido: #{order_code}\n"
        f"• Total: {format_brl(order.total_amount or 0.0)}"
        f"{delivery_info}\n\n"
        "Assim que confirmarmos o pagamento, seguimos com o preparo. Obrigado!"
    )


def build_whatsapp_link(order: Order, establishment: Establishment) -> str | None:
    """wa.me deep link, or None without a usable phone or PIX key."""
    phone = normalize_phone_br(order.customer_phone)
    if not phone or not (establishment.pix_key_value or "").strip():
        return None
    message = build_whatsapp_message(order, establishment)
    return f"https://wa.me/{phone}?text={quote(message)}"
