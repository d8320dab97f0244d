# app/services/receipt_service.py
import logging
import re

from app.models.establishment import Establishment
from app.models.order import Order, OrderItem
from app.schemas.receipt import (
    NonFiscalReceipt,
    NonFiscalReceiptRequest,
    Receipt,
    ReceiptHeader,
    ReceiptLine,
)
from app.services.classifier import Channel
from app.services.notes_parser import (
    ParseResult,
    extract_general_instructions,
    reconstruct_items,
)

logger = logging.getLogger(__name__)

PAYMENT_METHOD_LABELS: dict[str, str] = {
    "dinheiro": "Dinheiro",
    "pix": "PIX",
    "cartao_credito": "Crédito",
    "cartao_debito": "Débito",
    "online": "Online",
    "whatsapp": "WhatsApp",
    "balcao": "Balcão",
    "fiado": "Fiado",
}

_ADDRESS = re.compile(r"Endere[çc][oa]\s*:\s*([^*\n]+)", re.IGNORECASE)


def format_payment_method(method: str | None) -> str | None:
    if not method:
        return None
    return PAYMENT_METHOD_LABELS.get(method.strip().lower(), method.strip().upper())


def format_cpf(cpf: str | None) -> str | None:
    if not cpf:
        return None
    digits = re.sub(r"\D", "", cpf)
    if len(digits) != 11:
        return cpf
    return f"{digits[:3]}.{digits[3:6]}.{digits[6:9]}-{digits[9:]}"


def format_cnpj(cnpj: str | None) -> str | None:
    if not cnpj:
        return None
    digits = re.sub(r"\D", "", cnpj)
    if len(digits) != 14:
        return cnpj
    return f"{digits[:2]}.{digits[2:5]}.{digits[5:8]}/{digits[8:12]}-{digits[12:]}"


def customer_display(order: Order) -> str | None:
    """Customer name with the delivery address from the notes appended."""
    name = (order.customer_name or "").strip()
    address = ""
    if order.notes:
        match = _ADDRESS.search(order.notes.replace("*", ""))
        if match:
            address = match.group(1).strip()
    combined = " - ".join(part for part in (name, address) if part)
    return combined or None


def _header(establishment: Establishment) -> ReceiptHeader:
    return ReceiptHeader(
        establishment_name=(establishment.name or "").upper(),
        establishment_address=establishment.address,
        establishment_phone=establishment.phone,
        establishment_cnpj=format_cnpj(establishment.cnpj),
    )


def _lines(parsed: ParseResult) -> list[ReceiptLine]:
    return [
        ReceiptLine(
            name=item.name,
            quantity=item.quantity,
            unit_price=item.unit_price,
            total_price=item.total_price,
            notes=item.notes,
        )
        for item in parsed.items
    ]


def parse_order_items(order: Order, items: list[OrderItem], channel: Channel) -> ParseResult:
    parsed = reconstruct_items(
        order.notes,
        stored_items=items,
        total_amount=order.total_amount,
        channel=channel,
    )
    logger.debug(
        "Order %s lines built by %s (attempts=%s)",
        order.order_number,
        parsed.strategy.value,
        parsed.attempts,
    )
    return parsed


def compose_receipt(
    order: Order,
    parsed: ParseResult,
    establishment: Establishment,
    general_instructions: str | None,
) -> Receipt:
    return Receipt(
        header=_header(establishment),
        establishment_id=order.establishment_id,
        order_id=order.id,
        order_number=order.order_number,
        created_at=order.created_at,
        order_type=(order.order_type or "delivery").upper(),
        customer_display=customer_display(order),
        customer_phone=order.customer_phone,
        lines=_lines(parsed),
        subtotal=round(order.subtotal or 0.0, 2),
        discount_amount=round(order.discount_amount or 0.0, 2),
        delivery_fee=round(order.delivery_fee or 0.0, 2),
        total_amount=round(order.total_amount or 0.0, 2),
        payment_method=order.payment_method,
        payment_method_label=format_payment_method(order.payment_method),
        general_instructions=general_instructions,
        source_strategy=parsed.strategy.value,
    )


def build_receipt_for_order(
    order: Order,
    items: list[OrderItem],
    establishment: Establishment,
    channel: Channel,
) -> Receipt:
    """Parser -> Composer for one order."""
    parsed = parse_order_items(order, items, channel)
    instructions = extract_general_instructions(order.notes)
    return compose_receipt(order, parsed, establishment, instructions)


def build_non_fiscal_receipt(
    order: Order,
    items: list[OrderItem],
    establishment: Establishment,
    channel: Channel,
    payload: NonFiscalReceiptRequest,
) -> NonFiscalReceipt:
    parsed = parse_order_items(order, items, channel)
    return NonFiscalReceipt(
        header=_header(establishment),
        establishment_id=order.establishment_id,
        order_id=order.id,
        order_number=order.order_number,
        created_at=order.created_at,
        customer_name=(payload.customer_name or order.customer_name or "Consumidor").strip(),
        customer_phone=payload.customer_phone,
        customer_cpf=format_cpf(payload.customer_cpf),
        lines=_lines(parsed),
        subtotal=round(order.subtotal or 0.0, 2),
        discount_amount=round(order.discount_amount or 0.0, 2),
        delivery_fee=round(order.delivery_fee or 0.0, 2),
        tax_amount=round(order.tax_amount or 0.0, 2),
        total_amount=round(order.total_amount or 0.0, 2),
        payment_method_label=format_payment_method(order.payment_method),
    )
