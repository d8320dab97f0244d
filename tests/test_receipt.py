"""
Tests for the receipt composer.
"""
import uuid
from datetime import datetime, timezone

import pytest
from pydantic import ValidationError

from app.models.establishment import Establishment
from app.models.order import Order, OrderItem
from app.schemas.receipt import NonFiscalReceiptRequest
from app.services.classifier import Channel
from app.services.receipt_service import (
    build_non_fiscal_receipt,
    build_receipt_for_order,
    customer_display,
    format_cnpj,
    format_payment_method,
)

NOTES = (
    "[2x Cheeseburger - R$20,00 Obs: sem cebola]\n"
    "*Endereço:* Rua das Flores, 10\n"
    "Instruções do Pedido: Tocar a campainha"
)


@pytest.fixture
def establishment():
    return Establishment(
        id=uuid.uuid4(),
        name="Na Brasa Burger",
        address="Av. Paulista, 1000",
        cnpj="12345678000199",
    )


@pytest.fixture
def order(establishment):
    return Order(
        id=uuid.uuid4(),
        establishment_id=establishment.id,
        order_number="0042",
        customer_name="Maria",
        customer_phone="(11) 98765-4321",
        order_type="delivery",
        payment_method="cartao_credito",
        subtotal=20.0,
        delivery_fee=5.0,
        total_amount=25.0,
        notes=NOTES,
        created_at=datetime(2026, 10, 18, 15, 0, tzinfo=timezone.utc),
    )


class TestFormatting:
    def test_payment_labels(self):
        assert format_payment_method("cartao_credito") == "Crédito"
        assert format_payment_method(" PIX ") == "PIX"
        assert format_payment_method("vale") == "VALE"
        assert format_payment_method(None) is None

    def test_cnpj(self):
        assert format_cnpj("12345678000199") == "12.345.678/0001-99"
        assert format_cnpj("123") == "123"

    def test_customer_display_appends_address(self, order):
        assert customer_display(order) == "Maria - Rua das Flores, 10"


class TestReceipt:
    def test_from_bracketed_notes(self, order, establishment):
        receipt = build_receipt_for_order(order, [], establishment, Channel.PARTNER_SITE)
        assert receipt.header.establishment_name == "NA BRASA BURGER"
        assert receipt.header.establishment_cnpj == "12.345.678/0001-99"
        assert receipt.source_strategy == "bracketed"
        assert [(l.name, l.quantity, l.unit_price, l.total_price, l.notes) for l in receipt.lines] == [
            ("Cheeseburger", 2, 10.0, 20.0, "Obs: sem cebola")
        ]
        assert receipt.general_instructions == "Tocar a campainha"
        assert receipt.order_type == "DELIVERY"
        assert receipt.payment_method_label == "Crédito"
        assert receipt.total_amount == 25.0
        assert receipt.establishment_id == establishment.id

    def test_stored_items_when_notes_are_plain(self, order, establishment):
        order.notes = "Capricha no molho"
        items = [
            OrderItem(order_id=order.id, product_name="X-Tudo", quantity=1, unit_price=20.0, total_price=20.0)
        ]
        receipt = build_receipt_for_order(order, items, establishment, Channel.POINT_OF_SALE)
        assert receipt.source_strategy == "stored_items"
        assert receipt.lines[0].name == "X-Tudo"
        assert receipt.general_instructions == "Capricha no molho"

    def test_fallback_line(self, order, establishment):
        order.notes = None
        receipt = build_receipt_for_order(order, [], establishment, Channel.ONLINE_MENU)
        assert receipt.source_strategy == "fallback"
        assert [(l.name, l.total_price) for l in receipt.lines] == [("Pedido Online", 25.0)]
        assert receipt.general_instructions is None


class TestNonFiscal:
    def test_cpf_formatted(self, order, establishment):
        payload = NonFiscalReceiptRequest(customer_phone="11987654321", customer_cpf="123.456.789-09")
        receipt = build_non_fiscal_receipt(order, [], establishment, Channel.PARTNER_SITE, payload)
        assert receipt.customer_cpf == "123.456.789-09"
        assert receipt.customer_name == "Maria"
        assert receipt.lines[0].name == "Cheeseburger"

    def test_phone_required(self):
        with pytest.raises(ValidationError):
            NonFiscalReceiptRequest(customer_phone="  ")

    def test_cpf_needs_eleven_digits(self):
        with pytest.raises(ValidationError):
            NonFiscalReceiptRequest(customer_phone="11987654321", customer_cpf="123.456")

    def test_blank_cpf_is_none(self):
        assert NonFiscalReceiptRequest(customer_phone="11987654321", customer_cpf=" ").customer_cpf is None
