# app/schemas/receipt.py
import re
import uuid
from datetime import datetime

from pydantic import ConfigDict, field_validator
from sqlmodel import SQLModel


class ReceiptLine(SQLModel):
    """
    One canonical priced line on a receipt.
    """

    name: str
    quantity: int
    unit_price: float
    total_price: float
    notes: str | None = None


class ReceiptHeader(SQLModel):
    establishment_name: str
    establishment_address: str | None = None
    establishment_phone: str | None = None
    establishment_cnpj: str | None = None


class Receipt(SQLModel):
    """
    Canonical kitchen/customer receipt handed to the printer.

    Independent of how the order text was structured: lines come out of
    the notes parser already cleaned.
    """

    header: ReceiptHeader
    establishment_id: uuid.UUID
    order_id: uuid.UUID
    order_number: str
    created_at: datetime
    order_type: str
    customer_display: str | None = None
    customer_phone: str | None = None
    lines: list[ReceiptLine]
    subtotal: float
    discount_amount: float
    delivery_fee: float
    total_amount: float
    payment_method: str | None = None
    payment_method_label: str | None = None
    general_instructions: str | None = None
    # which reconstruction strategy produced the lines
    source_strategy: str


class NonFiscalReceiptRequest(SQLModel):
    """
    Operator payload for the "cupom não fiscal".

    Phone is mandatory; CPF is optional but must carry 11 digits.
    """

    model_config = ConfigDict(extra="forbid")

    customer_name: str | None = None
    customer_phone: str
    customer_cpf: str | None = None

    @field_validator("customer_phone")
    @classmethod
    def phone_not_empty(cls, v: str) -> str:
        v = v.strip()
        if not re.sub(r"\D", "", v):
            raise ValueError("customer_phone is required")
        return v

    @field_validator("customer_cpf", mode="before")
    @classmethod
    def cpf_eleven_digits(cls, v: str | None) -> str | None:
        if v is None:
            return v
        digits = re.sub(r"\D", "", str(v))
        if not digits:
            return None
        if len(digits) != 11:
            raise ValueError("CPF must have 11 digits")
        return digits


class NonFiscalReceipt(SQLModel):
    header: ReceiptHeader
    establishment_id: uuid.UUID
    order_id: uuid.UUID
    order_number: str
    created_at: datetime
    customer_name: str
    customer_phone: str
    customer_cpf: str | None = None
    lines: list[ReceiptLine]
    subtotal: float
    discount_amount: float
    delivery_fee: float
    tax_amount: float
    total_amount: float
    payment_method_label: str | None = None


class NonFiscalReceiptResult(SQLModel):
    receipt: NonFiscalReceipt
    printed: bool
    warnings: list[str] = []
