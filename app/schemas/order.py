# app/schemas/order.py
import uuid
from datetime import date, datetime
from typing import Literal

from pydantic import ConfigDict, field_validator
from sqlmodel import SQLModel

OrderStatus = Literal["pending", "preparing", "ready", "completed", "cancelled"]
PaymentStatus = Literal["pending", "paid", "cancelled"]
OrderType = Literal["dine_in", "takeout", "delivery", "counter"]


class OrderRead(SQLModel):
    """
    Order as listed in the tabs (without items), plus the derived channel.
    """

    id: uuid.UUID
    establishment_id: uuid.UUID
    order_number: str
    customer_name: str | None
    customer_phone: str | None
    status: str
    payment_status: str
    payment_method: str | None
    order_type: str
    table_number: str | None
    channel: str | None = None
    origin: str | None = None
    source_domain: str | None = None
    rejection_reason: str | None
    accepted_and_printed_at: datetime | None
    delivery_boy_id: uuid.UUID | None
    queued_until_next_open: bool = False
    release_at: datetime | None = None
    is_credit_sale: bool
    credit_due_date: date | None
    credit_received_at: datetime | None
    credit_interest_rate_per_day: float = 0.0
    credit_interest_amount: float = 0.0
    subtotal: float
    discount_amount: float
    delivery_fee: float
    tax_amount: float = 0.0
    total_amount: float
    notes: str | None
    created_at: datetime


class OrderItemRead(SQLModel):
    id: uuid.UUID
    order_id: uuid.UUID
    product_id: uuid.UUID | None
    product_name: str | None
    quantity: int
    unit_price: float
    total_price: float
    notes: str | None
    customizations: list[dict]


class OrderWithItemsRead(OrderRead):
    """
    Full order view including items.
    """

    items: list[OrderItemRead]


class CourierRead(SQLModel):
    id: uuid.UUID
    name: str
    phone: str | None = None


class AcceptPayload(SQLModel):
    """
    Operator payload for accept-and-print.

    courier_id is only needed for delivery orders when more than one
    courier is active.
    """

    model_config = ConfigDict(extra="forbid")

    courier_id: uuid.UUID | None = None


class RejectPayload(SQLModel):
    model_config = ConfigDict(extra="forbid")

    reason: str

    @field_validator("reason")
    @classmethod
    def reason_not_blank(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("A rejection reason is required")
        return v


class OrderEdit(SQLModel):
    """
    Partial edit from the order detail screen.

    Only provided fields are written. Rejection is not reachable through
    here; use the reject endpoint.
    """

    model_config = ConfigDict(extra="forbid")

    customer_name: str | None = None
    customer_phone: str | None = None
    status: OrderStatus | None = None
    payment_status: PaymentStatus | None = None
    payment_method: str | None = None
    table_number: str | None = None
    notes: str | None = None

    @field_validator("customer_name", "customer_phone", "payment_method", "table_number", "notes")
    @classmethod
    def strip_text(cls, v: str | None) -> str | None:
        if v is None:
            return v
        v = v.strip()
        return v or None


class TransitionResult(SQLModel):
    """
    Outcome of a lifecycle operation.

    The order mutation is committed; warnings describe best-effort side
    effects (printing, stock, numbering, courier lookup) that failed.
    """

    order: OrderRead
    warnings: list[str] = []
    printed: bool = False
    assigned_courier: CourierRead | None = None


class TabListing(SQLModel):
    tab: str
    orders: list[OrderRead]
    count: int


class TabCounts(SQLModel):
    pending: int
    kiosk: int
    pdv: int
    rejected: int
    receivables: int


class WhatsAppLink(SQLModel):
    offered: bool
    url: str | None = None


class ChangeNotification(SQLModel):
    """Realtime change event forwarded by the operator screen."""

    is_new_order: bool = False


class RefetchDecision(SQLModel):
    refetch: bool
