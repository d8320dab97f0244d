# app/models/order.py
import uuid
from datetime import datetime, date, timezone

from sqlalchemy import Column, JSON
from sqlmodel import SQLModel, Field


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Order(SQLModel, table=True):
    """
    Order received through any channel (PDV, totem, online menu, partner site).

    Provenance (channel / origin / source_domain) is stored raw; the
    channel is derived on read by app.services.classifier.
    """

    __tablename__ = "orders"

    id: uuid.UUID = Field(
        default_factory=uuid.uuid4,
        primary_key=True,
        index=True,
    )

    establishment_id: uuid.UUID = Field(
        foreign_key="establishments.id",
        index=True,
    )

    # Human-facing sequence number (may be reissued at accept time)
    order_number: str = Field(index=True)

    customer_name: str | None = Field(default=None)
    customer_phone: str | None = Field(default=None)

    # pending | preparing | ready | completed | cancelled
    status: str = Field(default="pending", index=True)

    # pending | paid | cancelled
    payment_status: str = Field(default="pending", index=True)

    # dinheiro | pix | cartao_credito | cartao_debito | online | whatsapp | balcao | fiado
    payment_method: str | None = Field(default=None)

    # dine_in | takeout | delivery | counter
    order_type: str = Field(default="counter")

    table_number: str | None = Field(default=None)

    # Provenance tags, as written by each intake
    channel: str | None = Field(default=None)
    origin: str | None = Field(default=None)
    source_domain: str | None = Field(default=None)

    rejection_reason: str | None = Field(
        default=None,
        description="Operator reason; set only when cancelled by rejection",
    )
    accepted_and_printed_at: datetime | None = Field(
        default=None,
        description="Set once the order is accepted; blocks rejection afterwards",
    )

    delivery_boy_id: uuid.UUID | None = Field(
        default=None,
        foreign_key="delivery_boys.id",
    )

    # Orders taken while closed are held until the next opening
    queued_until_next_open: bool = Field(default=False)
    release_at: datetime | None = Field(default=None)

    # Credit sale ("fiado")
    is_credit_sale: bool = Field(default=False, index=True)
    credit_due_date: date | None = Field(default=None)
    credit_received_at: datetime | None = Field(default=None)
    credit_interest_rate_per_day: float = Field(
        default=0.0,
        description="Daily simple interest as a fraction (0.01 = 1%/day)",
    )
    credit_interest_amount: float = Field(
        default=0.0,
        description="Interest frozen at the moment the receivable was received",
    )

    subtotal: float = Field(default=0.0)
    discount_amount: float = Field(default=0.0)
    delivery_fee: float = Field(default=0.0)
    tax_amount: float = Field(default=0.0)
    total_amount: float = Field(default=0.0)

    notes: str | None = Field(default=None)

    created_at: datetime = Field(
        default_factory=_utcnow,
        index=True,
        description="Creation timestamp (UTC)",
    )
    updated_at: datetime = Field(
        default_factory=_utcnow,
        description="Last mutation timestamp (UTC)",
    )


class OrderItem(SQLModel, table=True):
    """
    Line item inside an order.

    product_name is a snapshot taken at intake so receipts survive
    catalog renames. customizations holds addon rows:
    [{"id": ..., "name": ..., "price": ..., "quantity": ...}].
    """

    __tablename__ = "order_items"

    id: uuid.UUID = Field(
        default_factory=uuid.uuid4,
        primary_key=True,
        index=True,
    )

    order_id: uuid.UUID = Field(
        foreign_key="orders.id",
        index=True,
    )

    product_id: uuid.UUID | None = Field(default=None, index=True)
    product_name: str | None = Field(default=None)

    quantity: int = Field(
        gt=0,
        description="Quantity ordered (>=1)",
    )
    unit_price: float = Field(default=0.0)
    total_price: float = Field(default=0.0)

    notes: str | None = Field(default=None)

    customizations: list[dict] = Field(
        default_factory=list,
        sa_column=Column(JSON, nullable=False, default=list),
    )
