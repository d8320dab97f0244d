# app/models/side_effect.py
import uuid
from datetime import datetime, timezone

from sqlmodel import SQLModel, Field


class SideEffectTask(SQLModel, table=True):
    """
    Outbox row for a best-effort side effect of an order transition.

    kind:   print_receipt | stock_deduction
    status: pending | done | failed

    A failed row keeps its last_error and can be retried; the order
    mutation that produced it is never rolled back.
    """

    __tablename__ = "side_effect_tasks"

    id: uuid.UUID = Field(
        default_factory=uuid.uuid4,
        primary_key=True,
        index=True,
    )

    establishment_id: uuid.UUID = Field(index=True)
    order_id: uuid.UUID = Field(foreign_key="orders.id", index=True)

    kind: str = Field(index=True)
    status: str = Field(default="pending", index=True)

    # What triggered the task (accept, payment_method_edit, retry ...)
    reason: str | None = Field(default=None)

    attempts: int = Field(default=0)
    last_error: str | None = Field(default=None)

    created_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc),
    )
    updated_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc),
    )
