# app/schemas/side_effect.py
import uuid
from datetime import datetime

from sqlmodel import SQLModel


class SideEffectTaskRead(SQLModel):
    """
    Outbox row as shown on the "failed side effects" screen.
    """

    id: uuid.UUID
    order_id: uuid.UUID
    kind: str
    status: str
    reason: str | None
    attempts: int
    last_error: str | None
    created_at: datetime
    updated_at: datetime
