# app/models/establishment.py
import uuid

from sqlmodel import SQLModel, Field


class Establishment(SQLModel, table=True):
    """
    Store header data printed on receipts and used in customer messages.

    Catalog/settings management lives elsewhere; this service only reads it.
    """

    __tablename__ = "establishments"

    id: uuid.UUID = Field(
        default_factory=uuid.uuid4,
        primary_key=True,
        index=True,
    )

    name: str
    address: str | None = Field(default=None)
    phone: str | None = Field(default=None)
    cnpj: str | None = Field(default=None)

    # PIX key shared with customers through the WhatsApp hand-off
    pix_key_value: str | None = Field(default=None)


class Courier(SQLModel, table=True):
    """
    Delivery courier ("motoboy"). Roster CRUD is external; read-only here.
    """

    __tablename__ = "delivery_boys"

    id: uuid.UUID = Field(
        default_factory=uuid.uuid4,
        primary_key=True,
        index=True,
    )

    establishment_id: uuid.UUID = Field(
        foreign_key="establishments.id",
        index=True,
    )

    name: str
    phone: str | None = Field(default=None)
    is_active: bool = Field(default=True, index=True)
