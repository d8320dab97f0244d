# app/models/user.py
import uuid
from datetime import datetime, timezone

from sqlmodel import SQLModel, Field


class User(SQLModel, table=True):
    """
    Operator profile (till staff / owner).

    Identity:
      - id: MUST match Supabase auth.users.id (UUID from JWT "sub")

    Every order query is scoped by establishment_id.

    Role:
      - "owner" | "staff"

    Passwords live in Supabase Auth; this table only mirrors identity,
    display name, role and the establishment the operator works for.
    """

    __tablename__ = "profiles"

    id: uuid.UUID = Field(
        primary_key=True,
        index=True,
        description="Matches Supabase auth.users.id",
    )

    email: str = Field(
        unique=True,
        index=True,
        description="Email from Supabase auth.users",
    )

    name: str = Field(
        max_length=80,
        description="Operator display name",
    )

    role: str = Field(
        default="staff",
        index=True,
        description="Application role: owner | staff",
    )

    establishment_id: uuid.UUID = Field(
        foreign_key="establishments.id",
        index=True,
    )

    created_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc),
        description="Creation timestamp (UTC)",
    )
