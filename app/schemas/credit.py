# app/schemas/credit.py
from datetime import date

from pydantic import ConfigDict, field_validator
from sqlmodel import SQLModel

from app.services.credit_service import CreditLedgerEntry


class ReceivablesListing(SQLModel):
    """
    Open credit sales grouped for the Receivables screen.
    """

    today: date
    overdue: list[CreditLedgerEntry]
    due_today: list[CreditLedgerEntry]
    not_yet_due: list[CreditLedgerEntry]
    total_outstanding: float


class ReceivePayload(SQLModel):
    """
    Settles a receivable. payment_method is how the customer paid now
    (the original method was "fiado").
    """

    model_config = ConfigDict(extra="forbid")

    payment_method: str

    @field_validator("payment_method")
    @classmethod
    def method_not_blank(cls, v: str) -> str:
        v = v.strip().lower()
        if not v:
            raise ValueError("payment_method is required")
        if v == "fiado":
            raise ValueError("a receivable cannot be settled on credit again")
        return v
