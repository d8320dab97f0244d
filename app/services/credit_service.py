# app/services/credit_service.py
"""
Credit-sale ("fiado") receivables: overdue days, interest and buckets.

Interest is simple and accrues once per local calendar day:

    interest = principal * rate_per_day * days_overdue

Once a receivable is received, the interest stored on the order at that
moment is used as-is and never recomputed.
"""
from datetime import date, datetime
from enum import Enum
from typing import Iterable

from pydantic import ConfigDict
from sqlmodel import SQLModel

from app.models.order import Order
from app.services.tabs import is_open_receivable


class CreditBucket(str, Enum):
    OVERDUE = "overdue"
    DUE_TODAY = "due_today"
    NOT_YET_DUE = "not_yet_due"
    RECEIVED = "received"


class CreditLedgerEntry(SQLModel):
    model_config = ConfigDict(extra="forbid")

    order_id: str
    order_number: str
    customer_name: str | None
    due_date: date | None
    principal: float
    rate_per_day: float
    days_overdue: int
    interest: float
    total_due: float
    bucket: CreditBucket
    received_at: datetime | None = None


def days_overdue(due_date: date | None, today: date) -> int:
    """Whole calendar days past due; 0 when not yet due or no due date."""
    if due_date is None:
        return 0
    if isinstance(due_date, datetime):
        due_date = due_date.date()
    return max(0, (today - due_date).days)


def accrued_interest(
    principal: float,
    rate_per_day: float,
    due_date: date | None,
    today: date,
    received_at: datetime | None = None,
    stored_interest: float | None = None,
) -> float:
    if received_at is not None:
        return round(max(0.0, stored_interest or 0.0), 2)
    days = days_overdue(due_date, today)
    if (rate_per_day or 0.0) <= 0 or days <= 0:
        return 0.0
    return round(max(0.0, principal * rate_per_day * days), 2)


def interest_for(order: Order, today: date) -> float:
    return accrued_interest(
        principal=order.total_amount or 0.0,
        rate_per_day=order.credit_interest_rate_per_day or 0.0,
        due_date=order.credit_due_date,
        today=today,
        received_at=order.credit_received_at,
        stored_interest=order.credit_interest_amount,
    )


def bucket_for(order: Order, today: date) -> CreditBucket:
    if order.credit_received_at is not None:
        return CreditBucket.RECEIVED
    if order.credit_due_date is None or order.credit_due_date > today:
        return CreditBucket.NOT_YET_DUE
    if order.credit_due_date == today:
        return CreditBucket.DUE_TODAY
    return CreditBucket.OVERDUE


def ledger_entry(order: Order, today: date) -> CreditLedgerEntry:
    principal = round(order.total_amount or 0.0, 2)
    interest = interest_for(order, today)
    return CreditLedgerEntry(
        order_id=str(order.id),
        order_number=order.order_number,
        customer_name=order.customer_name,
        due_date=order.credit_due_date,
        principal=principal,
        rate_per_day=order.credit_interest_rate_per_day or 0.0,
        days_overdue=days_overdue(order.credit_due_date, today)
        if order.credit_received_at is None
        else 0,
        interest=interest,
        total_due=round(principal + interest, 2),
        bucket=bucket_for(order, today),
        received_at=order.credit_received_at,
    )


def bucket_receivables(
    orders: Iterable[Order],
    today: date,
) -> dict[CreditBucket, list[CreditLedgerEntry]]:
    """Open receivables grouped for display, most overdue first."""
    grouped: dict[CreditBucket, list[CreditLedgerEntry]] = {
        CreditBucket.OVERDUE: [],
        CreditBucket.DUE_TODAY: [],
        CreditBucket.NOT_YET_DUE: [],
    }
    for order in orders:
        if not is_open_receivable(order):
            continue
        entry = ledger_entry(order, today)
        grouped[entry.bucket].append(entry)
    grouped[CreditBucket.OVERDUE].sort(key=lambda e: e.days_overdue, reverse=True)
    grouped[CreditBucket.NOT_YET_DUE].sort(key=lambda e: e.due_date or date.max)
    return grouped


def freeze_interest(order: Order, received_on: date) -> float:
    """Interest to store when the receivable is received on received_on."""
    return accrued_interest(
        principal=order.total_amount or 0.0,
        rate_per_day=order.credit_interest_rate_per_day or 0.0,
        due_date=order.credit_due_date,
        today=received_on,
    )
