# app/routers/receivables.py
import uuid

from fastapi import APIRouter, Depends
from sqlmodel import Session

from app.core.auth import require_operator
from app.core.dependencies import get_order_service
from app.database import get_session
from app.models.user import User
from app.schemas.credit import ReceivablesListing, ReceivePayload
from app.schemas.order import TransitionResult
from app.services.order_service import OrderService

router = APIRouter(prefix="/receivables", tags=["Receivables"])


@router.get(
    "",
    response_model=ReceivablesListing,
)
def list_receivables(
    session: Session = Depends(get_session),
    operator: User = Depends(require_operator),
    service: OrderService = Depends(get_order_service),
):
    """
    Open credit sales with interest accrued up to today (local calendar).
    """
    return service.list_receivables(session, operator.establishment_id)


@router.post(
    "/{order_id}/receive",
    response_model=TransitionResult,
)
def receive(
    order_id: uuid.UUID,
    payload: ReceivePayload,
    session: Session = Depends(get_session),
    operator: User = Depends(require_operator),
    service: OrderService = Depends(get_order_service),
):
    """
    Settle a receivable; interest is frozen at today's value.
    """
    return service.receive_credit(
        session, operator.establishment_id, order_id, payload.payment_method
    )
