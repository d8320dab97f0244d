# app/routers/orders.py
import uuid
from datetime import date

from fastapi import APIRouter, Depends
from sqlmodel import Session

from app.core.auth import require_operator
from app.core.dependencies import get_order_service, get_refresh_throttles
from app.database import get_session
from app.models.user import User
from app.schemas.order import (
    AcceptPayload,
    ChangeNotification,
    OrderEdit,
    OrderWithItemsRead,
    RefetchDecision,
    RejectPayload,
    TabCounts,
    TabListing,
    TransitionResult,
    WhatsAppLink,
)
from app.schemas.receipt import NonFiscalReceiptRequest, NonFiscalReceiptResult, Receipt
from app.schemas.view_state import AllTabFilters, OrdersViewState
from app.services.order_service import OrderService
from app.services.refresh_throttle import ThrottleRegistry
from app.services.tabs import Tab

router = APIRouter(prefix="/orders", tags=["Orders"])


# -------- Tabs --------


@router.get(
    "/tabs/counts",
    response_model=TabCounts,
)
def tab_counts(
    session: Session = Depends(get_session),
    operator: User = Depends(require_operator),
    service: OrderService = Depends(get_order_service),
):
    """
    Badge counts for the disjoint tabs (All is not counted).
    """
    return service.tab_counts(session, operator.establishment_id)


@router.get(
    "/tabs/{tab}",
    response_model=TabListing,
)
def list_tab(
    tab: Tab,
    search: str | None = None,
    day: date | None = None,
    payment_method: str | None = None,
    delivery_only: bool = False,
    show_pdv: bool = True,
    show_site: bool = True,
    session: Session = Depends(get_session),
    operator: User = Depends(require_operator),
    service: OrderService = Depends(get_order_service),
):
    """
    Orders of one tab, optionally narrowed by search text.

    The day / payment_method / delivery_only / show_* filters only apply
    to the All tab.
    """
    state = OrdersViewState(
        active_tab=tab.value,
        search_text=search,
        filters=AllTabFilters(
            day=day,
            payment_method=payment_method,
            delivery_only=delivery_only,
            show_pdv=show_pdv,
            show_site=show_site,
        ),
    )
    return service.list_view(session, operator.establishment_id, state)


@router.post("/changes", response_model=RefetchDecision)
def order_changed(
    payload: ChangeNotification,
    operator: User = Depends(require_operator),
    throttles: ThrottleRegistry = Depends(get_refresh_throttles),
):
    """
    Ask whether a change notification should trigger a tab refetch.

    Ordinary updates are coalesced per establishment; new orders skip the
    interval but keep a minimum spacing between them.
    """
    refetch = throttles.should_refetch(
        operator.establishment_id, is_new_order=payload.is_new_order
    )
    return RefetchDecision(refetch=refetch)


# -------- Single order --------


@router.get(
    "/{order_id}",
    response_model=OrderWithItemsRead,
)
def get_order(
    order_id: uuid.UUID,
    session: Session = Depends(get_session),
    operator: User = Depends(require_operator),
    service: OrderService = Depends(get_order_service),
):
    return service.get_order(session, operator.establishment_id, order_id)


@router.post(
    "/{order_id}/accept",
    response_model=TransitionResult,
)
def accept_order(
    order_id: uuid.UUID,
    payload: AcceptPayload | None = None,
    session: Session = Depends(get_session),
    operator: User = Depends(require_operator),
    service: OrderService = Depends(get_order_service),
):
    """
    Accept-and-print an online or kiosk order.

    409 with detail.code == "courier_selection_required" means the
    operator has to pick one of detail.couriers and call again with
    courier_id.
    """
    courier_id = payload.courier_id if payload else None
    return service.accept_and_print(
        session, operator.establishment_id, order_id, courier_id=courier_id
    )


@router.post("/{order_id}/preparing", response_model=TransitionResult)
def mark_preparing(
    order_id: uuid.UUID,
    session: Session = Depends(get_session),
    operator: User = Depends(require_operator),
    service: OrderService = Depends(get_order_service),
):
    return service.mark_preparing(session, operator.establishment_id, order_id)


@router.post("/{order_id}/ready", response_model=TransitionResult)
def mark_ready(
    order_id: uuid.UUID,
    session: Session = Depends(get_session),
    operator: User = Depends(require_operator),
    service: OrderService = Depends(get_order_service),
):
    return service.mark_ready(session, operator.establishment_id, order_id)


@router.post("/{order_id}/complete", response_model=TransitionResult)
def mark_completed(
    order_id: uuid.UUID,
    session: Session = Depends(get_session),
    operator: User = Depends(require_operator),
    service: OrderService = Depends(get_order_service),
):
    return service.mark_completed(session, operator.establishment_id, order_id)


@router.post("/{order_id}/confirm-payment", response_model=TransitionResult)
def confirm_payment(
    order_id: uuid.UUID,
    session: Session = Depends(get_session),
    operator: User = Depends(require_operator),
    service: OrderService = Depends(get_order_service),
):
    return service.confirm_payment(session, operator.establishment_id, order_id)


@router.post("/{order_id}/reject", response_model=TransitionResult)
def reject_order(
    order_id: uuid.UUID,
    payload: RejectPayload,
    session: Session = Depends(get_session),
    operator: User = Depends(require_operator),
    service: OrderService = Depends(get_order_service),
):
    """
    Reject a pending order. Refused once it was accepted.
    """
    return service.reject(session, operator.establishment_id, order_id, payload.reason)


@router.patch("/{order_id}", response_model=TransitionResult)
def edit_order(
    order_id: uuid.UUID,
    payload: OrderEdit,
    session: Session = Depends(get_session),
    operator: User = Depends(require_operator),
    service: OrderService = Depends(get_order_service),
):
    return service.edit(session, operator.establishment_id, order_id, payload)


# -------- Receipts & messaging --------


@router.get("/{order_id}/receipt", response_model=Receipt)
def get_receipt(
    order_id: uuid.UUID,
    session: Session = Depends(get_session),
    operator: User = Depends(require_operator),
    service: OrderService = Depends(get_order_service),
):
    """
    Canonical receipt preview (nothing is printed).
    """
    return service.receipt(session, operator.establishment_id, order_id)


@router.post("/{order_id}/non-fiscal-receipt", response_model=NonFiscalReceiptResult)
def print_non_fiscal_receipt(
    order_id: uuid.UUID,
    payload: NonFiscalReceiptRequest,
    session: Session = Depends(get_session),
    operator: User = Depends(require_operator),
    service: OrderService = Depends(get_order_service),
):
    return service.non_fiscal_receipt(session, operator.establishment_id, order_id, payload)


@router.get("/{order_id}/whatsapp-link", response_model=WhatsAppLink)
def whatsapp_link(
    order_id: uuid.UUID,
    session: Session = Depends(get_session),
    operator: User = Depends(require_operator),
    service: OrderService = Depends(get_order_service),
):
    return service.whatsapp_link(session, operator.establishment_id, order_id)
