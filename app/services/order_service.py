# app/services/order_service.py
import logging
import uuid
from datetime import date, datetime, timedelta

from fastapi import HTTPException, status
from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session

from app.core.timeutils import local_date, local_today, utcnow
from app.models.establishment import Courier, Establishment
from app.models.order import Order
from app.repositories.establishment_repo import CourierRepository, EstablishmentRepository
from app.repositories.order_repo import OrderRepository
from app.schemas.credit import ReceivablesListing
from app.schemas.order import (
    CourierRead,
    OrderEdit,
    OrderItemRead,
    OrderRead,
    OrderWithItemsRead,
    TabCounts,
    TabListing,
    TransitionResult,
    WhatsAppLink,
)
from app.schemas.receipt import NonFiscalReceiptRequest, NonFiscalReceiptResult, Receipt
from app.schemas.view_state import AllTabFilters, OrdersViewState
from app.services.classifier import Channel, ONLINE_CHANNELS
from app.services.collaborators import OrderNumberGenerator, Printer
from app.services.credit_service import CreditBucket, bucket_receivables, freeze_interest
from app.services.messaging import build_whatsapp_link, should_offer_whatsapp
from app.services.receipt_service import build_non_fiscal_receipt, build_receipt_for_order
from app.services.side_effects import PRINT_RECEIPT, STOCK_DEDUCTION, SideEffectRunner
from app.services.tabs import Tab, TabPartitioner, is_open_receivable, is_rejected

logger = logging.getLogger(__name__)

# Forward-only progression; cancelled is reachable from pending via reject()
STATUS_SEQUENCE = ("pending", "preparing", "ready", "completed")

ACCEPTABLE_CHANNELS = frozenset(ONLINE_CHANNELS | {Channel.KIOSK})

DAYS_PER_MONTH = 30


class OrderService:
    """
    Operator-side order workflow for one establishment.

    Responsibilities:
      - List orders per tab (delegates assignment to TabPartitioner)
      - Accept-and-print with courier resolution
      - Forward status moves, payment confirmation, rejection, edits
      - Receivables listing and settlement (credit sales)
      - Receipts and the WhatsApp PIX hand-off

    The order row is committed first; printing, stock deduction and
    order-number reissue run afterwards through the outbox and only ever
    produce warnings.
    """

    def __init__(
        self,
        order_repo: OrderRepository,
        courier_repo: CourierRepository,
        establishment_repo: EstablishmentRepository,
        partitioner: TabPartitioner,
        runner: SideEffectRunner,
        printer: Printer,
        number_generator: OrderNumberGenerator,
        retention_months: int = 3,
    ):
        self.order_repo = order_repo
        self.courier_repo = courier_repo
        self.establishment_repo = establishment_repo
        self.partitioner = partitioner
        self.runner = runner
        self.printer = printer
        self.number_generator = number_generator
        self.retention_months = retention_months

    # -------- Read side --------

    def _recent_orders(
        self,
        session: Session,
        establishment_id: uuid.UUID,
        now: datetime,
    ) -> list[Order]:
        since = now - timedelta(days=DAYS_PER_MONTH * self.retention_months)
        orders = list(self.order_repo.list_recent(session, establishment_id, since))
        # Old unreceived credit sales stay visible in Receivables
        seen = {o.id for o in orders}
        for order in self.order_repo.list_receivables(session, establishment_id):
            if order.id not in seen:
                orders.append(order)
        return orders

    def to_read(self, order: Order) -> OrderRead:
        return OrderRead.model_validate(
            order,
            update={"channel": self.partitioner.classify(order).value},
        )

    def list_tab(
        self,
        session: Session,
        establishment_id: uuid.UUID,
        tab: Tab,
        search: str | None = None,
        filters: AllTabFilters | None = None,
        now: datetime | None = None,
    ) -> TabListing:
        now = now or utcnow()
        orders = self._recent_orders(session, establishment_id, now)
        selected = self.partitioner.list_tab(orders, tab, search=search, filters=filters, now=now)
        return TabListing(
            tab=Tab(tab).value,
            orders=[self.to_read(o) for o in selected],
            count=len(selected),
        )

    def list_view(
        self,
        session: Session,
        establishment_id: uuid.UUID,
        state: OrdersViewState,
    ) -> TabListing:
        """Listing for the operator's current screen state."""
        return self.list_tab(
            session,
            establishment_id,
            Tab(state.active_tab),
            search=state.search_text,
            filters=state.filters,
        )

    def tab_counts(
        self,
        session: Session,
        establishment_id: uuid.UUID,
        now: datetime | None = None,
    ) -> TabCounts:
        now = now or utcnow()
        counts = self.partitioner.counts(self._recent_orders(session, establishment_id, now), now)
        return TabCounts(**{tab.value: n for tab, n in counts.items()})

    def get_order(
        self,
        session: Session,
        establishment_id: uuid.UUID,
        order_id: uuid.UUID,
    ) -> OrderWithItemsRead:
        order = self._get_order(session, establishment_id, order_id)
        items = self.order_repo.list_items_for_order(session, order.id)
        return OrderWithItemsRead.model_validate(
            order,
            update={
                "channel": self.partitioner.classify(order).value,
                "items": [OrderItemRead.model_validate(it) for it in items],
            },
        )

    # -------- Lifecycle --------

    def accept_and_print(
        self,
        session: Session,
        establishment_id: uuid.UUID,
        order_id: uuid.UUID,
        courier_id: uuid.UUID | None = None,
        now: datetime | None = None,
    ) -> TransitionResult:
        """
        Accept an online or kiosk order and print it.

        Steps:
          1. Check the order is pending, not yet accepted, from an
             accepting channel.
          2. Resolve the courier for delivery orders (before commit):
             - explicit courier_id must be an active courier
             - exactly one active courier => auto-assign
             - several => 409 courier_selection_required (nothing written)
             - none / directory failure => unassigned (+ warning on failure)
          3. Set accepted_and_printed_at and commit.
          4. Best-effort, each isolated:
             - partner-site orders get a till-sequence order number
             - stock deduction (outbox)
             - Parser -> Composer -> Printer (outbox)
        """
        now = now or utcnow()
        order = self._get_order(session, establishment_id, order_id)
        channel = self.partitioner.classify(order)
        warnings: list[str] = []

        if channel not in ACCEPTABLE_CHANNELS:
            raise HTTPException(
                status_code=status.HTTP_409_CONFLICT,
                detail="Only online and kiosk orders go through accept-and-print",
            )
        if order.accepted_and_printed_at is not None:
            raise HTTPException(
                status_code=status.HTTP_409_CONFLICT,
                detail="Order was already accepted",
            )
        if order.status != "pending":
            raise HTTPException(
                status_code=status.HTTP_409_CONFLICT,
                detail=f"Cannot accept an order in status '{order.status}'",
            )

        courier: Courier | None = None
        if order.order_type == "delivery" and order.delivery_boy_id is None:
            courier, warning = self._resolve_courier(session, establishment_id, courier_id)
            if warning:
                warnings.append(warning)
            # the directory lookup may have rolled the session back
            order = self._get_order(session, establishment_id, order_id)

        if courier is not None:
            order.delivery_boy_id = courier.id
        order.accepted_and_printed_at = now
        order.updated_at = now
        order = self._commit(session, order)
        logger.info(
            "Order %s accepted (channel=%s, courier=%s)",
            order.order_number,
            channel.value,
            courier.name if courier else None,
        )

        if channel == Channel.PARTNER_SITE:
            warning = self._reissue_order_number(session, order)
            if warning:
                warnings.append(warning)

        warning = self.runner.enqueue_and_run(session, order, STOCK_DEDUCTION, reason="accept")
        if warning:
            warnings.append(warning)
        print_warning = self.runner.enqueue_and_run(session, order, PRINT_RECEIPT, reason="accept")
        if print_warning:
            warnings.append(print_warning)

        return TransitionResult(
            order=self.to_read(order),
            warnings=warnings,
            printed=print_warning is None,
            assigned_courier=CourierRead.model_validate(courier) if courier else None,
        )

    def mark_preparing(self, session: Session, establishment_id: uuid.UUID, order_id: uuid.UUID) -> TransitionResult:
        return self._advance(session, establishment_id, order_id, "preparing")

    def mark_ready(self, session: Session, establishment_id: uuid.UUID, order_id: uuid.UUID) -> TransitionResult:
        return self._advance(session, establishment_id, order_id, "ready")

    def mark_completed(self, session: Session, establishment_id: uuid.UUID, order_id: uuid.UUID) -> TransitionResult:
        return self._advance(session, establishment_id, order_id, "completed")

    def confirm_payment(
        self,
        session: Session,
        establishment_id: uuid.UUID,
        order_id: uuid.UUID,
    ) -> TransitionResult:
        """
        pending -> paid in any non-cancelled status. Paid again is a no-op.

        An open credit sale is settled on the spot: its accrued interest is
        frozen exactly as receive_credit does.
        """
        order = self._get_order(session, establishment_id, order_id)
        if order.status == "cancelled" or order.payment_status == "cancelled":
            raise HTTPException(
                status_code=status.HTTP_409_CONFLICT,
                detail="Cannot confirm payment of a cancelled order",
            )
        if order.payment_status == "paid" and not is_open_receivable(order):
            return TransitionResult(order=self.to_read(order))

        now = utcnow()
        if is_open_receivable(order):
            self._settle_credit(order, now)
        order.payment_status = "paid"
        order.updated_at = now
        order = self._commit(session, order)
        logger.info("Order %s payment confirmed", order.order_number)
        return TransitionResult(order=self.to_read(order))

    def reject(
        self,
        session: Session,
        establishment_id: uuid.UUID,
        order_id: uuid.UUID,
        reason: str,
    ) -> TransitionResult:
        """
        Cancel a pending order with an operator reason.

        Refused once the order was accepted: a printed order is being
        prepared and can no longer be turned down.
        """
        reason = (reason or "").strip()
        if not reason:
            raise HTTPException(
                status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
                detail="A rejection reason is required",
            )

        order = self._get_order(session, establishment_id, order_id)
        if order.accepted_and_printed_at is not None:
            raise HTTPException(
                status_code=status.HTTP_409_CONFLICT,
                detail="Order was already accepted and cannot be rejected",
            )
        if order.status != "pending":
            raise HTTPException(
                status_code=status.HTTP_409_CONFLICT,
                detail=f"Cannot reject an order in status '{order.status}'",
            )

        order.status = "cancelled"
        order.rejection_reason = reason
        if order.payment_status == "pending":
            order.payment_status = "cancelled"
        order.updated_at = utcnow()
        order = self._commit(session, order)
        logger.info("Order %s rejected: %s", order.order_number, reason)
        return TransitionResult(order=self.to_read(order))

    def edit(
        self,
        session: Session,
        establishment_id: uuid.UUID,
        order_id: uuid.UUID,
        payload: OrderEdit,
    ) -> TransitionResult:
        """
        Partial edit. Only fields present in the payload are written.

        A changed payment_method reprints the receipt; a failed reprint is
        a warning and the edit stays committed. A rejected order keeps its
        status, and marking an open credit sale paid settles it.
        """
        order = self._get_order(session, establishment_id, order_id)
        changes = payload.model_dump(exclude_unset=True)

        if changes.get("status") == "cancelled" and order.status != "cancelled":
            raise HTTPException(
                status_code=status.HTTP_409_CONFLICT,
                detail="Use the reject endpoint to cancel an order",
            )
        if is_rejected(order) and changes.get("status", order.status) != order.status:
            raise HTTPException(
                status_code=status.HTTP_409_CONFLICT,
                detail="A rejected order cannot be reopened",
            )

        method_changed = (
            "payment_method" in changes
            and (changes["payment_method"] or None) != (order.payment_method or None)
        )

        settles_credit = changes.get("payment_status") == "paid" and is_open_receivable(order)

        now = utcnow()
        for field, value in changes.items():
            setattr(order, field, value)
        if settles_credit:
            self._settle_credit(order, now)
        order.updated_at = now
        order = self._commit(session, order)

        warnings: list[str] = []
        printed = False
        if method_changed:
            logger.info(
                "Order %s payment method changed to %s; reprinting",
                order.order_number,
                order.payment_method,
            )
            warning = self.runner.enqueue_and_run(
                session, order, PRINT_RECEIPT, reason="payment_method_edit"
            )
            if warning:
                warnings.append(warning)
            printed = warning is None

        return TransitionResult(order=self.to_read(order), warnings=warnings, printed=printed)

    # -------- Receivables --------

    def list_receivables(
        self,
        session: Session,
        establishment_id: uuid.UUID,
        today: date | None = None,
    ) -> ReceivablesListing:
        today = today or local_today(self.partitioner.tz_name)
        orders = [
            o
            for o in self.order_repo.list_receivables(session, establishment_id)
            if not is_rejected(o)
        ]
        grouped = bucket_receivables(orders, today)
        total = sum(e.total_due for entries in grouped.values() for e in entries)
        return ReceivablesListing(
            today=today,
            overdue=grouped[CreditBucket.OVERDUE],
            due_today=grouped[CreditBucket.DUE_TODAY],
            not_yet_due=grouped[CreditBucket.NOT_YET_DUE],
            total_outstanding=round(total, 2),
        )

    def receive_credit(
        self,
        session: Session,
        establishment_id: uuid.UUID,
        order_id: uuid.UUID,
        payment_method: str,
        now: datetime | None = None,
    ) -> TransitionResult:
        """
        Settle a credit sale.

        The interest accrued up to the local receipt day is frozen on the
        order and never recomputed afterwards.
        """
        now = now or utcnow()
        order = self._get_order(session, establishment_id, order_id)
        if not order.is_credit_sale:
            raise HTTPException(
                status_code=status.HTTP_409_CONFLICT,
                detail="Order is not a credit sale",
            )
        if order.credit_received_at is not None:
            raise HTTPException(
                status_code=status.HTTP_409_CONFLICT,
                detail="Receivable was already received",
            )
        if is_rejected(order) or order.payment_status == "cancelled":
            raise HTTPException(
                status_code=status.HTTP_409_CONFLICT,
                detail="Cannot receive a cancelled order",
            )

        self._settle_credit(order, now)
        order.payment_status = "paid"
        order.payment_method = payment_method
        order.updated_at = now
        order = self._commit(session, order)
        logger.info(
            "Receivable %s received (interest=%.2f)",
            order.order_number,
            order.credit_interest_amount,
        )
        return TransitionResult(order=self.to_read(order))

    # -------- Receipts & messaging --------

    def receipt(
        self,
        session: Session,
        establishment_id: uuid.UUID,
        order_id: uuid.UUID,
    ) -> Receipt:
        order = self._get_order(session, establishment_id, order_id)
        establishment = self._get_establishment(session, establishment_id)
        items = self.order_repo.list_items_for_order(session, order.id)
        return build_receipt_for_order(order, items, establishment, self.partitioner.classify(order))

    def non_fiscal_receipt(
        self,
        session: Session,
        establishment_id: uuid.UUID,
        order_id: uuid.UUID,
        payload: NonFiscalReceiptRequest,
    ) -> NonFiscalReceiptResult:
        order = self._get_order(session, establishment_id, order_id)
        establishment = self._get_establishment(session, establishment_id)
        items = self.order_repo.list_items_for_order(session, order.id)
        receipt = build_non_fiscal_receipt(
            order, items, establishment, self.partitioner.classify(order), payload
        )
        try:
            self.printer.print_non_fiscal(receipt)
        except Exception as e:
            logger.exception("Non-fiscal receipt printing failed for order %s", order.order_number)
            return NonFiscalReceiptResult(
                receipt=receipt,
                printed=False,
                warnings=[f"Receipt printing failed: {e}"],
            )
        return NonFiscalReceiptResult(receipt=receipt, printed=True)

    def whatsapp_link(
        self,
        session: Session,
        establishment_id: uuid.UUID,
        order_id: uuid.UUID,
    ) -> WhatsAppLink:
        order = self._get_order(session, establishment_id, order_id)
        if not should_offer_whatsapp(order, self.partitioner.classify(order)):
            return WhatsAppLink(offered=False)
        establishment = self._get_establishment(session, establishment_id)
        url = build_whatsapp_link(order, establishment)
        return WhatsAppLink(offered=url is not None, url=url)

    # -------- Helpers --------

    def _settle_credit(self, order: Order, now: datetime) -> None:
        """Freeze the interest accrued up to the local day of now."""
        received_on = local_date(now, self.partitioner.tz_name)
        order.credit_interest_amount = freeze_interest(order, received_on)
        order.credit_received_at = now

    def _get_order(
        self,
        session: Session,
        establishment_id: uuid.UUID,
        order_id: uuid.UUID,
    ) -> Order:
        order = self.order_repo.get_for_establishment(session, establishment_id, order_id)
        if not order:
            raise HTTPException(
                status_code=status.HTTP_404_NOT_FOUND,
                detail="Order not found",
            )
        return order

    def _get_establishment(self, session: Session, establishment_id: uuid.UUID) -> Establishment:
        establishment = self.establishment_repo.get_by_id(session, establishment_id)
        if not establishment:
            raise HTTPException(
                status_code=status.HTTP_404_NOT_FOUND,
                detail="Establishment not found",
            )
        return establishment

    def _commit(self, session: Session, order: Order) -> Order:
        try:
            self.order_repo.update_order(session, order)
            session.commit()
            session.refresh(order)
        except SQLAlchemyError:
            session.rollback()
            logger.exception("Failed to persist change to order %s", order.id)
            raise HTTPException(
                status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
                detail="Failed to persist order change",
            )
        return order

    def _advance(
        self,
        session: Session,
        establishment_id: uuid.UUID,
        order_id: uuid.UUID,
        target: str,
    ) -> TransitionResult:
        """
        Forward-only status move along STATUS_SEQUENCE.

        Skipping steps is allowed (a counter order can go straight to
        completed); moving backwards is not. Online orders must have been
        accepted first.
        """
        order = self._get_order(session, establishment_id, order_id)
        if order.status == "cancelled":
            raise HTTPException(
                status_code=status.HTTP_409_CONFLICT,
                detail="Order is cancelled",
            )
        if (
            self.partitioner.classify(order) in ONLINE_CHANNELS
            and order.accepted_and_printed_at is None
        ):
            raise HTTPException(
                status_code=status.HTTP_409_CONFLICT,
                detail="Online orders must be accepted before they move on",
            )

        current = STATUS_SEQUENCE.index(order.status) if order.status in STATUS_SEQUENCE else -1
        wanted = STATUS_SEQUENCE.index(target)
        if current == wanted:
            return TransitionResult(order=self.to_read(order))
        if current > wanted:
            raise HTTPException(
                status_code=status.HTTP_409_CONFLICT,
                detail=f"Invalid status transition: {order.status} -> {target}",
            )

        previous = order.status
        order.status = target
        order.updated_at = utcnow()
        order = self._commit(session, order)
        logger.info("Order %s %s -> %s", order.order_number, previous, target)
        return TransitionResult(order=self.to_read(order))

    def _resolve_courier(
        self,
        session: Session,
        establishment_id: uuid.UUID,
        courier_id: uuid.UUID | None,
    ) -> tuple[Courier | None, str | None]:
        if courier_id is not None:
            courier = self.courier_repo.get_by_id(session, courier_id)
            if (
                courier is None
                or courier.establishment_id != establishment_id
                or not courier.is_active
            ):
                raise HTTPException(
                    status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
                    detail="Unknown or inactive courier",
                )
            return courier, None

        try:
            couriers = self.courier_repo.list_active(session, establishment_id)
        except SQLAlchemyError:
            session.rollback()
            logger.exception("Courier directory lookup failed")
            return None, "Courier directory unavailable; order left unassigned"

        if len(couriers) == 1:
            return couriers[0], None
        if len(couriers) > 1:
            raise HTTPException(
                status_code=status.HTTP_409_CONFLICT,
                detail={
                    "code": "courier_selection_required",
                    "message": "Choose a courier for this delivery",
                    "couriers": [
                        CourierRead.model_validate(c).model_dump(mode="json") for c in couriers
                    ],
                },
            )
        return None, None

    def _reissue_order_number(self, session: Session, order: Order) -> str | None:
        """Partner-site orders take the till's next number after acceptance."""
        previous = order.order_number
        try:
            new_number = self.number_generator.next_number(order.establishment_id)
        except Exception as e:
            logger.exception("Order number reissue failed for %s", previous)
            return f"Order number reissue failed: {e}"

        order.order_number = new_number
        order.updated_at = utcnow()
        try:
            self.order_repo.update_order(session, order)
            session.commit()
            session.refresh(order)
        except SQLAlchemyError:
            session.rollback()
            # reloaded lazily; the stock and print steps still run
            session.expire(order)
            logger.exception("Could not store reissued number for order %s", previous)
            return "Order number reissue failed: could not be saved"
        logger.info("Order %s renumbered to %s", previous, new_number)
        return None
