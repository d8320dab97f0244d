# app/services/side_effects.py
"""
Best-effort side effects of order transitions, recorded as outbox rows.

Each task is written to side_effect_tasks, run right away, and left
"failed" with its last error when the collaborator blows up. Failures
never undo the order change that triggered them; they are surfaced as
warnings and can be retried from the outbox.
"""
import logging
import uuid
from typing import Iterable

from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session

from app.core.timeutils import utcnow
from app.models.order import Order
from app.models.side_effect import SideEffectTask
from app.repositories.establishment_repo import EstablishmentRepository
from app.repositories.order_repo import OrderRepository
from app.repositories.side_effect_repo import SideEffectRepository
from app.services.classifier import classify_order
from app.services.collaborators import Printer, StockDeduction
from app.services.receipt_service import build_receipt_for_order

logger = logging.getLogger(__name__)

PRINT_RECEIPT = "print_receipt"
STOCK_DEDUCTION = "stock_deduction"

WARNING_PREFIX = {
    PRINT_RECEIPT: "Receipt printing failed",
    STOCK_DEDUCTION: "Stock deduction failed",
}

MAX_ERROR_CHARS = 500


class SideEffectRunner:
    def __init__(
        self,
        printer: Printer,
        stock: StockDeduction,
        order_repo: OrderRepository,
        establishment_repo: EstablishmentRepository,
        side_effect_repo: SideEffectRepository,
        partner_patterns: Iterable[str] = (),
    ):
        self.printer = printer
        self.stock = stock
        self.order_repo = order_repo
        self.establishment_repo = establishment_repo
        self.side_effect_repo = side_effect_repo
        self.partner_patterns = tuple(partner_patterns)

    # -------- Task bodies --------

    def _print_receipt(self, session: Session, order: Order) -> None:
        establishment = self.establishment_repo.get_by_id(session, order.establishment_id)
        if establishment is None:
            raise LookupError(f"Establishment {order.establishment_id} not found")
        items = self.order_repo.list_items_for_order(session, order.id)
        channel = classify_order(order, self.partner_patterns)
        receipt = build_receipt_for_order(order, items, establishment, channel)
        self.printer.print_receipt(receipt)

    def _deduct_stock(self, session: Session, order: Order) -> None:
        self.stock.deduct(order.establishment_id, order.id)

    def _execute(self, session: Session, task: SideEffectTask, order: Order) -> None:
        if task.kind == PRINT_RECEIPT:
            self._print_receipt(session, order)
        elif task.kind == STOCK_DEDUCTION:
            self._deduct_stock(session, order)
        else:
            raise ValueError(f"Unknown side effect kind: {task.kind}")

    # -------- Outbox handling --------

    def _run(self, session: Session, task: SideEffectTask, order: Order) -> str | None:
        """
        Run one task and persist its outcome.

        Steps:
          1. Call the collaborator.
          2. Mark the row done, or failed with the error text.
          3. Commit the row; the order itself was committed earlier.

        Returns:
            None on success, otherwise a warning for the operator.
        """
        task.attempts += 1
        warning: str | None = None
        try:
            self._execute(session, task, order)
            task.status = "done"
            task.last_error = None
        except Exception as e:
            logger.exception(
                "Side effect %s failed for order %s", task.kind, order.order_number
            )
            task.status = "failed"
            task.last_error = str(e)[:MAX_ERROR_CHARS] or e.__class__.__name__
            warning = f"{WARNING_PREFIX.get(task.kind, task.kind)}: {task.last_error}"

        task.updated_at = utcnow()
        try:
            session.add(task)
            session.commit()
            session.refresh(task)
        except SQLAlchemyError:
            session.rollback()
            logger.exception("Could not record outcome of side effect %s", task.id)
            warning = warning or f"{WARNING_PREFIX.get(task.kind, task.kind)}: outcome not recorded"
        return warning

    def enqueue_and_run(
        self,
        session: Session,
        order: Order,
        kind: str,
        reason: str | None = None,
    ) -> str | None:
        task = SideEffectTask(
            establishment_id=order.establishment_id,
            order_id=order.id,
            kind=kind,
            reason=reason,
        )
        try:
            self.side_effect_repo.add(session, task)
        except SQLAlchemyError:
            session.rollback()
            logger.exception("Could not record side effect %s for order %s", kind, order.id)
            return f"{WARNING_PREFIX.get(kind, kind)}: could not be queued"
        return self._run(session, task, order)

    def retry_failed(
        self,
        session: Session,
        establishment_id: uuid.UUID,
    ) -> list[SideEffectTask]:
        """Re-run every failed task of the establishment, oldest first."""
        tasks = self.side_effect_repo.list_failed(session, establishment_id)
        for task in tasks:
            order = self.order_repo.get_by_id(session, task.order_id)
            if order is None:
                continue
            task.reason = "retry"
            self._run(session, task, order)
        return tasks
