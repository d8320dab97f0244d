# app/repositories/order_repo.py
import uuid
from datetime import datetime

from sqlmodel import Session, select

from app.models.order import Order, OrderItem


class OrderRepository:
    """
    Data access layer for orders and order_items.

    NOTE:
      - No commits here; a lifecycle transition may touch several rows.
        The service is responsible for calling session.commit().
      - Every read is scoped by establishment_id.
    """

    # ---- Orders ----

    def list_recent(
        self,
        session: Session,
        establishment_id: uuid.UUID,
        since: datetime,
    ) -> list[Order]:
        """Orders created at or after `since`, newest first."""
        stmt = (
            select(Order)
            .where(Order.establishment_id == establishment_id)
            .where(Order.created_at >= since)
            .order_by(Order.created_at.desc())
        )
        return session.exec(stmt).all()

    def list_receivables(
        self,
        session: Session,
        establishment_id: uuid.UUID,
    ) -> list[Order]:
        """Unreceived credit sales regardless of age; they must not fall out of view."""
        stmt = (
            select(Order)
            .where(Order.establishment_id == establishment_id)
            .where(Order.is_credit_sale == True)  # noqa: E712
            .where(Order.credit_received_at == None)  # noqa: E711
            .order_by(Order.credit_due_date)
        )
        return session.exec(stmt).all()

    def get_by_id(self, session: Session, order_id: uuid.UUID) -> Order | None:
        return session.get(Order, order_id)

    def get_for_establishment(
        self,
        session: Session,
        establishment_id: uuid.UUID,
        order_id: uuid.UUID,
    ) -> Order | None:
        order = session.get(Order, order_id)
        if order is None or order.establishment_id != establishment_id:
            return None
        return order

    def update_order(self, session: Session, order: Order) -> Order:
        session.add(order)
        session.flush()
        session.refresh(order)
        return order

    # ---- Order items ----

    def list_items_for_order(
        self,
        session: Session,
        order_id: uuid.UUID,
    ) -> list[OrderItem]:
        stmt = select(OrderItem).where(OrderItem.order_id == order_id)
        return session.exec(stmt).all()
