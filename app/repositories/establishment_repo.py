# app/repositories/establishment_repo.py
import uuid

from sqlmodel import Session, select

from app.models.establishment import Courier, Establishment


class EstablishmentRepository:
    def get_by_id(self, session: Session, establishment_id: uuid.UUID) -> Establishment | None:
        return session.get(Establishment, establishment_id)


class CourierRepository:
    """
    Read-only view of the courier roster ("delivery_boys").
    """

    def list_active(self, session: Session, establishment_id: uuid.UUID) -> list[Courier]:
        stmt = (
            select(Courier)
            .where(Courier.establishment_id == establishment_id)
            .where(Courier.is_active == True)  # noqa: E712
            .order_by(Courier.name)
        )
        return session.exec(stmt).all()

    def get_by_id(self, session: Session, courier_id: uuid.UUID) -> Courier | None:
        return session.get(Courier, courier_id)
