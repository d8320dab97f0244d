# app/repositories/side_effect_repo.py
import uuid

from sqlmodel import Session, select

from app.models.side_effect import SideEffectTask


class SideEffectRepository:
    """
    Outbox rows. Like OrderRepository, no commits here.
    """

    def add(self, session: Session, task: SideEffectTask) -> SideEffectTask:
        session.add(task)
        session.flush()
        session.refresh(task)
        return task

    def list_failed(
        self,
        session: Session,
        establishment_id: uuid.UUID,
        limit: int = 100,
    ) -> list[SideEffectTask]:
        stmt = (
            select(SideEffectTask)
            .where(SideEffectTask.establishment_id == establishment_id)
            .where(SideEffectTask.status == "failed")
            .order_by(SideEffectTask.created_at)
            .limit(limit)
        )
        return session.exec(stmt).all()

