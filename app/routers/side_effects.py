# app/routers/side_effects.py
from fastapi import APIRouter, Depends
from sqlmodel import Session

from app.core.auth import require_operator
from app.core.dependencies import get_side_effect_runner
from app.database import get_session
from app.models.user import User
from app.repositories.side_effect_repo import SideEffectRepository
from app.schemas.side_effect import SideEffectTaskRead
from app.services.side_effects import SideEffectRunner

router = APIRouter(prefix="/side-effects", tags=["Side effects"])

side_effect_repo = SideEffectRepository()


@router.get(
    "/failed",
    response_model=list[SideEffectTaskRead],
)
def list_failed(
    session: Session = Depends(get_session),
    operator: User = Depends(require_operator),
):
    """
    Prints and stock deductions that failed and are waiting for a retry.
    """
    return side_effect_repo.list_failed(session, operator.establishment_id)


@router.post(
    "/retry",
    response_model=list[SideEffectTaskRead],
)
def retry_failed(
    session: Session = Depends(get_session),
    operator: User = Depends(require_operator),
    runner: SideEffectRunner = Depends(get_side_effect_runner),
):
    """
    Re-run every failed task; each row comes back with its new status.
    """
    return runner.retry_failed(session, operator.establishment_id)
