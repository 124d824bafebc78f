"""Admin-only maintenance endpoints: manual sweep and the activity log."""

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from kiosk_pairing.api.deps import get_current_admin, get_db
from kiosk_pairing.models.user import User
from kiosk_pairing.schemas.activity_log import ActivityLogEntry
from kiosk_pairing.schemas.event import SweepResponse
from kiosk_pairing.services import pairing
from kiosk_pairing.services.activity_log import get_recent_activity

router = APIRouter()


@router.post("/pairing/sweep", response_model=SweepResponse)
def run_pairing_sweep(
    db: Session = Depends(get_db),
    _admin: User = Depends(get_current_admin),
) -> SweepResponse:
    """Expire overdue codes and re-emit undelivered events now, without waiting for the timer."""
    expired = pairing.expire_sweep(db)
    redelivered = pairing.reconcile(db)
    return SweepResponse(expired=expired, redelivered=redelivered)


@router.get("/activity", response_model=list[ActivityLogEntry])
def list_activity(
    limit: int = Query(50, ge=1, le=200),
    kiosk_id: str | None = None,
    source: str | None = None,
    db: Session = Depends(get_db),
    _admin: User = Depends(get_current_admin),
):
    return get_recent_activity(db, limit=limit, kiosk_id=kiosk_id, source=source)
