"""Kiosk status, revocation, deactivation, asset links and device check-ins."""

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from sqlalchemy.orm import Session

from kiosk_pairing.api.deps import get_current_operator, get_db, get_kiosk_session
from kiosk_pairing.core.rate_limit import limiter
from kiosk_pairing.models.kiosk import KioskStatus
from kiosk_pairing.models.user import User
from kiosk_pairing.schemas.activation_code import RevokeResponse
from kiosk_pairing.schemas.asset_link import AssetLinkOut, AssetLinkRequest, AssetOut
from kiosk_pairing.schemas.common import StatusResponse
from kiosk_pairing.schemas.kiosk import (
    CheckInRequest,
    CheckInResponse,
    KioskOut,
    KioskStatusResponse,
)
from kiosk_pairing.services import asset_linker, pairing

# Public endpoints (no auth) - for kiosk devices
public_router = APIRouter()

# Authenticated endpoints - for admins managing kiosks
auth_router = APIRouter()


# ── Public endpoints ───────────────────────────────────────────────────


@public_router.post("/check-in", response_model=CheckInResponse)
@limiter.limit("60/minute")
def kiosk_check_in(
    request: Request,
    body: CheckInRequest | None = None,
    session_token: str = Depends(get_kiosk_session),
    db: Session = Depends(get_db),
):
    """Heartbeat from a paired kiosk. Updates last_seen_at and operational status."""
    body = body or CheckInRequest()
    kiosk = pairing.check_in(db, session_token, body.status)
    return CheckInResponse(
        kiosk_id=kiosk.kiosk_id,
        status=kiosk.operational_status,
        last_seen_at=kiosk.last_seen_at,
    )


# ── Authenticated endpoints ────────────────────────────────────────────


@auth_router.get("", response_model=list[KioskOut])
def list_kiosks(
    status: KioskStatus | None = None,
    limit: int = Query(100, ge=1, le=500),
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_operator),
):
    return pairing.list_kiosks(db, status=status.value if status else None, limit=limit)


@auth_router.get("/{kiosk_id}", response_model=KioskStatusResponse)
def get_kiosk_status(
    kiosk_id: str,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_operator),
):
    """Activation state of a kiosk id. The admin UI polls this while the stream is down."""
    status = pairing.get_kiosk_status(db, kiosk_id)
    return KioskStatusResponse(**vars(status))


@auth_router.post("/{kiosk_id}/revoke", response_model=RevokeResponse)
def revoke_pending_code(
    kiosk_id: str,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_operator),
):
    """Revoke the kiosk's pending activation code, if it has one."""
    record = pairing.revoke(db, kiosk_id, user_id=current_user.id)
    if record is None:
        return RevokeResponse(revoked=False)
    return RevokeResponse(revoked=True, code=record.code)


@auth_router.post("/{kiosk_id}/deactivate", response_model=KioskOut)
def deactivate_kiosk(
    kiosk_id: str,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_operator),
):
    return pairing.deactivate_kiosk(db, kiosk_id, user_id=current_user.id)


def _link_out(link, changed: bool = True) -> AssetLinkOut:
    return AssetLinkOut(
        kiosk_id=link.kiosk_id,
        asset=AssetOut.model_validate(link.asset),
        linked_at=link.linked_at,
        changed=changed,
    )


@auth_router.post("/{kiosk_id}/asset-link", response_model=AssetLinkOut)
def link_asset(
    kiosk_id: str,
    body: AssetLinkRequest,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_operator),
):
    """Link a paired kiosk to an inventory asset by tag or serial number."""
    result = asset_linker.link(
        db,
        kiosk_id,
        asset_tag=body.asset_tag,
        serial_number=body.serial_number,
        user_id=current_user.id,
    )
    return _link_out(result.link, result.changed)


@auth_router.get("/{kiosk_id}/asset-link", response_model=AssetLinkOut)
def get_asset_link(
    kiosk_id: str,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_operator),
):
    link = asset_linker.get_link(db, kiosk_id)
    if link is None:
        raise HTTPException(status_code=404, detail="Kiosk has no asset link")
    return _link_out(link, changed=False)


@auth_router.delete("/{kiosk_id}/asset-link", response_model=StatusResponse)
def delete_asset_link(
    kiosk_id: str,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_operator),
):
    if not asset_linker.unlink(db, kiosk_id, user_id=current_user.id):
        raise HTTPException(status_code=404, detail="Kiosk has no asset link")
    return StatusResponse(status="unlinked")
