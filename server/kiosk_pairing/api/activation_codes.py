"""Activation code endpoints: admin issuance and listing, public kiosk redemption."""

import logging

from fastapi import APIRouter, Depends, HTTPException, Query, Request, status
from sqlalchemy.orm import Session

from kiosk_pairing.api.deps import get_current_operator, get_db
from kiosk_pairing.core.config import get_settings
from kiosk_pairing.core.errors import ConflictError, ExpiredError, NotFoundError
from kiosk_pairing.core.lockout import redemption_lockout
from kiosk_pairing.core.rate_limit import get_client_ip, limiter
from kiosk_pairing.models.activation_code import CodeState
from kiosk_pairing.models.user import User
from kiosk_pairing.schemas.activation_code import (
    ActivationCodeOut,
    IssueCodeRequest,
    IssuedCodeResponse,
    RedeemRequest,
    RedeemResponse,
)
from kiosk_pairing.services import pairing
from kiosk_pairing.services.code_generator import build_activation_url, render_qr_data_uri

logger = logging.getLogger(__name__)
router = APIRouter()
settings = get_settings()


def _locked_out(seconds: int) -> HTTPException:
    mins = seconds // 60 + 1
    return HTTPException(
        status_code=status.HTTP_429_TOO_MANY_REQUESTS,
        detail=f"Too many invalid activation codes. Try again in {mins} minutes.",
        headers={"Retry-After": str(seconds)},
    )


@router.post("", response_model=IssuedCodeResponse, status_code=status.HTTP_201_CREATED)
@limiter.limit(lambda: f"{settings.issue_rate_limit_per_minute}/minute")
def issue_activation_code(
    request: Request,
    body: IssueCodeRequest | None = None,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_operator),
) -> IssuedCodeResponse:
    """Issue a pending activation code; any older pending code for the kiosk is revoked."""
    body = body or IssueCodeRequest()
    record = pairing.issue_code(
        db,
        kiosk_id=body.kiosk_id,
        kiosk_name=body.name,
        location=body.location,
        user_id=current_user.id,
    )
    base_url = settings.public_url or str(request.base_url)
    activation_url = build_activation_url(base_url, record.kiosk_id, record.code)
    return IssuedCodeResponse(
        code=record.code,
        kiosk_id=record.kiosk_id,
        expires_at=record.expires_at,
        activation_url=activation_url,
        qr=render_qr_data_uri(activation_url),
    )


@router.get("", response_model=list[ActivationCodeOut])
def list_activation_codes(
    state: CodeState | None = None,
    limit: int = Query(50, ge=1, le=500),
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_operator),
):
    return pairing.list_codes(db, state=state.value if state else None, limit=limit)


@router.post("/{code}/redeem", response_model=RedeemResponse)
@limiter.limit(lambda: f"{settings.redeem_rate_limit_per_minute}/minute")
def redeem_activation_code(
    code: str,
    body: RedeemRequest,
    request: Request,
    db: Session = Depends(get_db),
) -> RedeemResponse:
    """Public endpoint the kiosk device calls with the code it scanned or typed."""
    client_ip = get_client_ip(request)
    lockout = settings.is_lockout_enabled

    if lockout:
        is_locked, seconds_remaining = redemption_lockout.is_locked_out(client_ip)
        if is_locked:
            raise _locked_out(seconds_remaining)

    try:
        result = pairing.redeem(db, code, body.device_fingerprint)
    except (NotFoundError, ConflictError, ExpiredError):
        if lockout:
            is_locked, lockout_seconds = redemption_lockout.record_failure(client_ip)
            if is_locked:
                logger.warning("Redemption lockout for %s (%ss)", client_ip, lockout_seconds)
                raise _locked_out(lockout_seconds) from None
        raise

    if lockout:
        redemption_lockout.record_success(client_ip)

    return RedeemResponse(
        kiosk_id=result.kiosk_id,
        session_token=result.session_token,
        redeemed_at=result.redeemed_at,
        name=result.name,
        location=result.location,
        replayed=result.replayed,
    )
