"""Admin console login."""

import logging

from fastapi import APIRouter, Depends, HTTPException, Request, status
from fastapi.security import OAuth2PasswordRequestForm
from sqlalchemy.orm import Session

from kiosk_pairing.api.deps import get_current_user, get_db
from kiosk_pairing.core.config import get_settings
from kiosk_pairing.core.rate_limit import get_client_ip, limiter
from kiosk_pairing.core.time import utcnow
from kiosk_pairing.models.user import User
from kiosk_pairing.schemas.auth import Token
from kiosk_pairing.schemas.user import UserOut
from kiosk_pairing.services.activity_log import log_activity
from kiosk_pairing.services.auth import authenticate_user, create_access_token

logger = logging.getLogger(__name__)

router = APIRouter()
settings = get_settings()


@router.post("/login", response_model=Token)
@limiter.limit(lambda: f"{settings.login_rate_limit_per_minute}/minute")
def login(
    request: Request,
    form_data: OAuth2PasswordRequestForm = Depends(),
    db: Session = Depends(get_db),
) -> Token:
    """Exchange username and password for a bearer token for the admin console."""
    user = authenticate_user(db, form_data.username, form_data.password)
    if user is None or not user.is_active:
        logger.warning("Failed admin login from %s", get_client_ip(request))
        log_activity(db, "warning", "auth", f"Failed login for '{form_data.username[:50]}'")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Incorrect username or password",
            headers={"WWW-Authenticate": "Bearer"},
        )

    user.last_login_at = utcnow()
    db.commit()
    return Token(access_token=create_access_token(data={"sub": user.username}))


@router.get("/me", response_model=UserOut)
def get_me(current_user: User = Depends(get_current_user)) -> User:
    return current_user
