"""Request dependencies: DB session, admin identity, kiosk session header."""

from collections.abc import Generator

from fastapi import Depends, Header, HTTPException, status
from fastapi.security import OAuth2PasswordBearer
from sqlalchemy.orm import Session

from kiosk_pairing.db.session import SessionLocal
from kiosk_pairing.models.user import User, UserRole
from kiosk_pairing.services.auth import decode_token, get_user_by_username

oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/api/auth/login")

# Roles allowed to issue codes and manage kiosks
PAIRING_ROLES = frozenset({UserRole.ADMIN.value, UserRole.OPERATOR.value})


def get_db() -> Generator[Session, None, None]:
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def _unauthorized(detail: str = "Could not validate credentials") -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "Bearer"},
    )


def get_current_user(db: Session = Depends(get_db), token: str = Depends(oauth2_scheme)) -> User:
    """Resolve the bearer token to an enabled user account."""
    token_data = decode_token(token)
    user = get_user_by_username(db, token_data.username) if token_data else None
    # Disabled accounts look the same as unknown ones
    if user is None or not user.is_active:
        raise _unauthorized()
    return user


def get_current_operator(current_user: User = Depends(get_current_user)) -> User:
    """Any approved account may issue codes, revoke them and watch kiosks."""
    if current_user.role not in PAIRING_ROLES:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Account pending approval",
        )
    return current_user


def get_current_admin(current_user: User = Depends(get_current_user)) -> User:
    if current_user.role != UserRole.ADMIN.value:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Admin access required",
        )
    return current_user


def get_kiosk_session(x_kiosk_session: str | None = Header(default=None)) -> str:
    """Session token a paired kiosk presents on its own requests."""
    if not x_kiosk_session or not x_kiosk_session.strip():
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing X-Kiosk-Session header",
        )
    return x_kiosk_session.strip()
