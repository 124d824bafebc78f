"""Admin console accounts: bcrypt password hashes and short-lived JWT bearer tokens."""

from datetime import UTC, datetime, timedelta

import bcrypt
import jwt
from sqlalchemy.orm import Session

from kiosk_pairing.core.config import get_settings
from kiosk_pairing.core.errors import ConflictError, InvalidArgument
from kiosk_pairing.models.user import User, UserRole
from kiosk_pairing.schemas.auth import TokenData

MIN_PASSWORD_LENGTH = 8


def verify_password(plain_password: str, hashed_password: str) -> bool:
    return bcrypt.checkpw(plain_password.encode("utf-8"), hashed_password.encode("utf-8"))


def get_password_hash(password: str) -> str:
    return bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt()).decode("utf-8")


def create_access_token(data: dict, expires_delta: timedelta | None = None) -> str:
    """Sign ``data`` (normally ``{"sub": username}``) with an expiry of one admin shift."""
    settings = get_settings()
    lifetime = expires_delta or timedelta(minutes=settings.jwt_expire_minutes)
    claims = {**data, "exp": datetime.now(UTC) + lifetime}
    return jwt.encode(claims, settings.jwt_secret, algorithm=settings.jwt_algorithm)


def decode_token(token: str) -> TokenData | None:
    """Return the token's subject, or None for anything expired, forged or malformed."""
    settings = get_settings()
    try:
        claims = jwt.decode(token, settings.jwt_secret, algorithms=[settings.jwt_algorithm])
    except jwt.PyJWTError:
        return None
    if not claims.get("sub"):
        return None
    return TokenData(username=claims["sub"])


# Unknown usernames still pay for one bcrypt check
_DUMMY_HASH = get_password_hash("dummy-timing-equalization")


def get_user_by_username(db: Session, username: str) -> User | None:
    return db.query(User).filter(User.username == username.strip()).first()


def authenticate_user(db: Session, username: str, password: str) -> User | None:
    user = get_user_by_username(db, username)
    password_hash = user.password_hash if user else _DUMMY_HASH
    if not verify_password(password, password_hash) or user is None:
        return None
    return user


def create_user(
    db: Session, username: str, password: str, role: str = UserRole.OPERATOR.value
) -> User:
    """Create a console account.

    Raises:
        InvalidArgument: Blank username, short password or unknown role.
        ConflictError: The username is taken.
    """
    username = username.strip()
    if not username:
        raise InvalidArgument("username is required")
    if len(password) < MIN_PASSWORD_LENGTH:
        raise InvalidArgument(f"password must be at least {MIN_PASSWORD_LENGTH} characters")
    if role not in {r.value for r in UserRole}:
        raise InvalidArgument(f"unknown role '{role}'")
    if get_user_by_username(db, username) is not None:
        raise ConflictError(f"User '{username}' already exists")

    user = User(username=username, password_hash=get_password_hash(password), role=role)
    db.add(user)
    db.commit()
    db.refresh(user)
    return user
