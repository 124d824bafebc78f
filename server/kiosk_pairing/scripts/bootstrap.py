"""Create the first admin account from BOOTSTRAP_ADMIN_* on an empty database.

Run once per deploy, before the API starts; it does nothing when any account
exists already or no bootstrap credentials are configured.
"""

import sys

from kiosk_pairing.core.config import get_settings
from kiosk_pairing.core.errors import PairingError
from kiosk_pairing.db.session import SessionLocal
from kiosk_pairing.models.user import User, UserRole
from kiosk_pairing.services.auth import create_user


def bootstrap_admin(session_factory=SessionLocal) -> User | None:
    """Return the created admin, or None when bootstrapping was not needed."""
    settings = get_settings()
    username = settings.bootstrap_admin_username
    password = settings.bootstrap_admin_password
    if not (username and password):
        print("Bootstrap: BOOTSTRAP_ADMIN_USERNAME/PASSWORD not set, nothing to do.")
        return None

    db = session_factory()
    try:
        existing = db.query(User.id).count()
        if existing:
            print(f"Bootstrap: database already has {existing} account(s), nothing to do.")
            return None
        admin = create_user(db, username, password, role=UserRole.ADMIN.value)
        print(f"Bootstrap: admin '{admin.username}' created (id {admin.id}).")
        return admin
    finally:
        db.close()


def main() -> None:
    try:
        bootstrap_admin()
    except PairingError as e:
        print(f"Bootstrap failed: {e.detail}", file=sys.stderr)
        sys.exit(1)


if __name__ == "__main__":
    main()
