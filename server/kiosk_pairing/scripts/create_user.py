"""Create a pairing console account from the command line.

    python -m kiosk_pairing.scripts.create_user --username alice --password ... --role admin
"""

import argparse
import sys

from kiosk_pairing.core.errors import PairingError
from kiosk_pairing.db.session import SessionLocal
from kiosk_pairing.models.user import UserRole
from kiosk_pairing.services.auth import create_user


def main(argv: list[str] | None = None):
    parser = argparse.ArgumentParser(description="Create a kiosk pairing user")
    parser.add_argument("--username", required=True, help="Login name")
    parser.add_argument("--password", required=True, help="Initial password")
    parser.add_argument(
        "--role",
        choices=[UserRole.ADMIN.value, UserRole.OPERATOR.value],
        default=UserRole.OPERATOR.value,
        help="admin may run sweeps and read the activity log",
    )
    args = parser.parse_args(argv)

    db = SessionLocal()
    try:
        user = create_user(db, args.username, args.password, role=args.role)
    except PairingError as e:
        print(f"Cannot create user: {e.detail}", file=sys.stderr)
        sys.exit(1)
    finally:
        db.close()
    print(f"Created {user.role} '{user.username}' with ID {user.id}")


if __name__ == "__main__":
    main()
