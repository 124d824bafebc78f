"""Pytest configuration and fixtures for kiosk pairing tests."""

import os

# Must be set before kiosk_pairing.core.config is first imported
os.environ.setdefault("DATABASE_URL", "sqlite:///:memory:")
os.environ.setdefault("SWEEPER_ENABLED", "false")

from collections.abc import Callable, Generator  # noqa: E402
from datetime import datetime  # noqa: E402

import pytest  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402
from sqlalchemy import create_engine  # noqa: E402
from sqlalchemy.orm import Session, sessionmaker  # noqa: E402
from sqlalchemy.pool import StaticPool  # noqa: E402

from kiosk_pairing.api.deps import get_db  # noqa: E402
from kiosk_pairing.main import app  # noqa: E402
from kiosk_pairing.models.base import Base  # noqa: E402
from kiosk_pairing.models.inventory_asset import InventoryAsset  # noqa: E402
from kiosk_pairing.models.user import User  # noqa: E402
from kiosk_pairing.services import pairing  # noqa: E402
from kiosk_pairing.services.auth import get_password_hash  # noqa: E402

# Use SQLite in-memory for tests (fast, isolated)
SQLALCHEMY_DATABASE_URL = "sqlite:///:memory:"

engine = create_engine(
    SQLALCHEMY_DATABASE_URL,
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)
TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

# Fixed clock for service-level tests
T0 = datetime(2026, 3, 1, 12, 0, 0)


@pytest.fixture(scope="function")
def db() -> Generator[Session, None, None]:
    """Create a fresh database for each test."""
    Base.metadata.create_all(bind=engine)
    session = TestingSessionLocal()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture(scope="function")
def client(db: Session) -> Generator[TestClient, None, None]:
    """Create a test client with database override."""

    def override_get_db():
        try:
            yield db
        finally:
            pass  # Don't close the session here, let the db fixture handle it

    app.dependency_overrides[get_db] = override_get_db
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()


def _make_user(db: Session, username: str, password: str, role: str) -> User:
    user = User(username=username, password_hash=get_password_hash(password), role=role)
    db.add(user)
    db.commit()
    db.refresh(user)
    return user


def _login(client: TestClient, username: str, password: str) -> dict[str, str]:
    response = client.post("/api/auth/login", data={"username": username, "password": password})
    assert response.status_code == 200, f"Login failed: {response.json()}"
    token = response.json()["access_token"]
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def test_user(db: Session) -> User:
    """Create an operator test user."""
    return _make_user(db, "operator", "operatorpassword123", "operator")


@pytest.fixture
def auth_headers(client: TestClient, test_user: User) -> dict[str, str]:
    """Get authentication headers for the operator user."""
    return _login(client, "operator", "operatorpassword123")


@pytest.fixture
def admin_user(db: Session) -> User:
    """Create an admin test user."""
    return _make_user(db, "adminuser", "adminpassword123", "admin")


@pytest.fixture
def admin_headers(client: TestClient, admin_user: User) -> dict[str, str]:
    """Get authentication headers for the admin user."""
    return _login(client, "adminuser", "adminpassword123")


@pytest.fixture
def pending_user(db: Session) -> User:
    """Create a user still awaiting approval."""
    return _make_user(db, "pendinguser", "pendingpassword123", "pending")


@pytest.fixture
def pending_headers(client: TestClient, pending_user: User) -> dict[str, str]:
    return _login(client, "pendinguser", "pendingpassword123")


@pytest.fixture
def use_codes(monkeypatch) -> Callable[..., None]:
    """Make the pairing service hand out the given activation codes in order."""

    def _use(*codes: str) -> None:
        remaining = iter(codes)
        monkeypatch.setattr(
            "kiosk_pairing.services.pairing.generate_activation_code",
            lambda num_bytes=5: next(remaining),
        )

    return _use


@pytest.fixture
def paired_kiosk(db: Session, use_codes) -> str:
    """A kiosk id that has redeemed an activation code with fingerprint F1."""
    use_codes("PAIR2345")
    pairing.issue_code(db, kiosk_id="lobby-1", kiosk_name="Lobby", now=T0)
    pairing.redeem(db, "PAIR2345", "F1", now=T0)
    return "lobby-1"


@pytest.fixture
def inventory(db: Session) -> list[InventoryAsset]:
    """Two inventory assets: one tagged, one only known by serial."""
    assets = [
        InventoryAsset(asset_tag="TAG-001", serial_number="SN-AAA", name="Lobby kiosk frame"),
        InventoryAsset(asset_tag=None, serial_number="SN-BBB", name="Spare tablet"),
    ]
    db.add_all(assets)
    db.commit()
    for asset in assets:
        db.refresh(asset)
    return assets
