"""Pytest configuration and fixtures."""

import os

# Must be set before the app (and its settings) are imported
os.environ["DATABASE_URL"] = "sqlite:///:memory:"
os.environ["RATE_LIMIT_ENABLED"] = "false"
os.environ["DEBUG"] = "true"
os.environ.pop("REDIS_URL", None)

from typing import Callable, Generator

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from app.core.cache import ledger_cache
from app.core.rbac import UserRole
from app.db.base import Base
from app.db.session import get_db
from app.main import app
# Import all models to ensure they're registered with Base.metadata
from app.models import *
from app.models.menu import MenuItem
from app.models.user import User
from app.schemas.order import OrderCreate
from app.services.order_service import OrderLedgerService

# Use in-memory SQLite for tests
TEST_DATABASE_URL = "sqlite:///:memory:"


@pytest.fixture(scope="function")
def db_engine():
    """Create a test database engine."""
    engine = create_engine(
        TEST_DATABASE_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)


@pytest.fixture(scope="function")
def db_session(db_engine) -> Generator[Session, None, None]:
    """Create a test database session."""
    SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=db_engine)
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture(autouse=True)
def clear_cache():
    """Cached reports must never leak between tests."""
    ledger_cache.clear()
    yield
    ledger_cache.clear()


@pytest.fixture(scope="function")
def client(db_session: Session) -> Generator[TestClient, None, None]:
    """Create a test client with database override."""
    def override_get_db():
        try:
            yield db_session
        finally:
            pass

    app.dependency_overrides[get_db] = override_get_db
    # Disable rate limiting during tests to avoid flaky failures
    from app.core.rate_limit import limiter as global_limiter
    global_limiter.enabled = False
    # Don't raise server exceptions so we can test error status codes
    with TestClient(app, raise_server_exceptions=False) as test_client:
        yield test_client
    app.dependency_overrides.clear()


def _make_user(db_session: Session, user_id: str, role: UserRole, name: str) -> User:
    user = User(
        id=user_id,
        email=f"{user_id}@cafe.test",
        role=role,
        name=name,
        is_active=True,
    )
    db_session.add(user)
    db_session.commit()
    db_session.refresh(user)
    return user


@pytest.fixture
def super_admin(db_session: Session) -> User:
    return _make_user(db_session, "admin-1", UserRole.SUPER_ADMIN, "Admin")


@pytest.fixture
def crew_user(db_session: Session) -> User:
    return _make_user(db_session, "crew-1", UserRole.CREW, "Kitchen Crew")


@pytest.fixture
def order_taker(db_session: Session) -> User:
    return _make_user(db_session, "taker-1", UserRole.ORDER_TAKER, "Cashier")


@pytest.fixture
def admin_headers(super_admin: User) -> dict:
    return {"X-User-Id": super_admin.id}


@pytest.fixture
def crew_headers(crew_user: User) -> dict:
    return {"X-User-Id": crew_user.id}


@pytest.fixture
def menu_items(db_session: Session) -> dict:
    """A small menu split between the two owners."""
    items = {
        "latte": MenuItem(id="latte", name="Cafe Latte", price=100.0, category="Coffee", owner="john"),
        "croissant": MenuItem(id="croissant", name="Croissant", price=50.0, category="Pastries", owner="elwin"),
        "cookie": MenuItem(id="cookie", name="Choco Cookie", price=30.0, category="Pastries", owner="elwin"),
        "matcha": MenuItem(id="matcha", name="Matcha Latte", price=150.0, category="Tea", owner="john"),
    }
    db_session.add_all(items.values())
    db_session.commit()
    return items


@pytest.fixture
def order_payload() -> Callable[..., dict]:
    """Build a camelCase order document as a client would send it."""
    counter = {"n": 0}

    def build(items=None, customer_name="Juan", created_at=None, **extra) -> dict:
        counter["n"] += 1
        payload = {
            "id": extra.pop("id", f"order-{counter['n']}"),
            "customerName": customer_name,
            "items": items if items is not None else [
                {"id": f"latte-{counter['n']}-a", "name": "Cafe Latte", "price": 100, "quantity": 1},
            ],
        }
        if created_at is not None:
            payload["createdAt"] = created_at
        payload.update(extra)
        return payload

    return build


@pytest.fixture
def make_order(db_session: Session, order_payload) -> Callable[..., dict]:
    """Create an order straight through the service; returns its document."""
    def create(branch_id: str = "pangabugan", **kwargs) -> dict:
        payload = OrderCreate.model_validate(order_payload(**kwargs))
        return OrderLedgerService(db_session).create(payload, branch_id)

    return create
