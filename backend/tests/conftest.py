"""Pytest configuration and fixtures."""

import os

# Settings are read at import time; keep tests off the on-disk database
os.environ.setdefault("DATABASE_URL", "sqlite:///:memory:")
os.environ.setdefault("RATE_LIMIT_ENABLED", "false")

import pytest
from decimal import Decimal
from typing import Any, Dict, Generator, List, Tuple

from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from qrdine.db.base import Base
from qrdine.db.session import enable_sqlite_foreign_keys, get_db
from qrdine.main import app
# Import all models to ensure they're registered with Base.metadata
from qrdine.models import *
from qrdine.services.realtime import get_event_bus
from qrdine.services.session_service import SessionService

# Use in-memory SQLite for tests
TEST_DATABASE_URL = "sqlite:///:memory:"


class RecordingEventBus:
    """Event bus that keeps every published event for assertions."""

    def __init__(self):
        self.events: List[Tuple[str, str, Dict[str, Any]]] = []

    def publish(self, room: str, event: str, data: Dict[str, Any]) -> None:
        self.events.append((room, event, data))

    def of_type(self, event: str) -> List[Tuple[str, str, Dict[str, Any]]]:
        return [e for e in self.events if e[1] == event]

    def rooms_for(self, event: str) -> List[str]:
        return [room for room, name, _ in self.events if name == event]

    def clear(self) -> None:
        self.events.clear()


@pytest.fixture(scope="function")
def db_engine():
    """Create a test database engine."""
    engine = create_engine(
        TEST_DATABASE_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    enable_sqlite_foreign_keys(engine)
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


@pytest.fixture
def events() -> RecordingEventBus:
    return RecordingEventBus()


@pytest.fixture(scope="function")
def client(db_session: Session, events: RecordingEventBus) -> Generator[TestClient, None, None]:
    """Create a test client with database and event bus overrides."""
    def override_get_db():
        try:
            yield db_session
        finally:
            pass

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_event_bus] = lambda: events
    # Disable rate limiters during tests to avoid flaky failures
    from qrdine.core.rate_limit import limiter as global_limiter, session_limiter
    global_limiter.enabled = False
    session_limiter.enabled = False
    # Don't raise server exceptions so we can test error status codes
    with TestClient(app, raise_server_exceptions=False) as test_client:
        yield test_client
    app.dependency_overrides.clear()


@pytest.fixture
def restaurant(db_session: Session) -> Restaurant:
    """Create a test restaurant with 18% tax and 5% service charge."""
    restaurant = Restaurant(
        name="Spice Route",
        slug="spice-route",
        is_active=True,
        tax_rate=Decimal("18"),
        service_charge_rate=Decimal("5"),
        currency="INR",
    )
    db_session.add(restaurant)
    db_session.commit()
    db_session.refresh(restaurant)
    return restaurant


@pytest.fixture
def dining_table(db_session: Session, restaurant: Restaurant) -> Table:
    table = Table(
        restaurant_id=restaurant.id,
        number="T1",
        qr_code="qr-spice-route-t1",
        capacity=4,
        is_active=True,
    )
    db_session.add(table)
    db_session.commit()
    db_session.refresh(table)
    return table


@pytest.fixture
def category(db_session: Session, restaurant: Restaurant) -> Category:
    category = Category(restaurant_id=restaurant.id, name="Mains", sort_order=1, is_active=True)
    db_session.add(category)
    db_session.commit()
    db_session.refresh(category)
    return category


@pytest.fixture
def menu_item(db_session: Session, restaurant: Restaurant, category: Category) -> MenuItem:
    """Plain item priced at 200."""
    item = MenuItem(
        restaurant_id=restaurant.id,
        category_id=category.id,
        name="Paneer Tikka",
        price=Decimal("200.00"),
        is_available=True,
        is_veg=True,
        preparation_time=15,
        quick_add_order=1,
        sort_order=1,
    )
    db_session.add(item)
    db_session.commit()
    db_session.refresh(item)
    return item


@pytest.fixture
def pizza(db_session: Session, restaurant: Restaurant, category: Category) -> MenuItem:
    """Item with variants and a capped add-on."""
    item = MenuItem(
        restaurant_id=restaurant.id,
        category_id=category.id,
        name="Margherita",
        price=Decimal("300.00"),
        is_available=True,
        is_veg=True,
        preparation_time=20,
        variants=[
            {"id": "lg", "name": "Large", "price_modifier": 100, "is_default": False},
            {"id": "sm", "name": "Small", "price_modifier": -50, "is_default": False},
        ],
        add_ons=[
            {"id": "cheese", "name": "Extra Cheese", "price": 40, "max_quantity": 2},
            {"id": "olives", "name": "Olives", "price": 25, "max_quantity": 1},
        ],
        sort_order=2,
    )
    db_session.add(item)
    db_session.commit()
    db_session.refresh(item)
    return item


@pytest.fixture
def session_service(db_session: Session, events: RecordingEventBus) -> SessionService:
    return SessionService(db_session, events)


@pytest.fixture
def active_session(session_service: SessionService, dining_table: Table, restaurant: Restaurant) -> int:
    """Id of the ACTIVE session opened by scanning the test table."""
    result = session_service.validate_scan(dining_table.qr_code, dining_table.id, restaurant.id)
    return result["session_id"]
