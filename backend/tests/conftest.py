"""Pytest configuration and fixtures."""

import os

# Settings are read once at import time
os.environ.setdefault("DATABASE_URL", "sqlite:///:memory:")
os.environ.setdefault("RATE_LIMIT_ENABLED", "false")
os.environ.setdefault("TIMEZONE", "Asia/Bishkek")

import pytest
from datetime import date, datetime, timedelta, timezone
from decimal import Decimal
from typing import Generator

from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from booking_engine.core.metrics import metrics
from booking_engine.db.base import Base
from booking_engine.db.session import configure_sqlite_engine, get_db
from booking_engine.main import app
# Import all models to ensure they're registered with Base.metadata
from booking_engine.models import *
from booking_engine.models import BookingStatus, PromotionType

# Use in-memory SQLite for tests
TEST_DATABASE_URL = "sqlite:///:memory:"

# Friday 2024-01-26 10:00 in Asia/Bishkek (UTC+6)
NOW = datetime(2024, 1, 26, 4, 0, tzinfo=timezone.utc)


@pytest.fixture(scope="function")
def db_engine():
    """Create a test database engine."""
    engine = create_engine(
        TEST_DATABASE_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    configure_sqlite_engine(engine)
    Base.metadata.create_all(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture(scope="function")
def db_session(db_engine) -> Generator[Session, None, None]:
    """Create a test database session."""
    SessionLocal = sessionmaker(autocommit=False, autoflush=False, expire_on_commit=False, bind=db_engine)
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture(autouse=True)
def reset_metrics():
    metrics.reset()
    yield


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
    from booking_engine.core.rate_limit import limiter
    limiter.enabled = False
    # Don't raise server exceptions so we can test error status codes
    with TestClient(app, raise_server_exceptions=False) as test_client:
        yield test_client
    app.dependency_overrides.clear()


@pytest.fixture
def business(db_session: Session) -> Business:
    business = Business(name="Studio Nine")
    db_session.add(business)
    db_session.commit()
    return business


@pytest.fixture
def branch(db_session: Session, business: Business) -> Branch:
    branch = Branch(business_id=business.id, name="Downtown")
    db_session.add(branch)
    db_session.commit()
    return branch


@pytest.fixture
def staff(db_session: Session, business: Business, branch: Branch) -> Staff:
    """Master with a 60/40 split and a 300/hour guarantee."""
    staff = Staff(
        business_id=business.id,
        branch_id=branch.id,
        full_name="Aida Master",
        percent_master=Decimal("60"),
        percent_salon=Decimal("40"),
        hourly_rate=Decimal("300"),
    )
    db_session.add(staff)
    db_session.commit()
    return staff


@pytest.fixture
def service(db_session: Session, branch: Branch) -> Service:
    service = Service(branch_id=branch.id, name="Haircut", duration_min=60, price=Decimal("1000.00"))
    db_session.add(service)
    db_session.commit()
    return service


@pytest.fixture
def customer(db_session: Session) -> Client:
    customer = Client(full_name="Bermet K.", phone="+996555000111", birth_date=date(1990, 6, 15))
    db_session.add(customer)
    db_session.commit()
    return customer


@pytest.fixture
def make_booking(db_session: Session, staff: Staff, service: Service, customer: Client):
    """Insert a booking directly, bypassing the slot guard."""
    def _make(
        start: datetime = NOW - timedelta(hours=1),
        status: str = BookingStatus.CONFIRMED.value,
        client_id=...,
        price: Decimal = Decimal("1000.00"),
        minutes: int = 60,
    ) -> Booking:
        booking = Booking(
            business_id=staff.business_id,
            branch_id=staff.branch_id,
            service_id=service.id,
            staff_id=staff.id,
            client_id=customer.id if client_id is ... else client_id,
            start_at=start,
            end_at=start + timedelta(minutes=minutes),
            status=status,
            price=price,
        )
        db_session.add(booking)
        db_session.commit()
        return booking

    return _make


@pytest.fixture
def make_promotion(db_session: Session, branch: Branch):
    def _make(promotion_type: PromotionType, params=None, title=None, **kwargs) -> Promotion:
        promotion = Promotion(
            branch_id=branch.id,
            promotion_type=promotion_type.value,
            title=title or promotion_type.value.replace("_", " ").title(),
            params=params or {},
            **kwargs,
        )
        db_session.add(promotion)
        db_session.commit()
        return promotion

    return _make
