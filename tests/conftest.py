import os
from decimal import Decimal

# Settings are read at import time
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("SECRET_KEY", "test-secret-key")
os.environ.setdefault("ALGORITHM", "HS256")
os.environ.setdefault("REDIS_URL", "redis://localhost:6379/0")

# Imports for testing tools
import pytest
from fastapi.testclient import TestClient
from jose import jwt
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool
from unittest.mock import AsyncMock

# Import the application code
from shortlet.main import app
from shortlet.database import Base, get_db
from shortlet.config import settings
from shortlet.routers import booking_router
from shortlet import crud, dateranges, models


# --- Test Database Setup ---
@pytest.fixture(scope="function")
def engine():
    """A fresh in-memory database per test."""
    test_engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=test_engine)
    yield test_engine
    Base.metadata.drop_all(bind=test_engine)
    test_engine.dispose()


@pytest.fixture(scope="function")
def db_session(engine):
    TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    session = TestingSessionLocal()
    yield session
    session.close()


# --- Mocking External Services ---
@pytest.fixture(scope="function", autouse=True)
def mock_background_tasks(mocker):
    """
    Mocks the background tasks and the Redis-backed limiter started on app lifespan.
    """
    mocker.patch("shortlet.main.run_outbox_poller", new_callable=AsyncMock)
    mocker.patch("shortlet.main.run_booking_scheduler", new_callable=AsyncMock)
    mocker.patch("shortlet.main.FastAPILimiter.init", new_callable=AsyncMock)


# --- API Test Client Fixture ---
@pytest.fixture(scope="function")
def client(db_session):
    def override_get_db():
        try:
            yield db_session
        finally:
            db_session.close()

    async def no_rate_limit():
        return None

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[booking_router.create_rate_limit] = no_rate_limit
    app.dependency_overrides[booking_router.guest_rate_limit] = no_rate_limit

    with TestClient(app) as c:
        yield c

    app.dependency_overrides.clear()


# --- Auth helpers ---
def create_test_token(user_id: int = 1, role: str | None = "manager") -> str:
    payload = {"sub": str(user_id)}
    if role is not None:
        payload["role"] = role
    token = jwt.encode(payload, settings.SECRET_KEY, algorithm=settings.ALGORITHM)
    return f"Bearer {token}"


@pytest.fixture
def manager_headers():
    return {"Authorization": create_test_token(role="manager")}


@pytest.fixture
def payments_headers():
    return {"Authorization": create_test_token(user_id=99, role="payments")}


# --- Data factories ---
@pytest.fixture
def make_property(db_session):
    def _make(base_price="50000", max_guests=4, cleaning_fee="0",
              status=models.PropertyStatus.AVAILABLE, name="Garden Suite"):
        db_property = models.Property(
            name=name,
            location="Uyo",
            base_price_per_night=Decimal(base_price),
            cleaning_fee=Decimal(cleaning_fee),
            bedrooms=2,
            bathrooms=1,
            max_guests=max_guests,
            status=status,
            images=[],
            featured=False,
        )
        db_session.add(db_property)
        db_session.commit()
        return db_property
    return _make


@pytest.fixture
def make_customer(db_session):
    def _make(email="guest@example.com", full_name="Ada Guest"):
        customer = crud.get_or_create_customer(db_session, full_name, email, "+2348000000000")
        db_session.commit()
        return customer
    return _make


@pytest.fixture
def make_booking(db_session, make_customer):
    """
    Inserts a booking directly. Live bookings claim their nights and count
    towards the customer's total_bookings, as create_booking does.
    """
    counter = {"n": 0}

    def _make(db_property, check_in, check_out, status=models.BookingStatus.CONFIRMED,
              payment_status=models.PaymentStatus.PENDING, total_amount="100000", customer=None,
              created_at=None):
        counter["n"] += 1
        customer = customer or make_customer()
        booking = models.Booking(
            booking_number=f"BK-TEST-{counter['n']:04d}",
            property_id=db_property.id,
            customer_id=customer.id,
            check_in_date=check_in,
            check_out_date=check_out,
            num_guests=2,
            base_amount=Decimal(total_amount),
            cleaning_fee=Decimal("0"),
            tax_amount=Decimal("0"),
            discount_amount=Decimal("0"),
            total_amount=Decimal(total_amount),
            status=status,
            payment_status=payment_status,
            created_at=created_at or models.utcnow(),
        )
        if status == models.BookingStatus.CANCELLED:
            db_session.add(booking)
            db_session.flush()
        else:
            crud.insert_booking(db_session, booking)
            crud.update_customer_totals(db_session, customer.id, bookings_delta=1)
        db_session.commit()
        return booking
    return _make


@pytest.fixture
def today():
    return dateranges.local_today()
