"""
Pytest fixtures for the delivery core.

Services run on the in-memory fakes from tests/fakes.py; API tests drive
the FastAPI app with dependency overrides for session, services, auth and
the admission gate.
"""

import os

# Settings are read at import time; give them a harmless environment
os.environ.setdefault("SUPABASE_URL", "http://localhost:54321")
os.environ.setdefault("SUPABASE_KEY", "test-anon-key")
os.environ.setdefault("SUPABASE_JWT_SECRET", "test-jwt-secret")
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("AUTO_CREATE_TABLES", "false")

import uuid  # noqa: E402

import pytest  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402

from app.core.auth import get_current_user  # noqa: E402
from app.core.config import get_settings  # noqa: E402
from app.core.policy import Actor  # noqa: E402
from app.core.rate_limit import get_admission_gate  # noqa: E402
from app.database import get_session  # noqa: E402
from app.dependencies import build_services, get_services  # noqa: E402
from app.main import app  # noqa: E402
from app.models.user import User  # noqa: E402
from app.schemas.order import Address, OrderCreate, OrderItemCreate  # noqa: E402
from app.services.admission_service import RateAdmissionGate, RatePolicy  # noqa: E402
from tests.fakes import (  # noqa: E402
    FakeFleetRegistry,
    FakeOrderRepository,
    FakePingRepository,
)


def make_user(role: str, tier: str = "basic") -> User:
    return User(
        id=uuid.uuid4(),
        email=f"{role}-{uuid.uuid4().hex[:6]}@example.com",
        name=role.title(),
        role=role,
        tier=tier,
    )


def make_order_payload(weight: float = 50, quantity: float = 20, **extra) -> OrderCreate:
    return OrderCreate(
        items=[
            OrderItemCreate(
                material_type="cement",
                description="Portland cement 50kg",
                quantity=quantity,
                unit="bags",
                weight=weight,
            )
        ],
        pickup_address=Address(
            street="Plot 14, Al Quoz Industrial 3",
            city="Dubai",
            state="Dubai",
            zip_code="00000",
        ),
        delivery_address=Address(
            street="Site B, Dubai Hills Estate",
            city="Dubai",
            state="Dubai",
            zip_code="00000",
            latitude=25.11,
            longitude=55.25,
        ),
        **extra,
    )


# ---------- Stores and services ----------


@pytest.fixture
def order_repo():
    return FakeOrderRepository()


@pytest.fixture
def ping_repo():
    return FakePingRepository()


@pytest.fixture
def registry():
    return FakeFleetRegistry()


@pytest.fixture
def services(order_repo, ping_repo, registry):
    return build_services(order_repo, ping_repo, registry, get_settings())


@pytest.fixture
def operator():
    return Actor(user_id=uuid.uuid4(), role="dispatcher")


@pytest.fixture
def customer_user():
    return make_user("customer")


@pytest.fixture
def customer(customer_user):
    return Actor.from_user(customer_user)


@pytest.fixture
def pending_order(services, customer):
    return services.ingestion.ingest_direct(None, customer.user_id, make_order_payload())


@pytest.fixture
def assigned_order(services, registry, operator, pending_order):
    driver_id = registry.add_driver()
    vehicle_id = registry.add_vehicle()
    return services.assignments.assign(None, pending_order.id, driver_id, vehicle_id, operator)


# ---------- API ----------


@pytest.fixture
def gate():
    policies = {
        name: RatePolicy(name, cfg.max_requests, cfg.window_seconds)
        for name, cfg in get_settings().rate_policies().items()
    }
    return RateAdmissionGate(policies)


@pytest.fixture
def client(services, gate):
    def _session():
        yield None

    app.dependency_overrides[get_session] = _session
    app.dependency_overrides[get_services] = lambda: services
    app.dependency_overrides[get_admission_gate] = lambda: gate
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def login():
    """Make the API see `user` as the authenticated caller."""

    def _login(user: User | None) -> None:
        app.dependency_overrides[get_current_user] = lambda: user

    return _login
