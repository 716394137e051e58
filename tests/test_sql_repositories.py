"""
SQL repositories against an in-memory SQLite database.
"""

import uuid
from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy.pool import StaticPool
from sqlmodel import Session, SQLModel, create_engine

from app.core.errors import ConflictError
from app.models.location import LocationPing
from app.models.order import Order, OrderItem
from app.repositories.order_repo import SqlOrderRepository
from app.repositories.ping_repo import SqlPingRepository
from app.schemas.location import Position
from app.services.tracking_service import LocationTracker
from tests.fakes import FakeFleetRegistry

ADDRESS = {"street": "1 Main", "city": "Dubai", "state": "Dubai", "zip_code": "00000", "country": "AE"}


@pytest.fixture
def session():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    SQLModel.metadata.create_all(engine)
    with Session(engine) as session:
        yield session
    SQLModel.metadata.drop_all(engine)


def _order(upstream_ref=None) -> Order:
    return Order(
        order_kind="internal" if upstream_ref else "direct",
        customer_id=uuid.uuid4(),
        pickup_address=ADDRESS,
        delivery_address=ADDRESS,
        total_weight=100.0,
        upstream_ref=upstream_ref,
    )


def _item(material: str) -> OrderItem:
    return OrderItem(
        order_id=uuid.uuid4(),
        material_type=material,
        description=material,
        quantity=1,
        unit="pieces",
        weight=100.0,
    )


def test_create_persists_order_and_items(session):
    repo = SqlOrderRepository()

    order = repo.create(session, _order(), [_item("bricks"), _item("sand"), _item("tiles")])

    assert repo.get(session, order.id).pickup_address["city"] == "Dubai"
    items = repo.list_items(session, order.id)
    assert [it.material_type for it in items] == ["bricks", "sand", "tiles"]
    assert all(it.order_id == order.id for it in items)


def test_duplicate_upstream_ref_is_a_conflict(session):
    repo = SqlOrderRepository()
    first = repo.create(session, _order("SO-1"), [_item("steel")])

    with pytest.raises(ConflictError):
        repo.create(session, _order("SO-1"), [_item("steel")])

    assert repo.get_by_upstream_ref(session, "SO-1").id == first.id
    assert len(repo.list_orders(session, order_kind="internal")) == 1


def test_conditional_update_checks_version(session):
    repo = SqlOrderRepository()
    order = repo.create(session, _order(), [_item("cement")])

    updated = repo.update_if_version(session, order.id, 1, {"status": "cancelled"})
    assert updated.status == "cancelled"
    assert updated.version == 2

    assert repo.update_if_version(session, order.id, 1, {"status": "failed"}) is None
    assert repo.get(session, order.id).status == "cancelled"


def test_list_filters(session):
    repo = SqlOrderRepository()
    a = repo.create(session, _order(), [_item("cement")])
    repo.create(session, _order(), [_item("cement")])
    driver_id = uuid.uuid4()
    repo.update_if_version(session, a.id, 1, {"driver_id": driver_id})

    assert [o.id for o in repo.list_orders(session, driver_id=driver_id)] == [a.id]
    assert [o.id for o in repo.list_orders(session, customer_id=a.customer_id)] == [a.id]
    assert len(repo.list_orders(session, limit=1)) == 1


def test_pings_ordered_by_capture_time(session):
    orders = SqlOrderRepository()
    pings = SqlPingRepository()
    order = orders.create(session, _order(), [_item("gravel")])
    driver_id = uuid.uuid4()
    t0 = datetime(2024, 5, 1, 8, 0, tzinfo=timezone.utc)

    def ping(seconds, lat):
        return pings.append(
            session,
            LocationPing(
                order_id=order.id,
                driver_id=driver_id,
                latitude=lat,
                longitude=55.0,
                captured_at=t0 + timedelta(seconds=seconds),
            ),
        )

    ping(10, 25.10)
    p2 = ping(20, 25.20)
    ping(15, 25.15)
    tie = ping(20, 25.21)

    # Same capture time: later arrival wins
    assert pings.latest(session, order.id).id == tie.id
    assert tie.id > p2.id

    history = pings.history(session, order.id, since=t0 + timedelta(seconds=15))
    assert [p.latitude for p in history] == [25.15, 25.20, 25.21]


def test_naive_capture_time_is_stored_as_utc(session):
    orders = SqlOrderRepository()
    tracker = LocationTracker(
        orders,
        SqlPingRepository(),
        FakeFleetRegistry(),
        default_position=Position(latitude=25.0, longitude=55.0),
    )
    order = orders.create(session, _order(), [_item("lumber")])
    driver_id = uuid.uuid4()
    orders.update_if_version(
        session,
        order.id,
        1,
        {"status": "assigned", "driver_id": driver_id, "vehicle_id": uuid.uuid4()},
    )

    ping = tracker.record_ping(
        session,
        order.id,
        driver_id,
        Position(latitude=25.3, longitude=55.3),
        captured_at=datetime(2024, 5, 1, 8, 0),
    )

    assert tracker.latest_ping(session, order.id).id == ping.id
    stored = tracker.latest_ping(session, order.id).captured_at
    assert stored.replace(tzinfo=None) == datetime(2024, 5, 1, 8, 0)
