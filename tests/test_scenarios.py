"""
End-to-end delivery of one order through the services.
"""

import pytest

from app.core.errors import ForbiddenError, InvalidStateError
from app.schemas.location import Position
from tests.conftest import make_order_payload


def test_direct_order_from_creation_to_delivery(services, registry, customer, operator):
    order = services.ingestion.ingest_direct(
        None, customer.user_id, make_order_payload(weight=50, quantity=20)
    )
    assert order.status == "pending"
    assert order.total_weight == 1000

    d1 = registry.add_driver()
    d2 = registry.add_driver()
    v1 = registry.add_vehicle()
    order = services.assignments.assign(None, order.id, d1, v1, operator)
    assert order.status == "assigned"

    here = Position(latitude=25.2, longitude=55.27)
    ping = services.tracking.record_ping(None, order.id, d1, here)
    assert services.tracking.latest_ping(None, order.id).id == ping.id

    order = services.orders.transition(None, order.id, "picked_up", operator)
    assert order.actual_pickup_time is not None
    with pytest.raises(ForbiddenError):
        services.tracking.record_ping(None, order.id, d2, here)

    order = services.orders.transition(None, order.id, "in_transit", operator)
    order = services.orders.transition(None, order.id, "delivered", operator)
    assert order.actual_delivery_time is not None
    with pytest.raises(InvalidStateError):
        services.tracking.record_ping(None, order.id, d1, here)

    # Driver and vehicle are free for the next job
    assert registry.drivers[d1]["current_order_id"] is None
    assert registry.vehicles[v1]["current_order_id"] is None
