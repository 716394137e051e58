"""
SupabaseFleetRegistry against a recording stand-in for the Supabase client.

The stand-in keeps the PostgREST builder calls of every request so the
tests can check the filters that make binds conditional.
"""

import uuid
from types import SimpleNamespace

import httpx
import pytest
from postgrest.exceptions import APIError

from app.core.config import get_settings
from app.core.errors import ConflictError, UpstreamUnavailableError
from app.dependencies import build_services
from app.repositories.fleet_repo import SupabaseFleetRegistry
from tests.conftest import make_order_payload


class RecordedRequest:
    def __init__(self, client, table):
        self.client = client
        self.table = table
        self.calls = []

    def _record(self, name, *args):
        self.calls.append((name, *args))
        return self

    def select(self, *args):
        return self._record("select", *args)

    def update(self, values):
        return self._record("update", values)

    def eq(self, column, value):
        return self._record("eq", column, value)

    def or_(self, filters):
        return self._record("or_", filters)

    def limit(self, n):
        return self._record("limit", n)

    def execute(self):
        self.client.requests.append(self)
        result = self.client.respond(self)
        if isinstance(result, Exception):
            raise result
        return SimpleNamespace(data=result)


class RecordingSupabase:
    """`respond(request)` returns the rows for a request, or an exception to raise."""

    def __init__(self, respond):
        self.respond = respond
        self.requests: list[RecordedRequest] = []

    def table(self, name):
        return RecordedRequest(self, name)


def _rows(**by_table):
    """Select answers per table; updates match one row unless `update` says otherwise."""
    update = by_table.pop("update", None)

    def respond(request):
        if request.calls[0][0] == "update":
            return update(request) if update else [{"id": request.calls[1][2]}]
        return by_table.get(request.table, [])

    return respond


def test_bind_is_filtered_on_the_current_binding():
    client = RecordingSupabase(_rows())
    registry = SupabaseFleetRegistry(client)
    driver_id, order_id = uuid.uuid4(), uuid.uuid4()

    assert registry.bind_driver(driver_id, order_id) is True

    request = client.requests[-1]
    assert request.table == "drivers"
    assert request.calls == [
        ("update", {"current_order_id": str(order_id)}),
        ("eq", "id", str(driver_id)),
        ("or_", f"current_order_id.is.null,current_order_id.eq.{order_id}"),
    ]


def test_bind_matching_no_row_is_refused():
    registry = SupabaseFleetRegistry(RecordingSupabase(_rows(update=lambda request: [])))

    assert registry.bind_vehicle(uuid.uuid4(), uuid.uuid4()) is False


def test_release_only_clears_its_own_binding():
    client = RecordingSupabase(_rows())
    registry = SupabaseFleetRegistry(client)
    vehicle_id, order_id = uuid.uuid4(), uuid.uuid4()

    registry.release_vehicle(vehicle_id, order_id)

    request = client.requests[-1]
    assert request.table == "vehicles"
    assert request.calls == [
        ("update", {"current_order_id": None}),
        ("eq", "id", str(vehicle_id)),
        ("eq", "current_order_id", str(order_id)),
    ]


def test_driver_row_mapping():
    driver_id, order_id = uuid.uuid4(), uuid.uuid4()
    row = {
        "id": str(driver_id),
        "first_name": "Omar",
        "last_name": "Haddad",
        "phone": "+971501234567",
        "rating": 4.6,
        "is_available_for_assignment": True,
        "current_order_id": str(order_id),
    }
    registry = SupabaseFleetRegistry(RecordingSupabase(_rows(drivers=[row])))

    driver = registry.get_driver(driver_id)

    assert driver.name == "Omar Haddad"
    assert driver.current_order_id == order_id
    assert registry.get_vehicle(uuid.uuid4()) is None


@pytest.mark.parametrize(
    "error",
    [
        APIError({"message": "upstream timeout", "code": "57014"}),
        httpx.ConnectError("Connection refused"),
    ],
)
def test_client_failures_are_upstream_errors(error):
    registry = SupabaseFleetRegistry(RecordingSupabase(lambda request: error))

    with pytest.raises(UpstreamUnavailableError):
        registry.get_driver(uuid.uuid4())
    with pytest.raises(UpstreamUnavailableError):
        registry.bind_driver(uuid.uuid4(), uuid.uuid4())


def test_assign_conflicts_when_the_vehicle_row_is_bound_elsewhere(order_repo, ping_repo, customer, operator):
    driver_id, vehicle_id = uuid.uuid4(), uuid.uuid4()
    client = RecordingSupabase(
        _rows(
            drivers=[{"id": str(driver_id), "name": "Omar", "is_available_for_assignment": True}],
            vehicles=[{"id": str(vehicle_id), "type": "flatbed", "status": "available"}],
            # Another dispatcher bound the vehicle between our read and our bind
            update=lambda request: [] if request.table == "vehicles" else [{"id": str(driver_id)}],
        )
    )
    services = build_services(order_repo, ping_repo, SupabaseFleetRegistry(client), get_settings())
    order = services.ingestion.ingest_direct(None, customer.user_id, make_order_payload())

    with pytest.raises(ConflictError):
        services.assignments.assign(None, order.id, driver_id, vehicle_id, operator)

    assert services.orders.get_order(None, order.id).status == "pending"
    # The driver bind that did succeed is rolled back
    release = client.requests[-1]
    assert release.table == "drivers"
    assert ("eq", "current_order_id", str(order.id)) in release.calls
