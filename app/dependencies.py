# app/dependencies.py
from dataclasses import dataclass
from functools import lru_cache

from app.core.config import Settings, get_settings
from app.core.supabase_client import supabase_admin
from app.repositories.fleet_repo import FleetRegistry, SupabaseFleetRegistry
from app.repositories.order_repo import OrderRepository, SqlOrderRepository
from app.repositories.ping_repo import PingRepository, SqlPingRepository
from app.schemas.location import Position
from app.services.assignment_service import AssignmentService
from app.services.ingestion_service import OrderIngestionAdapter
from app.services.order_service import OrderStateMachine
from app.services.tracking_service import LocationTracker


@dataclass
class Services:
    """The service graph shared by all routers."""

    orders: OrderStateMachine
    assignments: AssignmentService
    ingestion: OrderIngestionAdapter
    tracking: LocationTracker


def build_services(
    order_repo: OrderRepository,
    ping_repo: PingRepository,
    registry: FleetRegistry,
    settings: Settings,
) -> Services:
    """
    Wire services around the given stores.

    AssignmentService subscribes to the state machine here, so bindings
    are freed on every terminal transition no matter which route made it.
    """
    orders = OrderStateMachine(order_repo)
    assignments = AssignmentService(orders, registry)
    ingestion = OrderIngestionAdapter(orders)
    tracking = LocationTracker(
        order_repo,
        ping_repo,
        registry,
        default_position=Position(
            latitude=settings.DEFAULT_TRACKING_LATITUDE,
            longitude=settings.DEFAULT_TRACKING_LONGITUDE,
        ),
    )
    return Services(orders=orders, assignments=assignments, ingestion=ingestion, tracking=tracking)


@lru_cache
def get_services() -> Services:
    """FastAPI dependency; one service graph per process."""
    return build_services(
        SqlOrderRepository(),
        SqlPingRepository(),
        SupabaseFleetRegistry(supabase_admin()),
        get_settings(),
    )
