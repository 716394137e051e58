# app/services/tracking_service.py
import logging
import uuid
from datetime import datetime
from typing import Callable

from sqlmodel import Session

from app.core.errors import ForbiddenError, InvalidStateError, NotFoundError
from app.core.policy import ACTIVE_TRACKING_STATUSES, Actor, can_view
from app.core.timeutils import as_utc, utcnow
from app.models.location import LocationPing
from app.models.order import Order
from app.repositories.fleet_repo import FleetRegistry
from app.repositories.order_repo import OrderRepository
from app.repositories.ping_repo import PingRepository
from app.schemas.location import DriverSummary, OrderLocationRead, Position

logger = logging.getLogger(__name__)


class LocationTracker:
    """
    Live location of in-flight orders.

    Pings are accepted only from the order's assigned driver and only while
    the order is assigned, picked up or in transit. The latest position is
    the ping with the greatest capture time, not the last one to arrive.
    """

    def __init__(
        self,
        order_repo: OrderRepository,
        ping_repo: PingRepository,
        registry: FleetRegistry,
        default_position: Position,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.order_repo = order_repo
        self.ping_repo = ping_repo
        self.registry = registry
        self.default_position = default_position
        self.clock = clock

    def _get_order(self, session: Session, order_id: uuid.UUID) -> Order:
        order = self.order_repo.get(session, order_id)
        if order is None:
            raise NotFoundError(f"Order {order_id} not found")
        return order

    def record_ping(
        self,
        session: Session,
        order_id: uuid.UUID,
        driver_id: uuid.UUID,
        position: Position,
        battery_level: int | None = None,
        captured_at: datetime | None = None,
    ) -> LocationPing:
        """
        Append a ping for an active order.

        Raises:
            NotFoundError: unknown order.
            InvalidStateError: order is not in an active tracking state.
            ForbiddenError: `driver_id` is not the order's assigned driver.
        """
        order = self._get_order(session, order_id)

        if order.status not in ACTIVE_TRACKING_STATUSES:
            raise InvalidStateError(
                f"Order {order_id} is not in an active tracking state (status: {order.status})"
            )
        if order.driver_id != driver_id:
            raise ForbiddenError(f"driver {driver_id} is not assigned to order {order_id}")

        captured_at = as_utc(captured_at) if captured_at is not None else self.clock()

        ping = LocationPing(
            order_id=order_id,
            driver_id=driver_id,
            latitude=position.latitude,
            longitude=position.longitude,
            heading=position.heading,
            speed=position.speed,
            accuracy=position.accuracy,
            battery_level=battery_level,
            captured_at=captured_at,
            received_at=self.clock(),
        )
        ping = self.ping_repo.append(session, ping)
        logger.debug("Ping %s recorded for order %s by driver %s", ping.id, order_id, driver_id)
        return ping

    def latest_ping(self, session: Session, order_id: uuid.UUID) -> LocationPing | None:
        """Most recent ping by capture time, or None if the order has none yet."""
        return self.ping_repo.latest(session, order_id)

    def history(
        self,
        session: Session,
        order_id: uuid.UUID,
        actor: Actor,
        since: datetime | None = None,
        limit: int = 100,
    ) -> list[LocationPing]:
        order = self._get_order(session, order_id)
        if not can_view(actor, order):
            raise ForbiddenError(f"{actor.role} {actor.user_id} cannot view order {order_id}")
        return self.ping_repo.history(session, order_id, since=as_utc(since), limit=limit)

    def order_location(
        self,
        session: Session,
        order_id: uuid.UUID,
        actor: Actor,
    ) -> OrderLocationRead:
        """
        Latest position plus a driver/vehicle summary for tracking screens.

        Before the first ping the configured default position is returned
        with is_placeholder=True.
        """
        order = self._get_order(session, order_id)
        if not can_view(actor, order):
            raise ForbiddenError(f"{actor.role} {actor.user_id} cannot view order {order_id}")

        ping = self.latest_ping(session, order_id)
        if ping is not None:
            location = Position(
                latitude=ping.latitude,
                longitude=ping.longitude,
                heading=ping.heading,
                speed=ping.speed,
                accuracy=ping.accuracy,
            )
        else:
            location = self.default_position

        return OrderLocationRead(
            order_id=order.id,
            status=order.status,
            location=location,
            captured_at=ping.captured_at if ping else None,
            battery_level=ping.battery_level if ping else None,
            is_placeholder=ping is None,
            driver=self._driver_summary(order),
        )

    def _driver_summary(self, order: Order) -> DriverSummary | None:
        if order.driver_id is None:
            return None
        summary = DriverSummary(id=order.driver_id)
        driver = self.registry.get_driver(order.driver_id)
        if driver is not None:
            summary.name = driver.name
            summary.phone = driver.phone
            summary.rating = driver.rating
        if order.vehicle_id is not None:
            vehicle = self.registry.get_vehicle(order.vehicle_id)
            if vehicle is not None:
                summary.vehicle_type = vehicle.type
                summary.vehicle_number = vehicle.license_plate
        return summary
