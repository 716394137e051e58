# app/services/assignment_service.py
import logging
import uuid

from sqlmodel import Session

from app.core.errors import (
    ConflictError,
    ForbiddenError,
    InvalidTransitionError,
    NotFoundError,
    UpstreamUnavailableError,
)
from app.core.policy import (
    ASSIGNED,
    CANCELLED,
    FAILED,
    PENDING,
    TERMINAL_STATUSES,
    UNASSIGN_EDGE,
    Actor,
    can,
)
from app.models.order import Order
from app.repositories.fleet_repo import FleetRegistry
from app.services.order_service import OrderStateMachine

logger = logging.getLogger(__name__)

# Attempts to clear refs on an order that just went terminal
_RELEASE_ATTEMPTS = 3


class AssignmentService:
    """
    Binds a driver and a vehicle to an order.

    Rules:
      - only operators assign / unassign
      - assign is allowed while the order is pending or assigned
      - the driver must be available and the vehicle in service
      - a driver or vehicle serves one active order at a time; the registry
        bind is the atomic check, the loser of a race gets ConflictError
      - bindings are freed when the order ends (listener on the state machine)
    """

    def __init__(self, state_machine: OrderStateMachine, registry: FleetRegistry):
        self.state_machine = state_machine
        self.repo = state_machine.repo
        self.registry = registry
        state_machine.on_terminal(self._on_terminal)

    # -------- Assign --------

    def assign(
        self,
        session: Session,
        order_id: uuid.UUID,
        driver_id: uuid.UUID,
        vehicle_id: uuid.UUID,
        actor: Actor,
    ) -> Order:
        """
        Bind driver + vehicle and move a pending order to assigned.

        Re-assignment of an assigned order swaps the binding and frees the
        previous driver/vehicle.

        Raises:
            ForbiddenError: actor is not an operator.
            NotFoundError: unknown order, driver or vehicle.
            InvalidTransitionError: order is past the assignment stage.
            ConflictError: driver/vehicle unavailable or bound elsewhere, or
                the order changed concurrently.
        """
        if not can(actor, "assign"):
            raise ForbiddenError(f"{actor.role} may not assign orders")

        order = self.state_machine.get_order(session, order_id)
        if order.status not in (PENDING, ASSIGNED):
            raise InvalidTransitionError(f"cannot assign order in status {order.status}")

        driver = self.registry.get_driver(driver_id)
        if driver is None:
            raise NotFoundError(f"Driver {driver_id} not found")
        vehicle = self.registry.get_vehicle(vehicle_id)
        if vehicle is None:
            raise NotFoundError(f"Vehicle {vehicle_id} not found")

        if (
            order.status == ASSIGNED
            and order.driver_id == driver_id
            and order.vehicle_id == vehicle_id
        ):
            return order

        if not driver.is_available_for_assignment and driver.current_order_id != order.id:
            raise ConflictError(f"Driver {driver_id} is not available for assignment")
        if not vehicle.is_in_service and vehicle.current_order_id != order.id:
            raise ConflictError(f"Vehicle {vehicle_id} is not available (status: {vehicle.status})")

        if driver.current_order_id not in (None, order.id):
            self._clear_stale_binding(session, "driver", driver_id, driver.current_order_id)
        if vehicle.current_order_id not in (None, order.id):
            self._clear_stale_binding(session, "vehicle", vehicle_id, vehicle.current_order_id)

        newly_bound: list[tuple[str, uuid.UUID]] = []
        try:
            if not self.registry.bind_driver(driver_id, order.id):
                raise ConflictError(f"Driver {driver_id} is already assigned to another active order")
            if driver_id != order.driver_id:
                newly_bound.append(("driver", driver_id))

            if not self.registry.bind_vehicle(vehicle_id, order.id):
                raise ConflictError(f"Vehicle {vehicle_id} is already assigned to another active order")
            if vehicle_id != order.vehicle_id:
                newly_bound.append(("vehicle", vehicle_id))

            updated = self.state_machine.apply(
                session,
                order,
                {"driver_id": driver_id, "vehicle_id": vehicle_id, "status": ASSIGNED},
            )
        except (ConflictError, UpstreamUnavailableError):
            self._unbind(newly_bound, order.id)
            raise

        # Free whatever the order held before a re-assignment
        if order.driver_id is not None and order.driver_id != driver_id:
            self.registry.release_driver(order.driver_id, order.id)
        if order.vehicle_id is not None and order.vehicle_id != vehicle_id:
            self.registry.release_vehicle(order.vehicle_id, order.id)

        logger.info(
            "Order %s assigned to driver %s / vehicle %s (was %s)",
            order.id,
            driver_id,
            vehicle_id,
            order.status,
        )
        return updated

    # -------- Release --------

    def release(self, session: Session, order_id: uuid.UUID, actor: Actor) -> Order:
        """
        Operator unassign: clear the binding of an assigned order and put it
        back in the pending queue.
        """
        if not can(actor, "unassign"):
            raise ForbiddenError(f"{actor.role} may not unassign orders")

        source, target = UNASSIGN_EDGE
        order = self.state_machine.get_order(session, order_id)
        if order.status != source:
            raise InvalidTransitionError(f"cannot unassign order in status {order.status}")

        updated = self.state_machine.apply(
            session,
            order,
            {"driver_id": None, "vehicle_id": None, "status": target},
        )
        self._free_registry(order)
        logger.info("Order %s unassigned by %s %s", order.id, actor.role, actor.user_id or "")
        return updated

    def _on_terminal(self, session: Session, order: Order, previous_status: str) -> None:
        """
        State machine side effect.

        delivered keeps the refs on the order as history; cancelled / failed
        clear them. The registry binding is freed in every case.
        """
        try:
            self._free_registry(order)
        except UpstreamUnavailableError:
            # The transition is already committed; assign() clears stale bindings later
            logger.exception("Could not free fleet binding of order %s", order.id)

        if order.status not in (CANCELLED, FAILED):
            return

        current = order
        for _ in range(_RELEASE_ATTEMPTS):
            if current.driver_id is None and current.vehicle_id is None:
                return
            try:
                self.state_machine.apply(
                    session, current, {"driver_id": None, "vehicle_id": None}
                )
                logger.info("Order %s released after %s -> %s", order.id, previous_status, order.status)
                return
            except ConflictError:
                current = self.state_machine.get_order(session, order.id)
        logger.error("Gave up clearing assignment refs on order %s", order.id)

    # -------- Helpers --------

    def _free_registry(self, order: Order) -> None:
        if order.driver_id is not None:
            self.registry.release_driver(order.driver_id, order.id)
        if order.vehicle_id is not None:
            self.registry.release_vehicle(order.vehicle_id, order.id)

    def _unbind(self, bound: list[tuple[str, uuid.UUID]], order_id: uuid.UUID) -> None:
        for kind, resource_id in bound:
            if kind == "driver":
                self.registry.release_driver(resource_id, order_id)
            else:
                self.registry.release_vehicle(resource_id, order_id)

    def _clear_stale_binding(
        self,
        session: Session,
        kind: str,
        resource_id: uuid.UUID,
        bound_order_id: uuid.UUID,
    ) -> None:
        """
        A binding that points at a finished or missing order is left over
        from a release that failed; drop it so the resource can be reused.
        """
        bound_order = self.repo.get(session, bound_order_id)
        if bound_order is not None and bound_order.status not in TERMINAL_STATUSES:
            return
        logger.warning("Clearing stale %s binding %s -> order %s", kind, resource_id, bound_order_id)
        if kind == "driver":
            self.registry.release_driver(resource_id, bound_order_id)
        else:
            self.registry.release_vehicle(resource_id, bound_order_id)
