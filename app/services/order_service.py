# app/services/order_service.py
import logging
import uuid
from datetime import datetime
from typing import Any, Callable

from sqlmodel import Session

from app.core.errors import (
    ConflictError,
    ForbiddenError,
    InvalidTransitionError,
    NotFoundError,
    ValidationError,
)
from app.core.policy import (
    ASSIGNED,
    BOUND_STATUSES,
    CANCELLED,
    DELIVERED,
    FAILED,
    PENDING,
    PICKED_UP,
    TERMINAL_STATUSES,
    Actor,
    can,
    can_transition,
    can_view,
    is_edge,
)
from app.core.timeutils import as_utc, utcnow
from app.models.order import Order, OrderItem
from app.repositories.order_repo import OrderRepository
from app.schemas.order import (
    Address,
    OrderItemCreate,
    OrderItemRead,
    OrderRead,
    OrderWithItemsRead,
    Schedule,
)

logger = logging.getLogger(__name__)

# listener(session, order_after_transition, previous_status)
TerminalListener = Callable[[Session, Order, str], None]


class OrderStateMachine:
    """
    Order lifecycle.

      pending -> assigned -> picked_up -> in_transit -> delivered
      cancelled / failed reachable from every non-terminal status

    Responsibilities:
      - create orders and compute weight/volume aggregates
      - validate and apply status transitions (graph + authority table)
      - stamp actual pickup / delivery times
      - notify listeners when an order with a driver binding ends
      - serialize writes per order through the version precondition
    """

    def __init__(
        self,
        repo: OrderRepository,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.repo = repo
        self.clock = clock
        self._terminal_listeners: list[TerminalListener] = []

    def on_terminal(self, listener: TerminalListener) -> None:
        """Register a callback run after an order with a binding reaches a terminal status."""
        self._terminal_listeners.append(listener)

    # -------- Creation --------

    def create(
        self,
        session: Session,
        *,
        order_kind: str,
        items: list[OrderItemCreate],
        pickup_address: Address,
        delivery_address: Address,
        schedule: Schedule | None = None,
        customer_id: uuid.UUID | None = None,
        upstream_ref: str | None = None,
        notes: str | None = None,
        special_requirements: list[str] | None = None,
    ) -> Order:
        """
        Create a pending order with its items.

        Steps:
          1. Validate items (at least one, positive quantity and weight).
          2. Compute total_weight / total_volume (per-unit values x quantity).
          3. Persist order + items in one transaction.

        Raises:
            ValidationError: empty items or a non-positive item weight/quantity.
            ConflictError: upstream_ref already used (from the repository).
        """
        if not items:
            raise ValidationError("Order must contain at least one item")

        for index, item in enumerate(items):
            if item.weight is None or item.weight <= 0:
                raise ValidationError(f"Item {index + 1}: weight must be positive")
            if item.quantity is None or item.quantity <= 0:
                raise ValidationError(f"Item {index + 1}: quantity must be positive")

        total_weight = sum(item.quantity * item.weight for item in items)
        total_volume = sum(item.quantity * (item.volume or 0.0) for item in items)

        schedule = schedule or Schedule()
        now = self.clock()

        order = Order(
            order_kind=order_kind,
            customer_id=customer_id,
            status=PENDING,
            pickup_address=pickup_address.model_dump(),
            delivery_address=delivery_address.model_dump(),
            scheduled_pickup_time=schedule.scheduled_pickup_time,
            scheduled_delivery_time=schedule.scheduled_delivery_time,
            total_weight=total_weight,
            total_volume=total_volume,
            upstream_ref=upstream_ref,
            notes=notes,
            special_requirements=special_requirements,
            created_at=now,
            updated_at=now,
        )
        order_items = [
            OrderItem(
                order_id=order.id,
                material_type=item.material_type,
                description=item.description,
                quantity=item.quantity,
                unit=item.unit,
                weight=item.weight,
                volume=item.volume,
                special_handling=item.special_handling,
            )
            for item in items
        ]

        order = self.repo.create(session, order, order_items)
        logger.info(
            "Order %s created (kind=%s, items=%d, weight=%.2f)",
            order.id,
            order_kind,
            len(order_items),
            total_weight,
        )
        return order

    # -------- Reads --------

    def get_order(self, session: Session, order_id: uuid.UUID) -> Order:
        order = self.repo.get(session, order_id)
        if order is None:
            raise NotFoundError(f"Order {order_id} not found")
        return order

    def get_for_actor(
        self,
        session: Session,
        order_id: uuid.UUID,
        actor: Actor,
    ) -> tuple[Order, list[OrderItem]]:
        """
        Order with items, visible to its customer, its assigned driver and
        operators.
        """
        order = self.get_order(session, order_id)
        if not can_view(actor, order):
            raise ForbiddenError(f"{actor.role} {actor.user_id} cannot view order {order_id}")
        return order, self.repo.list_items(session, order.id)

    def list_orders(
        self,
        session: Session,
        actor: Actor,
        *,
        status: str | None = None,
        order_kind: str | None = None,
        skip: int = 0,
        limit: int = 50,
    ) -> list[Order]:
        """
        Customers see their own orders, drivers the orders assigned to them,
        operators everything.
        """
        filters: dict[str, Any] = {"status": status, "order_kind": order_kind}
        if can(actor, "view_all"):
            pass
        elif actor.role == "customer":
            filters["customer_id"] = actor.user_id
        elif actor.role == "driver":
            filters["driver_id"] = actor.user_id
        else:
            raise ForbiddenError(f"role {actor.role} cannot list orders")
        return self.repo.list_orders(session, skip=skip, limit=limit, **filters)

    # -------- Lifecycle --------

    def transition(
        self,
        session: Session,
        order_id: uuid.UUID,
        target: str,
        actor: Actor,
    ) -> Order:
        """
        Move an order along one edge of the lifecycle graph.

        Raises:
            NotFoundError: unknown order.
            ForbiddenError: actor may not touch this order or take this edge.
            ConflictError: terminal status requested again, or the order
                changed while we were working on it.
            InvalidTransitionError: edge not in the graph, or entering
                'assigned' without a driver/vehicle binding.
        """
        order = self.get_order(session, order_id)
        current = order.status

        if not actor.is_operator and not can_view(actor, order):
            raise ForbiddenError(f"{actor.role} {actor.user_id} does not own order {order_id}")

        if current == target and current in TERMINAL_STATUSES:
            raise ConflictError(f"Order {order_id} is already {current}")

        if not is_edge(current, target):
            raise InvalidTransitionError(f"cannot transition from {current} to {target}")

        if not can_transition(actor, current, target):
            raise ForbiddenError(f"{actor.role} may not move order from {current} to {target}")

        if target == ASSIGNED and (order.driver_id is None or order.vehicle_id is None):
            raise InvalidTransitionError(
                f"cannot transition from {current} to {target} without a driver and vehicle assignment"
            )

        changes: dict[str, Any] = {"status": target}
        if target == PICKED_UP:
            changes["actual_pickup_time"] = self.clock()
        elif target == DELIVERED:
            changes["actual_delivery_time"] = self.clock()

        updated = self.apply(session, order, changes)
        logger.info(
            "Order %s: %s -> %s by %s %s",
            order_id,
            current,
            target,
            actor.role,
            actor.user_id or "",
        )

        ends_binding = target == DELIVERED or (
            target in (CANCELLED, FAILED) and current in BOUND_STATUSES
        )
        if ends_binding:
            for listener in self._terminal_listeners:
                listener(session, updated, current)
            updated = self.get_order(session, order_id)
        return updated

    def update_details(
        self,
        session: Session,
        order_id: uuid.UUID,
        actor: Actor,
        changes: dict[str, Any],
    ) -> Order:
        """
        Edit notes, schedule or special requirements.

        Customers may edit their own order while it is pending; operators
        while it is not terminal. Items are never editable here.
        """
        allowed_fields = {
            "notes",
            "scheduled_pickup_time",
            "scheduled_delivery_time",
            "special_requirements",
        }
        unknown = set(changes) - allowed_fields
        if unknown:
            raise ValidationError(f"Fields cannot be edited: {', '.join(sorted(unknown))}")
        if not changes:
            raise ValidationError("No valid fields to update")

        order = self.get_order(session, order_id)

        if can(actor, "edit_details"):
            if order.status in TERMINAL_STATUSES:
                raise InvalidTransitionError(f"cannot edit order in status {order.status}")
        elif can(actor, "edit_own_pending") and can_view(actor, order):
            if order.status != PENDING:
                raise ForbiddenError(f"customer edit on order {order_id} in status {order.status}")
        else:
            raise ForbiddenError(f"{actor.role} may not edit order {order_id}")

        for name in ("scheduled_pickup_time", "scheduled_delivery_time"):
            if name in changes:
                changes[name] = as_utc(changes[name])
        pickup = as_utc(changes.get("scheduled_pickup_time", order.scheduled_pickup_time))
        delivery = as_utc(changes.get("scheduled_delivery_time", order.scheduled_delivery_time))
        if pickup is not None and delivery is not None and delivery < pickup:
            raise ValidationError("scheduled_delivery_time must not be before scheduled_pickup_time")

        return self.apply(session, order, changes)

    def apply(self, session: Session, order: Order, changes: dict[str, Any]) -> Order:
        """
        Conditional write against the version we read.

        Raises:
            ConflictError: someone else changed the order first.
        """
        updated = self.repo.update_if_version(session, order.id, order.version, changes)
        if updated is None:
            logger.warning("Concurrent modification detected on order %s", order.id)
            raise ConflictError(f"Order {order.id} was modified concurrently, retry the request")
        return updated

    # -------- DTO builders --------

    @staticmethod
    def build_order_dto(order: Order) -> OrderRead:
        return OrderRead.model_validate(order.model_dump())

    @staticmethod
    def build_order_with_items_dto(order: Order, items: list[OrderItem]) -> OrderWithItemsRead:
        return OrderWithItemsRead.model_validate(
            {
                **order.model_dump(),
                "items": [OrderItemRead.model_validate(it.model_dump()) for it in items],
            }
        )