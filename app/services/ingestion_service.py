# app/services/ingestion_service.py
import logging
import uuid

from sqlmodel import Session

from app.core.errors import ConflictError, ForbiddenError
from app.core.policy import Actor, can
from app.models.order import Order
from app.schemas.order import InternalOrderCreate, OrderCreate
from app.services.order_service import OrderStateMachine

logger = logging.getLogger(__name__)


class OrderIngestionAdapter:
    """
    Turns the two creation paths into one internal order shape.

      - direct   : placed by a customer in the mobile app
      - internal : forwarded by the upstream sales system, keyed by the
                   sales order id (upstream_ref); re-sends are idempotent
    """

    def __init__(self, state_machine: OrderStateMachine):
        self.state_machine = state_machine

    def ingest_direct(
        self,
        session: Session,
        customer_id: uuid.UUID,
        payload: OrderCreate,
    ) -> Order:
        return self.state_machine.create(
            session,
            order_kind="direct",
            items=payload.items,
            pickup_address=payload.pickup_address,
            delivery_address=payload.delivery_address,
            schedule=payload.schedule,
            customer_id=customer_id,
            notes=payload.notes,
            special_requirements=payload.special_requirements,
        )

    def ingest_internal(
        self,
        session: Session,
        actor: Actor,
        payload: InternalOrderCreate,
    ) -> tuple[Order, bool]:
        """
        Create the order for an upstream sales order, once.

        Returns:
            (order, created). When `upstream_ref` is already known the
            existing order is returned unchanged with created=False, so an
            upstream retry never yields a second order.
        """
        if not can(actor, "create_internal"):
            raise ForbiddenError(f"{actor.role} may not create internal orders")

        existing = self.state_machine.repo.get_by_upstream_ref(session, payload.upstream_ref)
        if existing is not None:
            logger.info(
                "Internal order for %s already exists as %s",
                payload.upstream_ref,
                existing.id,
            )
            return existing, False

        try:
            order = self.state_machine.create(
                session,
                order_kind="internal",
                items=payload.items,
                pickup_address=payload.pickup_address,
                delivery_address=payload.delivery_address,
                schedule=payload.schedule,
                customer_id=payload.customer_id,
                upstream_ref=payload.upstream_ref,
                notes=payload.notes,
                special_requirements=payload.special_requirements,
            )
        except ConflictError:
            # A concurrent retry won the unique constraint
            winner = self.state_machine.repo.get_by_upstream_ref(session, payload.upstream_ref)
            if winner is None:
                raise
            return winner, False
        return order, True
