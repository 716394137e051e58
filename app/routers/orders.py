# app/routers/orders.py
import uuid

from fastapi import APIRouter, Depends, Query, status
from sqlmodel import Session

from app.core.auth import get_actor, require_customer
from app.core.errors import ValidationError
from app.core.policy import Actor, OrderStatus
from app.core.rate_limit import rate_limit
from app.database import get_session
from app.dependencies import Services, get_services
from app.models.user import User
from app.schemas.order import (
    OrderCreate,
    OrderRead,
    OrderUpdate,
    OrderWithItemsRead,
)

router = APIRouter(prefix="/orders", tags=["Orders"])


# -------- Customer endpoints --------


@router.post(
    "",
    response_model=OrderWithItemsRead,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(rate_limit("orders"))],
)
def create_order(
    payload: OrderCreate,
    session: Session = Depends(get_session),
    current_user: User = Depends(require_customer),
    services: Services = Depends(get_services),
):
    """
    Place a direct order from the mobile app.

    Auth:
      - Only role='customer'. The customer id comes from the token.
    """
    order = services.ingestion.ingest_direct(session, current_user.id, payload)
    items = services.orders.repo.list_items(session, order.id)
    return services.orders.build_order_with_items_dto(order, items)


# -------- Shared endpoints --------


@router.get(
    "",
    response_model=list[OrderRead],
    dependencies=[Depends(rate_limit("api"))],
)
def list_orders(
    session: Session = Depends(get_session),
    actor: Actor = Depends(get_actor),
    services: Services = Depends(get_services),
    status_filter: OrderStatus | None = Query(default=None, alias="status"),
    skip: int = Query(default=0, ge=0),
    limit: int = Query(default=50, ge=1, le=200),
):
    """
    List orders visible to the caller (without items).

      customer   -> own orders
      driver     -> orders assigned to them
      operators  -> all orders
    """
    orders = services.orders.list_orders(
        session, actor, status=status_filter, skip=skip, limit=limit
    )
    return [services.orders.build_order_dto(o) for o in orders]


@router.get(
    "/{order_id}",
    response_model=OrderWithItemsRead,
    dependencies=[Depends(rate_limit("api"))],
)
def get_order(
    order_id: uuid.UUID,
    session: Session = Depends(get_session),
    actor: Actor = Depends(get_actor),
    services: Services = Depends(get_services),
):
    """
    Get a single order with items.

    Visible to its customer, its assigned driver and operators.
    """
    order, items = services.orders.get_for_actor(session, order_id, actor)
    return services.orders.build_order_with_items_dto(order, items)


@router.put(
    "/{order_id}",
    response_model=OrderRead,
    dependencies=[Depends(rate_limit("strict"))],
)
def update_order(
    order_id: uuid.UUID,
    payload: OrderUpdate,
    session: Session = Depends(get_session),
    actor: Actor = Depends(get_actor),
    services: Services = Depends(get_services),
):
    """
    Update an order.

    A request carries exactly one change, applied as one conditional write:
      unassign=true      -> back to pending, binding freed (operators)
      driver_id+vehicle  -> assign / re-assign (operators)
      status             -> lifecycle transition
      notes / schedule   -> detail edits

    Customers may only cancel their own pending order or edit its details
    while it is pending.
    """
    details = payload.detail_changes()

    if payload.unassign:
        order = services.assignments.release(session, order_id, actor)
    elif payload.driver_id is not None:
        order = services.assignments.assign(
            session, order_id, payload.driver_id, payload.vehicle_id, actor
        )
    elif payload.status is not None:
        order = services.orders.transition(session, order_id, payload.status, actor)
    elif details:
        order = services.orders.update_details(session, order_id, actor, details)
    else:
        raise ValidationError("No valid fields to update")

    return services.orders.build_order_dto(order)
