# app/routers/internal_orders.py
import uuid

from fastapi import APIRouter, Depends, Query, Response, status
from sqlmodel import Session

from app.core.auth import get_actor, require_operator
from app.core.errors import NotFoundError
from app.core.policy import Actor, OrderStatus
from app.core.rate_limit import tiered_rate_limit
from app.database import get_session
from app.dependencies import Services, get_services
from app.schemas.order import InternalOrderCreate, OrderRead, OrderWithItemsRead

router = APIRouter(
    prefix="/internal-orders",
    tags=["Internal Orders"],
    dependencies=[Depends(require_operator), Depends(tiered_rate_limit)],
)


@router.post(
    "",
    response_model=OrderWithItemsRead,
    status_code=status.HTTP_201_CREATED,
)
def create_internal_order(
    payload: InternalOrderCreate,
    response: Response,
    session: Session = Depends(get_session),
    actor: Actor = Depends(get_actor),
    services: Services = Depends(get_services),
):
    """
    Accept an order forwarded by the sales system.

    Idempotent on `upstream_ref`: the first call creates the order (201),
    later calls with the same ref return that order unchanged (200).
    """
    order, created = services.ingestion.ingest_internal(session, actor, payload)
    if not created:
        response.status_code = status.HTTP_200_OK
    items = services.orders.repo.list_items(session, order.id)
    return services.orders.build_order_with_items_dto(order, items)


@router.get("", response_model=list[OrderRead])
def list_internal_orders(
    session: Session = Depends(get_session),
    actor: Actor = Depends(get_actor),
    services: Services = Depends(get_services),
    status_filter: OrderStatus | None = Query(default=None, alias="status"),
    skip: int = Query(default=0, ge=0),
    limit: int = Query(default=50, ge=1, le=200),
):
    orders = services.orders.list_orders(
        session,
        actor,
        status=status_filter,
        order_kind="internal",
        skip=skip,
        limit=limit,
    )
    return [services.orders.build_order_dto(o) for o in orders]


@router.get("/{order_id}", response_model=OrderWithItemsRead)
def get_internal_order(
    order_id: uuid.UUID,
    session: Session = Depends(get_session),
    actor: Actor = Depends(get_actor),
    services: Services = Depends(get_services),
):
    order, items = services.orders.get_for_actor(session, order_id, actor)
    if order.order_kind != "internal":
        raise NotFoundError(f"Internal order {order_id} not found")
    return services.orders.build_order_with_items_dto(order, items)
