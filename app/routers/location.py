# app/routers/location.py
import uuid
from datetime import datetime

from fastapi import APIRouter, Depends, Query, status
from sqlmodel import Session

from app.core.auth import get_actor, require_driver
from app.core.policy import Actor
from app.core.rate_limit import rate_limit
from app.database import get_session
from app.dependencies import Services, get_services
from app.models.user import User
from app.schemas.location import OrderLocationRead, PingCreate, PingRead

router = APIRouter(prefix="/location", tags=["Location"])


@router.get("/health")
def location_health():
    """Liveness of the tracking routes."""
    return {"status": "ok", "service": "location"}


@router.post(
    "/track",
    response_model=PingRead,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(rate_limit("tracking"))],
)
def track(
    payload: PingCreate,
    session: Session = Depends(get_session),
    current_user: User = Depends(require_driver),
    services: Services = Depends(get_services),
):
    """
    Record a position for an order.

    Auth:
      - role='driver', and the driver must be the one assigned to the order.
    """
    ping = services.tracking.record_ping(
        session,
        payload.order_id,
        current_user.id,
        payload.position,
        battery_level=payload.battery_level,
        captured_at=payload.captured_at,
    )
    return PingRead.model_validate(ping.model_dump())


@router.get(
    "/order/{order_id}",
    response_model=OrderLocationRead,
    dependencies=[Depends(rate_limit("api"))],
)
def order_location(
    order_id: uuid.UUID,
    session: Session = Depends(get_session),
    actor: Actor = Depends(get_actor),
    services: Services = Depends(get_services),
):
    """
    Latest position of an order plus driver / vehicle summary.

    Before the first ping the default position is returned with
    `is_placeholder: true`.
    """
    return services.tracking.order_location(session, order_id, actor)


@router.get(
    "/order/{order_id}/history",
    response_model=list[PingRead],
    dependencies=[Depends(rate_limit("api"))],
)
def order_location_history(
    order_id: uuid.UUID,
    session: Session = Depends(get_session),
    actor: Actor = Depends(get_actor),
    services: Services = Depends(get_services),
    since: datetime | None = None,
    limit: int = Query(default=100, ge=1, le=1000),
):
    """Pings in capture order, oldest first."""
    pings = services.tracking.history(session, order_id, actor, since=since, limit=limit)
    return [PingRead.model_validate(p.model_dump()) for p in pings]
