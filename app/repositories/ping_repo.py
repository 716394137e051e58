# app/repositories/ping_repo.py
import uuid
from abc import ABC, abstractmethod
from datetime import datetime

from sqlalchemy.exc import DBAPIError
from sqlmodel import Session, select

from app.core.errors import UpstreamUnavailableError
from app.models.location import LocationPing


class PingRepository(ABC):
    """
    Append-only store of location pings.

    Ordering contract shared by latest() and history(): capture timestamp
    first, arrival sequence (`id`) as tie-break.
    """

    @abstractmethod
    def append(self, session: Session, ping: LocationPing) -> LocationPing: ...

    @abstractmethod
    def latest(self, session: Session, order_id: uuid.UUID) -> LocationPing | None: ...

    @abstractmethod
    def history(
        self,
        session: Session,
        order_id: uuid.UUID,
        since: datetime | None = None,
        limit: int = 100,
    ) -> list[LocationPing]: ...


class SqlPingRepository(PingRepository):
    """SQLModel implementation of the ping store."""

    def append(self, session: Session, ping: LocationPing) -> LocationPing:
        try:
            session.add(ping)
            session.commit()
            session.refresh(ping)
        except DBAPIError as exc:
            session.rollback()
            raise UpstreamUnavailableError("Location store is unavailable") from exc
        return ping

    def latest(self, session: Session, order_id: uuid.UUID) -> LocationPing | None:
        stmt = (
            select(LocationPing)
            .where(LocationPing.order_id == order_id)
            .order_by(LocationPing.captured_at.desc(), LocationPing.id.desc())
            .limit(1)
        )
        try:
            return session.exec(stmt).first()
        except DBAPIError as exc:
            raise UpstreamUnavailableError("Location store is unavailable") from exc

    def history(
        self,
        session: Session,
        order_id: uuid.UUID,
        since: datetime | None = None,
        limit: int = 100,
    ) -> list[LocationPing]:
        stmt = select(LocationPing).where(LocationPing.order_id == order_id)
        if since is not None:
            stmt = stmt.where(LocationPing.captured_at >= since)
        stmt = stmt.order_by(LocationPing.captured_at, LocationPing.id).limit(limit)
        try:
            return list(session.exec(stmt).all())
        except DBAPIError as exc:
            raise UpstreamUnavailableError("Location store is unavailable") from exc
