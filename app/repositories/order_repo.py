# app/repositories/order_repo.py
import uuid
from abc import ABC, abstractmethod
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Any, Iterator

from sqlalchemy import update
from sqlalchemy.exc import DBAPIError, IntegrityError
from sqlmodel import Session, select

from app.core.errors import ConflictError, UpstreamUnavailableError
from app.models.order import Order, OrderItem


class OrderRepository(ABC):
    """
    Persistence contract for orders and their items.

    Every method takes the request session first (same shape as the other
    repositories); implementations that do not need one ignore it.

    Rules every implementation follows:
      - create() writes the order and all items atomically
      - update_if_version() applies changes only when the stored version
        still equals `expected_version`, bumps the version and updated_at,
        and returns None otherwise
      - connectivity failures raise UpstreamUnavailableError with nothing
        written
    """

    @abstractmethod
    def get(self, session: Session, order_id: uuid.UUID) -> Order | None: ...

    @abstractmethod
    def get_by_upstream_ref(self, session: Session, upstream_ref: str) -> Order | None: ...

    @abstractmethod
    def list_orders(
        self,
        session: Session,
        *,
        customer_id: uuid.UUID | None = None,
        driver_id: uuid.UUID | None = None,
        order_kind: str | None = None,
        status: str | None = None,
        skip: int = 0,
        limit: int = 50,
    ) -> list[Order]: ...

    @abstractmethod
    def list_items(self, session: Session, order_id: uuid.UUID) -> list[OrderItem]: ...

    @abstractmethod
    def create(self, session: Session, order: Order, items: list[OrderItem]) -> Order: ...

    @abstractmethod
    def update_if_version(
        self,
        session: Session,
        order_id: uuid.UUID,
        expected_version: int,
        changes: dict[str, Any],
    ) -> Order | None: ...


class SqlOrderRepository(OrderRepository):
    """
    SQLModel implementation backed by the Supabase Postgres database.

    NOTE:
      - Unlike the read helpers, create() and update_if_version() commit,
        since each one is a complete unit of work for the services.
    """

    @contextmanager
    def _guard(self, session: Session) -> Iterator[None]:
        """Translate driver/connection failures into UpstreamUnavailableError."""
        try:
            yield
        except IntegrityError:
            session.rollback()
            raise
        except DBAPIError as exc:
            session.rollback()
            raise UpstreamUnavailableError("Order store is unavailable") from exc

    # ---- Orders ----

    def get(self, session: Session, order_id: uuid.UUID) -> Order | None:
        with self._guard(session):
            return session.get(Order, order_id)

    def get_by_upstream_ref(self, session: Session, upstream_ref: str) -> Order | None:
        with self._guard(session):
            stmt = select(Order).where(Order.upstream_ref == upstream_ref)
            return session.exec(stmt).first()

    def list_orders(
        self,
        session: Session,
        *,
        customer_id: uuid.UUID | None = None,
        driver_id: uuid.UUID | None = None,
        order_kind: str | None = None,
        status: str | None = None,
        skip: int = 0,
        limit: int = 50,
    ) -> list[Order]:
        stmt = select(Order)
        if customer_id is not None:
            stmt = stmt.where(Order.customer_id == customer_id)
        if driver_id is not None:
            stmt = stmt.where(Order.driver_id == driver_id)
        if order_kind is not None:
            stmt = stmt.where(Order.order_kind == order_kind)
        if status is not None:
            stmt = stmt.where(Order.status == status)
        stmt = stmt.order_by(Order.created_at.desc()).offset(skip).limit(limit)
        with self._guard(session):
            return list(session.exec(stmt).all())

    def create(self, session: Session, order: Order, items: list[OrderItem]) -> Order:
        """
        Insert the order and its items in one transaction.

        Raises:
            ConflictError: another order already carries this upstream_ref.
        """
        try:
            with self._guard(session):
                session.add(order)
                session.flush()  # Assign PK before items reference it
                for position, item in enumerate(items):
                    item.order_id = order.id
                    item.position = position
                session.add_all(items)
                session.commit()
                session.refresh(order)
        except IntegrityError as exc:
            raise ConflictError(
                f"Order with upstream reference {order.upstream_ref} already exists"
            ) from exc
        return order

    def update_if_version(
        self,
        session: Session,
        order_id: uuid.UUID,
        expected_version: int,
        changes: dict[str, Any],
    ) -> Order | None:
        values = {
            **changes,
            "version": expected_version + 1,
            "updated_at": datetime.now(timezone.utc),
        }
        stmt = (
            update(Order)
            .where(Order.id == order_id, Order.version == expected_version)
            .values(**values)
        )
        with self._guard(session):
            result = session.execute(stmt)
            if result.rowcount != 1:
                session.rollback()
                return None
            session.commit()
            # The identity map may still hold the pre-update row
            session.expire_all()
            return session.get(Order, order_id)

    # ---- Order items ----

    def list_items(self, session: Session, order_id: uuid.UUID) -> list[OrderItem]:
        stmt = (
            select(OrderItem)
            .where(OrderItem.order_id == order_id)
            .order_by(OrderItem.position)
        )
        with self._guard(session):
            return list(session.exec(stmt).all())
