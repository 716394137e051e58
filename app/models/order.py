# app/models/order.py
import uuid
from datetime import datetime, timezone
from typing import Any

from sqlalchemy import JSON, Column
from sqlmodel import SQLModel, Field


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Order(SQLModel, table=True):
    """
    Delivery order for building materials.

    Addresses and special requirements are JSON columns here; the domain
    works with structured `Address` objects and (de)serialization stays in
    the repository layer.

    `version` is bumped on every write and used as the precondition for
    conditional updates, which serializes changes per order.
    """

    __tablename__ = "orders"

    id: uuid.UUID = Field(
        default_factory=uuid.uuid4,
        primary_key=True,
        index=True,
    )

    # direct | internal
    order_kind: str = Field(
        index=True,
        description="Origin of the order",
    )

    # Internal orders may not belong to a registered customer
    customer_id: uuid.UUID | None = Field(
        default=None,
        index=True,
    )

    # pending | assigned | picked_up | in_transit | delivered | cancelled | failed
    status: str = Field(
        default="pending",
        index=True,
        description="Order status lifecycle",
    )

    pickup_address: dict[str, Any] = Field(sa_column=Column(JSON, nullable=False))
    delivery_address: dict[str, Any] = Field(sa_column=Column(JSON, nullable=False))

    scheduled_pickup_time: datetime | None = None
    scheduled_delivery_time: datetime | None = None
    actual_pickup_time: datetime | None = None
    actual_delivery_time: datetime | None = None

    total_weight: float = Field(description="Sum of item weights (kg)")
    total_volume: float = Field(default=0.0, description="Sum of item volumes (m3)")

    # Sales order id from the upstream sales system; one order per ref
    upstream_ref: str | None = Field(
        default=None,
        unique=True,
        index=True,
    )

    driver_id: uuid.UUID | None = Field(default=None, index=True)
    vehicle_id: uuid.UUID | None = Field(default=None, index=True)

    notes: str | None = None
    special_requirements: list[str] | None = Field(
        default=None,
        sa_column=Column(JSON, nullable=True),
    )

    version: int = Field(default=1)

    created_at: datetime = Field(
        default_factory=_utcnow,
        description="Creation timestamp (UTC)",
    )
    updated_at: datetime = Field(
        default_factory=_utcnow,
        description="Last modification timestamp (UTC)",
    )


class OrderItem(SQLModel, table=True):
    """
    Material line inside an order. Immutable once written.
    """

    __tablename__ = "order_items"

    id: uuid.UUID = Field(
        default_factory=uuid.uuid4,
        primary_key=True,
        index=True,
    )

    order_id: uuid.UUID = Field(
        foreign_key="orders.id",
        index=True,
        ondelete="CASCADE",
    )

    material_type: str = Field(description="cement | steel | bricks | ...")
    description: str
    quantity: float = Field(gt=0)
    unit: str = Field(description="kg, tons, bags, pieces, m3, ...")

    # Per-unit weight (kg) and optional per-unit volume (m3)
    weight: float = Field(gt=0)
    volume: float | None = None

    special_handling: str | None = None

    # Insertion order inside the order
    position: int = Field(default=0)
