# app/schemas/order.py
import uuid
from datetime import datetime
from typing import Literal

from pydantic import ConfigDict, field_validator, model_validator
from sqlmodel import SQLModel, Field

from app.core.policy import OrderKind, OrderStatus
from app.core.timeutils import as_utc

MaterialType = Literal[
    "cement",
    "steel",
    "bricks",
    "sand",
    "gravel",
    "concrete_blocks",
    "lumber",
    "pipes",
    "tiles",
    "other",
]


def _strip_or_none(v: str | None) -> str | None:
    if v is None:
        return v
    v = v.strip()
    return v or None


class Address(SQLModel):
    """
    Structured pickup / delivery address.

    Street, city, state and zip code are mandatory; coordinates are
    optional (set when the customer picked a point on the map).
    """

    model_config = ConfigDict(extra="forbid")

    street: str
    city: str
    state: str
    zip_code: str
    country: str = "AE"
    latitude: float | None = Field(default=None, ge=-90, le=90)
    longitude: float | None = Field(default=None, ge=-180, le=180)
    special_instructions: str | None = None

    @field_validator("street", "city", "state", "zip_code", "country")
    @classmethod
    def not_empty(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("field cannot be empty")
        return v

    @field_validator("special_instructions")
    @classmethod
    def normalize_instructions(cls, v: str | None) -> str | None:
        return _strip_or_none(v)


class OrderItemCreate(SQLModel):
    """
    One material line. `weight` and `volume` are per unit.
    """

    model_config = ConfigDict(extra="forbid")

    material_type: MaterialType
    description: str
    quantity: float = Field(gt=0)
    unit: str
    weight: float = Field(gt=0, description="Weight per unit (kg)")
    volume: float | None = Field(default=None, ge=0, description="Volume per unit (m3)")
    special_handling: str | None = None

    @field_validator("description", "unit")
    @classmethod
    def not_empty(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("field cannot be empty")
        return v

    @field_validator("special_handling")
    @classmethod
    def normalize_handling(cls, v: str | None) -> str | None:
        return _strip_or_none(v)


class Schedule(SQLModel):
    """Requested pickup / delivery times (both optional)."""

    model_config = ConfigDict(extra="forbid")

    scheduled_pickup_time: datetime | None = None
    scheduled_delivery_time: datetime | None = None

    @field_validator("scheduled_pickup_time", "scheduled_delivery_time")
    @classmethod
    def normalize_utc(cls, v: datetime | None) -> datetime | None:
        return as_utc(v)

    @model_validator(mode="after")
    def pickup_before_delivery(self) -> "Schedule":
        pickup = self.scheduled_pickup_time
        delivery = self.scheduled_delivery_time
        if pickup is not None and delivery is not None and delivery < pickup:
            raise ValueError("scheduled_delivery_time must not be before scheduled_pickup_time")
        return self


class OrderCreate(Schedule):
    """
    Payload for a direct customer order.

    Backend derives:
      - customer_id from token
      - order_kind = 'direct', status = 'pending'
      - total_weight / total_volume from items
    """

    items: list[OrderItemCreate] = Field(min_length=1)
    pickup_address: Address
    delivery_address: Address
    notes: str | None = None
    special_requirements: list[str] | None = None

    @field_validator("notes")
    @classmethod
    def normalize_note(cls, v: str | None) -> str | None:
        return _strip_or_none(v)

    @property
    def schedule(self) -> Schedule:
        return Schedule(
            scheduled_pickup_time=self.scheduled_pickup_time,
            scheduled_delivery_time=self.scheduled_delivery_time,
        )


class InternalOrderCreate(OrderCreate):
    """
    Order forwarded by the upstream sales system.

    `upstream_ref` is the sales order id; re-sending it returns the order
    that was created the first time.
    """

    upstream_ref: str = Field(min_length=1, max_length=100)
    customer_id: uuid.UUID | None = None

    @field_validator("upstream_ref")
    @classmethod
    def strip_ref(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("upstream_ref cannot be empty")
        return v


class OrderUpdate(SQLModel):
    """
    PUT /orders/{id} payload.

    One request makes one change: an assignment, an unassignment, a status
    change, or a set of detail edits. A `status` equal to the status the
    assignment (or unassignment) produces is accepted alongside it.
    """

    model_config = ConfigDict(extra="forbid")

    status: OrderStatus | None = None
    driver_id: uuid.UUID | None = None
    vehicle_id: uuid.UUID | None = None
    unassign: bool = False
    notes: str | None = None
    scheduled_pickup_time: datetime | None = None
    scheduled_delivery_time: datetime | None = None
    special_requirements: list[str] | None = None

    @field_validator("scheduled_pickup_time", "scheduled_delivery_time")
    @classmethod
    def normalize_utc(cls, v: datetime | None) -> datetime | None:
        return as_utc(v)

    @model_validator(mode="after")
    def check_single_change(self) -> "OrderUpdate":
        if (self.driver_id is None) != (self.vehicle_id is None):
            raise ValueError("driver_id and vehicle_id must be provided together")
        if self.unassign and self.driver_id is not None:
            raise ValueError("cannot assign and unassign in the same request")

        lifecycle = []
        if self.driver_id is not None:
            lifecycle.append("assign")
            if self.status not in (None, "assigned"):
                lifecycle.append("status")
        elif self.unassign:
            lifecycle.append("unassign")
            if self.status not in (None, "pending"):
                lifecycle.append("status")
        elif self.status is not None:
            lifecycle.append("status")

        if len(lifecycle) > 1:
            raise ValueError("send the assignment and the status change as separate requests")
        if lifecycle and self.detail_changes():
            raise ValueError("send detail edits separately from status or assignment changes")
        return self

    def detail_changes(self) -> dict:
        """Fields that edit order details rather than lifecycle/assignment."""
        fields = (
            "notes",
            "scheduled_pickup_time",
            "scheduled_delivery_time",
            "special_requirements",
        )
        return {name: getattr(self, name) for name in fields if name in self.model_fields_set}


class OrderItemRead(SQLModel):
    """
    Representation of a single order line.
    """

    id: uuid.UUID
    order_id: uuid.UUID
    material_type: str
    description: str
    quantity: float
    unit: str
    weight: float
    volume: float | None
    special_handling: str | None


class OrderRead(SQLModel):
    """
    Order without items.
    """

    id: uuid.UUID
    order_kind: OrderKind
    customer_id: uuid.UUID | None
    status: OrderStatus
    pickup_address: Address
    delivery_address: Address
    scheduled_pickup_time: datetime | None
    scheduled_delivery_time: datetime | None
    actual_pickup_time: datetime | None
    actual_delivery_time: datetime | None
    total_weight: float
    total_volume: float
    upstream_ref: str | None
    driver_id: uuid.UUID | None
    vehicle_id: uuid.UUID | None
    notes: str | None
    special_requirements: list[str] | None
    version: int
    created_at: datetime
    updated_at: datetime


class OrderWithItemsRead(OrderRead):
    """
    Full order view including items.
    """

    items: list[OrderItemRead]
