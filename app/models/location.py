# app/models/location.py
import uuid
from datetime import datetime, timezone

from sqlmodel import SQLModel, Field


class LocationPing(SQLModel, table=True):
    """
    Append-only position fact reported by the assigned driver's device.

    `id` is an autoincrement sequence, so it doubles as arrival order when
    two pings share a capture timestamp. Rows are never updated or deleted.
    """

    __tablename__ = "location_pings"

    id: int | None = Field(default=None, primary_key=True)

    order_id: uuid.UUID = Field(
        foreign_key="orders.id",
        index=True,
    )
    driver_id: uuid.UUID = Field(index=True)

    latitude: float
    longitude: float
    heading: float | None = None
    speed: float | None = None
    accuracy: float | None = None

    battery_level: int | None = None

    captured_at: datetime = Field(index=True)
    received_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc),
    )
