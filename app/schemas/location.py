# app/schemas/location.py
import uuid
from datetime import datetime

from pydantic import ConfigDict, field_validator
from sqlmodel import SQLModel, Field

from app.core.timeutils import as_utc


class Position(SQLModel):
    """Geographic position reported by a device."""

    model_config = ConfigDict(extra="forbid")

    latitude: float = Field(ge=-90, le=90)
    longitude: float = Field(ge=-180, le=180)
    heading: float | None = Field(default=None, ge=0, lt=360)
    speed: float | None = Field(default=None, ge=0)
    accuracy: float | None = Field(default=None, ge=0)


class PingCreate(Position):
    """
    POST /location/track payload.

    `captured_at` is the device clock at capture time; when omitted the
    server receive time is used.
    """

    order_id: uuid.UUID
    battery_level: int | None = Field(default=None, ge=0, le=100)
    captured_at: datetime | None = None

    @field_validator("captured_at")
    @classmethod
    def normalize_utc(cls, v: datetime | None) -> datetime | None:
        return as_utc(v)

    @property
    def position(self) -> Position:
        return Position(
            latitude=self.latitude,
            longitude=self.longitude,
            heading=self.heading,
            speed=self.speed,
            accuracy=self.accuracy,
        )


class PingRead(SQLModel):
    id: int
    order_id: uuid.UUID
    driver_id: uuid.UUID
    latitude: float
    longitude: float
    heading: float | None
    speed: float | None
    accuracy: float | None
    battery_level: int | None
    captured_at: datetime


class DriverSummary(SQLModel):
    """Who is carrying the order, for the customer tracking screen."""

    id: uuid.UUID | None = None
    name: str | None = None
    phone: str | None = None
    rating: float | None = None
    vehicle_type: str | None = None
    vehicle_number: str | None = None


class OrderLocationRead(SQLModel):
    """
    GET /location/order/{id} response.

    `is_placeholder` is true when no ping exists yet and `location` holds
    the configured default position.
    """

    order_id: uuid.UUID
    status: str
    location: Position
    captured_at: datetime | None
    battery_level: int | None
    is_placeholder: bool
    driver: DriverSummary | None
