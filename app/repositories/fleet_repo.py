# app/repositories/fleet_repo.py
import logging
import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any

import httpx
from postgrest.exceptions import APIError
from supabase import Client

from app.core.errors import UpstreamUnavailableError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DriverRecord:
    id: uuid.UUID
    name: str | None
    phone: str | None
    rating: float | None
    is_available_for_assignment: bool
    current_order_id: uuid.UUID | None


@dataclass(frozen=True)
class VehicleRecord:
    id: uuid.UUID
    type: str | None
    license_plate: str | None
    status: str
    current_order_id: uuid.UUID | None

    @property
    def is_in_service(self) -> bool:
        return self.status == "available"


class FleetRegistry(ABC):
    """
    Availability facts about drivers and vehicles.

    Drivers and vehicles are owned by fleet management; this core only
    reads them and flips their `current_order_id` binding.

    bind_*() must be an atomic check-and-set per id: it succeeds only if
    the row is unbound or already bound to `order_id`. When two orders race
    for the same driver exactly one bind returns True.
    """

    @abstractmethod
    def get_driver(self, driver_id: uuid.UUID) -> DriverRecord | None: ...

    @abstractmethod
    def get_vehicle(self, vehicle_id: uuid.UUID) -> VehicleRecord | None: ...

    @abstractmethod
    def bind_driver(self, driver_id: uuid.UUID, order_id: uuid.UUID) -> bool: ...

    @abstractmethod
    def bind_vehicle(self, vehicle_id: uuid.UUID, order_id: uuid.UUID) -> bool: ...

    @abstractmethod
    def release_driver(self, driver_id: uuid.UUID, order_id: uuid.UUID) -> None: ...

    @abstractmethod
    def release_vehicle(self, vehicle_id: uuid.UUID, order_id: uuid.UUID) -> None: ...


def _uuid_or_none(value: Any) -> uuid.UUID | None:
    if value in (None, ""):
        return None
    return uuid.UUID(str(value))


class SupabaseFleetRegistry(FleetRegistry):
    """
    Registry backed by the `drivers` and `vehicles` tables through the
    Supabase service-role client.

    The bind is a single PostgREST PATCH filtered on the current binding,
    so Postgres row locking gives single-writer semantics per id.
    """

    DRIVERS = "drivers"
    VEHICLES = "vehicles"

    def __init__(self, client: Client):
        self.client = client

    def _execute(self, request) -> list[dict[str, Any]]:
        try:
            return request.execute().data or []
        except (APIError, httpx.HTTPError) as exc:
            logger.error("Fleet registry call failed: %s", exc)
            raise UpstreamUnavailableError("Fleet registry is unavailable") from exc

    def _get_row(self, table: str, row_id: uuid.UUID) -> dict[str, Any] | None:
        rows = self._execute(
            self.client.table(table).select("*").eq("id", str(row_id)).limit(1)
        )
        return rows[0] if rows else None

    def _bind(self, table: str, row_id: uuid.UUID, order_id: uuid.UUID) -> bool:
        rows = self._execute(
            self.client.table(table)
            .update({"current_order_id": str(order_id)})
            .eq("id", str(row_id))
            .or_(f"current_order_id.is.null,current_order_id.eq.{order_id}")
        )
        return len(rows) == 1

    def _release(self, table: str, row_id: uuid.UUID, order_id: uuid.UUID) -> None:
        # Only clears a binding that still points at this order
        self._execute(
            self.client.table(table)
            .update({"current_order_id": None})
            .eq("id", str(row_id))
            .eq("current_order_id", str(order_id))
        )

    # ----- Drivers -----

    def get_driver(self, driver_id: uuid.UUID) -> DriverRecord | None:
        row = self._get_row(self.DRIVERS, driver_id)
        if row is None:
            return None
        first = row.get("first_name") or ""
        last = row.get("last_name") or ""
        name = row.get("name") or f"{first} {last}".strip() or None
        return DriverRecord(
            id=uuid.UUID(str(row["id"])),
            name=name,
            phone=row.get("phone"),
            rating=row.get("rating"),
            is_available_for_assignment=bool(row.get("is_available_for_assignment", False)),
            current_order_id=_uuid_or_none(row.get("current_order_id")),
        )

    def bind_driver(self, driver_id: uuid.UUID, order_id: uuid.UUID) -> bool:
        return self._bind(self.DRIVERS, driver_id, order_id)

    def release_driver(self, driver_id: uuid.UUID, order_id: uuid.UUID) -> None:
        self._release(self.DRIVERS, driver_id, order_id)

    # ----- Vehicles -----

    def get_vehicle(self, vehicle_id: uuid.UUID) -> VehicleRecord | None:
        row = self._get_row(self.VEHICLES, vehicle_id)
        if row is None:
            return None
        return VehicleRecord(
            id=uuid.UUID(str(row["id"])),
            type=row.get("type"),
            license_plate=row.get("license_plate"),
            status=row.get("status") or "unknown",
            current_order_id=_uuid_or_none(row.get("current_order_id")),
        )

    def bind_vehicle(self, vehicle_id: uuid.UUID, order_id: uuid.UUID) -> bool:
        return self._bind(self.VEHICLES, vehicle_id, order_id)

    def release_vehicle(self, vehicle_id: uuid.UUID, order_id: uuid.UUID) -> None:
        self._release(self.VEHICLES, vehicle_id, order_id)
