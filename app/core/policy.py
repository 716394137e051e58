# app/core/policy.py
"""
Order lifecycle graph and the authorization table that guards it.

Every status change and fleet action is checked here, so routers never
compare roles themselves.

Roles:
  - customer   : places direct orders, may cancel its own pending order
  - driver     : records location pings for orders assigned to it
  - dispatcher : operator; runs the lifecycle and assignments
  - admin      : operator with the same lifecycle authority
  - system     : internal actor used for side effects (never a user role)
"""

import uuid
from dataclasses import dataclass
from typing import Literal

from app.models.user import User

OrderStatus = Literal[
    "pending",
    "assigned",
    "picked_up",
    "in_transit",
    "delivered",
    "cancelled",
    "failed",
]
Role = Literal["customer", "driver", "dispatcher", "admin"]
OrderKind = Literal["direct", "internal"]

PENDING = "pending"
ASSIGNED = "assigned"
PICKED_UP = "picked_up"
IN_TRANSIT = "in_transit"
DELIVERED = "delivered"
CANCELLED = "cancelled"
FAILED = "failed"

TERMINAL_STATUSES: frozenset[str] = frozenset({DELIVERED, CANCELLED, FAILED})

# Statuses during which a driver/vehicle binding exists
BOUND_STATUSES: frozenset[str] = frozenset({ASSIGNED, PICKED_UP, IN_TRANSIT})

# Location pings are accepted only here
ACTIVE_TRACKING_STATUSES: frozenset[str] = BOUND_STATUSES

_FORWARD: dict[str, str] = {
    PENDING: ASSIGNED,
    ASSIGNED: PICKED_UP,
    PICKED_UP: IN_TRANSIT,
    IN_TRANSIT: DELIVERED,
}

ALLOWED_TRANSITIONS: dict[str, frozenset[str]] = {
    status: frozenset({forward, CANCELLED, FAILED})
    for status, forward in _FORWARD.items()
}
for _terminal in TERMINAL_STATUSES:
    ALLOWED_TRANSITIONS[_terminal] = frozenset()

# Unassign returns an assigned order to the queue; never a user-requested edge
UNASSIGN_EDGE = (ASSIGNED, PENDING)

OPERATOR_ROLES: frozenset[str] = frozenset({"dispatcher", "admin"})
SYSTEM_ROLE = "system"

# role -> edges it may take; None means "any edge of the graph"
TRANSITION_AUTHORITY: dict[str, frozenset[tuple[str, str]] | None] = {
    "admin": None,
    "dispatcher": None,
    SYSTEM_ROLE: None,
    "customer": frozenset({(PENDING, CANCELLED)}),
    "driver": frozenset(),
}

# role -> actions it may perform
ACTION_AUTHORITY: dict[str, frozenset[str]] = {
    "admin": frozenset(
        {"assign", "unassign", "edit_details", "create_internal", "view_all"}
    ),
    "dispatcher": frozenset(
        {"assign", "unassign", "edit_details", "create_internal", "view_all"}
    ),
    SYSTEM_ROLE: frozenset({"assign", "unassign", "edit_details", "view_all"}),
    "customer": frozenset({"edit_own_pending"}),
    "driver": frozenset(),
}


@dataclass(frozen=True)
class Actor:
    """Who is asking. Built from the authenticated user or for internal work."""

    user_id: uuid.UUID | None
    role: str

    @classmethod
    def from_user(cls, user: User) -> "Actor":
        return cls(user_id=user.id, role=user.role)

    @classmethod
    def system(cls) -> "Actor":
        return cls(user_id=None, role=SYSTEM_ROLE)

    @property
    def is_operator(self) -> bool:
        return self.role in OPERATOR_ROLES or self.role == SYSTEM_ROLE


def is_edge(current: str, target: str) -> bool:
    return target in ALLOWED_TRANSITIONS.get(current, frozenset())


def can_transition(actor: Actor, current: str, target: str) -> bool:
    """Authority check only; graph membership is checked by is_edge()."""
    edges = TRANSITION_AUTHORITY.get(actor.role, frozenset())
    if edges is None:
        return True
    return (current, target) in edges


def can(actor: Actor, action: str) -> bool:
    return action in ACTION_AUTHORITY.get(actor.role, frozenset())


def can_view(actor: Actor, order) -> bool:
    """Operators see every order; customers their own; drivers their assigned ones."""
    if can(actor, "view_all"):
        return True
    if actor.user_id is None:
        return False
    if actor.role == "customer":
        return order.customer_id == actor.user_id
    if actor.role == "driver":
        return order.driver_id == actor.user_id
    return False
