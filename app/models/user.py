# app/models/user.py
import uuid
from datetime import datetime, timezone

from sqlmodel import SQLModel, Field


class User(SQLModel, table=True):
    """
    Persistent user profile for BuildMate.

    Identity:
      - id: MUST match Supabase auth.users.id (UUID from JWT "sub")
      - for driver accounts the same id is the driver registry id

    Role:
      - "customer" | "driver" | "dispatcher" | "admin"

    This table is *not* responsible for password hashes. Supabase Auth
    stores the password in its own schema. We only mirror identity,
    name, application role and account tier.
    """

    __tablename__ = "users"

    id: uuid.UUID = Field(
        primary_key=True,
        index=True,
        description="Matches Supabase auth.users.id",
    )

    email: str = Field(
        unique=True,
        index=True,
        description="Email from Supabase auth.users",
    )

    name: str = Field(
        max_length=100,
        description="Display name; first part of email by default",
    )

    # Application role (not Supabase RLS role)
    role: str = Field(
        default="customer",
        index=True,
        description="Application role: customer | driver | dispatcher | admin",
    )

    # basic | premium | enterprise; selects the tiered rate-limit policy
    tier: str = Field(
        default="basic",
        description="Account tier for B2B rate limits",
    )

    created_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc),
        description="Creation timestamp (UTC)",
    )
