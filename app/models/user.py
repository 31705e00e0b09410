import uuid
from datetime import datetime, timezone

from sqlmodel import SQLModel, Field

from app.core.identity import Role


class User(SQLModel, table=True):
    """
    Persistent user profile.

    Identity:
      - id: MUST match the auth provider's user id (UUID from JWT "sub")

    Role:
      - CUSTOMER | ADMIN
      - GUEST is never stored; guests are identified by their session id only.

    This table is *not* responsible for password hashes. The auth provider
    stores credentials; we only mirror identity, name, and application role.
    """

    __tablename__ = "users"

    id: uuid.UUID = Field(
        primary_key=True,
        index=True,
        description="Matches the auth provider's user id",
    )

    email: str = Field(
        unique=True,
        index=True,
        description="Email from the auth provider",
    )

    name: str = Field(
        max_length=50,
        description="Customer display name; first part of email by default",
    )

    role: Role = Field(
        default=Role.CUSTOMER,
        index=True,
        description="Application role: CUSTOMER | ADMIN",
    )

    created_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc),
        description="Creation timestamp (UTC)",
    )
