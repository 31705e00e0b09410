import uuid
from dataclasses import dataclass
from enum import Enum


class Role(str, Enum):
    GUEST = "GUEST"
    CUSTOMER = "CUSTOMER"
    ADMIN = "ADMIN"


@dataclass(frozen=True)
class AuthenticatedUser:
    id: uuid.UUID
    role: Role = Role.CUSTOMER


@dataclass(frozen=True)
class Guest:
    session_id: str

    @property
    def role(self) -> Role:
        return Role.GUEST


# Exactly one of the two per request.
Actor = AuthenticatedUser | Guest


def is_admin(actor: Actor) -> bool:
    match actor:
        case AuthenticatedUser(role=Role.ADMIN):
            return True
        case AuthenticatedUser(role=Role.CUSTOMER) | Guest():
            return False
        case _:
            raise TypeError(f"Unknown actor: {actor!r}")


def actor_key(actor: Actor) -> str:
    """
    Stable string identifying whose cart this is, used for lock keys and logs.
    """
    match actor:
        case AuthenticatedUser(id=user_id):
            return f"user:{user_id}"
        case Guest(session_id=session_id):
            return f"guest:{session_id}"
        case _:
            raise TypeError(f"Unknown actor: {actor!r}")
