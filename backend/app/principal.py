"""Principal abstractions for authenticated engine callers."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

ADMIN_ACCOUNT_ROLES = frozenset({"admin", "rootadmin"})


class ActorRole(str, Enum):
    """Role an actor plays relative to one appointment or refund request."""

    BUYER = "buyer"
    SELLER = "seller"
    ADMIN = "admin"
    SYSTEM = "system"


@dataclass(frozen=True)
class UserPrincipal:
    """Caller identified by a bearer token."""

    user_id: str
    account_role: str = "user"

    @property
    def id(self) -> str:
        return self.user_id

    @property
    def is_admin(self) -> bool:
        return self.account_role in ADMIN_ACCOUNT_ROLES


@dataclass(frozen=True)
class Actor:
    """An identity acting in a specific role for one operation."""

    id: str
    role: ActorRole

    @property
    def is_admin(self) -> bool:
        return self.role == ActorRole.ADMIN


SYSTEM_ACTOR = Actor(id="system", role=ActorRole.SYSTEM)
