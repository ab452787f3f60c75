"""Authorization gate for ledger mutations and reads.

Every mutating ledger operation asks the gate before it touches storage. The
gate is a pure predicate over the actor's role and, for tutors, over the
subject's assigned tutor; it never reads or writes the database.
"""

from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Any

from app.core.exceptions import UnauthorizedError
from app.models.transaction import SYSTEM_ACTOR_ID

if TYPE_CHECKING:
    from app.models.user import User


class Capability(str, Enum):
    AWARD = "award"
    DEDUCT = "deduct"
    ROLLBACK = "rollback"
    VIEW_ALL = "view_all"


SYSTEM_ROLE = "SYSTEM"

# Capabilities granted regardless of subject
_GLOBAL: dict[str, frozenset[Capability]] = {
    "ADMIN": frozenset(Capability),
    SYSTEM_ROLE: frozenset({Capability.AWARD, Capability.DEDUCT}),
}

# Capabilities granted only for students assigned to the actor
_ASSIGNED: dict[str, frozenset[Capability]] = {
    "TUTOR": frozenset({Capability.AWARD, Capability.DEDUCT}),
}


@dataclass(frozen=True)
class Actor:
    """Caller identity as supplied by the session collaborator."""

    id: str
    role: str

    @classmethod
    def from_user(cls, user: "User") -> "Actor":
        return cls(id=str(user.id), role=_role_name(user.role))

    @property
    def is_system(self) -> bool:
        return self.role == SYSTEM_ROLE


SYSTEM = Actor(id=SYSTEM_ACTOR_ID, role=SYSTEM_ROLE)


def _role_name(role: Any) -> str:
    return getattr(role, "value", role)


def is_allowed(actor: Actor, capability: Capability, *, tutor_id: Any = None) -> bool:
    """May `actor` exercise `capability`? `tutor_id` is the subject's assigned tutor, if any."""
    role = _role_name(actor.role)
    if capability in _GLOBAL.get(role, frozenset()):
        return True
    if capability in _ASSIGNED.get(role, frozenset()):
        return tutor_id is not None and str(tutor_id) == actor.id
    return False


def authorize(actor: Actor, capability: Capability, *, tutor_id: Any = None) -> None:
    """Raise UnauthorizedError unless the actor holds the capability.

    The message is the same whatever the target, so a denied caller learns
    nothing about whether it exists.
    """
    if not is_allowed(actor, capability, tutor_id=tutor_id):
        raise UnauthorizedError(f"Permission denied: {capability.value}")


def capability_for_amount(amount: int) -> Capability:
    return Capability.AWARD if amount > 0 else Capability.DEDUCT
