"""
The acting principal of a request.

A Principal is resolved once per request and passed explicitly to every
handler and authorization check that needs it. It is an immutable snapshot
of the user row taken at resolution time.
"""

from dataclasses import dataclass
from typing import Optional

from auth.roles import Role


@dataclass(frozen=True)
class Principal:
    """Identity, role and account flags of the user making a request."""

    email: str
    role: Role
    enabled: bool = True
    locked: bool = False
    user_id: Optional[int] = None

    @property
    def is_active(self) -> bool:
        """Only enabled, unlocked accounts may act."""
        return self.enabled and not self.locked

    @property
    def is_admin(self) -> bool:
        return Role(self.role).is_admin

    @classmethod
    def from_user(cls, user) -> "Principal":
        return cls(
            email=user.email,
            role=Role(user.role),
            enabled=bool(user.is_enabled),
            locked=bool(user.is_locked),
            user_id=user.id,
        )
