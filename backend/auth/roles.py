"""
Role model: the closed set of global roles and their privilege ordering.

Privilege is compared through an explicit power level (lower = more
privileged), never through declaration order.
"""

import enum

from auth.exceptions import UnknownRoleError


class Role(str, enum.Enum):
    USER = "USER"
    ADMIN = "ADMIN"
    MODERATOR = "MODERATOR"
    GUEST = "GUEST"

    @property
    def power_level(self) -> int:
        return ROLE_POWER_LEVELS[self]

    @property
    def display_name(self) -> str:
        return ROLE_DISPLAY_NAMES[self]

    @property
    def is_admin(self) -> bool:
        return self is Role.ADMIN

    def has_at_least_power_of(self, other: "Role") -> bool:
        return at_least_as_privileged(self, other)


ROLE_POWER_LEVELS = {
    Role.ADMIN: 0,
    Role.MODERATOR: 10,
    Role.USER: 20,
    Role.GUEST: 30,
}

ROLE_DISPLAY_NAMES = {
    Role.ADMIN: "Admin",
    Role.MODERATOR: "Moderator",
    Role.USER: "User",
    Role.GUEST: "Guest",
}

DEFAULT_ROLE = Role.USER


def power_level(role: Role) -> int:
    """Return the power level of ``role``; lower means more privileged."""
    return ROLE_POWER_LEVELS[Role(role)]


def at_least_as_privileged(role_a: Role, role_b: Role) -> bool:
    """
    Check whether ``role_a`` carries at least the privileges of ``role_b``.

    Example:
        >>> at_least_as_privileged(Role.ADMIN, Role.USER)
        True
        >>> at_least_as_privileged(Role.GUEST, Role.USER)
        False
    """
    return power_level(role_a) <= power_level(role_b)


def parse_role(name: str) -> Role:
    """
    Parse a role from its display name (case-insensitive, surrounding
    whitespace ignored).

    Raises:
        UnknownRoleError: if ``name`` is empty or matches no role
    """
    normalized = (name or "").strip().lower()
    if not normalized:
        raise UnknownRoleError(name)

    for role, display_name in ROLE_DISPLAY_NAMES.items():
        if display_name.lower() == normalized:
            return role

    raise UnknownRoleError(name)
