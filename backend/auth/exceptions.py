"""
Exceptions raised by the authentication and authorization core.

These carry no HTTP knowledge; the API boundary (see ``errors.py``) maps
them to status codes and error codes.
"""


class UnknownRoleError(ValueError):
    """Raised when a role name does not match any known role."""

    def __init__(self, role_name: str):
        self.role_name = role_name
        super().__init__(f"Unknown role: {role_name!r}")


class MalformedTokenError(Exception):
    """Raised when a subject is requested from a token that does not validate."""


class PrincipalNotFoundError(Exception):
    """Raised when a valid token references an identity that no longer exists."""

    def __init__(self, identity: str):
        self.identity = identity
        super().__init__(f"No principal found for identity {identity!r}")
