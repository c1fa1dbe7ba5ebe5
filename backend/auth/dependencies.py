"""
FastAPI dependencies for authentication.

This module resolves the acting principal for each request:
- Extract the bearer token from the Authorization header
- Validate it with the token service
- Load the principal (email, role, account flags) from the user table

Resolution runs independently for every request; nothing is cached between
requests and nothing is stored on shared state. Route handlers receive the
principal as an explicit argument and pass it on to ``authorize``, which
turns policy denials into 401/403 responses.
"""

import logging
from typing import Callable, Optional

from fastapi import Depends, Header
from sqlalchemy.orm import Session

from database import get_db
from models import User
from auth.context import Principal
from auth.exceptions import MalformedTokenError, PrincipalNotFoundError
from auth.policy import DenyReason, Operation, Resource, decide
from auth.security import TokenService, token_service as default_token_service
from errors import (
    ADMIN_REQUIRED,
    COMMENT_ACCESS_DENIED,
    TASK_ACCESS_DENIED,
    ForbiddenError,
    NotAuthenticatedError,
)

logger = logging.getLogger(__name__)

BEARER_PREFIX = "Bearer "

PrincipalLookup = Callable[[str], Optional[Principal]]


def extract_bearer_token(authorization: Optional[str]) -> Optional[str]:
    """
    Return the token from an Authorization header value, or None.

    Only the exact, case-sensitive ``"Bearer "`` prefix is accepted; any other
    scheme, spelling or an empty token counts as no credentials.

    Example:
        >>> extract_bearer_token("Bearer abc.def.ghi")
        'abc.def.ghi'
        >>> extract_bearer_token("bearer abc.def.ghi") is None
        True
    """
    if not authorization or not authorization.startswith(BEARER_PREFIX):
        return None
    token = authorization[len(BEARER_PREFIX):]
    return token or None


def resolve_principal(
    authorization: Optional[str],
    tokens: TokenService,
    lookup: PrincipalLookup,
) -> Optional[Principal]:
    """
    Resolve the principal for a raw Authorization header value.

    Args:
        authorization: Header value, possibly None
        tokens: Service used to validate the token and read its subject
        lookup: Loads a principal by identity (email), None if unknown

    Returns:
        The principal, or None for anonymous requests (no token, other scheme,
        or a token that does not validate)

    Raises:
        PrincipalNotFoundError: if the token is valid but its identity no
            longer exists
    """
    token = extract_bearer_token(authorization)
    if token is None:
        logger.debug("No bearer credentials provided")
        return None

    if not tokens.validate(token):
        logger.info("Bearer token failed validation, treating request as anonymous")
        return None

    try:
        identity = tokens.subject_of(token)
    except MalformedTokenError:
        # Expired between the two checks
        logger.info("Bearer token expired during resolution, treating request as anonymous")
        return None

    principal = lookup(identity)
    if principal is None:
        logger.info(f"Token subject not found: {identity}")
        raise PrincipalNotFoundError(identity)

    logger.debug(f"Resolved principal {principal.email} with role {principal.role.value}")
    return principal


def user_lookup(db: Session) -> PrincipalLookup:
    """Build a principal lookup backed by the user table."""

    def lookup(email: str) -> Optional[Principal]:
        user = db.query(User).filter(User.email == email).first()
        return Principal.from_user(user) if user is not None else None

    return lookup


def get_token_service() -> TokenService:
    """Provide the process-wide token service (overridable in tests)."""
    return default_token_service


async def get_optional_principal(
    authorization: Optional[str] = Header(None),
    db: Session = Depends(get_db),
    tokens: TokenService = Depends(get_token_service),
) -> Optional[Principal]:
    """
    Resolve the current principal if the request carries valid credentials.

    Example:
        @app.get("/api/tasks")
        def list_tasks(principal: Optional[Principal] = Depends(get_optional_principal)):
            ...
    """
    return resolve_principal(authorization, tokens, user_lookup(db))


async def get_current_principal(
    principal: Optional[Principal] = Depends(get_optional_principal),
) -> Principal:
    """
    Require an authenticated principal.

    Raises:
        NotAuthenticatedError: 401 (AUTH-001) for anonymous requests and for
            disabled or locked accounts
    """
    if principal is None:
        logger.info("No valid authentication credentials provided")
        raise NotAuthenticatedError()
    if not principal.is_active:
        logger.info(f"Rejected request from disabled or locked account: {principal.email}")
        raise NotAuthenticatedError("This account is disabled or locked.")
    return principal


_DENIAL_MESSAGES = {
    Operation.TASK_EDIT: "You are not allowed to edit this task.",
    Operation.TASK_DELETE: "You are not allowed to delete this task.",
    Operation.TASK_ASSIGN_EXECUTOR: "Only the task author can assign its executor.",
    Operation.TASK_CHANGE_STATUS: "You are not allowed to change the status of this task.",
    Operation.COMMENT_EDIT: "You cannot edit someone else's comment.",
    Operation.COMMENT_DELETE: "You cannot delete someone else's comment.",
}

_DENIAL_CODES = {
    "task": TASK_ACCESS_DENIED,
    "comment": COMMENT_ACCESS_DENIED,
    "user": ADMIN_REQUIRED,
}


def authorize(principal: Optional[Principal], resource: Resource, operation: Operation) -> Principal:
    """
    Enforce the policy, raising the boundary error on denial.

    Returns:
        The principal, so routes can write ``actor = authorize(...)``

    Raises:
        NotAuthenticatedError: 401 when no active principal is present
        ForbiddenError: 403 with a resource-specific code otherwise
    """
    operation = Operation(operation)
    decision = decide(principal, resource, operation)
    if decision.allowed:
        return principal

    actor = principal.email if principal is not None else "anonymous"
    logger.info(f"Access denied: {actor} -> {operation.value} ({decision.reason.value})")

    if decision.reason is DenyReason.NOT_AUTHENTICATED:
        if principal is not None:
            raise NotAuthenticatedError("This account is disabled or locked.")
        raise NotAuthenticatedError()

    message = _DENIAL_MESSAGES.get(operation, "Access denied: insufficient privileges for this operation.")
    raise ForbiddenError(message, code=_DENIAL_CODES[operation.resource_type])
