"""
Security utilities for password hashing and bearer token management.

This module provides cryptographic functions for:
- Password hashing using Argon2id (memory-hard, GPU-resistant)
- Stateless JWT access tokens binding a user's email to an expiry

No server-side record of issued tokens is kept: a token stops being valid
purely because its expiry passes.
"""

import logging
import secrets
import os
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, Optional

from jose import JWTError, jwt
from passlib.context import CryptContext

from auth.exceptions import MalformedTokenError
from time_utils import from_epoch_seconds, to_epoch_seconds, utc_now

logger = logging.getLogger(__name__)


def is_production_like() -> bool:
    """
    Check if the current environment is production-like (production or staging).

    Returns:
        True if ENVIRONMENT is "production" or "staging", False otherwise

    Note:
        This is used for security-sensitive checks like JWT secret validation
        and the bootstrap admin password.
    """
    env = os.environ.get("ENVIRONMENT", "development").lower()
    return env in ("production", "staging")


# Password hashing configuration using Argon2id
pwd_context = CryptContext(schemes=["argon2"], deprecated="auto")

# HMAC keys shorter than the digest weaken the signature; require >= 256 bits
MIN_SECRET_KEY_BYTES = 32
SUPPORTED_ALGORITHMS = ["HS256", "HS384", "HS512"]
DEFAULT_ACCESS_TOKEN_EXPIRE_MINUTES = 60

# JWT configuration
# Load SECRET_KEY from environment variable (REQUIRED for security)
SECRET_KEY = os.environ.get("JWT_SECRET_KEY")
if not SECRET_KEY:
    # For local development only - generate a random key
    if is_production_like():
        raise ValueError(
            "JWT_SECRET_KEY environment variable is required in production. "
            "Generate a secure key with: python -c 'import secrets; print(secrets.token_urlsafe(32))'"
        )
    else:
        SECRET_KEY = "dev-insecure-key-" + secrets.token_urlsafe(32)
        logger.warning(
            "⚠️  JWT_SECRET_KEY not set! Using temporary development key. "
            "This is INSECURE for production. Set JWT_SECRET_KEY environment variable."
        )

ALGORITHM = os.environ.get("JWT_ALGORITHM", "HS256")
if ALGORITHM not in SUPPORTED_ALGORITHMS:
    logger.warning(
        f"⚠️  Unsupported JWT_ALGORITHM={ALGORITHM}. Using HS256. "
        f"Supported: {', '.join(SUPPORTED_ALGORITHMS)}"
    )
    ALGORITHM = "HS256"

try:
    ACCESS_TOKEN_EXPIRE_MINUTES = int(
        os.environ.get("ACCESS_TOKEN_EXPIRE_MINUTES", str(DEFAULT_ACCESS_TOKEN_EXPIRE_MINUTES))
    )
    if ACCESS_TOKEN_EXPIRE_MINUTES < 1 or ACCESS_TOKEN_EXPIRE_MINUTES > 1440:  # 1 min to 24 hours
        logger.warning(
            f"⚠️  ACCESS_TOKEN_EXPIRE_MINUTES={ACCESS_TOKEN_EXPIRE_MINUTES} is outside safe range (1-1440). "
            f"Using default of {DEFAULT_ACCESS_TOKEN_EXPIRE_MINUTES} minutes."
        )
        ACCESS_TOKEN_EXPIRE_MINUTES = DEFAULT_ACCESS_TOKEN_EXPIRE_MINUTES
except ValueError:
    logger.warning(
        "⚠️  Invalid ACCESS_TOKEN_EXPIRE_MINUTES value in environment. "
        f"Using default of {DEFAULT_ACCESS_TOKEN_EXPIRE_MINUTES} minutes."
    )
    ACCESS_TOKEN_EXPIRE_MINUTES = DEFAULT_ACCESS_TOKEN_EXPIRE_MINUTES


class TokenExpiredError(MalformedTokenError):
    """Raised internally when a correctly signed token is past its expiry."""


def hash_password(password: str) -> str:
    """
    Hash a password using Argon2id.

    Args:
        password: Plain text password to hash

    Returns:
        Hashed password string

    Example:
        >>> hashed = hash_password("my_secure_password")
        >>> verify_password("my_secure_password", hashed)
        True
    """
    logger.debug("Hashing password")
    return pwd_context.hash(password)


def verify_password(plain_password: str, hashed_password: str) -> bool:
    """
    Verify a password against its hash.

    Args:
        plain_password: Plain text password to verify
        hashed_password: Hashed password to compare against

    Returns:
        True if password matches, False otherwise
    """
    logger.debug("Verifying password")
    is_valid = pwd_context.verify(plain_password, hashed_password)
    logger.debug(f"Password verification result: {is_valid}")
    return is_valid


@dataclass(frozen=True)
class IssuedToken:
    """A freshly signed access token and the claims it carries."""

    token: str
    subject: str
    issued_at: datetime
    expires_at: datetime


class TokenService:
    """
    Issue and validate stateless HMAC-signed bearer tokens.

    A token carries three claims: ``sub`` (the principal's email), ``iat`` and
    ``exp`` (whole seconds since the epoch). It is valid while the signature
    verifies against the secret and ``now < exp``. The same ``now`` callable
    is used for issuing and validating, with no leeway.

    The instance holds only read-only configuration, so one service can be
    shared by every request.

    Example:
        >>> service = TokenService("x" * 32, ttl=timedelta(minutes=5))
        >>> issued = service.issue("ann@example.com")
        >>> service.validate(issued.token)
        True
        >>> service.subject_of(issued.token)
        'ann@example.com'
    """

    def __init__(
        self,
        secret_key: str,
        algorithm: str = "HS256",
        ttl: timedelta = timedelta(minutes=DEFAULT_ACCESS_TOKEN_EXPIRE_MINUTES),
        now: Callable[[], datetime] = utc_now,
    ):
        if algorithm not in SUPPORTED_ALGORITHMS:
            raise ValueError(
                f"Unsupported token algorithm {algorithm!r}. Supported: {', '.join(SUPPORTED_ALGORITHMS)}"
            )
        if not secret_key or len(secret_key.encode("utf-8")) < MIN_SECRET_KEY_BYTES:
            raise ValueError(f"Token secret must be at least {MIN_SECRET_KEY_BYTES} bytes long")
        if ttl <= timedelta(0):
            raise ValueError("Token lifetime must be positive")

        self._secret_key = secret_key
        self._algorithm = algorithm
        self._ttl_seconds = int(ttl.total_seconds())
        self._now = now

    @property
    def algorithm(self) -> str:
        return self._algorithm

    @property
    def ttl(self) -> timedelta:
        return timedelta(seconds=self._ttl_seconds)

    def issue(self, subject: str) -> IssuedToken:
        """
        Create a signed token for ``subject``.

        Args:
            subject: Principal identity (email) to bind into the token

        Returns:
            IssuedToken with the encoded token and its issue/expiry times
        """
        issued_at = to_epoch_seconds(self._now())
        expires_at = issued_at + self._ttl_seconds
        claims = {"sub": subject, "iat": issued_at, "exp": expires_at}

        token = jwt.encode(claims, self._secret_key, algorithm=self._algorithm)
        logger.debug(f"Access token issued for {subject}, expires at: {from_epoch_seconds(expires_at)}")

        return IssuedToken(
            token=token,
            subject=subject,
            issued_at=from_epoch_seconds(issued_at),
            expires_at=from_epoch_seconds(expires_at),
        )

    def validate(self, token: str) -> bool:
        """
        Check whether ``token`` is authentic and unexpired.

        Every failure collapses to False so callers cannot tell a forged token
        from an expired one; the specific reason is only logged.
        """
        try:
            self._verified_claims(token)
        except TokenExpiredError as e:
            logger.debug(f"Token rejected: {e}")
            return False
        except MalformedTokenError as e:
            logger.info(f"Token rejected: {e}")
            return False
        return True

    def subject_of(self, token: str) -> str:
        """
        Return the identity bound into ``token``.

        Raises:
            MalformedTokenError: if the token does not validate
        """
        return self._verified_claims(token)["sub"]

    def _verified_claims(self, token: Optional[str]) -> Dict[str, Any]:
        if not isinstance(token, str) or not token:
            raise MalformedTokenError("Token is empty")

        try:
            # Expiry is checked below against our own clock, without leeway
            claims = jwt.decode(
                token,
                self._secret_key,
                algorithms=[self._algorithm],
                options={"verify_exp": False},
            )
        except JWTError as e:
            raise MalformedTokenError(f"Token verification failed: {e}") from e

        subject = claims.get("sub")
        if not isinstance(subject, str) or not subject:
            raise MalformedTokenError("Token has no subject")

        expires_at = claims.get("exp")
        if not isinstance(expires_at, int) or isinstance(expires_at, bool):
            raise MalformedTokenError("Token has no valid expiry")

        if to_epoch_seconds(self._now()) >= expires_at:
            raise TokenExpiredError(f"Token for {subject} expired at {from_epoch_seconds(expires_at)}")

        return claims


token_service = TokenService(
    SECRET_KEY,
    algorithm=ALGORITHM,
    ttl=timedelta(minutes=ACCESS_TOKEN_EXPIRE_MINUTES),
)


def create_access_token(subject: str) -> str:
    """
    Create an access token for ``subject`` with the configured lifetime.

    Example:
        >>> token = create_access_token("ann@example.com")
    """
    return token_service.issue(subject).token
