"""
Tests for resolving the acting principal from an Authorization header.
"""

import logging
from datetime import timedelta

import pytest

from auth.context import Principal
from auth.dependencies import extract_bearer_token, resolve_principal
from auth.exceptions import PrincipalNotFoundError
from auth.roles import Role
from auth.security import TokenService
from tests.conftest import TEST_SECRET as SECRET, FakeClock

logger = logging.getLogger(__name__)

ANN = Principal(email="ann@example.com", role=Role.USER, user_id=1)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def tokens(clock: FakeClock) -> TokenService:
    return TokenService(SECRET, ttl=timedelta(minutes=5), now=clock)


def directory(*principals: Principal):
    by_email = {p.email: p for p in principals}
    return by_email.get


@pytest.mark.parametrize("header, expected", [
    ("Bearer abc", "abc"),
    ("Bearer a.b.c", "a.b.c"),
    ("bearer abc", None),
    ("BEARER abc", None),
    ("Basic dXNlcjpwYXNz", None),
    ("Bearer", None),
    ("Bearer ", None),
    ("", None),
    (None, None),
])
def test_extract_bearer_token(header, expected):
    assert extract_bearer_token(header) == expected


def test_valid_token_resolves_principal(tokens: TokenService):
    token = tokens.issue(ANN.email).token
    principal = resolve_principal(f"Bearer {token}", tokens, directory(ANN))
    assert principal == ANN
    logger.info("✓ Valid token resolves to its principal")


def test_missing_header_is_anonymous(tokens: TokenService):
    assert resolve_principal(None, tokens, directory(ANN)) is None


def test_wrong_scheme_is_anonymous(tokens: TokenService):
    token = tokens.issue(ANN.email).token
    assert resolve_principal(f"Token {token}", tokens, directory(ANN)) is None
    assert resolve_principal(f"bearer {token}", tokens, directory(ANN)) is None


def test_invalid_token_is_anonymous(tokens: TokenService):
    assert resolve_principal("Bearer not.a.token", tokens, directory(ANN)) is None


def test_expired_token_is_anonymous(tokens: TokenService, clock: FakeClock):
    token = tokens.issue(ANN.email).token
    clock.advance(minutes=5)
    assert resolve_principal(f"Bearer {token}", tokens, directory(ANN)) is None


def test_unknown_identity_raises(tokens: TokenService):
    token = tokens.issue("ghost@example.com").token
    with pytest.raises(PrincipalNotFoundError) as excinfo:
        resolve_principal(f"Bearer {token}", tokens, directory(ANN))
    assert excinfo.value.identity == "ghost@example.com"


def test_lookup_is_not_called_for_anonymous_requests(tokens: TokenService):
    calls = []

    def lookup(email):
        calls.append(email)
        return ANN

    resolve_principal(None, tokens, lookup)
    resolve_principal("Bearer garbage", tokens, lookup)
    assert calls == []


def test_principal_flags():
    locked = Principal(email="bob@example.com", role=Role.ADMIN, locked=True)
    disabled = Principal(email="cat@example.com", role=Role.USER, enabled=False)
    assert ANN.is_active and not ANN.is_admin
    assert not locked.is_active and locked.is_admin
    assert not disabled.is_active
