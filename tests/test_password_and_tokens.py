"""Password hashing and JWT unit tests."""

from datetime import datetime, timedelta, timezone

import jwt
import pytest

from appsec_dashboard.auth.dependencies import extract_bearer_token
from appsec_dashboard.auth.jwt import (
    TokenClaims,
    TokenError,
    create_access_token,
    verify_token,
)
from appsec_dashboard.auth.password import (
    hash_password,
    hash_password_async,
    verify_password,
    verify_password_async,
)
from appsec_dashboard.config import settings


# ═══════════════════════════════════════════════════════════
# Passwords
# ═══════════════════════════════════════════════════════════


def test_hash_is_salted():
    """Same password, different hashes; both verify."""
    a = hash_password("secret1")
    b = hash_password("secret1")
    assert a != b
    assert a.startswith("$2")
    assert verify_password("secret1", a)
    assert verify_password("secret1", b)


def test_verify_wrong_password():
    assert verify_password("wrong", hash_password("secret1")) is False


@pytest.mark.parametrize("bad_hash", ["", "not-a-bcrypt-hash", "$2b$04$short"])
def test_verify_malformed_hash_returns_false(bad_hash):
    assert verify_password("secret1", bad_hash) is False


def test_work_factor_is_configurable():
    h = hash_password("secret1", rounds=5)
    assert h.split("$")[2] == "05"


@pytest.mark.asyncio
async def test_async_variants():
    h = await hash_password_async("secret1")
    assert await verify_password_async("secret1", h)
    assert not await verify_password_async("secret2", h)


# ═══════════════════════════════════════════════════════════
# Tokens
# ═══════════════════════════════════════════════════════════


def test_token_round_trip():
    token = create_access_token(42, "alice")
    assert verify_token(token) == TokenClaims(user_id=42, username="alice")


def test_token_expires_after_seven_days():
    before = datetime.now(timezone.utc)
    payload = jwt.decode(
        create_access_token(1, "alice"),
        settings.jwt_secret,
        algorithms=[settings.jwt_algorithm],
    )
    exp = datetime.fromtimestamp(payload["exp"], tz=timezone.utc)
    assert timedelta(days=6, hours=23) < exp - before <= timedelta(days=7, seconds=5)


def test_expired_token_rejected():
    token = create_access_token(1, "alice", expires_days=-1)
    with pytest.raises(TokenError, match="expired"):
        verify_token(token)


def test_wrong_secret_rejected():
    token = jwt.encode(
        {"sub": "1", "username": "alice", "exp": datetime.now(timezone.utc) + timedelta(days=1)},
        "some-other-secret",
        algorithm="HS256",
    )
    with pytest.raises(TokenError):
        verify_token(token)


def test_tampered_payload_rejected():
    header, payload, signature = create_access_token(1, "alice").split(".")
    forged_payload = jwt.utils.base64url_encode(
        b'{"sub":"2","username":"mallory","exp":9999999999}'
    ).decode()
    with pytest.raises(TokenError):
        verify_token(".".join([header, forged_payload, signature]))


def test_token_without_username_rejected():
    token = jwt.encode(
        {"sub": "1", "exp": datetime.now(timezone.utc) + timedelta(days=1)},
        settings.jwt_secret,
        algorithm=settings.jwt_algorithm,
    )
    with pytest.raises(TokenError, match="identity"):
        verify_token(token)


@pytest.mark.parametrize(
    "header,expected",
    [
        ("Bearer abc", "abc"),
        ("bearer abc", "abc"),
        (None, None),
        ("", None),
        ("abc", None),
        ("Basic abc", None),
        ("Bearer a b", None),
    ],
)
def test_extract_bearer_token(header, expected):
    assert extract_bearer_token(header) == expected
