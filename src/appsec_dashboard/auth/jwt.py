"""JWT token creation and verification.

Learn: JWT (JSON Web Token) provides stateless authentication. A token
here carries the user id (`sub`) and username, plus `iat`/`exp`. Nothing
else in the payload is trusted. Validity is signature + expiry only;
there is no server-side revocation list.
"""

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Optional

import jwt

from appsec_dashboard.config import settings


class TokenError(Exception):
    """Raised when token verification fails."""


@dataclass(frozen=True)
class TokenClaims:
    user_id: int
    username: str


def create_access_token(
    user_id: int,
    username: str,
    expires_days: Optional[int] = None,
) -> str:
    """Create a signed access token for a user."""
    now = datetime.now(timezone.utc)
    expires = now + timedelta(days=expires_days or settings.access_token_expire_days)
    payload = {
        # PyJWT requires sub to be a string
        "sub": str(user_id),
        "username": username,
        "iat": now,
        "exp": expires,
    }
    return jwt.encode(payload, settings.jwt_secret, algorithm=settings.jwt_algorithm)


def verify_token(token: str) -> TokenClaims:
    """Verify a token and return the identity it claims.

    Raises TokenError on bad signature, expiry, or a payload missing
    the identity claims.
    """
    try:
        payload = jwt.decode(
            token,
            settings.jwt_secret,
            algorithms=[settings.jwt_algorithm],
            options={"require": ["exp", "sub"]},
        )
    except jwt.ExpiredSignatureError:
        raise TokenError("Token has expired")
    except jwt.InvalidTokenError as e:
        raise TokenError(f"Invalid token: {e}")

    try:
        return TokenClaims(user_id=int(payload["sub"]), username=str(payload["username"]))
    except (KeyError, TypeError, ValueError):
        raise TokenError("Invalid token: missing identity claims")
