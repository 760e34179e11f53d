"""FastAPI auth dependencies — the per-request gate.

Learn: These are used as Depends() in route handlers (or at
include_router level) to extract and validate the caller's identity.

    no header / not "Bearer <token>"  → 401 Access token required
    token fails signature or expiry   → 403 Invalid or expired token
    token ok                          → CurrentIdentity on request.state

The gate is stateless: no database lookup, no session registry access.
A token for a user deleted after issue still passes here; handlers that
need the user row (e.g. /auth/me) load it themselves.
"""

from dataclasses import dataclass
from typing import Optional

import structlog
from fastapi import Header, Request

from appsec_dashboard.auth.jwt import TokenError, verify_token
from appsec_dashboard.errors import Forbidden, Unauthenticated

logger = structlog.get_logger()


@dataclass(frozen=True)
class CurrentIdentity:
    """The authenticated caller, as claimed by a verified token."""

    user_id: int
    username: str


def extract_bearer_token(authorization: Optional[str]) -> Optional[str]:
    """Pull the token out of an Authorization header value.

    Only the two-part "Bearer <token>" shape counts; a bare token, a
    different scheme, or an empty value all come back as None.
    """
    if not authorization:
        return None
    parts = authorization.split()
    if len(parts) != 2 or parts[0].lower() != "bearer":
        return None
    return parts[1]


async def get_current_user(
    request: Request,
    authorization: Optional[str] = Header(None),
) -> CurrentIdentity:
    """Resolve the bearer token to an identity or reject the request."""
    token = extract_bearer_token(authorization)
    if token is None:
        raise Unauthenticated()

    try:
        claims = verify_token(token)
    except TokenError as e:
        logger.info("auth.token_rejected", reason=str(e), path=request.url.path)
        raise Forbidden()

    identity = CurrentIdentity(user_id=claims.user_id, username=claims.username)
    request.state.identity = identity
    structlog.contextvars.bind_contextvars(user_id=identity.user_id)
    return identity
