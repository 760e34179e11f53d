"""Password hashing utilities.

Learn: Uses bcrypt for secure password hashing. bcrypt automatically
handles salting (a fresh salt per call, so hashing the same password
twice gives different strings) and is deliberately slow. The work
factor comes from settings.bcrypt_rounds.

bcrypt is CPU-bound and blocks. The *_async variants push it onto the
threadpool so a login doesn't stall every other request on the loop.
"""

from typing import Optional

import bcrypt
from starlette.concurrency import run_in_threadpool

from appsec_dashboard.config import settings


def _encode(password: str) -> bytes:
    # bcrypt only looks at the first 72 bytes
    return password.encode("utf-8")[:72]


def hash_password(password: str, rounds: Optional[int] = None) -> str:
    """Hash a password with bcrypt. Returns the "$2b$..." string."""
    salt = bcrypt.gensalt(rounds=rounds or settings.bcrypt_rounds)
    return bcrypt.hashpw(_encode(password), salt).decode("utf-8")


def verify_password(password: str, password_hash: str) -> bool:
    """Check a password against a stored hash.

    Never raises: a malformed or empty hash is just a mismatch.
    bcrypt.checkpw compares in constant time.
    """
    if not password_hash:
        return False
    try:
        return bcrypt.checkpw(_encode(password), password_hash.encode("utf-8"))
    except (ValueError, TypeError):
        return False


async def hash_password_async(password: str) -> str:
    return await run_in_threadpool(hash_password, password)


async def verify_password_async(password: str, password_hash: str) -> bool:
    return await run_in_threadpool(verify_password, password, password_hash)
