"""User service — the credential store.

Learn: Service layer separates business logic from HTTP routing.
Routes call the service, the service calls the database.

The password hash never leaves this module: every public method returns
a UserRecord (no hash), and password checks happen here via
authenticate() / check_password() rather than by handing out the row.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Optional

import structlog
from sqlalchemy import or_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from appsec_dashboard.auth.password import hash_password_async, verify_password_async
from appsec_dashboard.db.models import User, utcnow
from appsec_dashboard.errors import Conflict, InvalidCredentials, NotFound

logger = structlog.get_logger()


@dataclass(frozen=True)
class UserRecord:
    """A user as seen outside the credential store."""

    id: int
    username: str
    email: str
    password_changed: bool
    created_at: Optional[datetime]
    updated_at: Optional[datetime]

    @property
    def credential_is_default(self) -> bool:
        return not self.password_changed

    @classmethod
    def from_row(cls, user: User) -> "UserRecord":
        return cls(
            id=user.id,
            username=user.username,
            email=user.email,
            password_changed=bool(user.password_changed),
            created_at=user.created_at,
            updated_at=user.updated_at,
        )


class UserService:
    """Create, look up, and re-key users."""

    def __init__(self, db: AsyncSession):
        self.db = db

    # ─── Create ─────────────────────────────────────────

    async def create_user(
        self,
        username: str,
        email: str,
        password: str,
        credential_is_default: bool = True,
    ) -> UserRecord:
        """Insert a new user with a freshly hashed password.

        Learn: The pre-check gives a precise message ("Username already
        exists" vs "Email already exists"). The unique constraints on
        the table are the real guard. If two registrations race past
        the pre-check, the loser's INSERT fails and is rolled back
        before anything is visible, and we report the conflict the same way.
        """
        await self._ensure_available(username, email)

        user = User(
            username=username,
            email=email,
            password_hash=await hash_password_async(password),
            password_changed=not credential_is_default,
        )
        self.db.add(user)
        try:
            await self.db.commit()
        except IntegrityError:
            await self.db.rollback()
            await self._ensure_available(username, email)
            raise Conflict("Username or email already exists")

        await self.db.refresh(user)
        logger.info("user.created", user_id=user.id, username=user.username)
        return UserRecord.from_row(user)

    async def _ensure_available(self, username: str, email: str) -> None:
        if await self._row_by(User.username, username) is not None:
            raise Conflict("Username already exists")
        if await self._row_by(User.email, email) is not None:
            raise Conflict("Email already exists")

    # ─── Lookups ────────────────────────────────────────

    async def get_user(self, user_id: int) -> UserRecord:
        """Fetch by id. Raises NotFound."""
        user = await self.db.get(User, user_id)
        if user is None:
            raise NotFound("User not found")
        return UserRecord.from_row(user)

    async def find_by_username(self, username: str) -> Optional[UserRecord]:
        user = await self._row_by(User.username, username)
        return UserRecord.from_row(user) if user else None

    async def find_by_email(self, email: str) -> Optional[UserRecord]:
        user = await self._row_by(User.email, email)
        return UserRecord.from_row(user) if user else None

    async def _row_by(self, column, value: str) -> Optional[User]:
        result = await self.db.execute(select(User).where(column == value))
        return result.scalars().first()

    # ─── Passwords ──────────────────────────────────────

    async def authenticate(self, login: str, password: str) -> UserRecord:
        """Log in by username or email.

        Raises InvalidCredentials for both "no such user" and "wrong
        password" so callers can't tell which one happened.
        """
        result = await self.db.execute(
            select(User)
            .where(or_(User.username == login, User.email == login))
            # exact username match wins over someone's email that equals it
            .order_by((User.username == login).desc())
        )
        user = result.scalars().first()
        if user is None or not await verify_password_async(password, user.password_hash):
            logger.info("auth.login_failed", login=login)
            raise InvalidCredentials()
        return UserRecord.from_row(user)

    async def check_password(self, user_id: int, password: str) -> bool:
        """True if `password` matches the stored hash. Raises NotFound."""
        user = await self.db.get(User, user_id)
        if user is None:
            raise NotFound("User not found")
        return await verify_password_async(password, user.password_hash)

    async def update_password(self, user_id: int, new_password: str) -> UserRecord:
        """Replace the hash and mark the credential as no longer default."""
        user = await self.db.get(User, user_id)
        if user is None:
            raise NotFound("User not found")

        user.password_hash = await hash_password_async(new_password)
        user.password_changed = True
        user.updated_at = utcnow()
        await self.db.commit()
        await self.db.refresh(user)
        logger.info("user.password_changed", user_id=user.id)
        return UserRecord.from_row(user)

    # ─── Bootstrap ──────────────────────────────────────

    async def ensure_default_admin(
        self, username: str, email: str, password: str
    ) -> Optional[UserRecord]:
        """Create the first-run admin if it doesn't exist yet.

        Returns the new record, or None if an admin was already there.
        """
        if await self._row_by(User.username, username) is not None:
            return None
        admin = await self.create_user(
            username, email, password, credential_is_default=True
        )
        logger.warning(
            "user.default_admin_created",
            username=username,
            hint="change the default password after first login",
        )
        return admin
