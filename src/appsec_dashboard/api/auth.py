"""Auth API — registration, login, current user, password change.

Learn: Routes for user authentication:
- POST /auth/register → create account, returns user + token (201)
- POST /auth/login → username or email + password → token
- GET /auth/me → current user info (bearer token)
- POST /auth/change-password → rotate password (bearer token)

Login failures use one message for "no such user" and "wrong password"
so the endpoint can't be used to discover usernames. There is no logout
endpoint: tokens can't be revoked, clients just forget them.
"""

from typing import Optional

import structlog
from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from appsec_dashboard.auth.dependencies import CurrentIdentity, get_current_user
from appsec_dashboard.auth.jwt import create_access_token
from appsec_dashboard.config import settings
from appsec_dashboard.db.engine import get_db
from appsec_dashboard.errors import InvalidCredentials, InvalidInput
from appsec_dashboard.schemas.user import UserRead, UserSummary
from appsec_dashboard.services.user_service import UserService

logger = structlog.get_logger()

router = APIRouter(prefix="/auth")


def _svc(db: AsyncSession = Depends(get_db)) -> UserService:
    return UserService(db)


def _check_password_length(password: str, label: str = "Password") -> None:
    if len(password) < settings.min_password_length:
        raise InvalidInput(
            f"{label} must be at least {settings.min_password_length} characters long"
        )


# ─── Schemas ─────────────────────────────────────────────


class RegisterRequest(BaseModel):
    username: Optional[str] = None
    email: Optional[str] = None
    password: Optional[str] = None


class LoginRequest(BaseModel):
    # "username" may hold either the username or the email
    username: Optional[str] = None
    email: Optional[str] = None
    password: Optional[str] = None


class ChangePasswordRequest(BaseModel):
    current_password: Optional[str] = Field(None, alias="currentPassword")
    new_password: Optional[str] = Field(None, alias="newPassword")

    model_config = {"populate_by_name": True}


class RegisterResponse(BaseModel):
    message: str = "User created successfully"
    user: UserSummary
    token: str


class LoginResponse(BaseModel):
    message: str = "Login successful"
    user: UserRead
    token: str


class MeResponse(BaseModel):
    user: UserRead


class ChangePasswordResponse(BaseModel):
    message: str = "Password changed successfully"
    user: UserRead


# ─── Register ────────────────────────────────────────────


@router.post("/register", response_model=RegisterResponse, status_code=201)
async def register(body: RegisterRequest, svc: UserService = Depends(_svc)):
    """Create a new user account and log it in."""
    if not body.username or not body.email or not body.password:
        raise InvalidInput("Username, email, and password are required")
    _check_password_length(body.password)

    user = await svc.create_user(
        body.username, body.email, body.password, credential_is_default=False
    )
    return RegisterResponse(
        user=UserSummary.model_validate(user),
        token=create_access_token(user.id, user.username),
    )


# ─── Login ───────────────────────────────────────────────


@router.post("/login", response_model=LoginResponse)
async def login(body: LoginRequest, svc: UserService = Depends(_svc)):
    """Login with username-or-email and password → bearer token."""
    login_name = body.username or body.email
    if not login_name or not body.password:
        raise InvalidInput("Username and password are required")

    user = await svc.authenticate(login_name, body.password)
    logger.info("auth.login", user_id=user.id)
    return LoginResponse(
        user=UserRead.model_validate(user),
        token=create_access_token(user.id, user.username),
    )


# ─── Current user ───────────────────────────────────────


@router.get("/me", response_model=MeResponse)
async def get_me(
    identity: CurrentIdentity = Depends(get_current_user),
    svc: UserService = Depends(_svc),
):
    """Get the current authenticated user's info."""
    user = await svc.get_user(identity.user_id)
    return MeResponse(user=UserRead.model_validate(user))


# ─── Change password ────────────────────────────────────


@router.post("/change-password", response_model=ChangePasswordResponse)
async def change_password(
    body: ChangePasswordRequest,
    identity: CurrentIdentity = Depends(get_current_user),
    svc: UserService = Depends(_svc),
):
    """Replace the caller's password.

    Tokens issued before the change stay valid until they expire.
    """
    if not body.current_password or not body.new_password:
        raise InvalidInput("Current password and new password are required")
    _check_password_length(body.new_password, label="New password")

    if not await svc.check_password(identity.user_id, body.current_password):
        raise InvalidCredentials("Current password is incorrect")

    user = await svc.update_password(identity.user_id, body.new_password)
    return ChangePasswordResponse(user=UserRead.model_validate(user))
