"""User-facing shapes of a user record. No hash field exists here by construction."""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, computed_field


class UserSummary(BaseModel):
    """What register returns."""

    id: int
    username: str
    email: str

    model_config = {"from_attributes": True}


class UserRead(UserSummary):
    """What login, /me and change-password return."""

    password_changed: bool
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @computed_field
    @property
    def credential_is_default(self) -> bool:
        return not self.password_changed
