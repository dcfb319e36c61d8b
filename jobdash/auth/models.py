"""User and session models."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field

from jobdash.core.schemas import CamelModel


class UserRole(str, Enum):
    ADMIN = "admin"
    TENANT = "tenant"
    OPERATOR = "operator"
    VIEWER = "viewer"


class User(CamelModel):
    """The signed-in user as returned by GET /me."""
    id: str
    username: str
    role: UserRole
    created_at: Optional[datetime] = None


class LoginRequest(BaseModel):
    """Schema for user login."""
    username: str = Field(..., min_length=1)
    password: str = Field(..., min_length=1)


class SessionStatus(str, Enum):
    LOADING = "loading"
    UNAUTHENTICATED = "unauthenticated"
    AUTHENTICATED = "authenticated"


@dataclass(frozen=True)
class SessionState:
    """Current session. ``user`` is set iff status is authenticated."""
    status: SessionStatus
    user: Optional[User] = None

    @classmethod
    def loading(cls) -> "SessionState":
        return cls(SessionStatus.LOADING)

    @classmethod
    def unauthenticated(cls) -> "SessionState":
        return cls(SessionStatus.UNAUTHENTICATED)

    @classmethod
    def authenticated(cls, user: User) -> "SessionState":
        return cls(SessionStatus.AUTHENTICATED, user)

    @property
    def is_authenticated(self) -> bool:
        return self.status == SessionStatus.AUTHENTICATED
