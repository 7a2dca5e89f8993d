"""Pydantic schemas for identities and login sessions."""
from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field


class UserRole(str, Enum):
    """Role stored on a profile.

    Attributes:
        STUDENT: Regular campus member.
        ADMIN: Created from the reserved admin credential; may reveal
            anonymous senders, purge messages and delete rooms.
    """
    STUDENT = "student"
    ADMIN = "admin"


class Profile(BaseModel):
    """Persisted identity (one row of the profiles table)."""
    id: str
    student_id: str = Field(..., description="Login credential (phone or student id)")
    full_name: str
    avatar_url: Optional[str] = None
    is_online: bool = False
    last_seen_at: Optional[datetime] = None
    role: UserRole = UserRole.STUDENT
    created_at: datetime

    @property
    def is_admin(self) -> bool:
        return self.role == UserRole.ADMIN


class SessionUser(BaseModel):
    """The locally persisted session record.

    ``name`` is the display name typed at login, which may differ from
    the stored ``Profile.full_name`` of a returning user.
    """
    id: str
    name: str
    credential: str
    avatarRef: str = ""
    isAdmin: bool = False


class LoginRequest(BaseModel):
    name: str = Field(default="", description="Display name for this session")
    credential: str = Field(default="", description="10-digit id or admin credential")


class LoginResponse(BaseModel):
    user: SessionUser
    profile: Profile
