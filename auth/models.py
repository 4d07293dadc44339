"""
auth/models.py -- Domain dataclasses for identity entities.

Pattern: Data class (pure data container, zero logic). Dataclasses own domain
shape; stores and services do the work.

Layer rule: no imports from api/.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime

ROLE_ADMIN = "Admin"

ACCESS = "access"
REFRESH = "refresh"

ACTIVITY_LOGIN = "login"
ACTIVITY_LOGOUT = "logout"
ACTIVITY_PASSWORD_CHANGE_REQUEST = "password_change_request"


@dataclass
class Team:
    """A tenant. Every user, role and permission grant is scoped to one team."""

    name: str  # opaque unique slug (uuid4)
    display_name: str
    id: int | None = None
    created_at: datetime | None = None


@dataclass
class Permission:
    """Reference data from the fixed catalog in auth/permissions.py."""

    id: str
    name: str  # "<family>:<action>", e.g. "user:read"


@dataclass
class Role:
    """A named set of permissions owned by one team.

    A role named ROLE_ADMIN is created once per team with every permission and
    can never be updated or deleted.
    """

    name: str
    team_id: int
    description: str = ""
    id: str | None = None  # uuid4 string
    permissions: list[Permission] = field(default_factory=list)
    created_at: datetime | None = None
    updated_at: datetime | None = None

    @property
    def is_admin(self) -> bool:
        return self.name == ROLE_ADMIN


@dataclass
class User:
    """An authenticated identity (principal).

    email is always stored lowercased. hashed_password is a bcrypt hash.
    external_id is the federated identity subject (LINE / OIDC) and is ""
    until linked. role is populated only by lookups that join the role.
    """

    email: str
    organization_id: int
    name: str = ""
    hashed_password: str = ""
    id: int | None = None
    current_team_id: int | None = None
    role_id: str | None = None
    phone_number: str | None = None
    lang: str | None = None
    external_id: str = ""
    email_verified_at: datetime | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None
    role: Role | None = None


@dataclass
class UserPatch:
    """Explicit set of profile fields a user may change about themselves.

    None means "leave unchanged". Anything outside these five fields is
    rejected before it ever reaches the service.
    """

    name: str | None = None
    email: str | None = None
    phone_number: str | None = None
    lang: str | None = None
    external_id: str | None = None

    def changes(self) -> dict:
        return {k: v for k, v in self.__dict__.items() if v is not None}


@dataclass
class RefreshToken:
    """Persisted refresh token. Revocation is one-way; rows are never updated otherwise."""

    token: str
    revoked: bool = False
    created_at: datetime | None = None


@dataclass
class PasswordReset:
    """An in-progress password reset. At most one per email."""

    email: str
    token: str
    created_at: datetime | None = None
    updated_at: datetime | None = None


@dataclass
class ActivityLog:
    """Append-only audit entry."""

    user_id: int
    activity_type: str
    id: int | None = None
    created_at: datetime | None = None


@dataclass
class TokenPair:
    access_token: str
    refresh_token: str


@dataclass
class TokenClaims:
    """Verified claims of a decoded token."""

    subject: int
    purpose: str
    expires_at: datetime | None = None
    token_id: str | None = None
