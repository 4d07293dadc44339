"""
API request and response models for teamauth REST endpoints.

These Pydantic v2 models define the HTTP transport contract for the API layer.
They are intentionally separate from the dataclasses in auth/models.py, which
own the internal domain representation. Route handlers map between the two.

Separation of concerns: auth/ models = domain truth; api/ models = API contract.
"""

from datetime import datetime
from typing import Annotated, Optional

from pydantic import AfterValidator, BaseModel, ConfigDict, EmailStr, Field

from auth.models import Permission, Role, Team, User
from auth.tokens import MAX_PASSWORD_BYTES, password_fits


def _check_password_bytes(value: str) -> str:
    # bcrypt counts bytes, not characters.
    if not password_fits(value):
        raise ValueError(f"password must be at most {MAX_PASSWORD_BYTES} bytes when UTF-8 encoded")
    return value


_Password = Annotated[str, Field(min_length=1, max_length=MAX_PASSWORD_BYTES), AfterValidator(_check_password_bytes)]


# ---------------------------------------------------------------------------
# Auth -- requests
# ---------------------------------------------------------------------------


class LoginRequest(BaseModel):
    """Request body for POST /api/v1/auth/login.

    is_long_live_token asks for an access token without an expiry. The server
    honours it only while long-lived tokens are enabled in configuration.
    """

    model_config = ConfigDict(str_strip_whitespace=True)

    email: EmailStr
    password: _Password
    is_long_live_token: bool = False


class RefreshTokenRequest(BaseModel):
    """Request body for POST /auth/refresh-token and DELETE /auth/logout."""

    refresh_token: str = Field(min_length=1)


class RegisterRequest(BaseModel):
    """Request body for POST /api/v1/auth/register (new team + first user)."""

    model_config = ConfigDict(str_strip_whitespace=True)

    team_name: str = Field(min_length=1, max_length=255)
    name: str = Field(min_length=1, max_length=255)
    email: EmailStr
    password: _Password


class PasswordChangeRequest(BaseModel):
    """Request body for PATCH /api/v1/password/password."""

    email: EmailStr
    token: str = Field(min_length=1)
    password: _Password


# ---------------------------------------------------------------------------
# Auth -- responses
# ---------------------------------------------------------------------------


class TokenPairResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    access_token: str
    refresh_token: str
    token_type: str = "bearer"


class AccessTokenResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    access_token: str
    token_type: str = "bearer"


class OAuthProviderInfo(BaseModel):
    """Public metadata about a configured federated login provider."""

    model_config = ConfigDict(frozen=True)

    name: str
    label: str


class MessageResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    message: str


class ValidityResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    valid: bool


class ExpiryResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    expired: bool


# ---------------------------------------------------------------------------
# Users
# ---------------------------------------------------------------------------


class UserCreate(BaseModel):
    """Request body for POST /api/v1/teams/{team_id}/users."""

    model_config = ConfigDict(str_strip_whitespace=True)

    name: str = Field(min_length=1, max_length=255)
    email: EmailStr
    password: _Password
    role_id: str = Field(min_length=1)
    external_id: str = Field(default="", max_length=255)


class UserPatchRequest(BaseModel):
    """Request body for PATCH /api/v1/users.

    Only these five fields may be changed. Unknown keys are a 422 rather than
    being silently ignored.
    """

    model_config = ConfigDict(str_strip_whitespace=True, extra="forbid")

    name: Optional[str] = Field(default=None, min_length=1, max_length=255)
    email: Optional[EmailStr] = None
    phone_number: Optional[str] = Field(default=None, max_length=32)
    lang: Optional[str] = Field(default=None, max_length=16)
    external_id: Optional[str] = Field(default=None, max_length=255)


class PermissionResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    name: str

    @classmethod
    def from_permission(cls, permission: Permission) -> "PermissionResponse":
        return cls(id=permission.id, name=permission.name)


class RoleResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    name: str
    description: str
    team_id: int
    permissions: list[PermissionResponse] = Field(default_factory=list)
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @classmethod
    def from_role(cls, role: Role) -> "RoleResponse":
        return cls(
            id=role.id,
            name=role.name,
            description=role.description,
            team_id=role.team_id,
            permissions=[PermissionResponse.from_permission(p) for p in role.permissions],
            created_at=role.created_at,
            updated_at=role.updated_at,
        )


class UserResponse(BaseModel):
    """A user as seen through the API. The password hash is never included."""

    model_config = ConfigDict(frozen=True)

    id: int
    email: str
    name: str
    organization_id: int
    current_team_id: Optional[int] = None
    role_id: Optional[str] = None
    phone_number: Optional[str] = None
    lang: Optional[str] = None
    external_id: str = ""
    created_at: Optional[datetime] = None
    role: Optional[RoleResponse] = None

    @classmethod
    def from_user(cls, user: User) -> "UserResponse":
        return cls(
            id=user.id,
            email=user.email,
            name=user.name,
            organization_id=user.organization_id,
            current_team_id=user.current_team_id,
            role_id=user.role_id,
            phone_number=user.phone_number,
            lang=user.lang,
            external_id=user.external_id,
            created_at=user.created_at,
            role=RoleResponse.from_role(user.role) if user.role else None,
        )


class TeamResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: int
    name: str
    display_name: str

    @classmethod
    def from_team(cls, team: Team) -> "TeamResponse":
        return cls(id=team.id, name=team.name, display_name=team.display_name)


class UserInfoResponse(BaseModel):
    """Response for GET /api/v1/users/info."""

    model_config = ConfigDict(frozen=True)

    user: UserResponse
    team: TeamResponse


class UserListResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    items: list[UserResponse]
    total: int
    offset: int
    limit: int


# ---------------------------------------------------------------------------
# Roles
# ---------------------------------------------------------------------------


class RoleWrite(BaseModel):
    """Request body for POST and PUT on /api/v1/teams/{team_id}/roles."""

    model_config = ConfigDict(str_strip_whitespace=True)

    name: str = Field(min_length=1, max_length=100)
    description: str = Field(default="", max_length=1000)
    permission_ids: list[str] = Field(default_factory=list, max_length=100)


class RoleListResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    items: list[RoleResponse]
    total: int
    offset: int
    limit: int


# ---------------------------------------------------------------------------
# Shared
# ---------------------------------------------------------------------------


class ErrorDetail(BaseModel):
    """Machine-readable error payload."""

    model_config = ConfigDict(frozen=True)

    code: str
    message: str
    detail: Optional[str] = None


class ErrorResponse(BaseModel):
    """Top-level error envelope returned on 4xx/5xx responses."""

    model_config = ConfigDict(frozen=True)

    error: ErrorDetail


class HealthResponse(BaseModel):
    """Response for GET /api/v1/health."""

    model_config = ConfigDict(frozen=True)

    status: str = "ok"
    version: str
    database: str = "ok"
