"""
API request and response models for SiteAuth REST endpoints.

These Pydantic v2 models define the HTTP transport contract for the API layer.
They are intentionally separate from the dataclasses in auth/models.py, which
own the internal domain representation. Route handlers map between the two.
"""

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from auth.models import User

# ---------------------------------------------------------------------------
# Request models
# ---------------------------------------------------------------------------


class LoginRequest(BaseModel):
    """Request body for POST /api/v1/auth/login and /auth/admin/login."""

    model_config = ConfigDict(str_strip_whitespace=True)

    email: str = Field(min_length=3, max_length=255)
    password: str = Field(min_length=1, max_length=255)  # bcrypt reads at most 72 bytes
    device_info: Optional[str] = Field(default=None, max_length=255)


class RegisterRequest(BaseModel):
    """Request body for POST /api/v1/auth/register."""

    model_config = ConfigDict(str_strip_whitespace=True)

    email: str = Field(min_length=3, max_length=255)
    password: str = Field(min_length=1, max_length=255)
    username: str = Field(min_length=1, max_length=255)
    first_name: str = Field(default="", max_length=255)
    last_name: str = Field(default="", max_length=255)


class RefreshRequest(BaseModel):
    """Request body for POST /api/v1/auth/refresh."""

    refresh_token: str = Field(min_length=1)
    device_info: Optional[str] = Field(default=None, max_length=255)


# ---------------------------------------------------------------------------
# Response models
# ---------------------------------------------------------------------------


class UserProfile(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    email: str
    username: str
    first_name: str
    last_name: str
    is_active: bool
    created_at: str

    @classmethod
    def from_user(cls, user: User) -> "UserProfile":
        return cls(
            id=user.id,
            email=user.email,
            username=user.username,
            first_name=user.first_name,
            last_name=user.last_name,
            is_active=user.is_active,
            created_at=user.created_at or "",
        )


class AccountInfo(BaseModel):
    """Tier and status use the capitalized token spelling ("Premium", "Active")."""

    model_config = ConfigDict(frozen=True)

    tier: str
    status: str
    capabilities: list[str]


class LoginResponse(BaseModel):
    """Response for login, admin login and refresh.

    expires_in is the access-token lifetime in seconds.
    """

    model_config = ConfigDict(frozen=True)

    access_token: str
    refresh_token: str
    token_type: str = "bearer"
    expires_in: int
    refresh_expires_in: int
    user_profile: UserProfile
    account_info: AccountInfo
    admin_role: Optional[str] = None


class RegisterResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    success: bool
    message: str
    user_id: Optional[str] = None


class LogoutResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    success: bool
    message: str


class MeResponse(BaseModel):
    """Response for GET /api/v1/auth/me -- the caller's access-token snapshot."""

    model_config = ConfigDict(frozen=True)

    user_id: str
    email: str
    account_tier: str
    account_status: str
    capabilities: list[str]
    role: str
    is_admin: bool
    admin_role: Optional[str] = None
    expires_at: int


class SystemStatusResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    status: str
    database: str
    blacklisted_tokens: int


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

    status: str = "healthy"
    version: str
    components: dict[str, str] = Field(default_factory=dict)
