"""User schemas (DTOs)."""

from datetime import datetime

from pydantic import BaseModel, EmailStr, Field

from .models import Gender


# Request schemas
class UserCreateRequest(BaseModel):
    """Staff account creation (admin only)."""

    username: str = Field(..., min_length=3, max_length=50, pattern=r"^[a-zA-Z0-9._-]+$")
    first_name: str = Field(..., min_length=2, max_length=50)
    last_name: str = Field(..., min_length=2, max_length=50)
    email: EmailStr | None = None
    password: str = Field(..., min_length=8, max_length=128, description="Password must be at least 8 characters")
    gender: Gender | None = None
    role_id: int
    is_active: bool = True


class UserUpdateRequest(BaseModel):
    """Partial staff account update (admin only). Omitted fields are unchanged."""

    username: str | None = Field(None, min_length=3, max_length=50, pattern=r"^[a-zA-Z0-9._-]+$")
    first_name: str | None = Field(None, min_length=2, max_length=50)
    last_name: str | None = Field(None, min_length=2, max_length=50)
    email: EmailStr | None = None
    gender: Gender | None = None
    role_id: int | None = None
    is_active: bool | None = None


class SetPasswordRequest(BaseModel):
    """Password set by an admin on behalf of a user."""

    new_password: str = Field(..., min_length=8, max_length=128)


# Response schemas
class UserResponse(BaseModel):
    """User response."""

    id: int
    username: str
    first_name: str
    last_name: str
    email: str | None = None
    gender: Gender | None = None
    role_id: int | None = None
    role_name: str | None = None
    is_active: bool
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}


class RevokeSessionsResponse(BaseModel):
    """Result of revoking a user's refresh tokens."""

    revoked_sessions: int


class ActivityLogResponse(BaseModel):
    """Activity log entry."""

    id: int
    actor_kind: str
    user_id: int
    action: str
    details: str
    entity_id: int
    entity_type: str
    ip_address: str | None = None
    user_agent: str | None = None
    created_at: datetime

    model_config = {"from_attributes": True}


class LoginHistoryResponse(BaseModel):
    """Login attempt."""

    id: int
    username_or_email: str
    login_time: datetime
    ip_address: str | None = None
    user_agent: str | None = None
    success: bool
    error_reason: str | None = None

    model_config = {"from_attributes": True}
