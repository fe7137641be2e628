"""Authentication schemas (DTOs)."""

from datetime import datetime

from pydantic import BaseModel, EmailStr, Field, model_validator


# Request schemas
class LoginRequest(BaseModel):
    """Login request.

    Either ``username`` or ``email`` identifies the account; both users and
    admins log in through this request.
    """

    username: str | None = Field(None, min_length=1, max_length=100, description="Username")
    email: EmailStr | None = Field(None, description="Email address")
    password: str = Field(..., min_length=1, max_length=128)

    @model_validator(mode="after")
    def at_least_one_credential(self) -> "LoginRequest":
        """Ensure at least username or email is provided."""
        if not self.username and not self.email:
            raise ValueError("Either username or email must be provided")
        return self

    @property
    def credential(self) -> str:
        """Return the login identifier, preferring email."""
        return str(self.email) if self.email else str(self.username)


class RefreshTokenRequest(BaseModel):
    """Refresh token request."""

    refresh_token: str = Field(..., min_length=1)


class LogoutRequest(BaseModel):
    """Logout request. The refresh token, when given, is revoked as well."""

    refresh_token: str | None = None


class RegisterAdminRequest(BaseModel):
    """Admin self-registration request."""

    username: str = Field(..., min_length=3, max_length=50, pattern=r"^[a-zA-Z0-9._-]+$")
    email: EmailStr
    password: str = Field(..., min_length=8, max_length=128)
    first_name: str = Field(..., min_length=1, max_length=50)
    last_name: str = Field(..., min_length=1, max_length=50)


class VerifyEmailRequest(BaseModel):
    """Email verification request."""

    email: EmailStr
    code: str = Field(..., min_length=1, max_length=20)


class ForgotPasswordRequest(BaseModel):
    """Password reset code request."""

    email: EmailStr


class ResetPasswordRequest(BaseModel):
    """Password reset with a mailed code."""

    email: EmailStr
    code: str = Field(..., min_length=1, max_length=20)
    new_password: str = Field(..., min_length=8, max_length=128)


# Response schemas
class TokenResponse(BaseModel):
    """JWT token response."""

    access_token: str
    refresh_token: str
    token_type: str = "bearer"
    expires_in: int  # seconds
    expires_at: datetime


class MessageResponse(BaseModel):
    """Plain confirmation message."""

    message: str


class LogoutAllResponse(BaseModel):
    """Result of revoking every session of the caller."""

    message: str
    revoked_sessions: int


class CurrentPrincipalResponse(BaseModel):
    """Identity carried by the caller's access token."""

    user_id: int
    username: str
    email: str
    role: str
    permissions: list[str]
    principal_type: str
    expires_at: datetime | None = None

    model_config = {"from_attributes": True}


class AdminRegisteredResponse(BaseModel):
    """Newly registered admin."""

    id: int
    username: str
    email: EmailStr
    first_name: str
    last_name: str
    email_verified: bool
    created_at: datetime

    model_config = {"from_attributes": True}
