"""Authentication exceptions."""

import math

from fastapi import HTTPException, status


class AuthenticationException(HTTPException):
    """Base authentication exception."""

    def __init__(self, detail: str = "Authentication failed"):
        super().__init__(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=detail,
            headers={"WWW-Authenticate": "Bearer"},
        )


class InvalidCredentialsException(AuthenticationException):
    """Raised when the identifier is unknown or the password is incorrect."""

    def __init__(self, detail: str = "Invalid credentials"):
        super().__init__(detail=detail)


class RefreshTokenNotFoundException(InvalidCredentialsException):
    """Raised when a refresh token is unknown, revoked or expired."""

    def __init__(self):
        super().__init__(detail="Invalid or expired refresh token")


class UserInactiveException(AuthenticationException):
    """Raised when the account exists but is disabled."""

    def __init__(self):
        super().__init__(detail="Account is inactive")


class MissingTokenException(AuthenticationException):
    """Raised when no bearer token is supplied."""

    def __init__(self):
        super().__init__(detail="Authorization header is required")


class InvalidTokenException(AuthenticationException):
    """Raised when a JWT cannot be accepted."""

    def __init__(self, detail: str = "Invalid or expired token"):
        super().__init__(detail=detail)


class TokenExpiredException(InvalidTokenException):
    """Raised when a JWT has expired."""

    def __init__(self):
        super().__init__(detail="Token has expired")


class InvalidTokenSignatureException(InvalidTokenException):
    """Raised when a JWT signature does not match."""

    def __init__(self):
        super().__init__(detail="Invalid token signature")


class MalformedTokenException(InvalidTokenException):
    """Raised when a JWT cannot be decoded or lacks required claims."""

    def __init__(self):
        super().__init__(detail="Malformed token")


class InvalidTokenTypeException(InvalidTokenException):
    """Raised when token type is invalid."""

    def __init__(self, expected: str = "access"):
        super().__init__(detail=f"Invalid token type, expected {expected}")


class TokenBlacklistedException(InvalidTokenException):
    """Raised when a token was explicitly logged out."""

    def __init__(self):
        super().__init__(detail="Token has been revoked")


class RateLimitedException(HTTPException):
    """Raised when too many login attempts were made."""

    def __init__(self, retry_after: float):
        self.retry_after = max(1, math.ceil(retry_after))
        super().__init__(
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            detail=f"Too many login attempts. Try again in {self.retry_after} seconds",
            headers={"Retry-After": str(self.retry_after)},
        )


class InsufficientPermissionException(HTTPException):
    """Raised when the caller lacks every required permission."""

    def __init__(self, required_permissions: list[str]):
        perms_str = ", ".join(required_permissions)
        super().__init__(
            status_code=status.HTTP_403_FORBIDDEN,
            detail=f"Missing required permission(s): {perms_str}",
        )


class RefreshTokenConflictException(HTTPException):
    """Raised when a generated refresh token collides with a stored one."""

    def __init__(self):
        super().__init__(status_code=status.HTTP_409_CONFLICT, detail="Refresh token already exists")


class EmailNotVerifiedException(HTTPException):
    """Raised when a verification code is rejected."""

    def __init__(self):
        super().__init__(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid or expired verification code")


class InvalidResetCodeException(HTTPException):
    """Raised when a password reset code is rejected."""

    def __init__(self):
        super().__init__(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid or expired reset code")
