"""Authentication dependencies for FastAPI."""

from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from src.cache.client import Cache, get_cache

from .exceptions import InsufficientPermissionException, MissingTokenException
from .jwt_utils import Claims
from .service import ADMIN_PERMISSION, AuthService

bearer_scheme = HTTPBearer(auto_error=False)


def get_auth_service(cache: Cache = Depends(get_cache)) -> AuthService:
    """Build the auth service for a request."""
    return AuthService.from_settings(cache)


async def get_access_token(
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
) -> str:
    """Extract the bearer token from the Authorization header.

    Raises:
        MissingTokenException: If the header is absent or not a bearer credential

    """
    if credentials is None or not credentials.credentials:
        raise MissingTokenException()
    return credentials.credentials


async def get_current_claims(
    request: Request,
    token: str = Depends(get_access_token),
    auth_service: AuthService = Depends(get_auth_service),
) -> Claims:
    """Verify the caller's access token and expose its claims.

    The claims are also stored on ``request.state.claims`` for downstream use.

    Raises:
        InvalidTokenException: If the token is invalid, expired or logged out

    """
    claims = await auth_service.verify_access_token(token)
    request.state.claims = claims
    return claims


def require_permission(*required_permissions: str):
    """Dependency factory to require one of several permissions.

    Usage:
        # Caller needs ANY of these
        Depends(require_permission("pos:sell", "pos:manage_items"))
    """

    async def permission_checker(claims: Claims = Depends(get_current_claims)) -> Claims:
        if not any(AuthService.has_permission(claims, perm) for perm in required_permissions):
            raise InsufficientPermissionException(list(required_permissions))
        return claims

    return permission_checker


require_admin = require_permission(ADMIN_PERMISSION)
