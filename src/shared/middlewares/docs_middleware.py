"""Middleware restricting the API documentation routes to admins."""

from fastapi import HTTPException, Request
from fastapi.responses import JSONResponse
from fastapi.security import HTTPBearer

from src.cache.client import get_cache
from src.features.auth.service import ADMIN_PERMISSION, AuthService

PROTECTED_PATHS = {"/docs", "/redoc", "/openapi.json"}
bearer_scheme = HTTPBearer(auto_error=False)


async def admin_docs_middleware(request: Request, call_next):
    """Serve /docs, /redoc and /openapi.json only to callers holding ``admin:manage``.

    Other callers receive 403. All other paths pass through untouched.
    """
    if request.url.path not in PROTECTED_PATHS:
        return await call_next(request)

    credentials = await bearer_scheme(request)
    if credentials is None:
        return JSONResponse(status_code=403, content={"detail": "Not authenticated."})

    try:
        claims = await AuthService.from_settings(get_cache()).verify_access_token(credentials.credentials)
    except HTTPException:
        return JSONResponse(status_code=403, content={"detail": "Not authenticated."})

    if not claims.has_permission(ADMIN_PERMISSION):
        return JSONResponse(status_code=403, content={"detail": "Insufficient permissions."})

    return await call_next(request)
