"""Authentication router (login, token rotation and admin account endpoints)."""

import logging

from fastapi import APIRouter, Depends, HTTPException, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from src.database.dependencies import get_db_session
from src.shared.audit.audit import ActivityAction, best_effort, record_activity

from .dependencies import get_access_token, get_auth_service, get_current_claims
from .exceptions import EmailNotVerifiedException, InvalidResetCodeException
from .jwt_utils import Claims
from .schemas import (
    AdminRegisteredResponse,
    CurrentPrincipalResponse,
    ForgotPasswordRequest,
    LoginRequest,
    LogoutAllResponse,
    LogoutRequest,
    MessageResponse,
    RefreshTokenRequest,
    RegisterAdminRequest,
    ResetPasswordRequest,
    TokenResponse,
    VerifyEmailRequest,
)
from .service import AuthService

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/auth", tags=["Authentication"])


def _client(request: Request) -> tuple[str | None, str | None]:
    """Client address and user agent for audit records."""
    return (request.client.host if request.client else None), request.headers.get("user-agent")


@router.post("/login", response_model=TokenResponse)
async def login(
    data: LoginRequest,
    request: Request,
    session: AsyncSession = Depends(get_db_session),
    auth_service: AuthService = Depends(get_auth_service),
):
    """Login and get JWT tokens.

    - **username**: Username (optional, either username or email required)
    - **email**: Email address (optional, either username or email required)
    - **password**: Password

    Returns access_token and refresh_token. Repeated failures from one
    identifier or address are answered with 429 and a `Retry-After` header.
    """
    ip_address, user_agent = _client(request)
    try:
        tokens = await auth_service.login(session, data.credential, data.password, ip_address, user_agent)
    except HTTPException:
        # Keep the login-history row of the failed attempt
        await session.commit()
        raise
    await session.commit()
    return tokens


@router.post("/refresh", response_model=TokenResponse)
async def refresh_token(
    data: RefreshTokenRequest,
    request: Request,
    session: AsyncSession = Depends(get_db_session),
    auth_service: AuthService = Depends(get_auth_service),
):
    """Exchange a refresh token for a new token pair.

    - **refresh_token**: Valid refresh token. It cannot be used again afterwards.
    """
    ip_address, user_agent = _client(request)
    tokens = await auth_service.refresh(session, data.refresh_token, ip_address, user_agent)
    await session.commit()
    return tokens


@router.post("/logout", response_model=MessageResponse, dependencies=[Depends(get_current_claims)])
async def logout(
    data: LogoutRequest | None = None,
    token: str = Depends(get_access_token),
    session: AsyncSession = Depends(get_db_session),
    auth_service: AuthService = Depends(get_auth_service),
):
    """Logout: the access token stops working immediately.

    - **refresh_token**: Optional refresh token to revoke as well
    """
    await auth_service.logout(session, token, data.refresh_token if data else None)
    await session.commit()
    return MessageResponse(message="Successfully logged out")


@router.post("/logout-all", response_model=LogoutAllResponse)
async def logout_all(
    token: str = Depends(get_access_token),
    claims: Claims = Depends(get_current_claims),
    session: AsyncSession = Depends(get_db_session),
    auth_service: AuthService = Depends(get_auth_service),
):
    """Log out everywhere: revoke every refresh token and this access token."""
    revoked = await auth_service.revoke_all_sessions(session, claims.principal_type, claims.user_id)
    await auth_service.logout(session, token)
    await best_effort(
        record_activity(
            session,
            claims.principal_type,
            claims.user_id,
            ActivityAction.LOGOUT_ALL,
            claims.principal_type,
            claims.user_id,
            {"revoked_sessions": revoked},
        ),
        "logout-all activity",
        session=session,
    )
    await session.commit()
    return LogoutAllResponse(message="Logged out of all sessions", revoked_sessions=revoked)


@router.get("/me", response_model=CurrentPrincipalResponse)
async def get_current_principal(claims: Claims = Depends(get_current_claims)):
    """Get the identity and permissions carried by the caller's token."""
    return CurrentPrincipalResponse.model_validate(claims)


@router.post("/register", response_model=AdminRegisteredResponse, status_code=status.HTTP_201_CREATED)
async def register_admin(
    data: RegisterAdminRequest,
    session: AsyncSession = Depends(get_db_session),
    auth_service: AuthService = Depends(get_auth_service),
):
    """Register an admin account.

    A verification code is emailed; confirm it with `POST /auth/verify-email`.
    """
    admin = await auth_service.register_admin(
        session, data.username, data.email, data.password, data.first_name, data.last_name
    )
    await session.commit()
    return AdminRegisteredResponse.model_validate(admin)


@router.post("/verify-email", response_model=MessageResponse)
async def verify_email(
    data: VerifyEmailRequest,
    session: AsyncSession = Depends(get_db_session),
    auth_service: AuthService = Depends(get_auth_service),
):
    """Confirm an admin email address with the mailed code."""
    if not await auth_service.verify_email_code(session, data.email, data.code):
        raise EmailNotVerifiedException()
    await session.commit()
    return MessageResponse(message="Email verified successfully")


@router.post("/forgot-password", response_model=MessageResponse)
async def forgot_password(
    data: ForgotPasswordRequest,
    session: AsyncSession = Depends(get_db_session),
    auth_service: AuthService = Depends(get_auth_service),
):
    """Request a password reset code by email.

    The response is the same whether or not the address belongs to an admin.
    """
    await auth_service.forgot_password(session, data.email)
    await session.commit()
    return MessageResponse(message="If the email is registered, a reset code has been sent")


@router.post("/reset-password", response_model=MessageResponse)
async def reset_password(
    data: ResetPasswordRequest,
    session: AsyncSession = Depends(get_db_session),
    auth_service: AuthService = Depends(get_auth_service),
):
    """Set a new admin password with a mailed reset code. Ends all existing sessions."""
    if not await auth_service.reset_admin_password(session, data.email, data.code, data.new_password):
        raise InvalidResetCodeException()
    await session.commit()
    return MessageResponse(message="Password reset successfully")
