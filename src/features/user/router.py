"""User management router (admin endpoints)."""

import logging

from fastapi import APIRouter, Depends, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from src.cache.client import Cache, get_cache
from src.database.dependencies import get_db_session
from src.features.auth.dependencies import require_admin
from src.features.auth.jwt_utils import Claims
from src.features.auth.principals import PrincipalKind
from src.features.auth.schemas import MessageResponse
from src.features.auth.sessions import RefreshTokenStore
from src.shared.audit.audit import (
    ActivityAction,
    best_effort,
    compute_diff,
    get_activity_logs,
    get_login_history,
    record_activity,
    serialize_model,
)
from src.shared.pagination.pagination import PaginatedResponse, PaginationParams

from .exceptions import CannotDeleteOwnAccount, UserNotFound
from .schemas import (
    ActivityLogResponse,
    LoginHistoryResponse,
    RevokeSessionsResponse,
    SetPasswordRequest,
    UserCreateRequest,
    UserResponse,
    UserUpdateRequest,
)
from .service import UserService

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/admin", tags=["User Management"])


def _client(request: Request) -> tuple[str | None, str | None]:
    return (request.client.host if request.client else None), request.headers.get("user-agent")


@router.get("/users", response_model=PaginatedResponse[UserResponse], dependencies=[Depends(require_admin)])
async def list_users(
    pagination: PaginationParams = Depends(),
    session: AsyncSession = Depends(get_db_session),
):
    """List staff accounts.

    - `page`: Page number (1-indexed, default: 1)
    - `page_size`: Items per page (default: 50, max: 500)
    """
    users, total = await UserService.get_users(session, pagination)
    return PaginatedResponse[UserResponse].build([UserResponse.model_validate(u) for u in users], total, pagination)


@router.post("/users", response_model=UserResponse, status_code=status.HTTP_201_CREATED)
async def create_user(
    data: UserCreateRequest,
    request: Request,
    claims: Claims = Depends(require_admin),
    session: AsyncSession = Depends(get_db_session),
):
    """Create a staff account with the given role."""
    user = await UserService.create_user(session, data)
    ip_address, user_agent = _client(request)
    await best_effort(
        record_activity(
            session,
            claims.principal_type,
            claims.user_id,
            ActivityAction.CREATE,
            "user",
            user.id,
            serialize_model(user),
            ip_address,
            user_agent,
        ),
        "create user activity",
        session=session,
    )
    await session.commit()

    logger.info(f"New user created by {claims.username}: {user.username}")
    return UserResponse.model_validate(user)


@router.get("/users/{user_id}", response_model=UserResponse, dependencies=[Depends(require_admin)])
async def get_user(
    user_id: int,
    session: AsyncSession = Depends(get_db_session),
    cache: Cache = Depends(get_cache),
):
    """Get a staff account by ID."""
    profile = await UserService.get_user_profile(session, cache, user_id)
    if profile is None:
        raise UserNotFound()
    return profile


@router.put("/users/{user_id}", response_model=UserResponse)
async def update_user(
    user_id: int,
    data: UserUpdateRequest,
    request: Request,
    claims: Claims = Depends(require_admin),
    session: AsyncSession = Depends(get_db_session),
    cache: Cache = Depends(get_cache),
):
    """Update a staff account. Deactivating it also ends all of its sessions."""
    user = await UserService.get_user(session, user_id)
    if user is None:
        raise UserNotFound()

    before = serialize_model(user)
    user = await UserService.update_user(session, user, data)
    ip_address, user_agent = _client(request)
    await best_effort(
        record_activity(
            session,
            claims.principal_type,
            claims.user_id,
            ActivityAction.UPDATE,
            "user",
            user.id,
            compute_diff(before, serialize_model(user)) or {},
            ip_address,
            user_agent,
        ),
        "update user activity",
        session=session,
    )
    await session.commit()
    await UserService.invalidate_user_profile(cache, user_id)

    logger.info(f"User updated by {claims.username}: {user.username}")
    return UserResponse.model_validate(user)


@router.delete("/users/{user_id}", response_model=MessageResponse)
async def delete_user(
    user_id: int,
    request: Request,
    claims: Claims = Depends(require_admin),
    session: AsyncSession = Depends(get_db_session),
    cache: Cache = Depends(get_cache),
):
    """Delete a staff account."""
    if claims.principal_type == PrincipalKind.USER and claims.user_id == user_id:
        raise CannotDeleteOwnAccount()

    if not await UserService.delete_user(session, user_id):
        raise UserNotFound()

    ip_address, user_agent = _client(request)
    await best_effort(
        record_activity(
            session,
            claims.principal_type,
            claims.user_id,
            ActivityAction.DELETE,
            "user",
            user_id,
            "User deleted",
            ip_address,
            user_agent,
        ),
        "delete user activity",
        session=session,
    )
    await session.commit()
    await UserService.invalidate_user_profile(cache, user_id)

    logger.info(f"User deleted by {claims.username}: {user_id}")
    return MessageResponse(message="User deleted successfully")


@router.post("/users/{user_id}/reset-password", response_model=RevokeSessionsResponse)
async def reset_user_password(
    user_id: int,
    data: SetPasswordRequest,
    claims: Claims = Depends(require_admin),
    session: AsyncSession = Depends(get_db_session),
):
    """Set a new password for a staff account and end all of its sessions."""
    user = await UserService.get_user(session, user_id)
    if user is None:
        raise UserNotFound()

    revoked = await UserService.set_password(session, user, data.new_password)
    await best_effort(
        record_activity(
            session,
            claims.principal_type,
            claims.user_id,
            ActivityAction.RESET_PASSWORD,
            "user",
            user.id,
            "Password reset",
        ),
        "reset password activity",
        session=session,
    )
    await session.commit()
    return RevokeSessionsResponse(revoked_sessions=revoked)


@router.post("/users/{user_id}/revoke-sessions", response_model=RevokeSessionsResponse)
async def revoke_user_sessions(
    user_id: int,
    claims: Claims = Depends(require_admin),
    session: AsyncSession = Depends(get_db_session),
):
    """Revoke every refresh token of a staff account."""
    user = await UserService.get_user(session, user_id)
    if user is None:
        raise UserNotFound()

    revoked = await RefreshTokenStore.revoke_all(session, PrincipalKind.USER, user.id)
    await best_effort(
        record_activity(
            session,
            claims.principal_type,
            claims.user_id,
            ActivityAction.REVOKE_SESSIONS,
            "user",
            user.id,
            {"revoked_sessions": revoked},
        ),
        "revoke sessions activity",
        session=session,
    )
    await session.commit()

    logger.info(f"Sessions of {user.username} revoked by {claims.username}: {revoked}")
    return RevokeSessionsResponse(revoked_sessions=revoked)


@router.get(
    "/users/{user_id}/activity",
    response_model=PaginatedResponse[ActivityLogResponse],
    dependencies=[Depends(require_admin)],
)
async def list_user_activity(
    user_id: int,
    kind: PrincipalKind = PrincipalKind.USER,
    pagination: PaginationParams = Depends(),
    session: AsyncSession = Depends(get_db_session),
):
    """List the activity performed by a principal, newest first.

    - `kind`: `user` (default) or `admin`; user and admin ids are separate sequences
    """
    entries, total = await get_activity_logs(session, pagination, user_id=user_id, actor_kind=kind)
    return PaginatedResponse[ActivityLogResponse].build(
        [ActivityLogResponse.model_validate(e) for e in entries], total, pagination
    )


@router.get(
    "/login-history",
    response_model=PaginatedResponse[LoginHistoryResponse],
    dependencies=[Depends(require_admin)],
)
async def list_login_history(
    identifier: str | None = None,
    success: bool | None = None,
    pagination: PaginationParams = Depends(),
    session: AsyncSession = Depends(get_db_session),
):
    """List login attempts, newest first, optionally filtered by identifier and outcome."""
    entries, total = await get_login_history(session, pagination, username_or_email=identifier, success=success)
    return PaginatedResponse[LoginHistoryResponse].build(
        [LoginHistoryResponse.model_validate(e) for e in entries], total, pagination
    )
