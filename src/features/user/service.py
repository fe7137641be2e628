"""User service layer."""

import logging

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from src.cache.client import Cache
from src.features.auth.principals import PrincipalKind
from src.features.auth.sessions import RefreshTokenStore
from src.features.role.exceptions import RoleNotFound
from src.features.role.models import Role
from src.shared.audit.audit import best_effort
from src.shared.pagination.pagination import PaginationParams

from .exceptions import EmailAlreadyExists, UsernameAlreadyExists
from .models import Admin, User
from .schemas import UserCreateRequest, UserResponse, UserUpdateRequest

logger = logging.getLogger(__name__)

USER_CACHE_TTL = 300  # seconds


def user_cache_key(user_id: int) -> str:
    return f"user:{user_id}"


class UserService:
    """Service for staff account operations."""

    @staticmethod
    async def ensure_identifiers_available(
        session: AsyncSession,
        username: str | None = None,
        email: str | None = None,
        exclude_user_id: int | None = None,
        exclude_admin_id: int | None = None,
    ) -> None:
        """Make sure a username and email are unused by any user or admin.

        Login resolves identifiers across both tables, so uniqueness is checked
        across both as well.

        Raises:
            UsernameAlreadyExists: If username already exists
            EmailAlreadyExists: If email already exists

        """
        for model, exclude_id in ((User, exclude_user_id), (Admin, exclude_admin_id)):
            for column, value, error in (
                (model.username, username, UsernameAlreadyExists),
                (model.email, email, EmailAlreadyExists),
            ):
                if value is None:
                    continue
                stmt = select(model.id).where(column == value)
                if exclude_id is not None:
                    stmt = stmt.where(model.id != exclude_id)
                result = await session.execute(stmt)
                if result.first() is not None:
                    raise error()

    @staticmethod
    async def _get_role(session: AsyncSession, role_id: int) -> Role:
        role = await session.get(Role, role_id)
        if role is None:
            raise RoleNotFound()
        return role

    @staticmethod
    async def create_user(session: AsyncSession, data: UserCreateRequest) -> User:
        """Create a staff account.

        Raises:
            UsernameAlreadyExists: If username already exists
            EmailAlreadyExists: If email already exists
            RoleNotFound: If the role does not exist

        """
        await UserService.ensure_identifiers_available(session, username=data.username, email=data.email)
        role = await UserService._get_role(session, data.role_id)

        user = User(
            username=data.username,
            first_name=data.first_name,
            last_name=data.last_name,
            email=data.email,
            gender=data.gender.value if data.gender else None,
            hashed_password=User.hash_password(data.password),
            role=role,
            is_active=data.is_active,
        )
        session.add(user)
        await session.flush()

        logger.info(f"New user created: {user.username} (role {role.name})")
        return user

    @staticmethod
    async def get_user(session: AsyncSession, user_id: int) -> User | None:
        """Get user by ID."""
        stmt = select(User).where(User.id == user_id)
        result = await session.execute(stmt)
        return result.scalar_one_or_none()

    @staticmethod
    async def get_users(session: AsyncSession, pagination: PaginationParams) -> tuple[list[User], int]:
        """Get paginated users list.

        Returns:
            Tuple of (users, total_count)

        """
        count_stmt = select(func.count()).select_from(User)
        total = (await session.execute(count_stmt)).scalar_one()

        stmt = select(User).order_by(User.id)
        if pagination.is_paginated:
            stmt = stmt.offset(pagination.skip).limit(pagination.limit)

        result = await session.execute(stmt)
        return list(result.scalars().all()), total

    @staticmethod
    async def update_user(session: AsyncSession, user: User, data: UserUpdateRequest) -> User:
        """Apply a partial update.

        Deactivating an account revokes all of its refresh tokens.

        Raises:
            UsernameAlreadyExists: If the new username is taken
            EmailAlreadyExists: If the new email is taken
            RoleNotFound: If the new role does not exist

        """
        changes = data.model_dump(exclude_unset=True, exclude_none=True)

        new_username = changes.get("username") if changes.get("username") != user.username else None
        new_email = changes.get("email") if changes.get("email") != user.email else None
        if new_username or new_email:
            await UserService.ensure_identifiers_available(
                session, username=new_username, email=new_email, exclude_user_id=user.id
            )

        if "role_id" in changes:
            user.role = await UserService._get_role(session, changes.pop("role_id"))

        deactivated = user.is_active and changes.get("is_active") is False

        for key, value in changes.items():
            setattr(user, key, value.value if key == "gender" else value)

        await session.flush()

        if deactivated:
            await RefreshTokenStore.revoke_all(session, PrincipalKind.USER, user.id)

        logger.info(f"User updated: {user.username} ({', '.join(sorted(data.model_fields_set))})")
        return user

    @staticmethod
    async def set_password(session: AsyncSession, user: User, new_password: str) -> int:
        """Replace a user's password and revoke their sessions.

        Returns:
            Number of refresh tokens revoked

        """
        user.hashed_password = User.hash_password(new_password)
        await session.flush()
        revoked = await RefreshTokenStore.revoke_all(session, PrincipalKind.USER, user.id)
        logger.info(f"Password reset by admin for user: {user.username}")
        return revoked

    @staticmethod
    async def delete_user(session: AsyncSession, user_id: int) -> bool:
        """Delete user by ID, revoking their refresh tokens first."""
        user = await UserService.get_user(session, user_id)
        if user is None:
            return False

        await RefreshTokenStore.revoke_all(session, PrincipalKind.USER, user.id)
        await session.delete(user)
        await session.flush()
        logger.info(f"User deleted: {user.username}")
        return True

    # Cached reads

    @staticmethod
    async def get_user_profile(session: AsyncSession, cache: Cache, user_id: int) -> UserResponse | None:
        """Get a user's profile, served from the cache when possible.

        Cache failures fall back to the database; a failed cache write only logs.
        """
        cached = await best_effort(cache.get(user_cache_key(user_id)), "user cache read")
        if cached:
            return UserResponse.model_validate_json(cached)

        user = await UserService.get_user(session, user_id)
        if user is None:
            return None

        profile = UserResponse.model_validate(user)
        await best_effort(
            cache.set(user_cache_key(user_id), profile.model_dump_json(), ttl=USER_CACHE_TTL), "user cache write"
        )
        return profile

    @staticmethod
    async def invalidate_user_profile(cache: Cache, user_id: int) -> None:
        await best_effort(cache.delete(user_cache_key(user_id)), "user cache invalidation")
