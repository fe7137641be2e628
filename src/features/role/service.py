"""Role and permission service layer."""

import logging

from sqlalchemy import func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from src.features.user.models import Admin, User

from .exceptions import PermissionNotFound, RoleAlreadyExists, RoleInUse, RoleNotFound
from .models import Permission, Role
from .schemas import RoleCreateRequest, RoleUpdateRequest

logger = logging.getLogger(__name__)


class RoleService:
    """Service for role and permission management.

    Permission changes take effect for a principal at its next login or token
    refresh, since access tokens carry a snapshot of the permission codes.
    """

    @staticmethod
    async def list_roles(session: AsyncSession) -> list[Role]:
        result = await session.execute(select(Role).order_by(Role.id))
        return list(result.scalars().all())

    @staticmethod
    async def get_role(session: AsyncSession, role_id: int) -> Role:
        """Get role by ID.

        Raises:
            RoleNotFound: If the role does not exist

        """
        role = await session.get(Role, role_id)
        if role is None:
            raise RoleNotFound()
        return role

    @staticmethod
    async def _ensure_name_available(session: AsyncSession, name: str, exclude_id: int | None = None) -> None:
        stmt = select(Role.id).where(Role.name == name)
        if exclude_id is not None:
            stmt = stmt.where(Role.id != exclude_id)
        if (await session.execute(stmt)).first() is not None:
            raise RoleAlreadyExists()

    @staticmethod
    async def create_role(session: AsyncSession, data: RoleCreateRequest) -> Role:
        """Create a role with no permissions.

        Raises:
            RoleAlreadyExists: If the name is taken

        """
        await RoleService._ensure_name_available(session, data.name)
        role = Role(name=data.name, description=data.description, permissions=[])
        session.add(role)
        await session.flush()
        logger.info(f"Role created: {role.name}")
        return role

    @staticmethod
    async def update_role(session: AsyncSession, role: Role, data: RoleUpdateRequest) -> Role:
        """Rename or re-describe a role.

        Raises:
            RoleAlreadyExists: If the new name is taken

        """
        if data.name is not None and data.name != role.name:
            await RoleService._ensure_name_available(session, data.name, exclude_id=role.id)
            role.name = data.name
        if data.description is not None:
            role.description = data.description
        await session.flush()
        logger.info(f"Role updated: {role.name}")
        return role

    @staticmethod
    async def delete_role(session: AsyncSession, role: Role) -> None:
        """Delete a role that no account references.

        Raises:
            RoleInUse: If a user or admin still has this role

        """
        for model in (User, Admin):
            stmt = select(func.count()).select_from(model).where(model.role_id == role.id)
            if (await session.execute(stmt)).scalar_one():
                raise RoleInUse()

        await session.delete(role)
        await session.flush()
        logger.info(f"Role deleted: {role.name}")

    @staticmethod
    async def list_permissions(session: AsyncSession, search: str | None = None) -> list[Permission]:
        """List permissions, optionally filtered by a code or description substring."""
        stmt = select(Permission).order_by(Permission.code)
        if search:
            pattern = f"%{search}%"
            stmt = stmt.where(or_(Permission.code.ilike(pattern), Permission.description.ilike(pattern)))
        result = await session.execute(stmt)
        return list(result.scalars().all())

    @staticmethod
    async def get_permission(session: AsyncSession, permission_id: int) -> Permission:
        permission = await session.get(Permission, permission_id)
        if permission is None:
            raise PermissionNotFound()
        return permission

    @staticmethod
    async def grant_permission(session: AsyncSession, role: Role, permission_id: int) -> Role:
        """Grant a permission to a role. Granting it twice has no effect.

        Raises:
            PermissionNotFound: If the permission does not exist

        """
        permission = await RoleService.get_permission(session, permission_id)
        if permission not in role.permissions:
            role.permissions.append(permission)
            await session.flush()
            logger.info(f"Permission {permission.code} granted to role {role.name}")
        return role

    @staticmethod
    async def revoke_permission(session: AsyncSession, role: Role, permission_id: int) -> Role:
        """Withdraw a permission from a role.

        Raises:
            PermissionNotFound: If the permission does not exist or is not granted

        """
        permission = await RoleService.get_permission(session, permission_id)
        if permission not in role.permissions:
            raise PermissionNotFound()
        role.permissions.remove(permission)
        await session.flush()
        logger.info(f"Permission {permission.code} withdrawn from role {role.name}")
        return role
