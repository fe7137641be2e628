"""Role and permission management router (admin endpoints)."""

import logging

from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from src.database.dependencies import get_db_session
from src.features.auth.dependencies import require_admin
from src.features.auth.jwt_utils import Claims
from src.features.auth.schemas import MessageResponse
from src.shared.audit.audit import ActivityAction, best_effort, record_activity

from .schemas import AssignPermissionRequest, PermissionResponse, RoleCreateRequest, RoleResponse, RoleUpdateRequest
from .service import RoleService

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/admin", tags=["Role Management"])


@router.get("/roles", response_model=list[RoleResponse], dependencies=[Depends(require_admin)])
async def list_roles(session: AsyncSession = Depends(get_db_session)):
    """List roles with their permissions."""
    roles = await RoleService.list_roles(session)
    return [RoleResponse.model_validate(r) for r in roles]


@router.post("/roles", response_model=RoleResponse, status_code=status.HTTP_201_CREATED)
async def create_role(
    data: RoleCreateRequest,
    claims: Claims = Depends(require_admin),
    session: AsyncSession = Depends(get_db_session),
):
    """Create a role. Grant permissions with `POST /admin/roles/{id}/permissions`."""
    role = await RoleService.create_role(session, data)
    await best_effort(
        record_activity(
            session,
            claims.principal_type,
            claims.user_id,
            ActivityAction.CREATE,
            "role",
            role.id,
            f"Role {role.name} created",
        ),
        "create role activity",
        session=session,
    )
    await session.commit()
    logger.info(f"Role created by {claims.username}: {role.name}")
    return RoleResponse.model_validate(role)


@router.get("/roles/{role_id}", response_model=RoleResponse, dependencies=[Depends(require_admin)])
async def get_role(role_id: int, session: AsyncSession = Depends(get_db_session)):
    """Get a role by ID."""
    role = await RoleService.get_role(session, role_id)
    return RoleResponse.model_validate(role)


@router.put("/roles/{role_id}", response_model=RoleResponse)
async def update_role(
    role_id: int,
    data: RoleUpdateRequest,
    claims: Claims = Depends(require_admin),
    session: AsyncSession = Depends(get_db_session),
):
    """Rename or re-describe a role."""
    role = await RoleService.get_role(session, role_id)
    role = await RoleService.update_role(session, role, data)
    await best_effort(
        record_activity(
            session,
            claims.principal_type,
            claims.user_id,
            ActivityAction.UPDATE,
            "role",
            role.id,
            data.model_dump_json(),
        ),
        "update role activity",
        session=session,
    )
    await session.commit()
    return RoleResponse.model_validate(role)


@router.delete("/roles/{role_id}", response_model=MessageResponse)
async def delete_role(
    role_id: int,
    claims: Claims = Depends(require_admin),
    session: AsyncSession = Depends(get_db_session),
):
    """Delete a role that no account uses."""
    role = await RoleService.get_role(session, role_id)
    await RoleService.delete_role(session, role)
    await best_effort(
        record_activity(
            session,
            claims.principal_type,
            claims.user_id,
            ActivityAction.DELETE,
            "role",
            role_id,
            f"Role {role.name} deleted",
        ),
        "delete role activity",
        session=session,
    )
    await session.commit()
    logger.info(f"Role deleted by {claims.username}: {role.name}")
    return MessageResponse(message="Role deleted successfully")


@router.get(
    "/roles/{role_id}/permissions", response_model=list[PermissionResponse], dependencies=[Depends(require_admin)]
)
async def list_role_permissions(role_id: int, session: AsyncSession = Depends(get_db_session)):
    """List the permissions granted to a role."""
    role = await RoleService.get_role(session, role_id)
    return [PermissionResponse.model_validate(p) for p in role.permissions]


@router.post("/roles/{role_id}/permissions", response_model=RoleResponse)
async def grant_permission(
    role_id: int,
    data: AssignPermissionRequest,
    claims: Claims = Depends(require_admin),
    session: AsyncSession = Depends(get_db_session),
):
    """Grant a permission to a role. Holders see it after their next login or refresh."""
    role = await RoleService.get_role(session, role_id)
    role = await RoleService.grant_permission(session, role, data.permission_id)
    await best_effort(
        record_activity(
            session,
            claims.principal_type,
            claims.user_id,
            ActivityAction.UPDATE,
            "role",
            role.id,
            {"granted_permission": data.permission_id},
        ),
        "grant permission activity",
        session=session,
    )
    await session.commit()
    return RoleResponse.model_validate(role)


@router.delete("/roles/{role_id}/permissions/{permission_id}", response_model=RoleResponse)
async def revoke_permission(
    role_id: int,
    permission_id: int,
    claims: Claims = Depends(require_admin),
    session: AsyncSession = Depends(get_db_session),
):
    """Withdraw a permission from a role."""
    role = await RoleService.get_role(session, role_id)
    role = await RoleService.revoke_permission(session, role, permission_id)
    await best_effort(
        record_activity(
            session,
            claims.principal_type,
            claims.user_id,
            ActivityAction.UPDATE,
            "role",
            role.id,
            {"revoked_permission": permission_id},
        ),
        "revoke permission activity",
        session=session,
    )
    await session.commit()
    return RoleResponse.model_validate(role)


@router.get("/permissions", response_model=list[PermissionResponse], dependencies=[Depends(require_admin)])
async def list_permissions(search: str | None = None, session: AsyncSession = Depends(get_db_session)):
    """List every permission code, optionally filtered by a substring."""
    permissions = await RoleService.list_permissions(session, search)
    return [PermissionResponse.model_validate(p) for p in permissions]
