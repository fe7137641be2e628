"""Default roles and permissions.

Run once against a fresh database:

    python -m src.database.seed

Every step is idempotent, so re-running only fills in what is missing.
"""

import asyncio
import logging

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from src.config.settings import settings
from src.database.base import Base
from src.database.client import close_db, get_engine, get_session, init_db
from src.features.auth.models import RefreshToken  # noqa: F401
from src.features.role.models import Permission, Role
from src.features.user.models import Admin
from src.shared.audit.audit import ActivityLog, LoginHistory  # noqa: F401

logger = logging.getLogger(__name__)

DEFAULT_PERMISSIONS: dict[str, str] = {
    # Administration
    "admin:manage": "Manage admin settings",
    "logs:activity_logs": "View activity logs",
    # Business hierarchy
    "business:create_business": "Create business",
    "business:view_business": "View business",
    "business:update_business": "Update business",
    "business:delete_business": "Delete business",
    "business:create_branch": "Create branch",
    "business:view_branch": "View branch",
    "business:update_branch": "Update branch",
    "business:delete_branch": "Delete branch",
    "business:create_store": "Create store",
    "business:view_store": "View store",
    "business:update_store": "Update store",
    "business:delete_store": "Delete store",
    # Point of sale
    "pos:sell": "Create new sales in POS",
    "pos:view": "View POS",
    "pos:manage_items": "Manage POS items",
    "sale:view": "View sales history",
    "sale:create": "Create new sales",
    "sale:update": "Update sales",
    "sale:delete": "Delete sales",
    "sale:cancel": "Cancel sales",
    "sale:refund": "Refund sales",
    "sale:print": "Print sales receipts",
    # Bookings
    "booking:create": "Create bookings",
    "booking:manage": "Manage bookings",
    # Inventory
    "item:create": "Create inventory items",
    "item:view": "View inventory items",
    "item:update": "Update inventory items",
    "item:delete": "Delete inventory items",
    "item_request:create": "Create inventory item requests",
    "item_request:view": "View inventory item requests",
    "item_request:update": "Update inventory item requests",
    "item_request:delete": "Delete inventory item requests",
    "item_request:approve": "Approve inventory item requests",
    "item_request:reject": "Reject inventory item requests",
    # Accounts
    "user:create": "Create users",
    "user:view": "View users",
    "user:update": "Update users",
    "user:delete": "Delete users",
    "role:create": "Create roles",
    "role:view": "View roles",
    "role:update": "Update roles",
    "role:delete": "Delete roles",
    # Settings
    "setting:create": "Create settings",
    "setting:view": "View settings",
    "setting:update": "Update settings",
    "setting:delete": "Delete settings",
}

# None grants every permission
DEFAULT_ROLES: dict[str, tuple[str, list[str] | None]] = {
    "admin": ("System administrator with full access", None),
    "manager": (
        "Hotel manager with broad access",
        [
            "business:view_business",
            "business:view_branch",
            "business:view_store",
            "pos:sell",
            "pos:view",
            "pos:manage_items",
            "sale:view",
            "sale:create",
            "sale:update",
            "sale:cancel",
            "sale:refund",
            "sale:print",
            "booking:create",
            "booking:manage",
            "item:view",
            "item_request:view",
            "item_request:approve",
            "item_request:reject",
            "user:view",
        ],
    ),
    "cashier": ("Cashier with limited POS access", ["pos:sell", "pos:view", "sale:view", "sale:print"]),
    "pos_staff": ("POS system user", ["pos:sell", "pos:view"]),
}


async def seed_permissions(session: AsyncSession) -> dict[str, Permission]:
    """Create missing default permissions. Returns every permission by code."""
    result = await session.execute(select(Permission))
    existing = {p.code: p for p in result.scalars().all()}

    for code, description in DEFAULT_PERMISSIONS.items():
        if code not in existing:
            permission = Permission(code=code, description=description)
            session.add(permission)
            existing[code] = permission
            logger.info(f"Seeded permission {code}")

    await session.flush()
    return existing


async def seed_roles(session: AsyncSession, permissions: dict[str, Permission]) -> dict[str, Role]:
    """Create missing default roles and grant them their missing default permissions."""
    result = await session.execute(select(Role))
    existing = {r.name: r for r in result.scalars().all()}

    for name, (description, codes) in DEFAULT_ROLES.items():
        role = existing.get(name)
        if role is None:
            role = Role(name=name, description=description, permissions=[])
            session.add(role)
            existing[name] = role
            logger.info(f"Seeded role {name}")

        wanted = list(permissions) if codes is None else codes
        granted = set(role.permission_codes)
        for code in wanted:
            if code not in granted:
                role.permissions.append(permissions[code])

    await session.flush()
    return existing


async def seed_admin(
    session: AsyncSession,
    roles: dict[str, Role],
    username: str,
    email: str,
    password: str,
) -> Admin | None:
    """Create a verified admin account unless one already uses this email."""
    result = await session.execute(select(Admin).where(Admin.email == email))
    if result.scalar_one_or_none() is not None:
        return None

    admin = Admin(
        username=username,
        first_name="System",
        last_name="Administrator",
        email=email,
        hashed_password=Admin.hash_password(password),
        role=roles[settings.default_admin_role],
        is_active=True,
        email_verified=True,
    )
    session.add(admin)
    await session.flush()
    logger.info(f"Seeded admin {username}")
    return admin


async def seed_defaults(session: AsyncSession) -> dict[str, Role]:
    """Seed default permissions and roles."""
    permissions = await seed_permissions(session)
    return await seed_roles(session, permissions)


async def main() -> None:
    logging.basicConfig(level=settings.log_level)
    await init_db()
    try:
        async with get_engine().begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        async with get_session() as session:
            await seed_defaults(session)
    finally:
        await close_db()


if __name__ == "__main__":
    asyncio.run(main())
