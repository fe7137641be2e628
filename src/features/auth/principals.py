"""Principal lookup across users and admins.

Both account tables are converted into a single ``Principal`` value right after
lookup, so token issuance and permission checks never branch on the account kind.
"""

import logging
from dataclasses import dataclass
from enum import StrEnum

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from src.features.role.models import Permission, role_permissions
from src.features.user.models import Admin, User

logger = logging.getLogger(__name__)


class PrincipalKind(StrEnum):
    """Which account table a principal comes from."""

    USER = "user"
    ADMIN = "admin"


@dataclass(frozen=True)
class Principal:
    """An authenticated identity, either a user or an admin."""

    kind: PrincipalKind
    id: int
    username: str
    email: str
    hashed_password: str
    is_active: bool
    role_id: int | None
    role_name: str

    @classmethod
    def from_account(cls, account: User | Admin) -> "Principal":
        kind = PrincipalKind.ADMIN if isinstance(account, Admin) else PrincipalKind.USER
        return cls(
            kind=kind,
            id=account.id,
            username=account.username,
            email=account.email or "",
            hashed_password=account.hashed_password,
            is_active=account.is_active,
            role_id=account.role_id,
            role_name=account.role_name or "",
        )


class PrincipalStore:
    """Read access to principals and their permissions."""

    @staticmethod
    async def find_by_identifier(session: AsyncSession, identifier: str) -> Principal | None:
        """Resolve a login identifier to a principal.

        Tries user email, user username, admin email and admin username in that
        order and returns the first match. A user and an admin sharing an email
        therefore always resolves to the user.
        """
        lookups = (
            (User, User.email),
            (User, User.username),
            (Admin, Admin.email),
            (Admin, Admin.username),
        )
        for model, column in lookups:
            stmt = select(model).where(column == identifier)
            result = await session.execute(stmt)
            account = result.scalar_one_or_none()
            if account is not None:
                return Principal.from_account(account)
        return None

    @staticmethod
    async def get(session: AsyncSession, kind: PrincipalKind | str, principal_id: int) -> Principal | None:
        """Load a principal by kind and id."""
        model = Admin if PrincipalKind(kind) == PrincipalKind.ADMIN else User
        account = await session.get(model, principal_id)
        if account is None:
            return None
        return Principal.from_account(account)

    @staticmethod
    async def get_admin_by_email(session: AsyncSession, email: str) -> Admin | None:
        stmt = select(Admin).where(Admin.email == email)
        result = await session.execute(stmt)
        return result.scalar_one_or_none()

    @staticmethod
    async def get_permissions(session: AsyncSession, role_id: int | None) -> list[str]:
        """Get the de-duplicated permission codes granted to a role."""
        if role_id is None:
            return []
        stmt = (
            select(Permission.code)
            .join(role_permissions, role_permissions.c.permission_id == Permission.id)
            .where(role_permissions.c.role_id == role_id)
            .distinct()
            .order_by(Permission.code)
        )
        result = await session.execute(stmt)
        return list(result.scalars().all())
