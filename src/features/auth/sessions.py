"""Refresh token persistence, rotation and cleanup."""

import asyncio
import logging
from datetime import UTC, datetime

from sqlalchemy import delete, or_, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from .exceptions import RefreshTokenConflictException, RefreshTokenNotFoundException
from .models import RefreshToken
from .principals import Principal, PrincipalKind

logger = logging.getLogger(__name__)


class RefreshTokenStore:
    """Store for server-side refresh tokens."""

    @staticmethod
    async def create(
        session: AsyncSession,
        principal: Principal,
        token: str,
        expires_at: datetime,
        ip_address: str | None = None,
        user_agent: str | None = None,
    ) -> RefreshToken:
        """Persist a new refresh token.

        Raises:
            RefreshTokenConflictException: If the token string already exists

        """
        refresh_token = RefreshToken(
            principal_kind=principal.kind.value,
            principal_id=principal.id,
            token=token,
            expires_at=expires_at,
            revoked=False,
            ip_address=ip_address,
            user_agent=user_agent[:500] if user_agent else None,
        )
        session.add(refresh_token)
        try:
            await session.flush()
        except IntegrityError as err:
            logger.error(f"Refresh token collision for {principal.kind} {principal.id}")
            raise RefreshTokenConflictException() from err
        return refresh_token

    @staticmethod
    async def lookup(session: AsyncSession, token: str) -> RefreshToken:
        """Get a usable refresh token.

        Raises:
            RefreshTokenNotFoundException: If the token is unknown, revoked or expired

        """
        stmt = select(RefreshToken).where(
            RefreshToken.token == token,
            RefreshToken.revoked.is_(False),
            RefreshToken.expires_at > datetime.now(UTC),
        )
        result = await session.execute(stmt)
        refresh_token = result.scalar_one_or_none()
        if refresh_token is None:
            raise RefreshTokenNotFoundException()
        return refresh_token

    @staticmethod
    async def revoke(
        session: AsyncSession,
        token: str,
        kind: PrincipalKind | str | None = None,
        principal_id: int | None = None,
    ) -> bool:
        """Mark a token revoked.

        Only a token that is still unrevoked is updated, so calling this twice is
        harmless. When ``kind`` and ``principal_id`` are given, tokens owned by
        anyone else are left alone. Returns True if this call revoked it.
        """
        now = datetime.now(UTC)
        filters = [RefreshToken.token == token, RefreshToken.revoked.is_(False)]
        if kind is not None and principal_id is not None:
            filters += [
                RefreshToken.principal_kind == PrincipalKind(kind).value,
                RefreshToken.principal_id == principal_id,
            ]
        stmt = (
            update(RefreshToken)
            .where(*filters)
            .values(revoked=True, revoked_at=now, updated_at=now)
            .execution_options(synchronize_session=False)
        )
        result = await session.execute(stmt)
        if result.rowcount == 0:
            logger.info("Refresh token was already revoked or does not exist")
            return False
        return True

    @staticmethod
    async def revoke_all(session: AsyncSession, kind: PrincipalKind | str, principal_id: int) -> int:
        """Revoke every active refresh token of a principal. Returns the count."""
        now = datetime.now(UTC)
        stmt = (
            update(RefreshToken)
            .where(
                RefreshToken.principal_kind == PrincipalKind(kind).value,
                RefreshToken.principal_id == principal_id,
                RefreshToken.revoked.is_(False),
            )
            .values(revoked=True, revoked_at=now, updated_at=now)
            .execution_options(synchronize_session=False)
        )
        result = await session.execute(stmt)
        logger.info(f"Revoked {result.rowcount} refresh token(s) for {kind} {principal_id}")
        return result.rowcount

    @staticmethod
    async def sweep(session: AsyncSession) -> int:
        """Delete revoked and expired tokens. Returns the number of rows removed."""
        stmt = delete(RefreshToken).where(
            or_(RefreshToken.revoked.is_(True), RefreshToken.expires_at <= datetime.now(UTC))
        )
        result = await session.execute(stmt)
        return result.rowcount

    @staticmethod
    async def list_active(session: AsyncSession, kind: PrincipalKind | str, principal_id: int) -> list[RefreshToken]:
        """Get a principal's usable refresh tokens, newest first."""
        stmt = (
            select(RefreshToken)
            .where(
                RefreshToken.principal_kind == PrincipalKind(kind).value,
                RefreshToken.principal_id == principal_id,
                RefreshToken.revoked.is_(False),
                RefreshToken.expires_at > datetime.now(UTC),
            )
            .order_by(RefreshToken.created_at.desc(), RefreshToken.id.desc())
        )
        result = await session.execute(stmt)
        return list(result.scalars().all())


async def run_token_sweeper(session_factory: async_sessionmaker[AsyncSession], interval: float) -> None:
    """Periodically delete revoked and expired refresh tokens.

    Runs until cancelled. A failed sweep is logged and retried on the next tick.
    """
    logger.info(f"Refresh token sweeper started (interval {interval:.0f}s)")
    try:
        while True:
            try:
                async with session_factory() as session:
                    deleted = await RefreshTokenStore.sweep(session)
                    await session.commit()
                if deleted:
                    logger.info(f"Swept {deleted} revoked or expired refresh token(s)")
            except Exception as e:
                logger.error(f"Refresh token sweep failed: {e}")
            await asyncio.sleep(interval)
    except asyncio.CancelledError:
        logger.info("Refresh token sweeper stopped")
        raise
