"""Activity and login-history logging.

Audit writes are side effects of the operation being audited: they are added to
the caller's session and committed with it. ``best_effort`` writes them in a
SAVEPOINT, so a failure to record one is logged instead of failing the request.
"""

import json
import logging
from collections.abc import Awaitable
from datetime import UTC, datetime
from enum import StrEnum
from typing import Any, TypeVar

from sqlalchemy import Boolean, Integer, String, Text, func, inspect, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import Mapped, mapped_column

from src.database.base import Base, UTCDateTime
from src.shared.pagination.pagination import PaginationParams

T = TypeVar("T")

logger = logging.getLogger(__name__)


class ActivityAction(StrEnum):
    """Activity log action types."""

    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"
    LOGOUT = "logout"
    LOGOUT_ALL = "logout_all"
    REGISTER = "register"
    VERIFY_EMAIL = "verify_email"
    RESET_PASSWORD = "reset_password"
    REVOKE_SESSIONS = "revoke_sessions"


class ActivityLog(Base):
    """Who did what to which entity."""

    __tablename__ = "activity_logs"

    # Primary key
    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    # Actor: users and admins have separate id sequences
    actor_kind: Mapped[str] = mapped_column(String(10), nullable=False, index=True)
    user_id: Mapped[int] = mapped_column(Integer, nullable=False, index=True)

    # Action details
    action: Mapped[str] = mapped_column(String(50), nullable=False, index=True)
    details: Mapped[str] = mapped_column(String, nullable=False)
    entity_id: Mapped[int] = mapped_column(Integer, nullable=False)
    entity_type: Mapped[str] = mapped_column(String(50), nullable=False, index=True)

    # Client
    ip_address: Mapped[str | None] = mapped_column(String(45), nullable=True)
    user_agent: Mapped[str | None] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        UTCDateTime(),
        default=lambda: datetime.now(UTC),
        nullable=False,
        index=True,
    )


class LoginHistory(Base):
    """One row per login attempt, successful or not."""

    __tablename__ = "login_history"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    username_or_email: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    login_time: Mapped[datetime] = mapped_column(
        UTCDateTime(),
        default=lambda: datetime.now(UTC),
        nullable=False,
        index=True,
    )
    ip_address: Mapped[str | None] = mapped_column(String(45), nullable=True)
    user_agent: Mapped[str | None] = mapped_column(Text, nullable=True)
    success: Mapped[bool] = mapped_column(Boolean, nullable=False)
    error_reason: Mapped[str | None] = mapped_column(Text, nullable=True)


async def best_effort(
    operation: Awaitable[T],
    description: str,
    session: AsyncSession | None = None,
) -> T | None:
    """Await a non-critical side effect, logging instead of raising on failure.

    Database side effects pass the session they write through. Pending changes of
    the main operation are flushed first, outside the side effect; the side effect
    then runs and is flushed inside a SAVEPOINT, so a failing INSERT or UPDATE
    rolls back only its own writes and the surrounding transaction can still
    commit.

    Args:
        operation: Awaitable performing the side effect
        description: Short label used in the warning
        session: Session the side effect writes through, if any

    Returns:
        The operation's result, or None if it failed

    """
    if session is not None:
        await session.flush()
    try:
        if session is None:
            return await operation
        async with session.begin_nested():
            result = await operation
            await session.flush()
        return result
    except Exception as e:
        logger.warning(f"Best-effort {description} failed: {e}")
        return None


def compute_diff(before: dict[str, Any], after: dict[str, Any]) -> dict[str, dict[str, Any]] | None:
    """Compute field-level differences between two record states.

    Returns:
        Dictionary of changed fields with 'from' and 'to' values, or None

    """
    diff = {}
    for key in set(before) | set(after):
        before_value = before.get(key)
        after_value = after.get(key)
        if before_value != after_value:
            diff[key] = {"from": before_value, "to": after_value}
    return diff or None


def serialize_model(instance: Any, exclude: set[str] | None = None) -> dict[str, Any]:
    """Serialize a model's columns to JSON-safe values for activity details.

    Password hashes and one-time codes are always left out.
    """
    excluded = {"hashed_password", "verification_code", "reset_code"} | (exclude or set())
    data = {}
    for column in inspect(instance.__class__).columns:
        if column.key in excluded:
            continue
        value = getattr(instance, column.key)
        data[column.key] = value.isoformat() if isinstance(value, datetime) else value
    return data


async def record_activity(
    session: AsyncSession,
    actor_kind: str,
    user_id: int,
    action: ActivityAction,
    entity_type: str,
    entity_id: int,
    details: str | dict[str, Any] = "",
    ip_address: str | None = None,
    user_agent: str | None = None,
) -> ActivityLog:
    """Add an activity log entry to the session.

    Args:
        session: Database session
        actor_kind: ``user`` or ``admin``, the table ``user_id`` refers to
        user_id: Id of the principal performing the action
        action: What was done
        entity_type: Kind of record acted on (``user``, ``admin``, ``role``...)
        entity_id: Id of the record acted on
        details: Free text, or a dict stored as JSON

    """
    entry = ActivityLog(
        actor_kind=str(actor_kind),
        user_id=user_id,
        action=ActivityAction(action).value,
        details=details if isinstance(details, str) else json.dumps(details, default=str),
        entity_id=entity_id,
        entity_type=entity_type,
        ip_address=ip_address,
        user_agent=user_agent,
    )
    session.add(entry)
    return entry


async def record_login(
    session: AsyncSession,
    username_or_email: str,
    success: bool,
    ip_address: str | None = None,
    user_agent: str | None = None,
    error_reason: str | None = None,
) -> LoginHistory:
    """Add a login-history entry to the session."""
    entry = LoginHistory(
        username_or_email=username_or_email[:255],
        success=success,
        ip_address=ip_address,
        user_agent=user_agent,
        error_reason=error_reason,
    )
    session.add(entry)
    if success:
        logger.info(f"Login succeeded for {username_or_email} from {ip_address}")
    else:
        logger.info(f"Login failed for {username_or_email} from {ip_address}: {error_reason}")
    return entry


async def get_login_history(
    session: AsyncSession,
    pagination: PaginationParams,
    username_or_email: str | None = None,
    success: bool | None = None,
) -> tuple[list[LoginHistory], int]:
    """Get paginated login history, newest first.

    Returns:
        Tuple of (entries, total_count)

    """
    filters = []
    if username_or_email is not None:
        filters.append(LoginHistory.username_or_email == username_or_email)
    if success is not None:
        filters.append(LoginHistory.success.is_(success))

    count_stmt = select(func.count()).select_from(LoginHistory).where(*filters)
    total = (await session.execute(count_stmt)).scalar_one()

    stmt = select(LoginHistory).where(*filters).order_by(LoginHistory.login_time.desc(), LoginHistory.id.desc())
    if pagination.is_paginated:
        stmt = stmt.offset(pagination.skip).limit(pagination.limit)
    result = await session.execute(stmt)
    return list(result.scalars().all()), total


async def get_activity_logs(
    session: AsyncSession,
    pagination: PaginationParams,
    user_id: int | None = None,
    actor_kind: str | None = None,
) -> tuple[list[ActivityLog], int]:
    """Get paginated activity logs, newest first, optionally for one actor."""
    filters = []
    if user_id is not None:
        filters.append(ActivityLog.user_id == user_id)
    if actor_kind is not None:
        filters.append(ActivityLog.actor_kind == str(actor_kind))

    count_stmt = select(func.count()).select_from(ActivityLog).where(*filters)
    total = (await session.execute(count_stmt)).scalar_one()

    stmt = select(ActivityLog).where(*filters).order_by(ActivityLog.created_at.desc(), ActivityLog.id.desc())
    if pagination.is_paginated:
        stmt = stmt.offset(pagination.skip).limit(pagination.limit)
    result = await session.execute(stmt)
    return list(result.scalars().all()), total
