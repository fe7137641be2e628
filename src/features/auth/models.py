"""Authentication models (refresh token persistence)."""

from datetime import datetime

from sqlalchemy import Boolean, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from src.database.base import Base, TimestampMixin, UTCDateTime


class RefreshToken(Base, TimestampMixin):
    """Opaque refresh token issued at login and rotated on every use.

    Owned by either a user or an admin, distinguished by ``principal_kind``.
    A row is usable only while ``revoked`` is false and ``expires_at`` is in the
    future; the background sweeper deletes it afterwards.
    """

    __tablename__ = "refresh_tokens"

    # Primary key
    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    # Owner
    principal_kind: Mapped[str] = mapped_column(String(10), nullable=False, default="user", server_default="user")
    principal_id: Mapped[int] = mapped_column(Integer, nullable=False, index=True)

    # Token data
    token: Mapped[str] = mapped_column(String(255), unique=True, nullable=False, index=True)
    expires_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False, index=True)
    revoked: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, server_default="false", index=True)
    revoked_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)

    # Client
    ip_address: Mapped[str | None] = mapped_column(String(45), nullable=True)  # IPv6 max length is 45
    user_agent: Mapped[str | None] = mapped_column(String(500), nullable=True)
