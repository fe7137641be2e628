"""User and admin domain models."""

from datetime import datetime
from enum import StrEnum

from sqlalchemy import Boolean, Enum, ForeignKey, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from src.database.base import Base, TimestampMixin, UTCDateTime
from src.features.auth.password import password_hasher
from src.features.role.models import Role


class Gender(StrEnum):
    """Gender recorded on staff accounts."""

    MALE = "male"
    FEMALE = "female"


class PasswordMixin:
    """Password helpers shared by both principal tables.

    Salt is generated per hash by bcrypt and embedded in the stored value.
    """

    hashed_password: Mapped[str] = mapped_column(String(255), nullable=False)

    def verify_password(self, plain_password: str) -> bool:
        """Verify a password against the stored bcrypt hash."""
        return password_hasher.verify(plain_password, self.hashed_password)

    @staticmethod
    def hash_password(password: str) -> str:
        """Hash a password with bcrypt."""
        return password_hasher.hash(password)


class User(Base, TimestampMixin, PasswordMixin):
    """Staff account (front desk, POS, managers).

    Users log in through the same flow as admins and receive the permissions of
    their role.
    """

    __tablename__ = "users"

    # Primary key
    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    # Identity
    username: Mapped[str] = mapped_column(String(50), nullable=False, unique=True)
    first_name: Mapped[str] = mapped_column(String(50), nullable=False)
    last_name: Mapped[str] = mapped_column(String(50), nullable=False)
    email: Mapped[str | None] = mapped_column(String(100), nullable=True, unique=True)
    gender: Mapped[str | None] = mapped_column(Enum(Gender, native_enum=False, length=10), nullable=True)

    # Authorization
    role_id: Mapped[int | None] = mapped_column(Integer, ForeignKey("roles.id"), nullable=True, index=True)
    role: Mapped[Role | None] = relationship(lazy="selectin")

    # Status
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, server_default="true")

    @property
    def role_name(self) -> str | None:
        return self.role.name if self.role else None


class Admin(Base, TimestampMixin, PasswordMixin):
    """Back-office administrator.

    Admins register themselves, confirm their email with a one-time code and can
    reset a forgotten password with another one.
    """

    __tablename__ = "admins"

    # Primary key
    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    # Identity
    username: Mapped[str] = mapped_column(String(50), nullable=False, unique=True)
    first_name: Mapped[str] = mapped_column(String(50), nullable=False)
    last_name: Mapped[str] = mapped_column(String(50), nullable=False)
    email: Mapped[str] = mapped_column(String(100), nullable=False, unique=True)

    # Authorization
    role_id: Mapped[int] = mapped_column(Integer, ForeignKey("roles.id"), nullable=False, index=True)
    role: Mapped[Role] = relationship(lazy="selectin")

    # Status
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, server_default="true")

    # Email verification
    email_verified: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, server_default="false")
    verification_code: Mapped[str | None] = mapped_column(Text, nullable=True)
    verification_expires_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)

    # Password reset
    reset_code: Mapped[str | None] = mapped_column(Text, nullable=True)
    reset_code_expires_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)

    @property
    def role_name(self) -> str | None:
        return self.role.name if self.role else None
