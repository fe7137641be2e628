"""Authentication service layer.

``AuthService`` runs the login, refresh and logout flows and the admin email
verification and password reset flows. It composes the principal store, password
hasher, token codec, refresh token store, blacklist and rate limiter; none of
those know about each other.
"""

import logging
import secrets
import time
from collections.abc import Callable
from datetime import UTC, datetime, timedelta

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from src.cache.client import Cache
from src.config.settings import Settings, settings
from src.features.role.exceptions import RoleNotFound
from src.features.role.models import Role
from src.features.user.exceptions import AdminNotFound
from src.features.user.models import Admin
from src.features.user.service import UserService
from src.shared.audit.audit import ActivityAction, best_effort, record_activity, record_login
from src.shared.email.mailer import PlunkMailer

from .blacklist import TokenBlacklist
from .exceptions import (
    InvalidCredentialsException,
    RateLimitedException,
    TokenBlacklistedException,
    UserInactiveException,
)
from .jwt_utils import Claims, TokenCodec, TokenType, generate_refresh_token
from .password import PasswordHasher, password_hasher
from .principals import Principal, PrincipalKind, PrincipalStore
from .rate_limit import RateLimiter
from .schemas import TokenResponse
from .sessions import RefreshTokenStore

logger = logging.getLogger(__name__)

ADMIN_PERMISSION = "admin:manage"


def generate_otp() -> str:
    """Generate a 7-digit numeric one-time code."""
    return str(secrets.randbelow(9_000_000) + 1_000_000)


def _codes_match(stored: str, supplied: str) -> bool:
    return secrets.compare_digest(stored.encode(), supplied.encode())


class AuthService:
    """Service for authentication, token management and admin account flows.

    Args:
        settings: Frozen application settings (secrets, TTLs, rate-limit policy)
        cache: Cache backing the blacklist and rate limiter
        hasher: Password hasher (built from ``settings.bcrypt_rounds`` if omitted)
        codec: Token codec (built from the JWT settings if omitted)
        mailer: Mailer for one-time codes (built from the Plunk settings if omitted)
        clock: Time source for rate-limit windows

    """

    def __init__(
        self,
        settings: Settings,
        cache: Cache,
        *,
        hasher: PasswordHasher | None = None,
        codec: TokenCodec | None = None,
        mailer: PlunkMailer | None = None,
        clock: Callable[[], float] = time.time,
    ):
        self.settings = settings
        self.hasher = hasher or PasswordHasher(rounds=settings.bcrypt_rounds)
        self.codec = codec or TokenCodec(settings.jwt_secret, settings.jwt_refresh_secret, settings.jwt_algorithm)
        self.mailer = mailer or PlunkMailer(settings.plunk_base_url, settings.plunk_secret_key)
        self.blacklist = TokenBlacklist(cache)
        self.rate_limiter = RateLimiter(cache, clock)

    @classmethod
    def from_settings(cls, cache: Cache) -> "AuthService":
        """Build the service from process settings, sharing the module hasher."""
        return cls(settings, cache, hasher=password_hasher)

    @property
    def access_ttl(self) -> timedelta:
        return timedelta(minutes=self.settings.jwt_expiry)

    @property
    def refresh_ttl(self) -> timedelta:
        return timedelta(hours=self.settings.jwt_refresh_expiry)

    @property
    def login_window(self) -> float:
        return self.settings.login_rate_window * 60.0

    @property
    def block_duration(self) -> float:
        return self.settings.login_block_duration * 60.0

    @staticmethod
    def identifier_key(identifier: str) -> str:
        return f"login:{identifier.strip().lower()}"

    @staticmethod
    def ip_key(client_ip: str) -> str:
        return f"login_ip:{client_ip}"

    # Login

    async def _enforce_rate_limit(self, key: str, limit: int) -> None:
        """Reject a key that is blocked or whose window is already full.

        A full window escalates into a block for ``login_block_duration``.
        """
        blocked, remaining = await self.rate_limiter.is_key_blocked(key)
        if blocked:
            raise RateLimitedException(remaining)

        status = await self.rate_limiter.check(key, limit, self.login_window)
        if status.exceeded:
            await self.rate_limiter.block_key(key, self.block_duration)
            raise RateLimitedException(self.block_duration)

    @staticmethod
    async def _record_login(
        session: AsyncSession,
        identifier: str,
        success: bool,
        client_ip: str | None,
        user_agent: str | None,
        error_reason: str | None = None,
    ) -> None:
        await best_effort(
            record_login(session, identifier, success, client_ip, user_agent, error_reason),
            "login history",
            session=session,
        )

    async def _count_failure(self, keys: list[str]) -> None:
        for key in keys:
            await self.rate_limiter.increment(key, self.login_window)

    async def login(
        self,
        session: AsyncSession,
        identifier: str,
        password: str,
        client_ip: str | None = None,
        user_agent: str | None = None,
    ) -> TokenResponse:
        """Authenticate a user or admin and issue a token pair.

        Unknown identifiers and wrong passwords both raise
        ``InvalidCredentialsException`` and count towards the rate limit.

        Raises:
            RateLimitedException: If the identifier or client IP is blocked
            InvalidCredentialsException: If the identifier or password is wrong
            UserInactiveException: If the account is disabled

        """
        keys = [self.identifier_key(identifier)]
        limits = [self.settings.login_rate_limit]
        if client_ip:
            keys.append(self.ip_key(client_ip))
            limits.append(self.settings.login_ip_rate_limit)

        try:
            for key, limit in zip(keys, limits, strict=True):
                await self._enforce_rate_limit(key, limit)
        except RateLimitedException:
            await self._record_login(session, identifier, False, client_ip, user_agent, "rate limited")
            raise

        principal = await PrincipalStore.find_by_identifier(session, identifier)
        if principal is None:
            await self._count_failure(keys)
            await self._record_login(session, identifier, False, client_ip, user_agent, "unknown identifier")
            raise InvalidCredentialsException()

        if not principal.is_active:
            await self._record_login(session, identifier, False, client_ip, user_agent, "account inactive")
            raise UserInactiveException()

        if not self.hasher.verify(password, principal.hashed_password):
            await self._count_failure(keys)
            await self._record_login(session, identifier, False, client_ip, user_agent, "invalid password")
            raise InvalidCredentialsException()

        await self.rate_limiter.reset(keys[0])
        tokens = await self._issue_tokens(session, principal, client_ip, user_agent)
        await self._record_login(session, identifier, True, client_ip, user_agent)

        logger.info(f"{principal.kind.capitalize()} logged in: {principal.username}")
        return tokens

    async def _issue_tokens(
        self,
        session: AsyncSession,
        principal: Principal,
        client_ip: str | None,
        user_agent: str | None,
    ) -> TokenResponse:
        """Issue an access token and persist a fresh refresh token."""
        permissions = await PrincipalStore.get_permissions(session, principal.role_id)
        claims = Claims(
            user_id=principal.id,
            username=principal.username,
            email=principal.email,
            role=principal.role_name,
            permissions=permissions,
            principal_type=principal.kind.value,
        )

        # JWT timestamps have second resolution
        now = datetime.now(UTC).replace(microsecond=0)
        access_token = self.codec.issue(claims, TokenType.ACCESS, self.access_ttl, now=now)

        refresh_token = generate_refresh_token()
        await RefreshTokenStore.create(session, principal, refresh_token, now + self.refresh_ttl, client_ip, user_agent)

        return TokenResponse(
            access_token=access_token,
            refresh_token=refresh_token,
            expires_in=int(self.access_ttl.total_seconds()),
            expires_at=now + self.access_ttl,
        )

    # Refresh / logout

    async def refresh(
        self,
        session: AsyncSession,
        refresh_token: str,
        client_ip: str | None = None,
        user_agent: str | None = None,
    ) -> TokenResponse:
        """Exchange a refresh token for a new token pair.

        The old refresh token is revoked after the new one is stored. Permissions
        are read again, so role changes apply from the next refresh.

        Raises:
            RefreshTokenNotFoundException: If the token is unknown, revoked or expired
            InvalidCredentialsException: If the owning account no longer exists
            UserInactiveException: If the owning account is disabled

        """
        stored = await RefreshTokenStore.lookup(session, refresh_token)

        principal = await PrincipalStore.get(session, stored.principal_kind, stored.principal_id)
        if principal is None:
            logger.warning(f"Refresh token owner {stored.principal_kind} {stored.principal_id} no longer exists")
            raise InvalidCredentialsException()
        if not principal.is_active:
            raise UserInactiveException()

        tokens = await self._issue_tokens(session, principal, client_ip, user_agent)
        await best_effort(
            RefreshTokenStore.revoke(session, refresh_token), "rotated refresh token revoke", session=session
        )

        logger.info(f"Tokens refreshed for {principal.kind} {principal.username}")
        return tokens

    async def logout(self, session: AsyncSession, access_token: str, refresh_token: str | None = None) -> bool:
        """Blacklist an access token for the rest of its lifetime.

        The signature must still verify but the token may already be expired, in
        which case nothing needs blacklisting. A supplied refresh token is revoked
        if it belongs to the same principal.

        Returns:
            True if the access token was blacklisted

        """
        claims = self.codec.decode_unverified_expiry(access_token)
        remaining = (claims.expires_at - datetime.now(UTC)).total_seconds() if claims.expires_at else 0
        blacklisted = await self.blacklist.block(access_token, remaining)

        if refresh_token:
            await RefreshTokenStore.revoke(session, refresh_token, claims.principal_type, claims.user_id)

        await best_effort(
            record_activity(
                session,
                claims.principal_type,
                claims.user_id,
                ActivityAction.LOGOUT,
                claims.principal_type,
                claims.user_id,
                "Logged out",
            ),
            "logout activity",
            session=session,
        )
        logger.info(f"{claims.principal_type.capitalize()} logged out: {claims.username}")
        return blacklisted

    async def revoke_all_sessions(self, session: AsyncSession, kind: PrincipalKind | str, principal_id: int) -> int:
        """Revoke every refresh token of a principal ("log out everywhere")."""
        return await RefreshTokenStore.revoke_all(session, kind, principal_id)

    # Token verification

    async def verify_access_token(self, token: str) -> Claims:
        """Verify an access token and make sure it was not logged out.

        Raises:
            InvalidTokenException: If the token fails verification
            TokenBlacklistedException: If the token was logged out

        """
        claims = self.codec.verify(token, TokenType.ACCESS)
        if await self.blacklist.is_blocked(token):
            raise TokenBlacklistedException()
        return claims

    @staticmethod
    def has_permission(claims: Claims, permission: str) -> bool:
        return claims.has_permission(permission)

    # Admin registration and email verification

    async def register_admin(
        self,
        session: AsyncSession,
        username: str,
        email: str,
        password: str,
        first_name: str,
        last_name: str,
    ) -> Admin:
        """Register an admin with the default admin role and mail a verification code.

        Raises:
            UsernameAlreadyExists: If the username is taken by a user or admin
            EmailAlreadyExists: If the email is taken by a user or admin
            RoleNotFound: If the default admin role is missing

        """
        await UserService.ensure_identifiers_available(session, username=username, email=email)

        stmt = select(Role).where(Role.name == self.settings.default_admin_role)
        role = (await session.execute(stmt)).scalar_one_or_none()
        if role is None:
            logger.error(f"Default admin role '{self.settings.default_admin_role}' does not exist")
            raise RoleNotFound()

        admin = Admin(
            username=username,
            email=email,
            first_name=first_name,
            last_name=last_name,
            hashed_password=self.hasher.hash(password),
            role=role,
            is_active=True,
            email_verified=False,
        )
        session.add(admin)
        await session.flush()

        code = generate_otp()
        ttl = self.settings.verification_code_ttl
        await self.set_email_verification(session, admin.id, code, datetime.now(UTC) + timedelta(minutes=ttl))
        await best_effort(self.mailer.send_verification_code(email, code, ttl), "verification email")
        await best_effort(
            record_activity(
                session, PrincipalKind.ADMIN, admin.id, ActivityAction.REGISTER, "admin", admin.id, "Admin registered"
            ),
            "register activity",
            session=session,
        )

        logger.info(f"New admin registered: {admin.username}")
        return admin

    async def set_email_verification(
        self, session: AsyncSession, admin_id: int, code: str, expires_at: datetime
    ) -> Admin:
        """Store a verification code and its expiry on an admin.

        Raises:
            AdminNotFound: If no admin has this id

        """
        admin = await session.get(Admin, admin_id)
        if admin is None:
            raise AdminNotFound()
        admin.verification_code = code
        admin.verification_expires_at = expires_at
        await session.flush()
        return admin

    def code_attempts_key(self, email: str) -> str:
        return f"code_attempts:{email.strip().lower()}"

    async def _check_code_attempts(self, email: str) -> str:
        """Throttle guesses of one-time codes per email address."""
        key = self.code_attempts_key(email)
        status = await self.rate_limiter.check(key, self.settings.login_rate_limit, self.login_window)
        if status.exceeded:
            raise RateLimitedException(status.retry_after)
        return key

    async def verify_email_code(self, session: AsyncSession, email: str, code: str) -> bool:
        """Mark an admin's email verified if the code matches and is unexpired.

        Returns False for an unknown email, an already verified admin, or a wrong
        or expired code. The code is cleared in the same flush that sets the
        verified flag.

        Raises:
            RateLimitedException: If too many wrong codes were tried for this email

        """
        key = await self._check_code_attempts(email)
        admin = await PrincipalStore.get_admin_by_email(session, email)
        if admin is None or admin.email_verified or not admin.verification_code:
            return False

        expires_at = admin.verification_expires_at
        if not _codes_match(admin.verification_code, code):
            await self.rate_limiter.increment(key, self.login_window)
            return False
        if expires_at is None or expires_at <= datetime.now(UTC):
            return False

        admin.email_verified = True
        admin.verification_code = None
        admin.verification_expires_at = None
        await session.flush()
        await self.rate_limiter.reset(key)
        await best_effort(
            record_activity(
                session, PrincipalKind.ADMIN, admin.id, ActivityAction.VERIFY_EMAIL, "admin", admin.id, "Email verified"
            ),
            "verify email activity",
            session=session,
        )

        logger.info(f"Email verified for admin {admin.username}")
        return True

    # Password reset

    async def forgot_password(self, session: AsyncSession, email: str) -> str | None:
        """Store and mail a password reset code for an admin.

        Returns:
            The reset code, or None when no admin has this email. Callers must not
            reveal which case occurred.

        """
        admin = await PrincipalStore.get_admin_by_email(session, email)
        if admin is None:
            logger.info("Password reset requested for an unknown email")
            return None

        code = generate_otp()
        ttl = self.settings.reset_code_ttl
        admin.reset_code = code
        admin.reset_code_expires_at = datetime.now(UTC) + timedelta(minutes=ttl)
        await session.flush()

        await best_effort(self.mailer.send_reset_code(admin.email, code, ttl), "password reset email")
        logger.info(f"Password reset code issued for admin {admin.username}")
        return code

    async def reset_admin_password(self, session: AsyncSession, email: str, code: str, new_password: str) -> bool:
        """Set a new password if the reset code matches and is unexpired.

        On success the code is cleared and every refresh token of the admin is
        revoked. Returns False for an unknown email or a wrong or expired code.

        Raises:
            RateLimitedException: If too many wrong codes were tried for this email

        """
        key = await self._check_code_attempts(email)
        admin = await PrincipalStore.get_admin_by_email(session, email)
        if admin is None or not admin.reset_code:
            return False

        expires_at = admin.reset_code_expires_at
        if not _codes_match(admin.reset_code, code):
            await self.rate_limiter.increment(key, self.login_window)
            return False
        if expires_at is None or expires_at <= datetime.now(UTC):
            return False

        admin.hashed_password = self.hasher.hash(new_password)
        admin.reset_code = None
        admin.reset_code_expires_at = None
        await session.flush()

        revoked = await self.revoke_all_sessions(session, PrincipalKind.ADMIN, admin.id)
        await self.rate_limiter.reset(key)
        await best_effort(
            record_activity(
                session,
                PrincipalKind.ADMIN,
                admin.id,
                ActivityAction.RESET_PASSWORD,
                "admin",
                admin.id,
                {"revoked_sessions": revoked},
            ),
            "reset password activity",
            session=session,
        )

        logger.info(f"Password reset for admin {admin.username}, {revoked} session(s) revoked")
        return True
