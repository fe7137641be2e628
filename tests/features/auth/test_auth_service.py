"""Tests for AuthService login, token rotation and logout.

Covers: credential checks across users and admins, brute-force blocking,
refresh token rotation, access token blacklisting.
"""

from datetime import UTC, datetime, timedelta

import pytest
from sqlalchemy import select

from src.config.settings import settings
from src.features.auth.exceptions import (
    InvalidCredentialsException,
    RateLimitedException,
    RefreshTokenNotFoundException,
    TokenBlacklistedException,
    UserInactiveException,
)
from src.features.auth.jwt_utils import Claims, TokenType
from src.features.auth.models import RefreshToken
from src.features.auth.password import password_hasher
from src.features.auth.principals import PrincipalKind
from src.features.auth.service import AuthService
from src.shared.audit.audit import LoginHistory, get_login_history
from src.shared.pagination.pagination import PaginationParams

ADMIN_PERMISSIONS = {"pos:sell", "pos:view", "pos:manage_items", "booking:create", "booking:manage"}

# AuthService.login


class TestLogin:
    """Unit tests for AuthService.login."""

    async def test_admin_login_with_email(self, session, auth_service, hotel_admin):
        tokens = await auth_service.login(session, "admin@hotel.com", "password", "10.0.0.1", "pytest")

        claims = auth_service.codec.verify(tokens.access_token)
        assert claims.user_id == hotel_admin.id
        assert claims.principal_type == "admin"
        assert claims.role == "admin"
        assert set(claims.permissions) == ADMIN_PERMISSIONS
        assert tokens.token_type == "bearer"
        assert tokens.expires_in == settings.jwt_expiry * 60
        assert tokens.expires_at == claims.expires_at

    async def test_admin_login_with_username(self, session, auth_service, hotel_admin):
        tokens = await auth_service.login(session, "admin", "password")
        assert auth_service.codec.verify(tokens.access_token).username == "admin"

    async def test_user_login_carries_role_permissions(self, session, auth_service, make_user):
        user = await make_user(username="cashier1", password="Pass1234!")

        tokens = await auth_service.login(session, "cashier1", "Pass1234!")

        claims = auth_service.codec.verify(tokens.access_token)
        assert claims.user_id == user.id
        assert claims.principal_type == "user"
        assert claims.role == "pos_staff"
        assert claims.permissions == ["pos:sell", "pos:view"]

    async def test_user_without_role_has_no_permissions(self, session, auth_service, make_user):
        user = await make_user(username="norole", password="Pass1234!")
        user.role = None
        await session.commit()

        tokens = await auth_service.login(session, "norole", "Pass1234!")
        assert auth_service.codec.verify(tokens.access_token).permissions == []

    async def test_refresh_token_is_persisted(self, session, auth_service, hotel_admin):
        tokens = await auth_service.login(session, "admin@hotel.com", "password", "10.0.0.1", "pytest")

        stored = (
            await session.execute(select(RefreshToken).where(RefreshToken.token == tokens.refresh_token))
        ).scalar_one()
        assert stored.principal_kind == "admin"
        assert stored.principal_id == hotel_admin.id
        assert stored.user_agent == "pytest"
        assert stored.expires_at > datetime.now(UTC) + timedelta(hours=settings.jwt_refresh_expiry - 1)

    async def test_user_wins_identifier_collision(self, session, auth_service, make_user, hotel_admin):
        await make_user(username="frontdesk", email="admin@hotel.com", password="UserPass1!")

        tokens = await auth_service.login(session, "admin@hotel.com", "UserPass1!")
        assert auth_service.codec.verify(tokens.access_token).principal_type == "user"

        with pytest.raises(InvalidCredentialsException):
            await auth_service.login(session, "admin@hotel.com", "password")

    async def test_unknown_identifier(self, session, auth_service):
        with pytest.raises(InvalidCredentialsException):
            await auth_service.login(session, "ghost@hotel.com", "whatever")

    async def test_wrong_password(self, session, auth_service, hotel_admin):
        with pytest.raises(InvalidCredentialsException) as exc_info:
            await auth_service.login(session, "admin@hotel.com", "wrong")
        assert exc_info.value.status_code == 401

    async def test_inactive_user_rejected_even_with_correct_password(self, session, auth_service, make_user):
        await make_user(username="test_user", password="Pass1234!", is_active=False)

        with pytest.raises(UserInactiveException):
            await auth_service.login(session, "test_user", "Pass1234!")

    async def test_failures_are_recorded(self, session, auth_service, hotel_admin):
        with pytest.raises(InvalidCredentialsException):
            await auth_service.login(session, "admin@hotel.com", "wrong", "10.0.0.1", "pytest")
        await auth_service.login(session, "admin@hotel.com", "password", "10.0.0.1", "pytest")

        result = await session.execute(select(LoginHistory).order_by(LoginHistory.id))
        entries = result.scalars().all()
        assert [e.success for e in entries] == [False, True]
        assert entries[0].error_reason == "invalid password"
        assert entries[0].ip_address == "10.0.0.1"


class TestLoginRateLimit:
    """Brute-force protection on login identifiers and client addresses."""

    async def test_sixth_attempt_blocked_even_with_correct_password(self, session, auth_service, hotel_admin):
        for _ in range(settings.login_rate_limit):
            with pytest.raises(InvalidCredentialsException):
                await auth_service.login(session, "admin@hotel.com", "wrong")

        with pytest.raises(RateLimitedException) as exc_info:
            await auth_service.login(session, "admin@hotel.com", "password")

        assert exc_info.value.status_code == 429
        assert exc_info.value.retry_after == settings.login_block_duration * 60
        assert exc_info.value.headers["Retry-After"] == str(settings.login_block_duration * 60)

    async def test_block_reports_remaining_time(self, session, auth_service, hotel_admin, clock):
        for _ in range(settings.login_rate_limit):
            with pytest.raises(InvalidCredentialsException):
                await auth_service.login(session, "admin@hotel.com", "wrong")
        with pytest.raises(RateLimitedException):
            await auth_service.login(session, "admin@hotel.com", "password")

        clock.advance(600)

        with pytest.raises(RateLimitedException) as exc_info:
            await auth_service.login(session, "admin@hotel.com", "password")
        assert abs(exc_info.value.retry_after - (settings.login_block_duration * 60 - 600)) <= 1

    async def test_block_expires(self, session, auth_service, hotel_admin, clock):
        for _ in range(settings.login_rate_limit):
            with pytest.raises(InvalidCredentialsException):
                await auth_service.login(session, "admin@hotel.com", "wrong")
        with pytest.raises(RateLimitedException):
            await auth_service.login(session, "admin@hotel.com", "password")

        clock.advance(settings.login_block_duration * 60 + 1)

        tokens = await auth_service.login(session, "admin@hotel.com", "password")
        assert tokens.access_token

    async def test_identifier_key_is_case_insensitive(self, session, auth_service, hotel_admin):
        variants = ("admin@hotel.com", "ADMIN@hotel.com", "Admin@Hotel.com", "admin@HOTEL.com", "ADMIN@HOTEL.COM")
        for identifier in variants:
            with pytest.raises(InvalidCredentialsException):
                await auth_service.login(session, identifier, "wrong")

        with pytest.raises(RateLimitedException):
            await auth_service.login(session, "admin@hotel.com", "password")

    async def test_unknown_identifiers_count_too(self, session, auth_service):
        for _ in range(settings.login_rate_limit):
            with pytest.raises(InvalidCredentialsException):
                await auth_service.login(session, "ghost", "whatever")

        with pytest.raises(RateLimitedException):
            await auth_service.login(session, "ghost", "whatever")

    async def test_success_resets_identifier_counter(self, session, auth_service, hotel_admin):
        for _ in range(settings.login_rate_limit - 1):
            with pytest.raises(InvalidCredentialsException):
                await auth_service.login(session, "admin@hotel.com", "wrong")

        await auth_service.login(session, "admin@hotel.com", "password")

        remaining = await auth_service.rate_limiter.remaining_attempts(
            auth_service.identifier_key("admin@hotel.com"), settings.login_rate_limit, auth_service.login_window
        )
        assert remaining == settings.login_rate_limit

    async def test_client_address_limit(self, session, cache, clock, make_user):
        strict = AuthService(
            settings.model_copy(update={"login_ip_rate_limit": 2}), cache, hasher=password_hasher, clock=clock
        )
        await make_user(username="alice", password="Pass1234!")

        for identifier in ("ghost1", "ghost2"):
            with pytest.raises(InvalidCredentialsException):
                await strict.login(session, identifier, "whatever", "10.0.0.9")

        with pytest.raises(RateLimitedException):
            await strict.login(session, "alice", "Pass1234!", "10.0.0.9")

        # Another address is unaffected
        assert await strict.login(session, "alice", "Pass1234!", "10.0.0.10")


# AuthService.refresh


class TestRefresh:
    async def test_rotation_issues_new_pair(self, session, auth_service, hotel_admin):
        first = await auth_service.login(session, "admin@hotel.com", "password")

        second = await auth_service.refresh(session, first.refresh_token)

        assert second.refresh_token != first.refresh_token
        claims = auth_service.codec.verify(second.access_token)
        assert claims.user_id == hotel_admin.id
        assert claims.principal_type == "admin"

    async def test_old_refresh_token_cannot_be_reused(self, session, auth_service, hotel_admin):
        first = await auth_service.login(session, "admin@hotel.com", "password")
        await auth_service.refresh(session, first.refresh_token)

        with pytest.raises(RefreshTokenNotFoundException):
            await auth_service.refresh(session, first.refresh_token)

    async def test_unknown_refresh_token(self, session, auth_service):
        with pytest.raises(RefreshTokenNotFoundException):
            await auth_service.refresh(session, "0" * 64)

    async def test_refresh_picks_up_permission_changes(self, session, auth_service, make_user, make_role):
        user = await make_user(username="cashier1", password="Pass1234!")
        tokens = await auth_service.login(session, "cashier1", "Pass1234!")

        user.role = await make_role("manager", ["booking:manage"])
        await session.commit()

        refreshed = await auth_service.refresh(session, tokens.refresh_token)
        claims = auth_service.codec.verify(refreshed.access_token)
        assert claims.role == "manager"
        assert claims.permissions == ["booking:manage"]

    async def test_deactivated_account_cannot_refresh(self, session, auth_service, make_user):
        user = await make_user(username="cashier1", password="Pass1234!")
        tokens = await auth_service.login(session, "cashier1", "Pass1234!")

        user.is_active = False
        await session.commit()

        with pytest.raises(UserInactiveException):
            await auth_service.refresh(session, tokens.refresh_token)

    async def test_deleted_account_cannot_refresh(self, session, auth_service, make_user):
        user = await make_user(username="cashier1", password="Pass1234!")
        tokens = await auth_service.login(session, "cashier1", "Pass1234!")

        await session.delete(user)
        await session.commit()

        with pytest.raises(InvalidCredentialsException):
            await auth_service.refresh(session, tokens.refresh_token)


# AuthService.logout / verify_access_token


class TestLogout:
    async def test_logged_out_token_is_rejected(self, session, auth_service, hotel_admin):
        tokens = await auth_service.login(session, "admin@hotel.com", "password")
        assert (await auth_service.verify_access_token(tokens.access_token)).user_id == hotel_admin.id

        assert await auth_service.logout(session, tokens.access_token)

        with pytest.raises(TokenBlacklistedException):
            await auth_service.verify_access_token(tokens.access_token)

    async def test_blacklist_entry_expires_with_token(self, session, auth_service, hotel_admin, clock):
        tokens = await auth_service.login(session, "admin@hotel.com", "password")
        await auth_service.logout(session, tokens.access_token)

        clock.advance(settings.jwt_expiry * 60 - 5)
        assert await auth_service.blacklist.is_blocked(tokens.access_token)

        clock.advance(10)
        assert not await auth_service.blacklist.is_blocked(tokens.access_token)

    async def test_logout_revokes_own_refresh_token(self, session, auth_service, hotel_admin):
        tokens = await auth_service.login(session, "admin@hotel.com", "password")

        await auth_service.logout(session, tokens.access_token, tokens.refresh_token)

        with pytest.raises(RefreshTokenNotFoundException):
            await auth_service.refresh(session, tokens.refresh_token)

    async def test_logout_leaves_foreign_refresh_token(self, session, auth_service, hotel_admin, make_user):
        await make_user(username="cashier1", password="Pass1234!")
        admin_tokens = await auth_service.login(session, "admin@hotel.com", "password")
        user_tokens = await auth_service.login(session, "cashier1", "Pass1234!")

        await auth_service.logout(session, admin_tokens.access_token, user_tokens.refresh_token)

        assert await auth_service.refresh(session, user_tokens.refresh_token)

    async def test_expired_token_needs_no_blacklisting(self, session, auth_service):
        claims = Claims(user_id=1, username="admin", email="admin@hotel.com", role="admin", principal_type="admin")
        expired = auth_service.codec.issue(
            claims, TokenType.ACCESS, timedelta(minutes=15), now=datetime.now(UTC) - timedelta(hours=1)
        )

        assert not await auth_service.logout(session, expired)
        assert not await auth_service.blacklist.is_blocked(expired)

    async def test_revoke_all_sessions(self, session, auth_service, hotel_admin):
        first = await auth_service.login(session, "admin@hotel.com", "password")
        second = await auth_service.login(session, "admin@hotel.com", "password")

        assert await auth_service.revoke_all_sessions(session, PrincipalKind.ADMIN, hotel_admin.id) == 2

        for tokens in (first, second):
            with pytest.raises(RefreshTokenNotFoundException):
                await auth_service.refresh(session, tokens.refresh_token)


class TestHasPermission:
    def test_checks_claims(self):
        claims = Claims(user_id=1, username="a", email="", role="r", permissions=["pos:sell"])

        assert AuthService.has_permission(claims, "pos:sell")
        assert not AuthService.has_permission(claims, "pos:manage_items")


async def test_login_history_query(session, auth_service, hotel_admin):
    await auth_service.login(session, "admin@hotel.com", "password")
    with pytest.raises(InvalidCredentialsException):
        await auth_service.login(session, "ghost", "whatever")

    failures, total = await get_login_history(session, PaginationParams(), success=False)
    assert total == 1
    assert failures[0].username_or_email == "ghost"
