"""Tests for admin registration, email verification and password reset."""

import json
from datetime import UTC, datetime, timedelta

import httpx
import pytest
import pytest_asyncio

from src.config.settings import settings
from src.features.auth.exceptions import RateLimitedException, RefreshTokenNotFoundException
from src.features.auth.password import password_hasher
from src.features.auth.service import AuthService, generate_otp
from src.features.role.exceptions import RoleNotFound
from src.features.user.exceptions import AdminNotFound, EmailAlreadyExists, UsernameAlreadyExists
from src.shared.email.mailer import PlunkMailer


@pytest.fixture
def sent_mail() -> list[dict]:
    return []


@pytest.fixture
def mail_service(cache, clock, sent_mail) -> AuthService:
    """AuthService whose mailer records the messages it sends."""

    def handler(request: httpx.Request) -> httpx.Response:
        sent_mail.append(json.loads(request.content))
        return httpx.Response(200, json={"success": True})

    mailer = PlunkMailer("https://mail.example.com", "sk_test", transport=httpx.MockTransport(handler))
    return AuthService(settings, cache, hasher=password_hasher, mailer=mailer, clock=clock)


@pytest_asyncio.fixture
async def admin_role(make_role):
    return await make_role(settings.default_admin_role, ["admin:manage"])


async def register(service: AuthService, session, username: str = "nightmanager", email: str = "night@hotel.com"):
    return await service.register_admin(session, username, email, "Secret123!", "Night", "Manager")


def test_otp_is_seven_digits():
    for _ in range(50):
        code = generate_otp()
        assert len(code) == 7
        assert code.isdigit()
        assert not code.startswith("0")


class TestRegisterAdmin:
    async def test_creates_unverified_admin_with_code(self, session, mail_service, admin_role, sent_mail):
        admin = await register(mail_service, session)

        assert admin.id is not None
        assert admin.role_id == admin_role.id
        assert not admin.email_verified
        assert admin.verify_password("Secret123!")
        assert len(admin.verification_code) == 7
        assert admin.verification_expires_at > datetime.now(UTC) + timedelta(minutes=9)

        assert len(sent_mail) == 1
        assert sent_mail[0]["to"] == "night@hotel.com"
        assert admin.verification_code in sent_mail[0]["body"]

    async def test_mail_failure_does_not_block_registration(self, session, cache, clock, admin_role):
        failing = PlunkMailer(
            "https://mail.example.com",
            "sk_test",
            transport=httpx.MockTransport(lambda request: httpx.Response(500)),
        )
        service = AuthService(settings, cache, hasher=password_hasher, mailer=failing, clock=clock)

        admin = await register(service, session)
        assert admin.verification_code

    async def test_username_taken_by_user(self, session, mail_service, admin_role, make_user):
        await make_user(username="nightmanager")

        with pytest.raises(UsernameAlreadyExists):
            await register(mail_service, session)

    async def test_email_taken_by_user(self, session, mail_service, admin_role, make_user):
        await make_user(email="night@hotel.com")

        with pytest.raises(EmailAlreadyExists):
            await register(mail_service, session)

    async def test_email_taken_by_admin(self, session, mail_service, admin_role):
        await register(mail_service, session)

        with pytest.raises(EmailAlreadyExists):
            await register(mail_service, session, username="someoneelse")

    async def test_requires_default_role(self, session, mail_service):
        with pytest.raises(RoleNotFound):
            await register(mail_service, session)

    async def test_set_verification_for_unknown_admin(self, session, mail_service):
        with pytest.raises(AdminNotFound):
            await mail_service.set_email_verification(session, 999, "1234567", datetime.now(UTC))


class TestVerifyEmail:
    async def test_correct_code_verifies_and_clears(self, session, mail_service, admin_role):
        admin = await register(mail_service, session)

        assert await mail_service.verify_email_code(session, "night@hotel.com", admin.verification_code)

        assert admin.email_verified
        assert admin.verification_code is None
        assert admin.verification_expires_at is None

    async def test_wrong_code(self, session, mail_service, admin_role):
        admin = await register(mail_service, session)
        wrong = "1000000" if admin.verification_code != "1000000" else "1000001"

        assert not await mail_service.verify_email_code(session, "night@hotel.com", wrong)
        assert not admin.email_verified

    async def test_expired_code(self, session, mail_service, admin_role):
        admin = await register(mail_service, session)
        await mail_service.set_email_verification(
            session, admin.id, "7654321", datetime.now(UTC) - timedelta(seconds=1)
        )

        assert not await mail_service.verify_email_code(session, "night@hotel.com", "7654321")
        assert not admin.email_verified

    async def test_already_verified(self, session, mail_service, admin_role):
        admin = await register(mail_service, session)
        code = admin.verification_code
        assert await mail_service.verify_email_code(session, "night@hotel.com", code)

        assert not await mail_service.verify_email_code(session, "night@hotel.com", code)

    async def test_unknown_email(self, session, mail_service):
        assert not await mail_service.verify_email_code(session, "nobody@hotel.com", "1234567")

    async def test_guesses_are_throttled(self, session, mail_service, admin_role):
        admin = await register(mail_service, session)
        wrong = "1000000" if admin.verification_code != "1000000" else "1000001"

        for _ in range(settings.login_rate_limit):
            assert not await mail_service.verify_email_code(session, "night@hotel.com", wrong)

        with pytest.raises(RateLimitedException):
            await mail_service.verify_email_code(session, "night@hotel.com", admin.verification_code)


class TestPasswordReset:
    async def test_unknown_email_returns_none(self, session, mail_service, sent_mail):
        assert await mail_service.forgot_password(session, "nobody@hotel.com") is None
        assert sent_mail == []

    async def test_reset_with_code(self, session, mail_service, hotel_admin, sent_mail):
        code = await mail_service.forgot_password(session, "admin@hotel.com")

        assert hotel_admin.reset_code == code
        assert code in sent_mail[-1]["body"]

        assert await mail_service.reset_admin_password(session, "admin@hotel.com", code, "BrandNew123!")
        assert hotel_admin.verify_password("BrandNew123!")
        assert hotel_admin.reset_code is None
        assert hotel_admin.reset_code_expires_at is None

    async def test_reset_revokes_sessions(self, session, mail_service, hotel_admin):
        tokens = await mail_service.login(session, "admin@hotel.com", "password")
        code = await mail_service.forgot_password(session, "admin@hotel.com")

        await mail_service.reset_admin_password(session, "admin@hotel.com", code, "BrandNew123!")

        with pytest.raises(RefreshTokenNotFoundException):
            await mail_service.refresh(session, tokens.refresh_token)
        assert await mail_service.login(session, "admin@hotel.com", "BrandNew123!")

    async def test_wrong_code_keeps_password(self, session, mail_service, hotel_admin):
        code = await mail_service.forgot_password(session, "admin@hotel.com")
        wrong = "1000000" if code != "1000000" else "1000001"

        assert not await mail_service.reset_admin_password(session, "admin@hotel.com", wrong, "BrandNew123!")
        assert hotel_admin.verify_password("password")
        assert hotel_admin.reset_code == code

    async def test_expired_code(self, session, mail_service, hotel_admin):
        code = await mail_service.forgot_password(session, "admin@hotel.com")
        hotel_admin.reset_code_expires_at = datetime.now(UTC) - timedelta(seconds=1)
        await session.flush()

        assert not await mail_service.reset_admin_password(session, "admin@hotel.com", code, "BrandNew123!")
        assert hotel_admin.verify_password("password")

    async def test_no_pending_code(self, session, mail_service, hotel_admin):
        assert not await mail_service.reset_admin_password(session, "admin@hotel.com", "1234567", "BrandNew123!")
