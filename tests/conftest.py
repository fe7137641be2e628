"""Test configuration and fixtures.

Each test gets its own in-memory SQLite database (aiosqlite) and its own
in-memory cache:
1. The schema is created from the models for every test
2. The FastAPI session dependency is overridden to use the test session factory
3. The process-wide cache is replaced by an InMemoryCache driven by a fake clock
4. Tokens are issued through the real login endpoint or AuthService
"""

import os

# Settings are read at import time, so the test environment must be in place first
os.environ.setdefault("ENVIRONMENT", "development")
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite://")
os.environ.setdefault("JWT_SECRET", "test-access-secret-0123456789abcdef0123456789")
os.environ.setdefault("JWT_REFRESH_SECRET", "test-refresh-secret-0123456789abcdef012345678")
os.environ.setdefault("BCRYPT_ROUNDS", "4")
os.environ.setdefault("GLOBAL_RATE_LIMIT", "10000/minute")
os.environ.setdefault("LOGIN_IP_RATE_LIMIT", "1000")
os.environ.setdefault("LOG_LEVEL", "WARNING")

import time  # noqa: E402
from collections.abc import AsyncGenerator  # noqa: E402

import pytest  # noqa: E402
import pytest_asyncio  # noqa: E402
from httpx import ASGITransport, AsyncClient  # noqa: E402
from sqlalchemy import select  # noqa: E402
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine  # noqa: E402
from sqlalchemy.pool import StaticPool  # noqa: E402

from src.cache.client import InMemoryCache, set_cache  # noqa: E402
from src.config.settings import settings  # noqa: E402
from src.database.base import Base  # noqa: E402
from src.database.dependencies import get_db_session  # noqa: E402
from src.database.seed import seed_admin  # noqa: E402
from src.features.auth.password import password_hasher  # noqa: E402
from src.features.auth.service import AuthService  # noqa: E402
from src.features.role.models import Permission, Role  # noqa: E402
from src.features.user.models import Admin, User  # noqa: E402
from src.main import app  # noqa: E402

ADMIN_PERMISSIONS = ["pos:sell", "pos:view", "pos:manage_items", "booking:create", "booking:manage"]


class FakeClock:
    """Manually advanced time source."""

    def __init__(self, start: float | None = None):
        self.now = start if start is not None else time.time()

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


# Database Setup - Function Scope (fresh schema per test)


@pytest_asyncio.fixture
async def db_engine() -> AsyncGenerator[AsyncEngine]:
    """Create an in-memory SQLite engine with the full schema."""
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest_asyncio.fixture
async def session_factory(db_engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(db_engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture
async def session(session_factory: async_sessionmaker[AsyncSession]) -> AsyncGenerator[AsyncSession]:
    """Session for arranging data and calling services directly."""
    async with session_factory() as session:
        yield session


# Cache Setup


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def cache(clock: FakeClock) -> InMemoryCache:
    return InMemoryCache(clock=clock)


@pytest.fixture
def auth_service(cache: InMemoryCache, clock: FakeClock) -> AuthService:
    """AuthService sharing the fake clock with its cache."""
    return AuthService(settings, cache, hasher=password_hasher, clock=clock)


# FastAPI Client & Dependency Overrides


@pytest_asyncio.fixture(autouse=True)
async def override_dependencies(session_factory: async_sessionmaker[AsyncSession], cache: InMemoryCache):
    """Point the app at the test database and cache.

    Every request gets its own session from the test factory, committing on
    success and rolling back on error like the production dependency.
    """

    async def _get_test_session():
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    app.dependency_overrides[get_db_session] = _get_test_session
    set_cache(cache)
    yield
    app.dependency_overrides.clear()
    set_cache(None)


@pytest_asyncio.fixture
async def client() -> AsyncGenerator[AsyncClient]:
    """Create an unauthenticated async HTTP test client."""
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac


# Data Factories


@pytest_asyncio.fixture
async def make_role(session: AsyncSession):
    """Factory fixture returning a role with exactly the given permission codes.

    Roles and permissions are reused by name/code, so calling it twice with the
    same name returns the same role.

    Usage:
        role = await make_role("pos_staff", ["pos:sell", "pos:view"])
    """

    async def _factory(name: str, codes: list[str] | None = None, description: str | None = None) -> Role:
        role = (await session.execute(select(Role).where(Role.name == name))).scalar_one_or_none()
        if role is not None:
            return role

        permissions = []
        for code in codes or []:
            permission = (await session.execute(select(Permission).where(Permission.code == code))).scalar_one_or_none()
            if permission is None:
                permission = Permission(code=code, description=f"Test permission {code}")
                session.add(permission)
            permissions.append(permission)

        role = Role(name=name, description=description, permissions=permissions)
        session.add(role)
        await session.commit()
        return role

    return _factory


@pytest_asyncio.fixture
async def make_user(session: AsyncSession, make_role):
    """Factory fixture to create staff users.

    Usage:
        user = await make_user()                                    # active, role pos_staff
        inactive = await make_user(username="test_user", is_active=False)
        manager = await make_user(role_name="manager", permissions=["booking:manage"])
    """
    counter = 0

    async def _factory(
        username: str | None = None,
        email: str | None = None,
        password: str = "TestPass123!",
        role_name: str = "pos_staff",
        permissions: list[str] | None = None,
        is_active: bool = True,
    ) -> User:
        nonlocal counter
        counter += 1

        if username is None:
            username = f"staff{counter}"
        if email is None:
            email = f"{username}@hotel.com"

        role = await make_role(role_name, permissions if permissions is not None else ["pos:sell", "pos:view"])
        user = User(
            username=username,
            first_name="Test",
            last_name="User",
            email=email,
            hashed_password=User.hash_password(password),
            role=role,
            is_active=is_active,
        )
        session.add(user)
        await session.commit()
        return user

    return _factory


@pytest_asyncio.fixture
async def hotel_admin(session: AsyncSession, make_role) -> Admin:
    """Admin admin@hotel.com / "password" with role ``admin`` holding the POS and booking permissions."""
    role = await make_role("admin", ADMIN_PERMISSIONS, "System administrator")
    admin = await seed_admin(session, {"admin": role}, "admin", "admin@hotel.com", "password")
    await session.commit()
    return admin


@pytest_asyncio.fixture
async def root_admin(session: AsyncSession, make_role) -> Admin:
    """Admin root@hotel.com / "rootpass123" holding ``admin:manage``."""
    role = await make_role("superadmin", ["admin:manage"], "Account administration")
    admin = await seed_admin(session, {"admin": role}, "root", "root@hotel.com", "rootpass123")
    await session.commit()
    return admin


@pytest.fixture
def login(client: AsyncClient):
    """Log in through the API and return the token response body.

    Usage:
        tokens = await login("password", email="admin@hotel.com")
    """

    async def _login(password: str, **credentials) -> dict:
        response = await client.post(
            f"{settings.api_prefix}/auth/login",
            json={**credentials, "password": password},
        )
        assert response.status_code == 200, response.text
        return response.json()

    return _login


@pytest_asyncio.fixture
async def admin_client(client: AsyncClient, root_admin: Admin, login):
    """Client carrying a real access token with ``admin:manage``.

    Returns:
        tuple: (client, tokens) - the HTTP client and the login response body

    """
    tokens = await login("rootpass123", email="root@hotel.com")
    client.headers["Authorization"] = f"Bearer {tokens['access_token']}"
    yield client, tokens
    client.headers.pop("Authorization", None)
