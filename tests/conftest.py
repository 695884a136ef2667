"""Shared pytest fixtures for testing."""

import uuid
from typing import AsyncGenerator, Optional

import pytest
import pytest_asyncio
from fastapi import FastAPI
from httpx import ASGITransport, AsyncClient
from redis.exceptions import ConnectionError as RedisConnectionError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool
from starlette.requests import Request

from affilify.admission import Admission, build_admission
from affilify.auth import TokenService, hash_password
from affilify.config import Settings
from affilify.database import Base, create_session_factory
from affilify.main import create_app
from affilify.models import PlanTier, User
from affilify.services.window_store import MemoryWindowStore
from affilify.users import SqlUserStore

TEST_SECRET = "test-secret-key-0123456789abcdef-0123456789"
TEST_PASSWORD = "correct-horse-battery"


# =============================================================================
# Time & Redis Doubles
# =============================================================================


class FakeClock:
    """Manually advanced unix clock."""

    def __init__(self, start: float = 1_700_000_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeRedis:
    """In-process double for the redis.asyncio calls the window store makes."""

    def __init__(self, clock: FakeClock):
        self._clock = clock
        self._data: dict[str, list] = {}  # key -> [value, expires_at or None]
        self.closed = False

    def _live(self, key: str) -> Optional[list]:
        entry = self._data.get(key)
        if entry is None:
            return None
        if entry[1] is not None and self._clock() >= entry[1]:
            del self._data[key]
            return None
        return entry

    def _pttl(self, entry: Optional[list]) -> int:
        if entry is None:
            return -2
        if entry[1] is None:
            return -1
        return int((entry[1] - self._clock()) * 1000)

    async def get(self, key):
        entry = self._live(key)
        return entry[0] if entry else None

    async def pttl(self, key):
        return self._pttl(self._live(key))

    async def set(self, key, value, px=None):
        expires_at = self._clock() + px / 1000 if px else None
        self._data[key] = [str(value), expires_at]
        return True

    async def eval(self, script, numkeys, key, window_ms):
        entry = self._live(key)
        if entry is None:
            entry = ["0", None]
            self._data[key] = entry
        entry[0] = str(int(entry[0]) + 1)
        if entry[1] is None:
            entry[1] = self._clock() + int(window_ms) / 1000
        return [int(entry[0]), self._pttl(entry)]

    async def ping(self):
        return True

    async def aclose(self):
        self.closed = True


class UnreachableRedis:
    """Every call fails the way a dropped connection does."""

    async def _fail(self, *args, **kwargs):
        raise RedisConnectionError("Error 111 connecting to localhost:6379. Connection refused.")

    get = pttl = set = eval = ping = _fail

    async def aclose(self):
        pass


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def fake_redis(clock) -> FakeRedis:
    return FakeRedis(clock)


@pytest.fixture
def unreachable_redis() -> UnreachableRedis:
    return UnreachableRedis()


# =============================================================================
# Request Fixtures
# =============================================================================


@pytest.fixture
def make_request():
    """Build a bare Starlette request with the given headers and peer address."""

    def _make(
        headers: Optional[dict] = None,
        client: Optional[tuple] = ("203.0.113.7", 51000),
        path: str = "/api/test",
        method: str = "GET",
    ) -> Request:
        raw_headers = [
            (name.lower().encode("latin-1"), value.encode("latin-1"))
            for name, value in (headers or {}).items()
        ]
        scope = {
            "type": "http",
            "http_version": "1.1",
            "method": method,
            "scheme": "http",
            "path": path,
            "raw_path": path.encode(),
            "root_path": "",
            "query_string": b"",
            "headers": raw_headers,
            "client": client,
            "server": ("testserver", 80),
        }
        return Request(scope)

    return _make


# =============================================================================
# Settings & Token Fixtures
# =============================================================================


@pytest.fixture
def settings() -> Settings:
    return Settings(
        _env_file=None,
        ENVIRONMENT="test",
        DATABASE_URL="sqlite+aiosqlite://",
        JWT_SECRET_KEY=TEST_SECRET,
    )


@pytest.fixture
def tokens(settings) -> TokenService:
    return TokenService.from_settings(settings)


@pytest.fixture(scope="session")
def password_hash() -> str:
    return hash_password(TEST_PASSWORD)


# =============================================================================
# Database Fixtures
# =============================================================================


@pytest_asyncio.fixture
async def db_engine():
    """In-memory SQLite shared by every session of one test."""
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
async def session_factory(db_engine) -> async_sessionmaker[AsyncSession]:
    return create_session_factory(db_engine)


@pytest_asyncio.fixture
async def users(session_factory, password_hash) -> dict[str, User]:
    """One account per plan, keyed by plan value. Only basic is unverified."""
    created = {}
    async with session_factory() as session:
        for plan in PlanTier:
            user = User(
                id=uuid.uuid4(),
                email=f"{plan.value}@example.com",
                full_name=f"{plan.value.title()} User",
                password_hash=password_hash,
                plan=plan,
                is_verified=plan is not PlanTier.BASIC,
            )
            session.add(user)
            created[plan.value] = user
        await session.commit()
    return created


@pytest.fixture
def user_store(session_factory) -> SqlUserStore:
    return SqlUserStore(session_factory)


# =============================================================================
# API Fixtures
# =============================================================================


class StubGenerator:
    """Website generator that records calls instead of calling an LLM."""

    def __init__(self):
        self.calls = []

    async def generate(self, product_url, principal, language=None):
        self.calls.append((product_url, principal.id, language))
        return {"slug": "demo-product", "title": "Demo Product", "source": product_url}


@pytest.fixture
def generator() -> StubGenerator:
    return StubGenerator()


@pytest.fixture
def admission(settings, user_store, clock) -> Admission:
    store = MemoryWindowStore(clock=clock)
    return build_admission(settings, user_store, store=store, clock=clock)


@pytest_asyncio.fixture
async def app(settings, session_factory, admission, generator, users) -> FastAPI:
    """Create test FastAPI application."""
    return create_app(
        settings,
        session_factory=session_factory,
        admission=admission,
        website_generator=generator,
    )


@pytest_asyncio.fixture
async def client(app: FastAPI) -> AsyncGenerator[AsyncClient, None]:
    """Create test HTTP client."""
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac


@pytest.fixture
def bearer(tokens, users):
    """Authorization header for the account on ``plan``."""

    def _bearer(plan: str = "free") -> dict[str, str]:
        user = users[plan]
        return {"Authorization": f"Bearer {tokens.issue(str(user.id), user.email)}"}

    return _bearer


@pytest.fixture
def password() -> str:
    """Plaintext password of every account in ``users``."""
    return TEST_PASSWORD
