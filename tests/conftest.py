"""
Test infrastructure for the Zomp API.

Strategy
--------
- Required settings are placed in the environment before any ``zomp``
  module is imported; the session store is the in-process memory backend
  so no Redis instance is needed.
- SQLite in-memory via aiosqlite with StaticPool stands in for Postgres;
  all async tasks share the one in-memory connection.
- The app's get_db dependency is overridden so every test-time request uses
  the test session factory rather than the production one.
- All tables are created fresh before each test and dropped after.
- Outbound email is replaced by a recorder, so tests can assert which
  messages a request triggered.
- Each logged-in principal gets its own httpx.AsyncClient; the client's
  cookie jar carries that principal's session between requests.
"""
import os

os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("SECRET_KEY", "test-secret-key")
os.environ["SESSION_BACKEND"] = "memory"
os.environ["REQUIRE_VERIFIED"] = "true"
os.environ["BCRYPT_ROUNDS"] = "4"
os.environ["SMTP_HOST"] = ""

import uuid  # noqa: E402

import pytest  # noqa: E402
import pytest_asyncio  # noqa: E402
from httpx import ASGITransport, AsyncClient  # noqa: E402
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine  # noqa: E402
from sqlalchemy.pool import StaticPool  # noqa: E402

from zomp import mailer  # noqa: E402
from zomp.database import Base, get_db  # noqa: E402
from zomp.main import app  # noqa: E402
from zomp.middleware import install_query_counter  # noqa: E402
from zomp.models import Comic, Story, User, utcnow  # noqa: E402
from zomp.security import hash_password  # noqa: E402
from zomp.sessions import session_store  # noqa: E402

# ---------------------------------------------------------------------------
# Test database engine: SQLite in-memory with aiosqlite
# ---------------------------------------------------------------------------

TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"

engine_test = create_async_engine(
    TEST_DATABASE_URL,
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)

install_query_counter(engine_test)

async_session_test = async_sessionmaker(
    engine_test,
    class_=AsyncSession,
    expire_on_commit=False,
)

DEFAULT_PASSWORD = "correct horse battery staple"


# ---------------------------------------------------------------------------
# Dependency override: replace production get_db with the test session factory
# ---------------------------------------------------------------------------

async def override_get_db():
    async with async_session_test() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


app.dependency_overrides[get_db] = override_get_db


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------

@pytest_asyncio.fixture(autouse=True)
async def setup_db():
    """Create all tables before each test, drop after to guarantee isolation."""
    session_store.clear()
    async with engine_test.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield
    async with engine_test.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)


@pytest.fixture
def sent_emails(monkeypatch) -> list[tuple[str, str]]:
    """Record outbound email as ``(recipient, subject)`` instead of sending it."""
    sent: list[tuple[str, str]] = []

    async def fake_send_email(to_addr, subject, text_body, html_body):
        sent.append((to_addr, subject))
        return True

    monkeypatch.setattr(mailer, "send_email", fake_send_email)
    return sent


@pytest_asyncio.fixture
async def db_session() -> AsyncSession:
    """Yield a live AsyncSession for seeding data and asserting stored state."""
    async with async_session_test() as session:
        yield session


def _client() -> AsyncClient:
    transport = ASGITransport(app=app)
    return AsyncClient(transport=transport, base_url="http://test")


@pytest_asyncio.fixture
async def async_client() -> AsyncClient:
    """An anonymous client."""
    async with _client() as client:
        yield client


@pytest_asyncio.fixture
async def make_user():
    """
    Factory: ``await make_user(verified=True)`` stores a principal and
    returns ``(user_id, email, password)``.
    """

    async def _make(verified: bool = True, username: str | None = None, email: str | None = None):
        suffix = uuid.uuid4().hex[:10]
        username = username or f"user_{suffix}"
        email = email or f"{username}@example.com"
        async with async_session_test() as session:
            user = User(
                username=username,
                email=email.lower(),
                password_hash=hash_password(DEFAULT_PASSWORD),
                verified=verified,
            )
            session.add(user)
            await session.commit()
            return user.id, user.email, DEFAULT_PASSWORD

    return _make


@pytest_asyncio.fixture
async def login_client():
    """
    Factory: ``await login_client(make_user_result)`` returns a client
    already logged in as that principal. Clients are closed at teardown.
    """
    clients: list[AsyncClient] = []

    async def _login(user) -> AsyncClient:
        _, email, password = user
        client = _client()
        clients.append(client)
        resp = await client.post("/account/login", json={"email": email, "password": password})
        assert resp.status_code == 200, resp.text
        return client

    yield _login
    for client in clients:
        await client.aclose()


@pytest_asyncio.fixture
async def make_resource():
    """
    Factory: ``await make_resource("comic", author_id, published=True)``
    stores a resource directly and returns its id.
    """
    models = {"comic": Comic, "story": Story}

    async def _make(kind: str, author_id: str, published: bool = False) -> str:
        async with async_session_test() as session:
            resource = models[kind](
                title=f"Test {kind}",
                author_id=author_id,
                tags=[],
                published_at=utcnow() if published else None,
            )
            session.add(resource)
            await session.commit()
            return resource.id

    return _make


@pytest.fixture
def fetch():
    """``await fetch(Model, id)`` loads a fresh copy of a stored row, or None."""

    async def _fetch(model, object_id):
        async with async_session_test() as session:
            return await session.get(model, object_id)

    return _fetch
