"""Test fixtures — in-memory database, stub agent, HTTP client.

Learn: Testing pattern for async SQLAlchemy + FastAPI:

1. Each test gets its own in-memory SQLite engine (StaticPool keeps the
   single connection alive so every session sees the same database).
2. get_db is overridden to hand out sessions bound to that engine.
3. app.state gets a SessionRegistry backed by StubBackend, so chat tests
   never hit the network and can count how many conversations were opened.

httpx's ASGITransport doesn't run the lifespan, so nothing here touches
the real database file or bootstraps the admin user.
"""

import asyncio
import os

# Must be set before appsec_dashboard.config is imported
os.environ.setdefault("APPSEC_DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("APPSEC_BCRYPT_ROUNDS", "4")
os.environ.setdefault("APPSEC_JWT_SECRET", "test-secret-not-for-production")

import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from appsec_dashboard.agent.backends import (
    AgentBackend,
    AgentConfig,
    AgentContext,
    AgentResponse,
    Capability,
)
from appsec_dashboard.agent.runner import AgentRunner
from appsec_dashboard.db.engine import get_db, init_models
from appsec_dashboard.main import app
from appsec_dashboard.services.session_registry import SessionRegistry


# ─── Stub agent ───────────────────────────────────────────


class StubContext(AgentContext):
    """Echoes messages back and remembers everything it was sent."""

    def __init__(self, backend: "StubBackend", config: AgentConfig):
        self.backend = backend
        self.config = config
        self.received: list[tuple[Capability, str]] = []

    @property
    def turns(self) -> int:
        return len(self.received)

    async def run(self, capability: Capability, message: str) -> AgentResponse:
        if self.backend.delay:
            await asyncio.sleep(self.backend.delay)
        if self.backend.error:
            raise self.backend.error
        self.received.append((capability, message))
        text = self.backend.reply if self.backend.reply is not None else f"echo: {message}"
        return AgentResponse(text=text, capability=capability)


class StubBackend(AgentBackend):
    """Agent backend that counts conversations instead of calling an API."""

    def __init__(self):
        self.contexts: list[StubContext] = []
        self.configured = True
        self.reply = None
        self.error = None
        self.delay = 0.0

    @property
    def name(self) -> str:
        return "stub"

    @property
    def creations(self) -> int:
        return len(self.contexts)

    def validate_environment(self) -> tuple[bool, str]:
        if not self.configured:
            return False, "ANTHROPIC_API_KEY is not set or is empty."
        return True, "ok"

    async def create_context(self, config: AgentConfig) -> AgentContext:
        # Yield so concurrent first messages actually interleave
        await asyncio.sleep(0.01)
        context = StubContext(self, config)
        self.contexts.append(context)
        return context


# ─── Fixtures ─────────────────────────────────────────────


@pytest_asyncio.fixture()
async def db_engine():
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    await init_models(engine)
    yield engine
    await engine.dispose()


@pytest_asyncio.fixture()
async def session_factory(db_engine):
    return async_sessionmaker(db_engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture()
async def db_session(session_factory):
    async with session_factory() as session:
        yield session


@pytest_asyncio.fixture()
async def stub_backend():
    return StubBackend()


@pytest_asyncio.fixture()
async def registry(stub_backend):
    return SessionRegistry(stub_backend)


@pytest_asyncio.fixture()
async def client(session_factory, registry):
    """HTTP client against the real app with test DB and stub agent."""

    async def override_get_db():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db
    app.state.session_registry = registry
    app.state.agent_runner = AgentRunner(timeout_seconds=5)

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()
