"""Pytest configuration.

Settings come from the environment, so minimal test defaults are set here
before anything under knowscope is imported.

Most tests run against `InMemoryKnowledgeStore`, a fake of the record store
contract. Tests that need the SQL store use the `pg_session` fixture, which
skips when PostgreSQL is not reachable.
"""

import os


os.environ.setdefault("APP_NAME", "Knowscope")
os.environ.setdefault("APP_ENV", "test")
os.environ.setdefault("API_PREFIX", "/api/v1")
# pydantic-settings parses List[str] from env/.env as JSON; force a safe value
# to keep tests import-safe regardless of local developer .env contents.
os.environ["CORS_ORIGINS"] = "[]"

_run_pg = os.environ.get("RUN_POSTGRES_TESTS", "").lower() in {"1", "true", "yes"}
_pg_host = os.environ.get("POSTGRES_TEST_HOST") or "localhost"
_pg_port = os.environ.get("POSTGRES_TEST_PORT") or "5432"
_pg_user = os.environ.get("POSTGRES_TEST_USER") or "knowscope"
_pg_password = os.environ.get("POSTGRES_TEST_PASSWORD") or "knowscope_dev_password"
_pg_db = os.environ.get("POSTGRES_TEST_DB") or "knowscope_test"

os.environ.setdefault(
    "TEST_DATABASE_URL",
    f"postgresql+asyncpg://{_pg_user}:{_pg_password}@{_pg_host}:{_pg_port}/{_pg_db}",
)
os.environ.setdefault(
    "TEST_DATABASE_URL_SYNC",
    f"postgresql://{_pg_user}:{_pg_password}@{_pg_host}:{_pg_port}/{_pg_db}",
)

import asyncio
from datetime import datetime, timedelta, timezone
from typing import AsyncGenerator, Optional
from urllib.parse import urlparse
from uuid import uuid4

import pytest
import pytest_asyncio
from httpx import AsyncClient, ASGITransport
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool

from knowscope.api.v1.dependencies import get_knowledge_service
from knowscope.core.config import settings
from knowscope.core.exceptions import (
    KnowledgeConflictError,
    KnowledgeNotFoundError,
    StoreUnavailableError,
)
from knowscope.main import app
from knowscope.models import Base
from knowscope.models.base import utc_now
from knowscope.schemas.knowledge import (
    ActivationScope,
    KnowledgeItem,
    ScopeLevel,
    SystemScope,
    TenantScope,
)
from knowscope.services.knowledge_scope_service import KnowledgeScopeService
from knowscope.services.knowledge_store import KnowledgeRecordStore


TENANT_ID = "tenant-acme"
OTHER_TENANT_ID = "tenant-globex"
AGENT = "support-bot"


class InMemoryKnowledgeStore(KnowledgeRecordStore):
    """Record store fake with the same slot uniqueness and revision rules as the SQL store."""

    def __init__(self):
        self.items: dict[str, KnowledgeItem] = {}
        self.revisions: dict[str, list[KnowledgeItem]] = {}
        self.max_revisions: dict[str, int] = {}
        self.unavailable = False
        self.calls: list[str] = []

    def _check(self, operation: str) -> None:
        self.calls.append(operation)
        if self.unavailable:
            raise StoreUnavailableError(
                f"Knowledge store unavailable during {operation}",
                details={"operation": operation},
            )

    def seed(self, item: KnowledgeItem) -> KnowledgeItem:
        """Add an item directly, skipping the slot check."""
        self.items[item.id] = item
        self.revisions[item.id] = [item]
        self.max_revisions[item.id] = int(item.version)
        return item

    async def list(self, tenant_id, agent_name, activation_name=None):
        self._check("list")
        visible = []
        for item in self.items.values():
            if item.agent != agent_name:
                continue
            if item.level == ScopeLevel.SYSTEM:
                visible.append(item)
            elif item.tenant_id != tenant_id:
                continue
            elif item.level == ScopeLevel.TENANT:
                visible.append(item)
            elif activation_name and item.activation_name == activation_name:
                visible.append(item)
        return visible

    async def get(self, item_id):
        self._check("get")
        return self.items.get(item_id)

    async def insert(self, item):
        self._check("insert")
        for existing in self.items.values():
            if (existing.agent, existing.name, existing.scope.key) == (item.agent, item.name, item.scope.key):
                raise KnowledgeConflictError(
                    "A knowledge item already occupies this tier",
                    details={"operation": "insert"},
                )
        return self.seed(item)

    async def update_content(self, item_id, content, expected_version=None):
        self._check("update_content")
        current = self.items.get(item_id)
        if current is None:
            raise KnowledgeNotFoundError("Knowledge item not found", details={"item_id": item_id})
        if expected_version is not None and expected_version != current.version:
            raise KnowledgeConflictError(
                "Knowledge item changed since it was loaded",
                details={"item_id": item_id, "expected": expected_version, "current": current.version},
            )
        self.max_revisions[item_id] += 1
        version = str(self.max_revisions[item_id])
        updated = current.model_copy(update={"content": content, "version": version, "updated_at": utc_now()})
        self.items[item_id] = updated
        self.revisions[item_id].append(updated)
        return updated

    async def revert_to_previous(self, item_id):
        self._check("revert_to_previous")
        if item_id not in self.items:
            raise KnowledgeNotFoundError("Knowledge item not found", details={"item_id": item_id})
        history = self.revisions[item_id]
        history.pop()
        if not history:
            del self.items[item_id]
            del self.revisions[item_id]
            del self.max_revisions[item_id]
            return None
        self.items[item_id] = history[-1]
        return history[-1]

    async def delete_one(self, item_id):
        self._check("delete_one")
        self.items.pop(item_id, None)
        self.revisions.pop(item_id, None)
        self.max_revisions.pop(item_id, None)

    async def delete_by_name_and_tier(self, agent_name, name, scope):
        self._check("delete_by_name_and_tier")
        doomed = [
            item_id
            for item_id, item in self.items.items()
            if item.agent == agent_name and item.name == name and item.scope.key == scope.key
        ]
        for item_id in doomed:
            del self.items[item_id]
            del self.revisions[item_id]
            del self.max_revisions[item_id]
        return len(doomed)


def build_item(
    name: str = "policy",
    level: str = "system",
    tenant_id: Optional[str] = TENANT_ID,
    activation_name: Optional[str] = None,
    content: str = "Refunds within 30 days.",
    type: str = "markdown",
    agent: str = AGENT,
    version: str = "1",
    updated_at: Optional[datetime] = None,
    item_id: Optional[str] = None,
) -> KnowledgeItem:
    if level == "system":
        scope = SystemScope()
    elif level == "tenant":
        scope = TenantScope(tenant_id=tenant_id)
    else:
        scope = ActivationScope(tenant_id=tenant_id, activation_name=activation_name)
    stamp = updated_at or datetime(2026, 1, 1, tzinfo=timezone.utc)
    return KnowledgeItem(
        id=item_id or str(uuid4()),
        name=name,
        type=type,
        content=content,
        version=version,
        agent=agent,
        scope=scope,
        created_at=stamp - timedelta(days=1),
        updated_at=stamp,
    )


@pytest.fixture
def make_item():
    """Factory for KnowledgeItem snapshots; defaults to a system-tier `policy` article."""
    return build_item


@pytest.fixture
def store() -> InMemoryKnowledgeStore:
    return InMemoryKnowledgeStore()


@pytest.fixture
def service(store) -> KnowledgeScopeService:
    return KnowledgeScopeService(store)


@pytest_asyncio.fixture
async def client(store) -> AsyncGenerator[AsyncClient, None]:
    """HTTP client whose knowledge service runs on the in-memory store."""

    app.dependency_overrides[get_knowledge_service] = lambda: KnowledgeScopeService(store)

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()


async def _can_connect_to_postgres(url: str, timeout_seconds: float = 1.0) -> bool:
    try:
        parsed = urlparse(url.replace("postgresql+asyncpg://", "postgresql://", 1))
        reader, writer = await asyncio.wait_for(
            asyncio.open_connection(parsed.hostname or "localhost", parsed.port or 5432),
            timeout=timeout_seconds,
        )
        writer.close()
        await writer.wait_closed()
        return True
    except (OSError, asyncio.TimeoutError):
        return False


async def _require_postgres_or_skip(url: str) -> None:
    if await _can_connect_to_postgres(url):
        return

    message = (
        "Postgres is not reachable for integration tests. "
        "Start it or point TEST_DATABASE_URL at a running instance."
    )
    if _run_pg:
        pytest.fail(f"RUN_POSTGRES_TESTS=1 but {message}")
    pytest.skip(message)


@pytest_asyncio.fixture
async def pg_engine():
    """Engine on the test database with fresh knowledge tables."""
    await _require_postgres_or_skip(settings.DATABASE_URL)

    engine = create_async_engine(settings.DATABASE_URL, echo=False, poolclass=NullPool)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await engine.dispose()


@pytest_asyncio.fixture
async def pg_session(pg_engine) -> AsyncGenerator[AsyncSession, None]:
    session_factory = async_sessionmaker(pg_engine, class_=AsyncSession, expire_on_commit=False)
    async with session_factory() as session:
        yield session
