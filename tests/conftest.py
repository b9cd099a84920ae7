"""
Global pytest fixtures for the snapledger test suite.

Provides:
- Temporary-file SQLite engine with every table created
- Session factory / session fixtures
- A TransactionCoordinator bound to the test engine
- Snapshot factories for the bundled GCP resource types
"""
import os
from datetime import datetime, timezone
from typing import AsyncGenerator

# Set test environment BEFORE any snapledger imports
os.environ["TESTING"] = "true"
os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///:memory:"
os.environ["DB_SSL_MODE"] = "disable"  # Disable SSL for tests
os.environ.setdefault("ENVIRONMENT", "development")

import pytest
import pytest_asyncio

# Register ORM mappings before metadata.create_all.
import snapledger.models  # noqa: F401, E402


T0 = datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc)


# ============================================================================
# Async Database Fixtures
# ============================================================================

@pytest_asyncio.fixture
async def async_engine(tmp_path):
    """Create async SQLite engine for testing using a temporary file."""
    from sqlalchemy.ext.asyncio import create_async_engine
    from snapledger.shared.db.session import create_all

    db_file = tmp_path / "snapledger_test.sqlite"
    engine = create_async_engine(f"sqlite+aiosqlite:///{db_file}", echo=False)
    await create_all(engine)
    yield engine
    await engine.dispose()


@pytest_asyncio.fixture
async def session_factory(async_engine):
    from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

    return async_sessionmaker(
        async_engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )


@pytest_asyncio.fixture
async def db_session(session_factory) -> AsyncGenerator:
    """Provide an async session; uncommitted work is rolled back afterwards."""
    async with session_factory() as session:
        try:
            yield session
        finally:
            await session.rollback()
            await session.close()


@pytest_asyncio.fixture
async def coordinator(session_factory):
    from snapledger.modules.ingestion.domain.transaction import TransactionCoordinator

    return TransactionCoordinator(session_factory=session_factory)


@pytest.fixture(autouse=True)
def _fresh_settings():
    """Settings are cached; drop the cache so env patches in one test stay local."""
    from snapledger.shared.core.config import get_settings

    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


# ============================================================================
# Snapshot factories
# ============================================================================

@pytest.fixture
def firewall_snapshot():
    from snapledger.modules.ingestion.domain.snapshot import CanonicalSnapshot

    def _make(
        resource_id: str = "1001",
        collected_at: datetime = T0,
        project_id: str = "proj-a",
        allowed=None,
        denied=None,
        **overrides,
    ) -> CanonicalSnapshot:
        attributes = {
            "name": f"fw-{resource_id}",
            "description": None,
            "self_link": None,
            "creation_timestamp": None,
            "network": "global/networks/default",
            "priority": 1000,
            "direction": "INGRESS",
            "disabled": False,
            "project_id": project_id,
            "source_ranges_json": ["0.0.0.0/0"],
            "destination_ranges_json": None,
            "source_tags_json": None,
            "target_tags_json": None,
            "source_service_accounts_json": None,
            "target_service_accounts_json": None,
            "log_config_json": None,
        }
        attributes.update(overrides)
        return CanonicalSnapshot(
            resource_id=resource_id,
            attributes=attributes,
            collected_at=collected_at,
            children={
                "allowed": allowed if allowed is not None else [
                    {"ip_protocol": "tcp", "ports_json": ["22"]}
                ],
                "denied": denied or [],
            },
        )

    return _make


@pytest.fixture
def policy_snapshot():
    from snapledger.modules.ingestion.domain.snapshot import CanonicalSnapshot

    def _make(
        project_id: str = "proj-a",
        etag: str = "v1",
        collected_at: datetime = T0,
        bindings=None,
    ) -> CanonicalSnapshot:
        return CanonicalSnapshot(
            resource_id=f"projects/{project_id}",
            attributes={
                "resource_name": f"projects/{project_id}",
                "etag": etag,
                "version": 1,
                "project_id": project_id,
            },
            collected_at=collected_at,
            children={"bindings": bindings or []},
        )

    return _make
