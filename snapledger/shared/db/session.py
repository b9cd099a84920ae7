"""
Database runtime.

One lazily built async engine and session factory per process. The store runs
on PostgreSQL (asyncpg) in production and on SQLite (aiosqlite) locally and in
tests; everything backend-specific is decided here from ``Settings``.
"""

import ssl
import time
from dataclasses import dataclass
from threading import Lock
from typing import Any, Optional

import structlog
from sqlalchemy import event
from sqlalchemy.engine import URL, Connection, make_url
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import NullPool, StaticPool

import snapledger.models  # noqa: F401  registers every versioned table on Base.metadata
from snapledger.shared.core.config import Settings, get_settings
from snapledger.shared.core.exceptions import ConfigurationError
from snapledger.shared.db.base import Base

logger = structlog.get_logger()

IN_MEMORY_SQLITE_URL = "sqlite+aiosqlite:///:memory:"
SSL_MODES = ("disable", "require", "verify-ca", "verify-full")

_QUERY_STARTS_KEY = "snapledger_query_starts"


def normalize_db_url(raw_url: str) -> Optional[URL]:
    """Parse a configured URL, pinning bare Postgres URLs to the asyncpg driver."""
    raw_url = (raw_url or "").strip()
    if not raw_url:
        return None
    url = make_url(raw_url)
    if url.drivername in {"postgres", "postgresql"}:
        url = url.set(drivername="postgresql+asyncpg")
    return url


def resolve_database_url(settings: Settings) -> URL:
    """
    URL the engine actually connects to.

    Under TESTING a non-SQLite URL is replaced by in-memory SQLite unless
    ALLOW_TEST_DATABASE_URL opts in, so a test run never writes to a real
    inventory database.
    """
    url = normalize_db_url(settings.DATABASE_URL or "")
    if settings.TESTING:
        if url is None:
            return make_url(IN_MEMORY_SQLITE_URL)
        if url.get_backend_name() != "sqlite" and not settings.ALLOW_TEST_DATABASE_URL:
            logger.info("test_database_url_replaced", backend=url.get_backend_name())
            return make_url(IN_MEMORY_SQLITE_URL)
        return url
    if url is None:
        raise ConfigurationError("DATABASE_URL is not set; the version store has nowhere to write.")
    return url


def ssl_connect_args(settings: Settings, url: URL) -> dict[str, Any]:
    mode = (settings.DB_SSL_MODE or "").lower()
    if mode not in SSL_MODES:
        raise ConfigurationError(
            f"Invalid DB_SSL_MODE: {settings.DB_SSL_MODE}. Use one of: {', '.join(SSL_MODES)}"
        )
    ca_cert = settings.DB_SSL_CA_CERT_PATH
    if mode in {"verify-ca", "verify-full"} and not ca_cert:
        raise ConfigurationError(f"DB_SSL_CA_CERT_PATH required for DB_SSL_MODE={mode}")
    if url.get_backend_name() != "postgresql":
        return {}

    if mode == "disable":
        logger.warning("database_ssl_disabled")
        return {"ssl": False}

    if not ca_cert:
        if settings.is_production:
            raise ConfigurationError(
                "DB_SSL_CA_CERT_PATH is mandatory when DB_SSL_MODE=require in production."
            )
        context = ssl.create_default_context()
        context.check_hostname = False
        context.verify_mode = ssl.CERT_NONE
        logger.warning("database_ssl_unverified", mode=mode)
        return {"ssl": context}

    context = ssl.create_default_context(cafile=ca_cert)
    context.verify_mode = ssl.CERT_REQUIRED
    context.check_hostname = mode == "verify-full"
    logger.info("database_ssl_verified", mode=mode, ca_cert=ca_cert)
    return {"ssl": context}


def pool_options(settings: Settings, url: URL) -> dict[str, Any]:
    options: dict[str, Any] = {"echo": settings.DB_ECHO, "pool_pre_ping": True}

    # One shared connection, so in-memory databases survive across sessions.
    if url.get_backend_name() == "sqlite":
        options["poolclass"] = StaticPool
        return options

    options["pool_recycle"] = 60 if settings.TESTING else settings.DB_POOL_RECYCLE
    if settings.DB_USE_NULL_POOL:
        logger.info(
            "database_null_pool_enabled",
            external_pooler=settings.DB_EXTERNAL_POOLER,
        )
        options["poolclass"] = NullPool
        return options

    if settings.TESTING:
        options.update(pool_size=2, max_overflow=2, pool_timeout=5)
    else:
        options.update(
            pool_size=settings.DB_POOL_SIZE,
            max_overflow=settings.DB_MAX_OVERFLOW,
            pool_timeout=settings.DB_POOL_TIMEOUT,
        )
    return options


def create_engine_from_settings(settings: Optional[Settings] = None) -> AsyncEngine:
    settings = settings or get_settings()
    url = resolve_database_url(settings)
    engine = create_async_engine(
        url,
        connect_args=ssl_connect_args(settings, url),
        **pool_options(settings, url),
    )
    event.listen(engine.sync_engine, "before_cursor_execute", before_cursor_execute)
    event.listen(engine.sync_engine, "after_cursor_execute", after_cursor_execute)
    logger.info("database_engine_created", backend=url.get_backend_name())
    return engine


@dataclass
class _Runtime:
    engine: AsyncEngine
    session_factory: async_sessionmaker[AsyncSession]


_runtime: Optional[_Runtime] = None
_runtime_lock = Lock()


def _get_runtime() -> _Runtime:
    global _runtime
    with _runtime_lock:
        if _runtime is None:
            engine = create_engine_from_settings()
            _runtime = _Runtime(
                engine=engine,
                session_factory=async_sessionmaker(
                    engine, class_=AsyncSession, expire_on_commit=False
                ),
            )
        return _runtime


def reset_db_runtime() -> None:
    """Drop the shared engine; the next access rebuilds it from current settings."""
    global _runtime
    with _runtime_lock:
        runtime, _runtime = _runtime, None
    if runtime is not None:
        # Sync disposal so non-async fixtures can call this.
        runtime.engine.sync_engine.dispose()


def get_engine() -> AsyncEngine:
    return _get_runtime().engine


def get_session_factory() -> async_sessionmaker[AsyncSession]:
    return _get_runtime().session_factory


async def create_all(engine: Optional[AsyncEngine] = None) -> None:
    """Create every registered table. Local runs and tests only; no migrations."""
    target = engine or get_engine()
    async with target.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


def before_cursor_execute(
    conn: Connection,
    _cursor: Any,
    _statement: str,
    _parameters: Any,
    _context: Any,
    _executemany: bool,
) -> None:
    conn.info.setdefault(_QUERY_STARTS_KEY, []).append(time.perf_counter())


def after_cursor_execute(
    conn: Connection,
    _cursor: Any,
    statement: str,
    _parameters: Any,
    _context: Any,
    executemany: bool,
) -> None:
    """Log statements slower than DB_SLOW_QUERY_THRESHOLD_SECONDS."""
    starts = conn.info.get(_QUERY_STARTS_KEY)
    if not starts:
        return
    elapsed = time.perf_counter() - starts.pop()
    threshold = get_settings().DB_SLOW_QUERY_THRESHOLD_SECONDS
    if elapsed <= threshold:
        return
    # The ingestion run binds resource_type; attribute the slow write to it.
    run_context = structlog.contextvars.get_contextvars()
    logger.warning(
        "slow_query_detected",
        duration_seconds=round(elapsed, 3),
        threshold_seconds=threshold,
        resource_type=run_context.get("resource_type"),
        executemany=executemany,
        statement=statement if len(statement) <= 200 else statement[:200] + "...",
    )
