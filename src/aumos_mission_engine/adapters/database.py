"""Async engine lifecycle for the two embedded databases.

The mission ledger and the audit trail use separate engines and separate
database files. Only AuditTrailService writes to the audit engine.

Key exports:
- init_ledger_db(url): create the ledger engine and its tables
- init_audit_db(url): create the audit engine and its tables
- close_databases(): dispose every engine (shutdown)
"""

from pathlib import Path

from sqlalchemy import MetaData
from sqlalchemy.engine import make_url
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from aumos_mission_engine.adapters.orm import AuditBase, LedgerBase
from aumos_mission_engine.observability import get_logger

logger = get_logger(__name__)

LEDGER_DB = "ledger"
AUDIT_DB = "audit"

# Module-level engines, keyed by database name
_engines: dict[str, AsyncEngine] = {}


def _ensure_sqlite_parent(url: str) -> None:
    parsed = make_url(url)
    if parsed.get_backend_name() != "sqlite":
        return
    database = parsed.database
    if database and database != ":memory:" and not database.startswith("file:"):
        Path(database).parent.mkdir(parents=True, exist_ok=True)


async def create_engine_with_schema(
    url: str, metadata: MetaData
) -> tuple[AsyncEngine, async_sessionmaker[AsyncSession]]:
    """Create an async engine, create missing tables, and return it with a session factory.

    Args:
        url: SQLAlchemy async URL (e.g. ``sqlite+aiosqlite:///path/ledger.db``).
        metadata: Declarative metadata whose tables must exist.

    Returns:
        The engine and a session factory bound to it.
    """
    _ensure_sqlite_parent(url)
    # Echo off: audit rows must never reach the logs
    engine = create_async_engine(url, echo=False)
    async with engine.begin() as conn:
        await conn.run_sync(metadata.create_all)
    factory = async_sessionmaker(bind=engine, class_=AsyncSession, expire_on_commit=False, autoflush=False)
    return engine, factory


async def _init(name: str, url: str, metadata: MetaData) -> async_sessionmaker[AsyncSession]:
    if name in _engines:
        await _engines.pop(name).dispose()
    logger.info("Initializing database engine", database=name)
    engine, factory = await create_engine_with_schema(url, metadata)
    _engines[name] = engine
    return factory


async def init_ledger_db(url: str) -> async_sessionmaker[AsyncSession]:
    """Initialize the mission ledger engine. Call once at startup."""
    return await _init(LEDGER_DB, url, LedgerBase.metadata)


async def init_audit_db(url: str) -> async_sessionmaker[AsyncSession]:
    """Initialize the audit engine. Call once at startup."""
    return await _init(AUDIT_DB, url, AuditBase.metadata)


async def close_databases() -> None:
    """Dispose every engine created by init_*_db()."""
    for name in list(_engines):
        logger.info("Disposing database engine", database=name)
        await _engines.pop(name).dispose()
