"""Hash-chained, append-only audit trail for privileged actions.

Each entry stores the previous entry's hash and its own hash over
``timestamp|actor|host|action|target|result|detail|previous_hash``. The first
entry chains to the fixed marker ``"genesis"``. Any edit to a stored entry
breaks either its own hash or the next entry's linkage, which
``verify_integrity`` detects.

Key exports:
- compute_entry_hash(entry): pure hash function
- AuditTrailService: record / verify_integrity / query
- SqlAuditTrailStore: embedded SQL store
- InMemoryAuditTrailStore: in-process store with the same contract
"""

import asyncio
import hashlib
from datetime import UTC

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from aumos_mission_engine.adapters.orm import AuditEntryRow, to_utc_iso
from aumos_mission_engine.core.context import OperatorContext
from aumos_mission_engine.core.interfaces import IAuditTrailStore
from aumos_mission_engine.core.models import AuditEntry, AuditQuery
from aumos_mission_engine.observability import get_logger

logger = get_logger(__name__)

GENESIS_HASH = "genesis"


def compute_entry_hash(entry: AuditEntry) -> str:
    """SHA-256 over the entry's canonical fields and its previous hash.

    Args:
        entry: A fully populated entry (timestamp, actor and host set).

    Returns:
        Lowercase hex digest.
    """
    if entry.timestamp is None:
        raise ValueError("Audit entry timestamp must be set before hashing")
    payload = "|".join(
        [
            to_utc_iso(entry.timestamp),
            entry.actor or "",
            entry.host or "",
            entry.action,
            entry.target,
            entry.result,
            entry.detail,
            entry.previous_hash,
        ]
    )
    return hashlib.sha256(payload.encode("utf-8")).hexdigest()


class AuditTrailService:
    """Single point of entry for audit trail writes and integrity checks.

    This service has NO update or delete operations. A wrong entry is
    corrected by writing a compensating entry.

    Args:
        store: Append-only persistence.
        context: Operator identity and clock used to fill missing fields.
    """

    def __init__(self, store: IAuditTrailStore, context: OperatorContext) -> None:
        self._store = store
        self._context = context
        self._lock = asyncio.Lock()

    async def record(self, entry: AuditEntry) -> AuditEntry:
        """Chain and append one entry.

        Missing actor, host and timestamp are filled from the operator
        context. ``previous_hash`` and ``entry_hash`` are always computed
        here; values supplied by the caller are ignored. Naive timestamps
        are taken as UTC.

        Args:
            entry: The action to record.

        Returns:
            The persisted entry with id and hashes set.
        """
        async with self._lock:
            timestamp = entry.timestamp or self._context.now()
            if timestamp.tzinfo is None:
                timestamp = timestamp.replace(tzinfo=UTC)
            timestamp = timestamp.astimezone(UTC)
            previous_hash = await self._store.last_entry_hash() or GENESIS_HASH
            chained = entry.model_copy(
                update={
                    "timestamp": timestamp,
                    "actor": entry.actor or self._context.actor,
                    "host": entry.host or self._context.host,
                    "previous_hash": previous_hash,
                }
            )
            chained = chained.model_copy(update={"entry_hash": compute_entry_hash(chained)})
            stored = await self._store.append(chained)

        logger.info(
            "Audit entry recorded",
            audit_id=stored.id,
            action=stored.action,
            target=stored.target,
            result=stored.result,
        )
        return stored

    async def verify_integrity(self) -> bool:
        """Walk the chain oldest to newest and check linkage and hashes.

        Returns:
            True when every entry links to its predecessor and its stored hash
            matches the recomputed one. An empty trail is valid.
        """
        expected_previous = GENESIS_HASH
        for entry in await self._store.list_ascending():
            if entry.previous_hash != expected_previous:
                logger.warning("Audit chain linkage broken", audit_id=entry.id)
                return False
            if compute_entry_hash(entry) != entry.entry_hash:
                logger.warning("Audit entry hash mismatch", audit_id=entry.id)
                return False
            expected_previous = entry.entry_hash
        return True

    async def query(self, query: AuditQuery | None = None) -> list[AuditEntry]:
        """Filter entries by action, target substring and time range, newest first."""
        return await self._store.query(query or AuditQuery())


# ---------------------------------------------------------------------------
# Stores
# ---------------------------------------------------------------------------


def _row_to_entry(row: AuditEntryRow) -> AuditEntry:
    return AuditEntry(
        id=row.id,
        timestamp=row.timestamp,
        actor=row.actor,
        host=row.host,
        action=row.action,
        target=row.target,
        result=row.result,
        detail=row.detail,
        previous_hash=row.previous_hash,
        entry_hash=row.entry_hash,
    )


class SqlAuditTrailStore:
    """Append-only audit store on the audit database.

    It has no update() or delete() methods. Each append commits in its own
    transaction.

    Args:
        session_factory: Session factory bound to the audit engine.
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def append(self, entry: AuditEntry) -> AuditEntry:
        row = AuditEntryRow(
            timestamp=entry.timestamp,
            actor=entry.actor or "",
            host=entry.host or "",
            action=entry.action,
            target=entry.target,
            result=entry.result,
            detail=entry.detail,
            previous_hash=entry.previous_hash,
            entry_hash=entry.entry_hash,
        )
        async with self._session_factory() as session:
            async with session.begin():
                session.add(row)
                await session.flush()
                entry_id = row.id
        return entry.model_copy(update={"id": entry_id})

    async def last_entry_hash(self) -> str | None:
        stmt = select(AuditEntryRow.entry_hash).order_by(AuditEntryRow.id.desc()).limit(1)
        async with self._session_factory() as session:
            result = await session.execute(stmt)
            return result.scalar_one_or_none()

    async def list_ascending(self) -> list[AuditEntry]:
        async with self._session_factory() as session:
            result = await session.execute(select(AuditEntryRow).order_by(AuditEntryRow.id.asc()))
            return [_row_to_entry(row) for row in result.scalars().all()]

    async def query(self, query: AuditQuery) -> list[AuditEntry]:
        stmt = select(AuditEntryRow)
        if query.action:
            stmt = stmt.where(AuditEntryRow.action == query.action)
        if query.target:
            stmt = stmt.where(AuditEntryRow.target.contains(query.target, autoescape=True))
        if query.start:
            stmt = stmt.where(AuditEntryRow.timestamp >= query.start)
        if query.end:
            stmt = stmt.where(AuditEntryRow.timestamp <= query.end)
        stmt = stmt.order_by(AuditEntryRow.id.desc()).limit(query.limit)

        async with self._session_factory() as session:
            result = await session.execute(stmt)
            return [_row_to_entry(row) for row in result.scalars().all()]


class InMemoryAuditTrailStore:
    """In-process audit store with the same append-only contract as SqlAuditTrailStore."""

    def __init__(self) -> None:
        self._entries: list[AuditEntry] = []

    async def append(self, entry: AuditEntry) -> AuditEntry:
        stored = entry.model_copy(update={"id": len(self._entries) + 1})
        self._entries.append(stored)
        return stored

    async def last_entry_hash(self) -> str | None:
        return self._entries[-1].entry_hash if self._entries else None

    async def list_ascending(self) -> list[AuditEntry]:
        return list(self._entries)

    async def query(self, query: AuditQuery) -> list[AuditEntry]:
        matches = [
            entry
            for entry in reversed(self._entries)
            if (not query.action or entry.action == query.action)
            and (not query.target or query.target in entry.target)
            and (query.start is None or (entry.timestamp is not None and entry.timestamp >= query.start))
            and (query.end is None or (entry.timestamp is not None and entry.timestamp <= query.end))
        ]
        return matches[: query.limit]
