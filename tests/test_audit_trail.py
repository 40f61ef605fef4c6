"""Tests for the hash-chained audit trail."""

from datetime import UTC, datetime, timedelta

import pytest
from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from aumos_mission_engine.adapters.audit_trail import (
    GENESIS_HASH,
    AuditTrailService,
    InMemoryAuditTrailStore,
    SqlAuditTrailStore,
    compute_entry_hash,
)
from aumos_mission_engine.adapters.orm import AuditEntryRow
from aumos_mission_engine.core.context import FixedClock, OperatorContext
from aumos_mission_engine.core.models import AuditEntry, AuditQuery

from tests.conftest import FIXED_NOW


def _entry(action: str = "orchestrate", target: str = "/bundles/b1", result: str = "success") -> AuditEntry:
    return AuditEntry(action=action, target=target, result=result, detail="detail")


class TestComputeEntryHash:
    """Pure hash function."""

    def test_hash_is_stable_for_equal_inputs(self) -> None:
        entry = _entry().model_copy(
            update={"timestamp": FIXED_NOW, "actor": "a", "host": "h", "previous_hash": GENESIS_HASH}
        )
        assert compute_entry_hash(entry) == compute_entry_hash(entry.model_copy())
        assert len(compute_entry_hash(entry)) == 64

    def test_hash_changes_with_any_field(self) -> None:
        entry = _entry().model_copy(
            update={"timestamp": FIXED_NOW, "actor": "a", "host": "h", "previous_hash": GENESIS_HASH}
        )
        assert compute_entry_hash(entry) != compute_entry_hash(entry.model_copy(update={"detail": "other"}))
        assert compute_entry_hash(entry) != compute_entry_hash(entry.model_copy(update={"previous_hash": "x"}))

    def test_missing_timestamp_is_rejected(self) -> None:
        with pytest.raises(ValueError):
            compute_entry_hash(_entry())


class TestInMemoryChain:
    """Chaining and tamper detection on the in-memory store."""

    @pytest.mark.asyncio()
    async def test_first_entry_chains_to_genesis_and_fills_context(self, audit_service: AuditTrailService) -> None:
        first = await audit_service.record(_entry())
        second = await audit_service.record(_entry(action="break-glass"))

        assert first.previous_hash == GENESIS_HASH
        assert first.actor == "tester"
        assert first.host == "test-host"
        assert first.timestamp == FIXED_NOW
        assert second.previous_hash == first.entry_hash
        assert await audit_service.verify_integrity()

    @pytest.mark.asyncio()
    async def test_caller_supplied_hashes_are_ignored(self, audit_service: AuditTrailService) -> None:
        stored = await audit_service.record(_entry().model_copy(update={"previous_hash": "forged", "entry_hash": "x"}))
        assert stored.previous_hash == GENESIS_HASH
        assert stored.entry_hash == compute_entry_hash(stored)

    @pytest.mark.asyncio()
    async def test_empty_trail_is_valid(self, audit_service: AuditTrailService) -> None:
        assert await audit_service.verify_integrity()

    @pytest.mark.asyncio()
    async def test_edited_detail_breaks_integrity(
        self, audit_service: AuditTrailService, memory_audit_store: InMemoryAuditTrailStore
    ) -> None:
        for _ in range(3):
            await audit_service.record(_entry())
        memory_audit_store._entries[1] = memory_audit_store._entries[1].model_copy(update={"detail": "tampered"})

        assert not await audit_service.verify_integrity()

    @pytest.mark.asyncio()
    async def test_rehashed_edit_still_breaks_next_link(
        self, audit_service: AuditTrailService, memory_audit_store: InMemoryAuditTrailStore
    ) -> None:
        for _ in range(3):
            await audit_service.record(_entry())
        edited = memory_audit_store._entries[0].model_copy(update={"result": "failure"})
        memory_audit_store._entries[0] = edited.model_copy(update={"entry_hash": compute_entry_hash(edited)})

        assert not await audit_service.verify_integrity()


class TestQuery:
    """Filtering by action, target substring and time range."""

    @pytest.mark.asyncio()
    async def test_filters_by_action_and_target(self, audit_service: AuditTrailService) -> None:
        await audit_service.record(_entry(action="break-glass", target="/bundles/alpha"))
        await audit_service.record(_entry(action="orchestrate", target="/bundles/alpha"))
        await audit_service.record(_entry(action="break-glass", target="/bundles/beta"))

        hits = await audit_service.query(AuditQuery(action="break-glass", target="alpha"))
        assert [(e.action, e.target) for e in hits] == [("break-glass", "/bundles/alpha")]

    @pytest.mark.asyncio()
    async def test_newest_first_with_limit(self, audit_service: AuditTrailService) -> None:
        for index in range(3):
            await audit_service.record(_entry(target=f"/bundles/{index}"))

        hits = await audit_service.query(AuditQuery(limit=2))
        assert [e.target for e in hits] == ["/bundles/2", "/bundles/1"]

    @pytest.mark.asyncio()
    async def test_time_range(self, audit_service: AuditTrailService, fixed_clock: FixedClock) -> None:
        await audit_service.record(_entry(target="early"))
        fixed_clock.advance(timedelta(hours=2))
        await audit_service.record(_entry(target="late"))

        hits = await audit_service.query(AuditQuery(start=FIXED_NOW + timedelta(hours=1)))
        assert [e.target for e in hits] == ["late"]

    def test_naive_query_bounds_are_treated_as_utc(self) -> None:
        query = AuditQuery(start=datetime(2026, 3, 1, 12, 0))
        assert query.start == datetime(2026, 3, 1, 12, 0, tzinfo=UTC)

    @pytest.mark.asyncio()
    async def test_naive_entry_timestamp_is_stored_as_utc(self, audit_service: AuditTrailService) -> None:
        naive = datetime(2026, 3, 1, 12, 0)
        await audit_service.record(_entry(target="naive").model_copy(update={"timestamp": naive}))

        hits = await audit_service.query(AuditQuery(start=datetime(2026, 3, 1, 11, 0, tzinfo=UTC)))
        assert [e.target for e in hits] == ["naive"]
        assert hits[0].timestamp == datetime(2026, 3, 1, 12, 0, tzinfo=UTC)
        assert await audit_service.verify_integrity() is True


class TestSqlStore:
    """Same contract on the embedded SQL store."""

    @pytest.mark.asyncio()
    async def test_chain_survives_round_trip_through_sql(
        self, sql_audit_store: SqlAuditTrailStore, operator_context: OperatorContext
    ) -> None:
        service = AuditTrailService(sql_audit_store, operator_context)
        first = await service.record(_entry())
        second = await service.record(_entry(action="break-glass"))

        assert first.id is not None
        assert second.previous_hash == first.entry_hash
        assert await service.verify_integrity()

        entries = await sql_audit_store.list_ascending()
        assert [e.entry_hash for e in entries] == [first.entry_hash, second.entry_hash]
        assert entries[0].timestamp == FIXED_NOW

    @pytest.mark.asyncio()
    async def test_direct_row_edit_is_detected(
        self,
        sql_audit_store: SqlAuditTrailStore,
        sql_audit_sessions: async_sessionmaker[AsyncSession],
        operator_context: OperatorContext,
    ) -> None:
        service = AuditTrailService(sql_audit_store, operator_context)
        first = await service.record(_entry())
        await service.record(_entry())

        async with sql_audit_sessions() as session:
            async with session.begin():
                await session.execute(
                    update(AuditEntryRow).where(AuditEntryRow.id == first.id).values(detail="tampered")
                )

        assert not await service.verify_integrity()

    @pytest.mark.asyncio()
    async def test_target_filter_treats_wildcards_literally(
        self, sql_audit_store: SqlAuditTrailStore, operator_context: OperatorContext
    ) -> None:
        service = AuditTrailService(sql_audit_store, operator_context)
        await service.record(_entry(target="/bundles/a_b"))
        await service.record(_entry(target="/bundles/axb"))

        hits = await service.query(AuditQuery(target="a_b"))
        assert [e.target for e in hits] == ["/bundles/a_b"]
