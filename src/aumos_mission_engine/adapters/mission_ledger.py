"""Append-only mission ledger: run headers plus their ordered timeline.

Contract shared by both implementations:
- create_run inserts; a reused run id raises DuplicateRunError
- update_run_status is the only mutation; unknown run raises MissionRunNotFoundError
- append_event inserts; a reused (run_id, seq) raises DuplicateSequenceError
- get_timeline returns events ascending by seq, independent of insertion order

Key exports:
- SqlMissionLedger: embedded SQL store (SQLAlchemy async)
- InMemoryMissionLedger: in-process store with the same contract
"""

import bisect
from datetime import datetime

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError as SqlIntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from aumos_mission_engine.adapters.orm import MissionRunRow, MissionTimelineRow
from aumos_mission_engine.core.models import (
    MissionEventStatus,
    MissionPhase,
    MissionRun,
    MissionRunStatus,
    MissionTimelineEvent,
)
from aumos_mission_engine.errors import DuplicateRunError, DuplicateSequenceError, MissionRunNotFoundError
from aumos_mission_engine.observability import get_logger

logger = get_logger(__name__)


def _run_from_row(row: MissionRunRow) -> MissionRun:
    return MissionRun(
        run_id=row.run_id,
        label=row.label,
        bundle_root=row.bundle_root,
        status=MissionRunStatus(row.status),
        created_at=row.created_at,
        finished_at=row.finished_at,
        input_fingerprint=row.input_fingerprint,
        detail=row.detail,
    )


def _event_from_row(row: MissionTimelineRow) -> MissionTimelineEvent:
    return MissionTimelineEvent(
        event_id=row.event_id,
        run_id=row.run_id,
        seq=row.seq,
        phase=MissionPhase(row.phase),
        step_name=row.step_name,
        status=MissionEventStatus(row.status),
        occurred_at=row.occurred_at,
        message=row.message,
        evidence_path=row.evidence_path,
        evidence_sha256=row.evidence_sha256,
    )


class SqlMissionLedger:
    """Mission ledger on the embedded SQL database.

    Every write commits in its own transaction so a later failure never rolls
    back events that were already recorded.

    Args:
        session_factory: Session factory bound to the ledger engine.
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def create_run(self, run: MissionRun) -> MissionRun:
        row = MissionRunRow(
            run_id=run.run_id,
            label=run.label,
            bundle_root=run.bundle_root,
            status=run.status.value,
            created_at=run.created_at,
            finished_at=run.finished_at,
            input_fingerprint=run.input_fingerprint,
            detail=run.detail,
        )
        try:
            async with self._session_factory() as session:
                async with session.begin():
                    session.add(row)
        except SqlIntegrityError as exc:
            raise DuplicateRunError(run.run_id) from exc
        logger.debug("Mission run created", run_id=run.run_id)
        return run

    async def update_run_status(
        self,
        run_id: str,
        status: MissionRunStatus,
        finished_at: datetime | None = None,
        detail: str | None = None,
    ) -> MissionRun:
        async with self._session_factory() as session:
            async with session.begin():
                row = await session.get(MissionRunRow, run_id)
                if row is None:
                    raise MissionRunNotFoundError(run_id)
                row.status = status.value
                row.finished_at = finished_at
                row.detail = detail
            return _run_from_row(row)

    async def get_run(self, run_id: str) -> MissionRun | None:
        async with self._session_factory() as session:
            row = await session.get(MissionRunRow, run_id)
            return _run_from_row(row) if row is not None else None

    async def get_latest_run(self) -> MissionRun | None:
        runs = await self.list_runs(limit=1)
        return runs[0] if runs else None

    async def list_runs(self, limit: int = 50) -> list[MissionRun]:
        stmt = (
            select(MissionRunRow)
            .order_by(MissionRunRow.created_at.desc(), MissionRunRow.run_id.desc())
            .limit(limit)
        )
        async with self._session_factory() as session:
            result = await session.execute(stmt)
            return [_run_from_row(row) for row in result.scalars().all()]

    async def append_event(self, event: MissionTimelineEvent) -> MissionTimelineEvent:
        row = MissionTimelineRow(
            event_id=event.event_id,
            run_id=event.run_id,
            seq=event.seq,
            phase=event.phase.value,
            step_name=event.step_name,
            status=event.status.value,
            occurred_at=event.occurred_at,
            message=event.message,
            evidence_path=event.evidence_path,
            evidence_sha256=event.evidence_sha256,
        )
        try:
            async with self._session_factory() as session:
                async with session.begin():
                    session.add(row)
        except SqlIntegrityError as exc:
            raise DuplicateSequenceError(event.run_id, event.seq) from exc
        return event

    async def get_timeline(self, run_id: str) -> list[MissionTimelineEvent]:
        stmt = (
            select(MissionTimelineRow)
            .where(MissionTimelineRow.run_id == run_id)
            .order_by(MissionTimelineRow.seq.asc())
        )
        async with self._session_factory() as session:
            result = await session.execute(stmt)
            return [_event_from_row(row) for row in result.scalars().all()]


class InMemoryMissionLedger:
    """In-process mission ledger with the same contract as SqlMissionLedger.

    Timeline events are kept sorted by seq with bisect insertion, so reads
    are already ordered.
    """

    def __init__(self) -> None:
        self._runs: dict[str, MissionRun] = {}
        self._timelines: dict[str, list[MissionTimelineEvent]] = {}

    async def create_run(self, run: MissionRun) -> MissionRun:
        if run.run_id in self._runs:
            raise DuplicateRunError(run.run_id)
        self._runs[run.run_id] = run
        self._timelines.setdefault(run.run_id, [])
        return run

    async def update_run_status(
        self,
        run_id: str,
        status: MissionRunStatus,
        finished_at: datetime | None = None,
        detail: str | None = None,
    ) -> MissionRun:
        run = self._runs.get(run_id)
        if run is None:
            raise MissionRunNotFoundError(run_id)
        updated = run.model_copy(update={"status": status, "finished_at": finished_at, "detail": detail})
        self._runs[run_id] = updated
        return updated

    async def get_run(self, run_id: str) -> MissionRun | None:
        return self._runs.get(run_id)

    async def get_latest_run(self) -> MissionRun | None:
        runs = await self.list_runs(limit=1)
        return runs[0] if runs else None

    async def list_runs(self, limit: int = 50) -> list[MissionRun]:
        ordered = sorted(self._runs.values(), key=lambda r: (r.created_at, r.run_id), reverse=True)
        return ordered[:limit]

    async def append_event(self, event: MissionTimelineEvent) -> MissionTimelineEvent:
        timeline = self._timelines.setdefault(event.run_id, [])
        position = bisect.bisect_left(timeline, event.seq, key=lambda e: e.seq)
        if position < len(timeline) and timeline[position].seq == event.seq:
            raise DuplicateSequenceError(event.run_id, event.seq)
        timeline.insert(position, event)
        return event

    async def get_timeline(self, run_id: str) -> list[MissionTimelineEvent]:
        return list(self._timelines.get(run_id, []))
