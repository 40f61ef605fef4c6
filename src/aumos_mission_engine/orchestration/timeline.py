"""Best-effort timeline recorder for one mission run.

Owns the run's sequence counter, so ``seq`` is strictly increasing and never
reused. Ledger write failures are logged and swallowed; a DuplicateSequenceError
is the one exception that propagates, since it means the ordering invariant is
already broken.
"""

import uuid

from aumos_mission_engine.core.context import OperatorContext
from aumos_mission_engine.core.interfaces import IMissionLedger
from aumos_mission_engine.core.models import (
    MissionEventStatus,
    MissionPhase,
    MissionRun,
    MissionRunStatus,
    MissionTimelineEvent,
)
from aumos_mission_engine.errors import DuplicateSequenceError
from aumos_mission_engine.observability import get_logger

logger = get_logger(__name__)


class MissionTimeline:
    """Records a run header and its timeline events on an optional ledger.

    Args:
        ledger: Mission ledger, or None to run without persistence.
        context: Clock source for event timestamps.
        run_id: Id of the run being recorded.
    """

    def __init__(self, ledger: IMissionLedger | None, context: OperatorContext, run_id: str) -> None:
        self._ledger = ledger
        self._context = context
        self.run_id = run_id
        self._next_seq = 1
        self._running = False
        self.events: list[MissionTimelineEvent] = []

    async def start_run(self, label: str, bundle_root: str, input_fingerprint: str | None) -> None:
        run = MissionRun(
            run_id=self.run_id,
            label=label,
            bundle_root=bundle_root,
            status=MissionRunStatus.PENDING,
            created_at=self._context.now(),
            input_fingerprint=input_fingerprint,
        )
        if self._ledger is None:
            return
        try:
            await self._ledger.create_run(run)
        except Exception:
            logger.warning("Failed to record mission run", run_id=self.run_id, exc_info=True)

    async def record(
        self,
        phase: MissionPhase,
        step_name: str,
        status: MissionEventStatus,
        message: str | None = None,
        evidence_path: str | None = None,
        evidence_sha256: str | None = None,
    ) -> MissionTimelineEvent:
        """Append one event with the next sequence number.

        The first Started event also moves the run from Pending to Running.

        Raises:
            DuplicateSequenceError: If the ledger already holds this seq.
        """
        event = MissionTimelineEvent(
            event_id=uuid.uuid4().hex,
            run_id=self.run_id,
            seq=self._next_seq,
            phase=phase,
            step_name=step_name,
            status=status,
            occurred_at=self._context.now(),
            message=message,
            evidence_path=evidence_path,
            evidence_sha256=evidence_sha256,
        )
        self._next_seq += 1
        self.events.append(event)

        if status == MissionEventStatus.STARTED and not self._running:
            self._running = True
            await self._update_status(MissionRunStatus.RUNNING)

        if self._ledger is not None:
            try:
                await self._ledger.append_event(event)
            except DuplicateSequenceError:
                raise
            except Exception:
                logger.warning(
                    "Failed to record timeline event",
                    run_id=self.run_id,
                    seq=event.seq,
                    step=step_name,
                    exc_info=True,
                )
        return event

    async def complete(self, detail: str | None = None) -> None:
        await self._update_status(MissionRunStatus.COMPLETED, finished=True, detail=detail)

    async def fail(self, detail: str) -> None:
        await self._update_status(MissionRunStatus.FAILED, finished=True, detail=detail)

    async def _update_status(self, status: MissionRunStatus, finished: bool = False, detail: str | None = None) -> None:
        if self._ledger is None:
            return
        try:
            await self._ledger.update_run_status(
                self.run_id,
                status,
                finished_at=self._context.now() if finished else None,
                detail=detail,
            )
        except Exception:
            logger.warning("Failed to update mission run status", run_id=self.run_id, status=status.value, exc_info=True)
