"""Abstract interfaces (Protocol classes) for the mission engine.

Services depend on these protocols, never on concrete adapters, so every
collaborator can be replaced by a mock or an in-memory fake in tests.

Protocols defined:
- IClock
- IHashingService
- IClassificationScopeService
- IPathBuilder
- IApplyExecutor
- IVerificationWorkflowService
- IMissionLedger
- IAuditTrailStore
"""

from collections.abc import Sequence
from datetime import datetime
from pathlib import Path
from typing import Protocol

from aumos_mission_engine.core.models import (
    ApplyResult,
    AuditEntry,
    AuditQuery,
    CompiledControls,
    ControlRecord,
    MissionRun,
    MissionRunStatus,
    MissionTimelineEvent,
    Profile,
    VerificationToolOptions,
    VerificationWorkflowResult,
)


class IClock(Protocol):
    """Time source. Must return timezone-aware datetimes."""

    def now(self) -> datetime:
        ...


class IHashingService(Protocol):
    """SHA-256 hashing of files, lowercase hex output."""

    async def sha256_file(self, path: Path) -> str:
        """Hash a file's bytes without blocking the event loop.

        Args:
            path: File to hash.

        Returns:
            Lowercase hex digest.
        """
        ...


class IClassificationScopeService(Protocol):
    """Compiles imported controls against a profile."""

    def compile(self, profile: Profile, controls: Sequence[ControlRecord]) -> CompiledControls:
        """Resolve each control's initial status for this profile.

        Args:
            profile: The target system profile (classification mode, NA policy).
            controls: Imported controls, in pack order.

        Returns:
            CompiledControls with every control in input order plus the
            subset flagged for review.
        """
        ...


class IPathBuilder(Protocol):
    def bundle_root(self, bundle_id: str) -> Path:
        ...


class IApplyExecutor(Protocol):
    """Runs remediation for a bundle. Raises on failure."""

    async def run(self, bundle_root: Path, script_args: Sequence[str]) -> ApplyResult:
        """Execute the apply step.

        Args:
            bundle_root: Root directory of the bundle to apply.
            script_args: Arguments passed through to the remediation script.

        Returns:
            ApplyResult with the log path and executed step names.
        """
        ...


class IVerificationWorkflowService(Protocol):
    """Runs one verification tool and consolidates its output."""

    async def run(
        self, output_root: Path, tool_options: VerificationToolOptions
    ) -> VerificationWorkflowResult:
        """Execute a verification tool.

        Args:
            output_root: Directory the tool writes its results into.
            tool_options: Tool name, executable and arguments.

        Returns:
            VerificationWorkflowResult. The orchestrator inspects only
            ``tool_runs`` and ``consolidated_counts``.
        """
        ...


class IMissionLedger(Protocol):
    """Append-only store for mission runs and their timeline events.

    ``update_run_status`` is the only mutation permitted on a run. Timeline
    events are never updated or deleted.
    """

    async def create_run(self, run: MissionRun) -> MissionRun:
        """Insert a new run.

        Raises:
            DuplicateRunError: If a run with the same id already exists.
        """
        ...

    async def update_run_status(
        self,
        run_id: str,
        status: MissionRunStatus,
        finished_at: datetime | None = None,
        detail: str | None = None,
    ) -> MissionRun:
        """Transition a run to a new status.

        Raises:
            MissionRunNotFoundError: If the run does not exist.
        """
        ...

    async def get_run(self, run_id: str) -> MissionRun | None:
        ...

    async def get_latest_run(self) -> MissionRun | None:
        ...

    async def list_runs(self, limit: int = 50) -> list[MissionRun]:
        ...

    async def append_event(self, event: MissionTimelineEvent) -> MissionTimelineEvent:
        """Append one timeline event.

        Raises:
            DuplicateSequenceError: If ``event.seq`` is already used in this run.
        """
        ...

    async def get_timeline(self, run_id: str) -> list[MissionTimelineEvent]:
        """Return all events of a run ordered ascending by ``seq``."""
        ...


class IAuditTrailStore(Protocol):
    """Append-only persistence for hash-chained audit entries.

    There is no update or delete operation.
    """

    async def append(self, entry: AuditEntry) -> AuditEntry:
        ...

    async def last_entry_hash(self) -> str | None:
        ...

    async def list_ascending(self) -> list[AuditEntry]:
        ...

    async def query(self, query: AuditQuery) -> list[AuditEntry]:
        ...
