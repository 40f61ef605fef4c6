"""Error hierarchy for the mission engine.

Every domain failure raised by the engine derives from MissionEngineError and
carries a stable ``error_code`` plus a structured ``details`` mapping so that
API handlers and logs can report it without string parsing.

Executor and verification tool exceptions are NOT wrapped: the orchestrator
records them on the timeline and re-raises them unchanged.
"""

from typing import Any


class MissionEngineError(Exception):
    """Base class for all mission engine errors.

    Args:
        message: Human-readable description of the failure.
        error_code: Stable machine-readable code.
        details: Optional structured context for logs and API responses.
    """

    error_code: str = "MISSION_ENGINE_ERROR"

    def __init__(
        self,
        message: str,
        error_code: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        if error_code is not None:
            self.error_code = error_code
        self.details: dict[str, Any] = details or {}


class ValidationError(MissionEngineError):
    """A request or bundle failed validation before any work started."""

    error_code = "VALIDATION_ERROR"


class BundleValidationError(ValidationError):
    """The bundle root or build request is invalid."""

    error_code = "BUNDLE_INVALID"


class BreakGlassRequiredError(ValidationError):
    """A high-risk action was requested without break-glass acknowledgment."""

    error_code = "BREAK_GLASS_REQUIRED"


class BlockingOverlayConflictError(MissionEngineError):
    """Two overlays disagree on the status of the same control.

    Args:
        conflicts: The blocking DetectedOverlayConflict records.
    """

    error_code = "BLOCKING_OVERLAY_CONFLICT"

    def __init__(self, conflicts: list[Any]) -> None:
        listing = "; ".join(
            f"{c.control_key} (winning={c.winning_overlay_id}, overridden={c.overridden_overlay_id})"
            for c in conflicts
        )
        super().__init__(
            f"Bundle build blocked by {len(conflicts)} overlay conflict(s): {listing}",
            details={"conflicts": [c.control_key for c in conflicts]},
        )
        self.conflicts = list(conflicts)


class PhaseExecutionError(MissionEngineError):
    """A verification tool was configured but did not execute successfully."""

    error_code = "PHASE_EXECUTION_FAILED"

    def __init__(self, tool: str, phase: str) -> None:
        super().__init__(
            f"{tool} execution did not run successfully.",
            details={"tool": tool, "phase": phase},
        )
        self.tool = tool
        self.phase = phase


class NotFoundError(MissionEngineError):
    """A requested resource does not exist."""

    error_code = "NOT_FOUND"


class MissionRunNotFoundError(NotFoundError):
    """No mission run exists with the given id."""

    error_code = "MISSION_RUN_NOT_FOUND"

    def __init__(self, run_id: str) -> None:
        super().__init__(
            f"Mission run '{run_id}' not found; cannot update status.",
            details={"run_id": run_id},
        )
        self.run_id = run_id


class DuplicateRunError(MissionEngineError):
    """A mission run with the same id was already created."""

    error_code = "DUPLICATE_RUN"

    def __init__(self, run_id: str) -> None:
        super().__init__(f"Mission run '{run_id}' already exists.", details={"run_id": run_id})
        self.run_id = run_id


class IntegrityError(MissionEngineError):
    """An append-only store rejected a write that would break its invariants."""

    error_code = "INTEGRITY_VIOLATION"


class DuplicateSequenceError(IntegrityError):
    """A timeline event reused a sequence index within a run."""

    error_code = "DUPLICATE_SEQUENCE"

    def __init__(self, run_id: str, seq: int) -> None:
        super().__init__(
            f"Duplicate sequence index {seq} for run '{run_id}'. Timeline events are append-only.",
            details={"run_id": run_id, "seq": seq},
        )
        self.run_id = run_id
        self.seq = seq


class ProcessExecutionError(MissionEngineError):
    """An external process exited unsuccessfully or timed out."""

    error_code = "PROCESS_FAILED"

    def __init__(self, command: str, exit_code: int | None, output_tail: str = "") -> None:
        outcome = "timed out" if exit_code is None else f"exited with code {exit_code}"
        super().__init__(
            f"Process '{command}' {outcome}.",
            details={"command": command, "exit_code": exit_code, "output_tail": output_tail},
        )
        self.command = command
        self.exit_code = exit_code
        self.output_tail = output_tail
