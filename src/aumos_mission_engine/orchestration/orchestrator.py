"""Mission orchestrator: the sequential phase state machine.

Phases run strictly in order, each recorded on the run's timeline:

    Apply -> Verify(evaluate_tool) -> Verify(scap) -> Evidence

Run states: Pending (created) -> Running (first phase starts) -> Completed,
or Failed as soon as any phase raises. A failed phase records a Failed event
with the error message, marks the run Failed and re-raises the original
exception unchanged; later phases never start. Verification steps without a
configured tool are recorded as Skipped, never omitted.

Cancellation: cancelling the task running ``orchestrate`` propagates into the
active phase. Subprocess-backed executors kill their child process; the phase
is recorded as Failed ("cancelled") and the run as Failed before the
CancelledError is re-raised.

Ledger and audit writes are best-effort side channels, except the
break-glass audit entry (which must exist before any phase runs) and
DuplicateSequenceError (which signals a broken timeline invariant).
"""

import asyncio
import json
import uuid
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Generic, TypeVar

from opentelemetry.trace import Status, StatusCode

from aumos_mission_engine.adapters.audit_trail import AuditTrailService
from aumos_mission_engine.build import layout
from aumos_mission_engine.build.bundle_builder import BundleBuilder
from aumos_mission_engine.core.context import OperatorContext
from aumos_mission_engine.core.interfaces import IApplyExecutor, IHashingService, IMissionLedger, IVerificationWorkflowService
from aumos_mission_engine.core.models import (
    ApplyResult,
    AuditEntry,
    BundleBuildRequest,
    BundleBuildResult,
    MissionEventStatus,
    MissionPhase,
    MissionResult,
    MissionRunStatus,
    OrchestrateRequest,
    VerificationToolOptions,
    VerificationToolRun,
)
from aumos_mission_engine.errors import BundleValidationError, PhaseExecutionError
from aumos_mission_engine.observability import get_logger, get_tracer
from aumos_mission_engine.orchestration.break_glass import FORCE_AUTO_APPLY, SKIP_SNAPSHOT, BreakGlassGate
from aumos_mission_engine.orchestration.remediation import RemediationData, write_remediation_data
from aumos_mission_engine.orchestration.timeline import MissionTimeline

logger = get_logger(__name__)

T = TypeVar("T")

APPLY_STEP = "apply"
EVALUATE_STEP = "evaluate_tool"
SCAP_STEP = "scap"
EVIDENCE_STEP = "evidence"
EVALUATE_TOOL_NAME = "EvaluateTool"


@dataclass(frozen=True)
class StepOutcome(Generic[T]):
    value: T
    message: str
    evidence_path: str | None = None
    evidence_sha256: str | None = None


@dataclass(frozen=True)
class _VerifyStep:
    step_name: str
    tool: str
    executable: Path | None
    arguments: list[str]


def _error_message(exc: BaseException) -> str:
    text = str(exc).strip()
    return f"{type(exc).__name__}: {text}" if text else type(exc).__name__


class MissionOrchestrator:
    """Drives one bundle through Apply, Verify and Evidence.

    Args:
        builder: Bundle builder used by ``build_bundle``.
        apply_executor: Runs remediation for the Apply phase.
        verification: Runs each configured verification tool.
        hashing: Hashes the evidence document and the input fingerprint.
        context: Operator identity and clock.
        ledger: Mission ledger. Without one the mission still runs, unrecorded.
        audit: Audit trail. Required for break-glass bypasses.
        min_break_glass_reason_length: Minimum justification length.
    """

    def __init__(
        self,
        builder: BundleBuilder,
        apply_executor: IApplyExecutor,
        verification: IVerificationWorkflowService,
        hashing: IHashingService,
        context: OperatorContext,
        ledger: IMissionLedger | None = None,
        audit: AuditTrailService | None = None,
        min_break_glass_reason_length: int = 8,
    ) -> None:
        self._builder = builder
        self._apply = apply_executor
        self._verification = verification
        self._hashing = hashing
        self._context = context
        self._ledger = ledger
        self._audit = audit
        self._break_glass = BreakGlassGate(audit, min_break_glass_reason_length)
        self._tracer = get_tracer()

    # -------------------------------------------------------------------------
    # Build
    # -------------------------------------------------------------------------

    async def build_bundle(
        self,
        request: BundleBuildRequest,
        break_glass_acknowledged: bool = False,
        break_glass_reason: str | None = None,
    ) -> BundleBuildResult:
        """Build a bundle, gating ``force_auto_apply`` behind break-glass.

        Raises:
            BreakGlassRequiredError: If auto-apply is forced without acknowledgment.
        """
        if request.force_auto_apply:
            reason = self._break_glass.require(FORCE_AUTO_APPLY, break_glass_acknowledged, break_glass_reason)
            target = request.bundle_id or (str(request.output_root) if request.output_root else "new-bundle")
            await self._break_glass.record("build", FORCE_AUTO_APPLY, target, reason)
        return await self._builder.build(request)

    # -------------------------------------------------------------------------
    # Orchestrate
    # -------------------------------------------------------------------------

    async def orchestrate(self, request: OrchestrateRequest) -> MissionResult:
        """Run every mission phase against an existing bundle.

        Args:
            request: Bundle root, phase configuration and break-glass flags.

        Returns:
            MissionResult for a Completed run.

        Raises:
            BundleValidationError: If the bundle root is missing or not a directory.
            BreakGlassRequiredError: If ``skip_snapshot`` lacks acknowledgment
                or a sufficient reason. Raised before any run or audit entry exists.
            PhaseExecutionError: If a configured verification tool did not execute.
            Exception: Any executor exception, re-raised unchanged.
        """
        root = self._validate_bundle_root(request.bundle_root)

        skip_snapshot_reason: str | None = None
        if request.skip_snapshot:
            skip_snapshot_reason = self._break_glass.require(
                SKIP_SNAPSHOT, request.break_glass_acknowledged, request.break_glass_reason
            )

        verify_root = request.verify_output_root or root / layout.VERIFY_DIR
        verify_root.mkdir(parents=True, exist_ok=True)
        (root / layout.REPORTS_DIR).mkdir(parents=True, exist_ok=True)

        if skip_snapshot_reason is not None:
            await self._break_glass.record("orchestrate", SKIP_SNAPSHOT, str(root), skip_snapshot_reason)

        run_id = uuid.uuid4().hex
        timeline = MissionTimeline(self._ledger, self._context, run_id)

        with self._tracer.start_as_current_span("mission") as span:
            span.set_attribute("bundle.root", str(root))
            span.set_attribute("mission.run_id", run_id)
            span.set_attribute("mission.started_at", self._context.now().isoformat())

            await timeline.start_run(
                label=request.label or root.name,
                bundle_root=str(root),
                input_fingerprint=await self._input_fingerprint(root),
            )
            logger.info("Mission started", run_id=run_id, bundle_root=str(root))

            try:
                apply_result, remediation = await self._run_apply(timeline, root, request)

                tool_runs: list[VerificationToolRun] = []
                counts: dict[str, int] = {}
                for step in self._verify_steps(request):
                    runs, step_counts = await self._run_verify(timeline, verify_root, step)
                    tool_runs.extend(runs)
                    for key, value in step_counts.items():
                        counts[key] = counts.get(key, 0) + value

                evidence_path, evidence_sha256 = await self._run_evidence(
                    timeline, root, apply_result, tool_runs, counts, remediation
                )
            except asyncio.CancelledError:
                logger.warning("Mission cancelled", run_id=run_id)
                span.set_status(Status(StatusCode.ERROR, "cancelled"))
                await timeline.fail("Mission cancelled")
                raise
            except Exception as exc:
                logger.error("Mission failed", run_id=run_id, error=_error_message(exc))
                span.record_exception(exc)
                span.set_status(Status(StatusCode.ERROR, _error_message(exc)))
                await timeline.fail(_error_message(exc))
                await self._audit_best_effort("orchestrate", str(root), "failure", _error_message(exc))
                raise

            await timeline.complete(f"Completed {len(timeline.events)} timeline event(s)")
            span.set_status(Status(StatusCode.OK))

        await self._audit_best_effort(
            "orchestrate",
            str(root),
            "success",
            f"RunId={run_id}; ToolRuns={len(tool_runs)}; SkipSnapshot={request.skip_snapshot}",
        )
        logger.info("Mission completed", run_id=run_id, tool_runs=len(tool_runs))

        return MissionResult(
            run_id=run_id,
            bundle_root=root,
            status=MissionRunStatus.COMPLETED,
            apply_result=apply_result,
            tool_runs=tool_runs,
            consolidated_counts=counts,
            remediation_excluded_count=remediation.excluded_count if remediation else 0,
            evidence_path=Path(evidence_path),
            evidence_sha256=evidence_sha256,
        )

    # -------------------------------------------------------------------------
    # Phases
    # -------------------------------------------------------------------------

    async def _run_step(
        self,
        timeline: MissionTimeline,
        phase: MissionPhase,
        step_name: str,
        action: Callable[[], Awaitable[StepOutcome[T]]],
    ) -> T:
        with self._tracer.start_as_current_span(f"mission.{step_name}") as span:
            span.set_attribute("phase.name", phase.value)
            span.set_attribute("phase.step", step_name)
            await timeline.record(phase, step_name, MissionEventStatus.STARTED)
            try:
                outcome = await action()
            except asyncio.CancelledError:
                span.set_status(Status(StatusCode.ERROR, "cancelled"))
                await timeline.record(phase, step_name, MissionEventStatus.FAILED, message="cancelled")
                raise
            except Exception as exc:
                span.set_status(Status(StatusCode.ERROR, _error_message(exc)))
                await timeline.record(phase, step_name, MissionEventStatus.FAILED, message=_error_message(exc))
                raise
            await timeline.record(
                phase,
                step_name,
                MissionEventStatus.FINISHED,
                message=outcome.message,
                evidence_path=outcome.evidence_path,
                evidence_sha256=outcome.evidence_sha256,
            )
            span.set_status(Status(StatusCode.OK))
            return outcome.value

    async def _run_apply(
        self, timeline: MissionTimeline, root: Path, request: OrchestrateRequest
    ) -> tuple[ApplyResult, RemediationData | None]:
        async def action() -> StepOutcome[tuple[ApplyResult, RemediationData | None]]:
            remediation = await asyncio.to_thread(write_remediation_data, root)
            script_args = ["--bundle-root", str(root)]
            if request.skip_snapshot:
                script_args.append("--skip-snapshot")
            script_args.extend(request.apply_arguments)

            result = await self._apply.run(root, script_args)

            marker = root / layout.APPLY_COMPLETE_MARKER
            marker.parent.mkdir(parents=True, exist_ok=True)
            marker.write_text(f"{self._context.now().isoformat()}\n", encoding="utf-8")

            excluded = remediation.excluded_count if remediation else 0
            return StepOutcome(
                value=(result, remediation),
                message=f"Apply finished: {len(result.steps)} step(s), {excluded} NotApplicable control(s) excluded",
                evidence_path=result.log_path,
            )

        return await self._run_step(timeline, MissionPhase.APPLY, APPLY_STEP, action)

    def _verify_steps(self, request: OrchestrateRequest) -> list[_VerifyStep]:
        return [
            _VerifyStep(EVALUATE_STEP, EVALUATE_TOOL_NAME, request.evaluate_tool_root, request.evaluate_tool_arguments),
            _VerifyStep(SCAP_STEP, request.scap_label or "SCAP", request.scap_command_path, request.scap_arguments),
        ]

    async def _run_verify(
        self, timeline: MissionTimeline, verify_root: Path, step: _VerifyStep
    ) -> tuple[list[VerificationToolRun], dict[str, int]]:
        if step.executable is None:
            await timeline.record(
                MissionPhase.VERIFY,
                step.step_name,
                MissionEventStatus.SKIPPED,
                message=f"{step.tool} not configured",
            )
            return [], {}

        async def action() -> StepOutcome[tuple[list[VerificationToolRun], dict[str, int]]]:
            options = VerificationToolOptions(tool=step.tool, executable=step.executable, arguments=step.arguments)
            result = await self._verification.run(verify_root / step.tool, options)
            executed = [
                run for run in result.tool_runs if run.executed and run.tool.casefold() == step.tool.casefold()
            ]
            if not executed:
                raise PhaseExecutionError(step.tool, MissionPhase.VERIFY.value)
            result_count = sum(run.result_count for run in executed)
            return StepOutcome(
                value=(list(result.tool_runs), dict(result.consolidated_counts)),
                message=f"{step.tool} finished: {result_count} result(s)",
                evidence_path=result.consolidated_json_path,
            )

        return await self._run_step(timeline, MissionPhase.VERIFY, step.step_name, action)

    async def _run_evidence(
        self,
        timeline: MissionTimeline,
        root: Path,
        apply_result: ApplyResult,
        tool_runs: list[VerificationToolRun],
        counts: dict[str, int],
        remediation: RemediationData | None,
    ) -> tuple[str, str]:
        async def action() -> StepOutcome[tuple[str, str]]:
            document: dict[str, Any] = {
                "runId": timeline.run_id,
                "collectedAt": self._context.now().isoformat(),
                "apply": apply_result.model_dump(mode="json", by_alias=True),
                "remediation": {
                    "includedCount": remediation.included_count if remediation else 0,
                    "excludedCount": remediation.excluded_count if remediation else 0,
                },
                "toolRuns": [run.model_dump(mode="json", by_alias=True) for run in tool_runs],
                "consolidatedCounts": counts,
            }
            path = root / layout.MISSION_EVIDENCE_FILE
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_text(json.dumps(document, indent=2) + "\n", encoding="utf-8", newline="\n")
            sha256 = await self._hashing.sha256_file(path)
            return StepOutcome(
                value=(str(path), sha256),
                message=f"Evidence collected: {len(tool_runs)} tool run(s)",
                evidence_path=str(path),
                evidence_sha256=sha256,
            )

        return await self._run_step(timeline, MissionPhase.EVIDENCE, EVIDENCE_STEP, action)

    # -------------------------------------------------------------------------
    # Helpers
    # -------------------------------------------------------------------------

    def _validate_bundle_root(self, bundle_root: Path | None) -> Path:
        if bundle_root is None or not str(bundle_root).strip():
            raise BundleValidationError("Bundle root is required.")
        if not bundle_root.is_dir():
            raise BundleValidationError(
                f"Bundle root '{bundle_root}' does not exist or is not a directory.",
                details={"bundle_root": str(bundle_root)},
            )
        return bundle_root

    async def _input_fingerprint(self, root: Path) -> str | None:
        hash_manifest = root / layout.HASH_MANIFEST_FILE
        if not hash_manifest.is_file():
            return None
        return await self._hashing.sha256_file(hash_manifest)

    async def _audit_best_effort(self, action: str, target: str, result: str, detail: str) -> None:
        if self._audit is None:
            return
        try:
            await self._audit.record(AuditEntry(action=action, target=target, result=result, detail=detail))
        except Exception:
            logger.warning("Failed to record audit entry", action=action, target=target, exc_info=True)
