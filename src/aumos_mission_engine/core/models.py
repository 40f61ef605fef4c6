"""Pydantic domain models for the mission engine.

All models are immutable (``frozen=True``) and serialise with camelCase keys
(``by_alias=True``) so bundle files on disk keep a stable, language-neutral
shape. Python code constructs them with snake_case field names.

Groups:
- Content: ControlRecord, Profile, ContentPack and their value objects
- Overlays: ControlOverride, Overlay, StatusOverride (tagged variant)
- Build: CompiledControl, merge/conflict results, manifests
- Mission: MissionRun, MissionTimelineEvent, orchestration requests/results
- Audit: AuditEntry, AuditQuery
"""

from datetime import UTC, datetime
from enum import StrEnum
from pathlib import Path
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, field_serializer, field_validator
from pydantic.alias_generators import to_camel


class DomainModel(BaseModel):
    """Base for every engine model: frozen, camelCase on the wire."""

    model_config = ConfigDict(frozen=True, alias_generator=to_camel, populate_by_name=True)


# ---------------------------------------------------------------------------
# Enumerations
# ---------------------------------------------------------------------------


class ControlStatus(StrEnum):
    PASS = "Pass"
    FAIL = "Fail"
    NOT_APPLICABLE = "NotApplicable"
    OPEN = "Open"
    CONFLICT = "Conflict"


class ScopeTag(StrEnum):
    CLASSIFIED_ONLY = "ClassifiedOnly"
    UNCLASSIFIED_ONLY = "UnclassifiedOnly"
    BOTH = "Both"
    UNKNOWN = "Unknown"


class Confidence(StrEnum):
    HIGH = "High"
    MEDIUM = "Medium"
    LOW = "Low"

    @property
    def rank(self) -> int:
        """Numeric rank used for threshold comparisons (High=3, Low=1)."""
        return {"High": 3, "Medium": 2, "Low": 1}[self.value]


class ClassificationMode(StrEnum):
    CLASSIFIED = "Classified"
    UNCLASSIFIED = "Unclassified"
    MIXED = "Mixed"


class OsTarget(StrEnum):
    WIN11 = "Win11"
    SERVER2019 = "Server2019"
    SERVER2022 = "Server2022"


class RoleTemplate(StrEnum):
    WORKSTATION = "Workstation"
    MEMBER_SERVER = "MemberServer"
    DOMAIN_CONTROLLER = "DomainController"
    LAB_VM = "LabVm"


class HardeningMode(StrEnum):
    AUDIT_ONLY = "AuditOnly"
    SAFE = "Safe"
    FULL = "Full"


class AutomationMode(StrEnum):
    CONSERVATIVE = "Conservative"
    STANDARD = "Standard"
    AGGRESSIVE = "Aggressive"


class MissionRunStatus(StrEnum):
    PENDING = "Pending"
    RUNNING = "Running"
    COMPLETED = "Completed"
    FAILED = "Failed"


class MissionPhase(StrEnum):
    BUILD = "Build"
    APPLY = "Apply"
    VERIFY = "Verify"
    EVIDENCE = "Evidence"


class MissionEventStatus(StrEnum):
    STARTED = "Started"
    FINISHED = "Finished"
    SKIPPED = "Skipped"
    FAILED = "Failed"


# ---------------------------------------------------------------------------
# Content
# ---------------------------------------------------------------------------


class ExternalIds(DomainModel):
    vuln_id: str | None = None
    rule_id: str | None = None
    srg_id: str | None = None
    benchmark_id: str | None = None


class Applicability(DomainModel):
    os_target: OsTarget | None = None
    role_tags: list[RoleTemplate] = Field(default_factory=list)
    classification_scope: ScopeTag = ScopeTag.UNKNOWN
    confidence: Confidence = Confidence.LOW


class RevisionInfo(DomainModel):
    pack_name: str
    benchmark_version: str | None = None
    benchmark_release: str | None = None
    benchmark_date: datetime | None = None


class ControlRecord(DomainModel):
    """An imported compliance requirement. Source of truth, never mutated.

    Attributes:
        control_id: Stable identifier assigned at import.
        external_ids: Rule/vuln/SRG/benchmark identifiers used for overlay matching.
        title: Short human-readable title.
        severity: Severity label (high/medium/low/unknown).
        is_manual: True when the check cannot be automated and needs an answer.
        applicability: OS, role and classification scope tags.
        revision: Benchmark revision the control was introduced in, if known.
    """

    control_id: str
    external_ids: ExternalIds = Field(default_factory=ExternalIds)
    title: str
    severity: str = "unknown"
    discussion: str | None = None
    check_text: str | None = None
    fix_text: str | None = None
    is_manual: bool = False
    wizard_prompt: str | None = None
    applicability: Applicability = Field(default_factory=Applicability)
    revision: RevisionInfo | None = None


class NaPolicy(DomainModel):
    auto_na_out_of_scope: bool = True
    confidence_threshold: Confidence = Confidence.HIGH
    default_na_comment_template: str = "Auto-NA: {scope} control is out of scope for a {mode} system."


class AutomationPolicy(DomainModel):
    mode: AutomationMode = AutomationMode.STANDARD
    new_rule_grace_days: int = 30
    auto_apply_requires_mapping: bool = True
    release_date_source: str = "ContentPack"


class Profile(DomainModel):
    profile_id: str
    name: str
    os_target: OsTarget
    role_template: RoleTemplate
    hardening_mode: HardeningMode = HardeningMode.SAFE
    classification_mode: ClassificationMode = ClassificationMode.UNCLASSIFIED
    na_policy: NaPolicy = Field(default_factory=NaPolicy)
    automation_policy: AutomationPolicy = Field(default_factory=AutomationPolicy)
    overlay_ids: list[str] = Field(default_factory=list)


class ContentPack(DomainModel):
    pack_id: str
    name: str
    imported_at: datetime
    release_date: datetime | None = None
    source_label: str = ""
    hash_algorithm: str = "sha256"
    manifest_sha256: str = ""
    benchmark_ids: list[str] = Field(default_factory=list)
    version: str | None = None
    release: str | None = None
    schema_version: int = 1


# ---------------------------------------------------------------------------
# Overlays
# ---------------------------------------------------------------------------


class NoOverride(DomainModel):
    """The override leaves the control's current status untouched."""

    kind: Literal["none"] = "none"

    def resolve(self, current: ControlStatus) -> ControlStatus:
        return current


class Override(DomainModel):
    """The override replaces the control's status with ``value``."""

    kind: Literal["override"] = "override"
    value: ControlStatus

    def resolve(self, current: ControlStatus) -> ControlStatus:  # noqa: ARG002
        return self.value


StatusOverride = NoOverride | Override


def coerce_status_override(value: Any) -> Any:
    """Accept the on-disk forms of a status override.

    ``None`` maps to NoOverride and a bare status string maps to Override.
    Already-built variants and dicts pass through to normal validation.
    """
    if value is None:
        return NoOverride()
    if isinstance(value, str):
        return Override(value=ControlStatus(value))
    return value


def dump_status_override(value: StatusOverride) -> str | None:
    return value.value.value if isinstance(value, Override) else None


class ControlOverride(DomainModel):
    """One status override inside an overlay, matched by rule id (preferred) or vuln id."""

    rule_id: str | None = None
    vuln_id: str | None = None
    status_override: StatusOverride = Field(default_factory=NoOverride)
    na_reason: str | None = None
    notes: str | None = None

    coerce_status_override_field = field_validator("status_override", mode="before")(coerce_status_override)

    @field_serializer("status_override")
    def serialize_status_override(self, value: StatusOverride) -> str | None:
        return dump_status_override(value)


class Overlay(DomainModel):
    """A named, ordered list of overrides. List position in a build is precedence."""

    overlay_id: str
    name: str
    updated_at: datetime | None = None
    overrides: list[ControlOverride] = Field(default_factory=list)


# ---------------------------------------------------------------------------
# Build
# ---------------------------------------------------------------------------


class CompiledControl(DomainModel):
    """A control with its resolved status for one build.

    Merge steps produce new instances via ``model_copy(update=...)``; the
    wrapped ControlRecord is shared, never changed.
    """

    control: ControlRecord
    status: ControlStatus
    comment: str | None = None
    needs_review: bool = False
    review_reason: str | None = None


class CompiledControls(DomainModel):
    controls: list[CompiledControl]
    review_queue: list[CompiledControl] = Field(default_factory=list)


class OverlayDecisionOutcome(DomainModel):
    status_override: StatusOverride = Field(default_factory=NoOverride)
    na_reason: str | None = None
    notes: str | None = None

    coerce_status_override_field = field_validator("status_override", mode="before")(coerce_status_override)

    @field_serializer("status_override")
    def serialize_status_override(self, value: StatusOverride) -> str | None:
        return dump_status_override(value)


class OverlayAppliedDecision(DomainModel):
    key: str
    overlay_id: str
    overlay_name: str
    overlay_order: int
    override_order: int
    outcome: OverlayDecisionOutcome


class OverlayConflict(DomainModel):
    """A recorded transition where a later decision changed a key's outcome."""

    key: str
    previous: OverlayAppliedDecision
    current: OverlayAppliedDecision


class OverlayMergeResult(DomainModel):
    merged_controls: list[CompiledControl]
    applied_decisions: list[OverlayAppliedDecision] = Field(default_factory=list)
    conflicts: list[OverlayConflict] = Field(default_factory=list)


class DetectedOverlayConflict(DomainModel):
    control_key: str
    winning_overlay_id: str
    overridden_overlay_id: str
    winning_value: str
    overridden_value: str
    reason: str
    is_blocking: bool


class OverlayConflictReport(DomainModel):
    conflicts: list[DetectedOverlayConflict] = Field(default_factory=list)

    @property
    def blocking_conflicts(self) -> list[DetectedOverlayConflict]:
        return [c for c in self.conflicts if c.is_blocking]

    @property
    def has_blocking_conflicts(self) -> bool:
        return any(c.is_blocking for c in self.conflicts)

    @property
    def blocking_conflict_count(self) -> int:
        return len(self.blocking_conflicts)


class RunManifest(DomainModel):
    run_id: str
    system_name: str
    os_target: OsTarget
    role_template: RoleTemplate
    profile_id: str
    profile_name: str
    pack_id: str
    pack_name: str
    timestamp: datetime
    tool_version: str


class BundleManifest(DomainModel):
    """Descriptive header of one build, written to Manifest/manifest.json.

    Carries no absolute paths so builds into different roots stay byte-identical.
    """

    schema_version: int = 1
    bundle_id: str
    run: RunManifest
    pack: ContentPack
    profile: Profile
    total_controls: int
    auto_na_count: int
    review_queue_count: int
    overlay_count: int
    conflict_count: int


class FileHashEntry(DomainModel):
    sha256: str
    relative_path: str


class BundleBuildRequest(DomainModel):
    profile: Profile
    pack: ContentPack
    controls: list[ControlRecord]
    overlays: list[Overlay] = Field(default_factory=list)
    bundle_id: str | None = None
    output_root: Path | None = None
    force_auto_apply: bool = False
    system_name: str | None = None


class BundleBuildResult(DomainModel):
    bundle_id: str
    bundle_root: Path
    manifest_path: Path
    hash_manifest_path: Path
    manifest: BundleManifest
    review_queue: list[CompiledControl]
    conflict_report: OverlayConflictReport
    file_hashes: list[FileHashEntry]


# ---------------------------------------------------------------------------
# Mission
# ---------------------------------------------------------------------------


class MissionRun(DomainModel):
    """One orchestration execution: Pending -> Running -> Completed | Failed."""

    run_id: str
    label: str
    bundle_root: str
    status: MissionRunStatus = MissionRunStatus.PENDING
    created_at: datetime
    finished_at: datetime | None = None
    input_fingerprint: str | None = None
    detail: str | None = None


class MissionTimelineEvent(DomainModel):
    """One phase/step transition. Immutable once appended; ``seq`` unique per run."""

    event_id: str
    run_id: str
    seq: int = Field(..., ge=0, description="Strictly increasing index within the run")
    phase: MissionPhase
    step_name: str
    status: MissionEventStatus
    occurred_at: datetime
    message: str | None = None
    evidence_path: str | None = None
    evidence_sha256: str | None = None


class ApplyResult(DomainModel):
    log_path: str | None = None
    steps: list[str] = Field(default_factory=list)
    exit_code: int = 0


class VerificationToolOptions(DomainModel):
    tool: str
    executable: Path
    arguments: list[str] = Field(default_factory=list)


class VerificationToolRun(DomainModel):
    tool: str
    executed: bool
    result_count: int = 0
    message: str = ""


class VerificationWorkflowResult(DomainModel):
    consolidated_counts: dict[str, int] = Field(default_factory=dict)
    tool_runs: list[VerificationToolRun] = Field(default_factory=list)
    consolidated_json_path: str | None = None


class OrchestrateRequest(DomainModel):
    """Inputs for one mission.

    Verification steps without a configured tool root or command are recorded
    as Skipped on the timeline.
    """

    bundle_root: Path
    label: str | None = None
    apply_arguments: list[str] = Field(default_factory=list)
    skip_snapshot: bool = False
    break_glass_acknowledged: bool = False
    break_glass_reason: str | None = None
    verify_output_root: Path | None = None
    evaluate_tool_root: Path | None = None
    evaluate_tool_arguments: list[str] = Field(default_factory=list)
    scap_command_path: Path | None = None
    scap_arguments: list[str] = Field(default_factory=list)
    scap_label: str = "SCAP"


class MissionResult(DomainModel):
    run_id: str
    bundle_root: Path
    status: MissionRunStatus
    apply_result: ApplyResult
    tool_runs: list[VerificationToolRun] = Field(default_factory=list)
    consolidated_counts: dict[str, int] = Field(default_factory=dict)
    remediation_excluded_count: int = 0
    evidence_path: Path | None = None
    evidence_sha256: str | None = None


# ---------------------------------------------------------------------------
# Audit
# ---------------------------------------------------------------------------


class AuditEntry(DomainModel):
    """One privileged action record, hash-chained to its predecessor.

    ``entry_hash = sha256(timestamp|actor|host|action|target|result|detail|previous_hash)``
    """

    id: int | None = None
    timestamp: datetime | None = None
    actor: str | None = None
    host: str | None = None
    action: str
    target: str
    result: str
    detail: str = ""
    previous_hash: str = ""
    entry_hash: str = ""


class AuditQuery(DomainModel):
    action: str | None = None
    target: str | None = None
    start: datetime | None = None
    end: datetime | None = None
    limit: int = Field(default=100, ge=1, le=10_000)

    @field_validator("start", "end")
    @classmethod
    def assume_utc(cls, value: datetime | None) -> datetime | None:
        """Naive bounds are interpreted as UTC."""
        if value is not None and value.tzinfo is None:
            return value.replace(tzinfo=UTC)
        return value
