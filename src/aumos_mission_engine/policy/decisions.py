"""Pure decision functions shared by the merge, conflict detection and remediation steps.

Key normalization:
    A control is addressable by ``RULE:<ruleId>`` and ``VULN:<vulnId>``.
    Overrides resolve to the rule key when they carry a rule id, else the
    vuln key. Keys compare case-insensitively through ``normalize_key``.

Everything here is side-effect free and independently testable.
"""

from collections.abc import Iterable

from aumos_mission_engine.core.models import (
    CompiledControl,
    ControlOverride,
    ControlRecord,
    ControlStatus,
    OverlayAppliedDecision,
    OverlayDecisionOutcome,
    Override,
    StatusOverride,
)

RULE_PREFIX = "RULE:"
VULN_PREFIX = "VULN:"

BLOCKING_REASON = "Blocking: different status override values"
NON_BLOCKING_REASON = "Non-blocking: same status override, different details"


# ---------------------------------------------------------------------------
# Keys
# ---------------------------------------------------------------------------


def rule_key(rule_id: str | None) -> str | None:
    if rule_id is None or not rule_id.strip():
        return None
    return RULE_PREFIX + rule_id.strip()


def vuln_key(vuln_id: str | None) -> str | None:
    if vuln_id is None or not vuln_id.strip():
        return None
    return VULN_PREFIX + vuln_id.strip()


def normalize_key(key: str) -> str:
    """Case-insensitive comparison form of a control key."""
    return key.casefold()


def override_key(override: ControlOverride) -> str | None:
    """Key an override targets: rule id preferred, vuln id otherwise, None when neither is set."""
    return rule_key(override.rule_id) or vuln_key(override.vuln_id)


def control_keys(control: ControlRecord) -> list[str]:
    """Every key a control can be addressed by."""
    keys = [
        rule_key(control.external_ids.rule_id),
        vuln_key(control.external_ids.vuln_id),
    ]
    return [key for key in keys if key is not None]


def build_control_index(controls: Iterable[CompiledControl]) -> dict[str, list[int]]:
    """Map each normalized key to the positions of the controls it addresses."""
    index: dict[str, list[int]] = {}
    for position, compiled in enumerate(controls):
        for key in control_keys(compiled.control):
            positions = index.setdefault(normalize_key(key), [])
            if position not in positions:
                positions.append(position)
    return index


# ---------------------------------------------------------------------------
# Outcomes
# ---------------------------------------------------------------------------


def _text_equal(left: str | None, right: str | None) -> bool:
    return (left or "").casefold() == (right or "").casefold()


def outcome_for(override: ControlOverride) -> OverlayDecisionOutcome:
    return OverlayDecisionOutcome(
        status_override=override.status_override,
        na_reason=override.na_reason,
        notes=override.notes,
    )


def outcomes_differ(previous: OverlayDecisionOutcome, current: OverlayDecisionOutcome) -> bool:
    """True when two outcomes disagree on status, NA reason or notes (text compared case-insensitively)."""
    if previous.status_override != current.status_override:
        return True
    return not (
        _text_equal(previous.na_reason, current.na_reason)
        and _text_equal(previous.notes, current.notes)
    )


def apply_outcome(compiled: CompiledControl, outcome: OverlayDecisionOutcome) -> CompiledControl:
    """Return a copy of ``compiled`` with the outcome applied.

    The status changes only for an ``Override``. A non-blank NA reason
    replaces the comment. Review flags are kept.
    """
    update: dict[str, object] = {"status": outcome.status_override.resolve(compiled.status)}
    if outcome.na_reason and outcome.na_reason.strip():
        update["comment"] = outcome.na_reason
    return compiled.model_copy(update=update)


def describe_status_override(status_override: StatusOverride) -> str:
    if isinstance(status_override, Override):
        return status_override.value.value
    return "Unchanged"


# ---------------------------------------------------------------------------
# Conflict classification
# ---------------------------------------------------------------------------


def classify_conflict(winning: ControlOverride, overridden: ControlOverride) -> tuple[bool, str] | None:
    """Classify a pair of overrides for the same key from different overlays.

    Returns:
        ``(is_blocking, reason)``, or None when the two overrides agree fully.
    """
    if winning.status_override != overridden.status_override:
        return True, BLOCKING_REASON
    if _text_equal(winning.na_reason, overridden.na_reason) and _text_equal(winning.notes, overridden.notes):
        return None
    return False, NON_BLOCKING_REASON


def format_override_value(override: ControlOverride) -> str:
    return f"Status={describe_status_override(override.status_override)}, NaReason={override.na_reason or ''}"


# ---------------------------------------------------------------------------
# Not-applicable filtering
# ---------------------------------------------------------------------------


def is_not_applicable(status: ControlStatus) -> bool:
    return status == ControlStatus.NOT_APPLICABLE


def index_decisions(decisions: Iterable[OverlayAppliedDecision]) -> dict[str, list[OverlayAppliedDecision]]:
    """Group decisions by normalized key."""
    grouped: dict[str, list[OverlayAppliedDecision]] = {}
    for decision in decisions:
        grouped.setdefault(normalize_key(decision.key), []).append(decision)
    return grouped


def replay_status(
    control: ControlRecord,
    decisions_by_key: dict[str, list[OverlayAppliedDecision]],
    initial: ControlStatus = ControlStatus.OPEN,
) -> ControlStatus:
    """Replay every decision addressing ``control`` the way the merge applies them.

    Decisions for all of the control's keys are read in (overlay order,
    override order) sequence and resolved one after another, so a later
    notes-only decision keeps the status and a later decision on the other
    key of the same control replaces it.
    """
    relevant = [
        decision
        for key in {normalize_key(k) for k in control_keys(control)}
        for decision in decisions_by_key.get(key, [])
    ]
    relevant.sort(key=lambda d: (d.overlay_order, d.override_order))
    status = initial
    for decision in relevant:
        status = decision.outcome.status_override.resolve(status)
    return status


def is_excluded_from_remediation(
    control: ControlRecord,
    decisions_by_key: dict[str, list[OverlayAppliedDecision]],
) -> bool:
    """True when the replayed decisions leave ``control`` NotApplicable."""
    return is_not_applicable(replay_status(control, decisions_by_key))
