"""Rendering of bundle reports and JSON documents.

Every renderer returns text with ``\\n`` line endings and a deterministic row
order, so identical inputs produce byte-identical files.
"""

import csv
import io
import json
from collections.abc import Iterable, Sequence
from datetime import datetime
from typing import Any

from aumos_mission_engine.core.models import (
    CompiledControl,
    ControlStatus,
    OverlayAppliedDecision,
    OverlayConflict,
    OverlayConflictReport,
)
from aumos_mission_engine.policy.decisions import describe_status_override

DEFAULT_NA_REASON = "Auto-NA (classification scope)"
DEFAULT_REVIEW_REASON = "Open status requires review"


def render_json(payload: Any) -> str:
    return json.dumps(payload, indent=2, ensure_ascii=False) + "\n"


def render_csv(header: Sequence[str], rows: Iterable[Sequence[Any]]) -> str:
    """Render CSV with minimal quoting (fields containing , " CR or LF)."""
    buffer = io.StringIO()
    writer = csv.writer(buffer, lineterminator="\n", quoting=csv.QUOTE_MINIMAL)
    writer.writerow(header)
    for row in rows:
        writer.writerow(["" if value is None else value for value in row])
    return buffer.getvalue()


def _control_sort_key(compiled: CompiledControl) -> tuple[str, str, str]:
    ids = compiled.control.external_ids
    return ((ids.rule_id or "").casefold(), (ids.vuln_id or "").casefold(), compiled.control.control_id)


def render_na_scope_report(merged: Sequence[CompiledControl]) -> str:
    rows = [
        (
            c.control.external_ids.vuln_id,
            c.control.external_ids.rule_id,
            c.control.title,
            c.control.applicability.classification_scope.value,
            c.control.applicability.confidence.value,
            c.comment if c.comment and c.comment.strip() else DEFAULT_NA_REASON,
        )
        for c in sorted(merged, key=_control_sort_key)
        if c.status == ControlStatus.NOT_APPLICABLE
    ]
    return render_csv(("VulnId", "RuleId", "Title", "Scope", "Confidence", "Reason"), rows)


def render_review_report(review_queue: Sequence[CompiledControl]) -> str:
    rows = [
        (
            c.control.external_ids.vuln_id,
            c.control.external_ids.rule_id,
            c.control.title,
            c.review_reason or DEFAULT_REVIEW_REASON,
        )
        for c in sorted(review_queue, key=_control_sort_key)
    ]
    return render_csv(("VulnId", "RuleId", "Title", "Reason"), rows)


def render_overlay_conflicts(conflicts: Sequence[OverlayConflict]) -> str:
    rows = [
        (
            c.key,
            c.previous.overlay_id,
            describe_status_override(c.previous.outcome.status_override),
            c.previous.outcome.na_reason,
            c.current.overlay_id,
            describe_status_override(c.current.outcome.status_override),
            c.current.outcome.na_reason,
        )
        for c in conflicts
    ]
    return render_csv(
        (
            "Key",
            "PreviousOverlayId",
            "PreviousStatus",
            "PreviousNaReason",
            "CurrentOverlayId",
            "CurrentStatus",
            "CurrentNaReason",
        ),
        rows,
    )


def render_overlay_decisions(decisions: Sequence[OverlayAppliedDecision]) -> str:
    return render_json([d.model_dump(mode="json", by_alias=True) for d in decisions])


def render_conflict_report(report: OverlayConflictReport) -> str:
    rows = [
        (
            c.control_key,
            c.winning_overlay_id,
            c.overridden_overlay_id,
            c.winning_value,
            c.overridden_value,
            "true" if c.is_blocking else "false",
            c.reason,
        )
        for c in report.conflicts
    ]
    return render_csv(
        (
            "ControlKey",
            "WinningOverlayId",
            "OverriddenOverlayId",
            "WinningValue",
            "OverriddenValue",
            "IsBlocking",
            "Reason",
        ),
        rows,
    )


def render_automation_gate(
    force_auto_apply: bool,
    release_date: datetime | None,
    grace_days: int,
    auto_apply_allowed: bool,
    new_rule_count: int,
) -> str:
    return render_json(
        {
            "forceAutoApply": force_auto_apply,
            "releaseDate": release_date.isoformat() if release_date else None,
            "graceDays": grace_days,
            "autoApplyAllowed": auto_apply_allowed,
            "newRuleCount": new_rule_count,
        }
    )


def render_answer_template(
    profile_id: str,
    pack_id: str,
    created_at: datetime,
    merged: Sequence[CompiledControl],
) -> str:
    answers = [
        {
            "controlId": c.control.control_id,
            "ruleId": c.control.external_ids.rule_id,
            "vulnId": c.control.external_ids.vuln_id,
            "title": c.control.title,
            "prompt": c.control.wizard_prompt,
            "status": c.status.value,
            "comment": "",
        }
        for c in sorted(merged, key=_control_sort_key)
        if c.control.is_manual and c.status != ControlStatus.NOT_APPLICABLE
    ]
    return render_json(
        {
            "profileId": profile_id,
            "packId": pack_id,
            "createdAt": created_at.isoformat(),
            "answers": answers,
        }
    )
