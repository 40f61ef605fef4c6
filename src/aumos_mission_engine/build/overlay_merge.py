"""Deterministic last-wins merge of overlays onto compiled controls.

Overlays are processed in list order (index = precedence). Inside one overlay
the overrides are visited sorted by key, then by original position, so the
result never depends on incidental collection ordering. Every change of a
key's outcome is recorded as an OverlayConflict transition, giving auditors
the full override history rather than only the final winner.

Overrides whose key matches no control are ignored; overlays may predate the
content pack they are applied to.
"""

from collections.abc import Sequence

from aumos_mission_engine.core.models import (
    CompiledControl,
    Overlay,
    OverlayAppliedDecision,
    OverlayConflict,
    OverlayMergeResult,
)
from aumos_mission_engine.observability import get_logger
from aumos_mission_engine.policy.decisions import (
    apply_outcome,
    build_control_index,
    normalize_key,
    outcome_for,
    outcomes_differ,
    override_key,
)

logger = get_logger(__name__)


class OverlayMergeService:
    """Applies an ordered overlay list to a compiled control set."""

    def merge(self, controls: Sequence[CompiledControl], overlays: Sequence[Overlay]) -> OverlayMergeResult:
        """Merge ``overlays`` onto ``controls``.

        Args:
            controls: Compiled controls. Not modified; merged copies are returned.
            overlays: Overlays in precedence order (last wins).

        Returns:
            OverlayMergeResult with merged controls in input order, and applied
            decisions and conflicts sorted by key, overlay order, override order.
        """
        merged = list(controls)
        if not overlays:
            return OverlayMergeResult(merged_controls=merged)

        index = build_control_index(merged)
        winning: dict[str, OverlayAppliedDecision] = {}
        decisions: list[OverlayAppliedDecision] = []
        conflicts: list[OverlayConflict] = []

        for overlay_order, overlay in enumerate(overlays):
            keyed = [
                (key, position, override)
                for position, override in enumerate(overlay.overrides)
                if (key := override_key(override)) is not None
            ]
            keyed.sort(key=lambda item: (normalize_key(item[0]), item[1]))

            for override_order, (key, _, override) in enumerate(keyed):
                normalized = normalize_key(key)
                positions = index.get(normalized)
                if not positions:
                    continue

                outcome = outcome_for(override)
                decision = OverlayAppliedDecision(
                    key=key,
                    overlay_id=overlay.overlay_id,
                    overlay_name=overlay.name,
                    overlay_order=overlay_order,
                    override_order=override_order,
                    outcome=outcome,
                )
                decisions.append(decision)

                previous = winning.get(normalized)
                if previous is not None and outcomes_differ(previous.outcome, outcome):
                    conflicts.append(OverlayConflict(key=key, previous=previous, current=decision))
                winning[normalized] = decision

                for position in positions:
                    merged[position] = apply_outcome(merged[position], outcome)

        decisions.sort(key=lambda d: (normalize_key(d.key), d.overlay_order, d.override_order))
        conflicts.sort(
            key=lambda c: (normalize_key(c.key), c.current.overlay_order, c.current.override_order)
        )

        logger.debug(
            "Overlays merged",
            overlay_count=len(overlays),
            decision_count=len(decisions),
            conflict_count=len(conflicts),
        )
        return OverlayMergeResult(merged_controls=merged, applied_decisions=decisions, conflicts=conflicts)
