"""Independent detection of cross-overlay conflicts on the raw overlay list.

Distinct from the merge step's transition list: this looks only at which
overlays target the same key and whether they disagree, and flags
disagreements on status as *blocking*. A bundle build refuses to proceed
on blocking conflicts unless auto-apply is forced.
"""

from collections.abc import Sequence

from aumos_mission_engine.core.models import (
    ControlOverride,
    DetectedOverlayConflict,
    Overlay,
    OverlayConflictReport,
)
from aumos_mission_engine.observability import get_logger
from aumos_mission_engine.policy.decisions import (
    classify_conflict,
    format_override_value,
    normalize_key,
    override_key,
)

logger = get_logger(__name__)


class OverlayConflictDetector:
    """Finds keys targeted by more than one overlay with differing outcomes.

    For each key the entry from the highest-precedence overlay wins; every
    earlier entry from a different overlay that disagrees with it is reported.
    """

    def detect(self, overlays: Sequence[Overlay]) -> OverlayConflictReport:
        """Detect conflicts across ``overlays``.

        Args:
            overlays: Overlays in precedence order (last wins).

        Returns:
            OverlayConflictReport sorted by control key, then overridden overlay id.
        """
        if len(overlays) < 2:
            return OverlayConflictReport()

        entries: dict[str, list[tuple[int, Overlay, ControlOverride]]] = {}
        display_keys: dict[str, str] = {}
        for overlay_index, overlay in enumerate(overlays):
            for override in overlay.overrides:
                key = override_key(override)
                if key is None:
                    continue
                normalized = normalize_key(key)
                display_keys.setdefault(normalized, key)
                entries.setdefault(normalized, []).append((overlay_index, overlay, override))

        conflicts: list[DetectedOverlayConflict] = []
        for normalized, key_entries in entries.items():
            if len(key_entries) < 2:
                continue
            key_entries.sort(key=lambda entry: entry[0])
            _, winning_overlay, winning_override = key_entries[-1]
            for _, overridden_overlay, overridden_override in key_entries[:-1]:
                if overridden_overlay.overlay_id == winning_overlay.overlay_id:
                    continue
                classification = classify_conflict(winning_override, overridden_override)
                if classification is None:
                    continue
                is_blocking, reason = classification
                conflicts.append(
                    DetectedOverlayConflict(
                        control_key=display_keys[normalized],
                        winning_overlay_id=winning_overlay.overlay_id,
                        overridden_overlay_id=overridden_overlay.overlay_id,
                        winning_value=format_override_value(winning_override),
                        overridden_value=format_override_value(overridden_override),
                        reason=reason,
                        is_blocking=is_blocking,
                    )
                )

        conflicts.sort(key=lambda c: (normalize_key(c.control_key), c.overridden_overlay_id.casefold()))
        report = OverlayConflictReport(conflicts=conflicts)
        if conflicts:
            logger.info(
                "Overlay conflicts detected",
                conflict_count=len(conflicts),
                blocking_count=report.blocking_conflict_count,
            )
        return report
