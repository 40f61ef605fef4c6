"""Remediation data generation that honors the bundle's recorded NA decisions.

Controls left NotApplicable by the overlay decisions recorded in
Reports/overlay_decisions.json are excluded. The decisions are replayed per
control across both of its keys, so Apply agrees with the merge the build ran.
"""

import json
from dataclasses import dataclass
from pathlib import Path

from aumos_mission_engine.adapters.content_loader import load_overlay_decisions, load_pack_controls
from aumos_mission_engine.build import layout
from aumos_mission_engine.policy.decisions import index_decisions, is_excluded_from_remediation


@dataclass(frozen=True)
class RemediationData:
    path: Path
    included_count: int
    excluded_count: int


def write_remediation_data(bundle_root: Path) -> RemediationData | None:
    """Write Apply/RemediationData/remediation_controls.json for a built bundle.

    Args:
        bundle_root: Root of a bundle produced by BundleBuilder.

    Returns:
        RemediationData with the written path and included/excluded counts, or
        None when the bundle carries no pack_controls.json.
    """
    if not (bundle_root / layout.PACK_CONTROLS_FILE).is_file():
        return None
    controls = load_pack_controls(bundle_root)
    decisions_by_key = index_decisions(load_overlay_decisions(bundle_root))

    included = [c for c in controls if not is_excluded_from_remediation(c, decisions_by_key)]
    payload = [
        {
            "controlId": c.control_id,
            "ruleId": c.external_ids.rule_id,
            "vulnId": c.external_ids.vuln_id,
            "title": c.title,
            "severity": c.severity,
            "fixText": c.fix_text,
        }
        for c in included
    ]

    path = bundle_root / layout.REMEDIATION_DATA_FILE
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(payload, indent=2, ensure_ascii=False) + "\n", encoding="utf-8", newline="\n")
    return RemediationData(path=path, included_count=len(included), excluded_count=len(controls) - len(included))
