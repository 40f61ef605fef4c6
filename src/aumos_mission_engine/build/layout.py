"""Bundle directory layout.

Every bundle root contains the same six top-level folders. File names used by
more than one component live here so readers and writers agree.
"""

from pathlib import Path

APPLY_DIR = "Apply"
VERIFY_DIR = "Verify"
MANUAL_DIR = "Manual"
EVIDENCE_DIR = "Evidence"
REPORTS_DIR = "Reports"
MANIFEST_DIR = "Manifest"

BUNDLE_DIRS = (APPLY_DIR, VERIFY_DIR, MANUAL_DIR, EVIDENCE_DIR, REPORTS_DIR, MANIFEST_DIR)

MANIFEST_FILE = f"{MANIFEST_DIR}/manifest.json"
PACK_CONTROLS_FILE = f"{MANIFEST_DIR}/pack_controls.json"
OVERLAYS_FILE = f"{MANIFEST_DIR}/overlays.json"
RUN_LOG_FILE = f"{MANIFEST_DIR}/run_log.txt"
HASH_MANIFEST_FILE = f"{MANIFEST_DIR}/file_hashes.sha256"

NA_SCOPE_REPORT_FILE = f"{REPORTS_DIR}/na_scope_filter_report.csv"
REVIEW_REPORT_FILE = f"{REPORTS_DIR}/review_required.csv"
OVERLAY_CONFLICTS_FILE = f"{REPORTS_DIR}/overlay_conflicts.csv"
OVERLAY_DECISIONS_FILE = f"{REPORTS_DIR}/overlay_decisions.json"
CONFLICT_REPORT_FILE = f"{REPORTS_DIR}/overlay_conflict_report.csv"
AUTOMATION_GATE_FILE = f"{REPORTS_DIR}/automation_gate.json"

ANSWER_TEMPLATE_FILE = f"{MANUAL_DIR}/answerfile.template.json"

APPLY_COMPLETE_MARKER = f"{APPLY_DIR}/apply.complete"
REMEDIATION_DATA_FILE = f"{APPLY_DIR}/RemediationData/remediation_controls.json"
MISSION_EVIDENCE_FILE = f"{EVIDENCE_DIR}/mission_evidence.json"


class PathBuilder:
    """Resolves bundle roots under a configured parent directory.

    Args:
        bundles_root: Parent directory for bundles without an explicit output root.
    """

    def __init__(self, bundles_root: Path) -> None:
        self._bundles_root = bundles_root

    def bundle_root(self, bundle_id: str) -> Path:
        return self._bundles_root / bundle_id
