"""Pure policy decisions: key normalization, conflict detection, age gating, classification scope."""

from aumos_mission_engine.policy.age_gate import ReleaseAgeGate
from aumos_mission_engine.policy.classification import ClassificationScopeService
from aumos_mission_engine.policy.conflict_detector import OverlayConflictDetector

__all__ = [
    "ClassificationScopeService",
    "OverlayConflictDetector",
    "ReleaseAgeGate",
]
