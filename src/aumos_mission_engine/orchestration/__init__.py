"""Mission orchestration: phase state machine, timeline recording, break-glass gating."""

from aumos_mission_engine.orchestration.break_glass import BreakGlassGate, validate_break_glass
from aumos_mission_engine.orchestration.orchestrator import MissionOrchestrator
from aumos_mission_engine.orchestration.timeline import MissionTimeline

__all__ = [
    "BreakGlassGate",
    "MissionOrchestrator",
    "MissionTimeline",
    "validate_break_glass",
]
