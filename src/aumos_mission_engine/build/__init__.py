"""Bundle construction: overlay merge, report rendering and the bundle builder."""

from aumos_mission_engine.build.bundle_builder import BundleBuilder, build_review_queue
from aumos_mission_engine.build.layout import PathBuilder
from aumos_mission_engine.build.overlay_merge import OverlayMergeService

__all__ = [
    "BundleBuilder",
    "OverlayMergeService",
    "PathBuilder",
    "build_review_queue",
]
