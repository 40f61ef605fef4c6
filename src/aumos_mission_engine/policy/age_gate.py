"""Release-age gate for automatic application of new content.

A content pack is auto-applied only once its release date is older than the
profile's grace period. Within a pack, rules whose benchmark date falls inside
the grace window are "recently introduced" and are held for review.
"""

from collections.abc import Sequence
from datetime import UTC, datetime, timedelta

from aumos_mission_engine.core.interfaces import IClock
from aumos_mission_engine.core.models import ContentPack, ControlRecord, Profile


def _as_utc(value: datetime) -> datetime:
    return value if value.tzinfo is not None else value.replace(tzinfo=UTC)


class ReleaseAgeGate:
    """Time gate over pack release dates and rule benchmark dates.

    Args:
        clock: Time source; the gate never reads the wall clock directly.
    """

    def __init__(self, clock: IClock) -> None:
        self._clock = clock

    def should_auto_apply(self, profile: Profile, pack: ContentPack) -> bool:
        """Decide whether the pack is old enough to apply without review.

        A pack without a release date is never auto-applied. A grace period of
        zero or less always allows auto-apply.
        """
        if pack.release_date is None:
            return False
        grace_days = profile.automation_policy.new_rule_grace_days
        if grace_days <= 0:
            return True
        return self._clock.now() >= _as_utc(pack.release_date) + timedelta(days=grace_days)

    def _cutoff(self, grace_days: int) -> datetime:
        return self._clock.now() - timedelta(days=grace_days)

    def _is_recent(self, control: ControlRecord, cutoff: datetime) -> bool:
        if control.revision is None or control.revision.benchmark_date is None:
            return False
        return _as_utc(control.revision.benchmark_date) >= cutoff

    def eligible_controls(self, controls: Sequence[ControlRecord], grace_days: int) -> list[ControlRecord]:
        """Controls old enough (or undated) to be applied automatically."""
        cutoff = self._cutoff(grace_days)
        return [control for control in controls if not self._is_recent(control, cutoff)]

    def recent_controls(self, controls: Sequence[ControlRecord], grace_days: int) -> list[ControlRecord]:
        """Controls introduced inside the grace window."""
        if grace_days <= 0:
            return []
        cutoff = self._cutoff(grace_days)
        return [control for control in controls if self._is_recent(control, cutoff)]
