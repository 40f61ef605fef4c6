"""Break-glass gate for high-risk mission flags.

Skipping the pre-change snapshot or forcing auto-apply past blocking overlay
conflicts requires an explicit acknowledgment and a justification. The gate
validates before any run, event or audit entry exists, then records exactly
one ``break-glass`` audit entry once validation passes.
"""

from aumos_mission_engine.adapters.audit_trail import AuditTrailService
from aumos_mission_engine.core.models import AuditEntry
from aumos_mission_engine.errors import BreakGlassRequiredError

BREAK_GLASS_ACTION = "break-glass"
SKIP_SNAPSHOT = "skip-snapshot"
FORCE_AUTO_APPLY = "force-auto-apply"


def validate_break_glass(
    bypass: str,
    acknowledged: bool,
    reason: str | None,
    min_reason_length: int = 8,
) -> str:
    """Check the acknowledgment and justification for a bypass.

    Args:
        bypass: Name of the high-risk flag (e.g. ``skip-snapshot``).
        acknowledged: Operator acknowledgment flag.
        reason: Free-text justification.
        min_reason_length: Minimum length of the trimmed reason.

    Returns:
        The trimmed reason.

    Raises:
        BreakGlassRequiredError: If not acknowledged or the reason is too short.
    """
    if not acknowledged:
        raise BreakGlassRequiredError(
            f"{bypass} is high risk and requires explicit break-glass acknowledgment.",
            details={"bypass": bypass},
        )
    trimmed = (reason or "").strip()
    if len(trimmed) < min_reason_length:
        raise BreakGlassRequiredError(
            f"Break-glass reason for {bypass} must be at least {min_reason_length} characters.",
            details={"bypass": bypass, "min_reason_length": min_reason_length},
        )
    return trimmed


class BreakGlassGate:
    """Validates bypass requests and writes their audit record.

    Args:
        audit: Audit trail service. A gate without one refuses every bypass.
        min_reason_length: Minimum justification length.
    """

    def __init__(self, audit: AuditTrailService | None, min_reason_length: int = 8) -> None:
        self._audit = audit
        self._min_reason_length = min_reason_length

    def require(self, bypass: str, acknowledged: bool, reason: str | None) -> str:
        """Validate a bypass without side effects. Returns the trimmed reason."""
        trimmed = validate_break_glass(bypass, acknowledged, reason, self._min_reason_length)
        if self._audit is None:
            raise BreakGlassRequiredError(
                f"{bypass} requires an audit trail to record the break-glass acknowledgment.",
                details={"bypass": bypass},
            )
        return trimmed

    async def record(self, operation: str, bypass: str, target: str, reason: str) -> AuditEntry:
        """Write the ``break-glass`` audit entry. Failures propagate to abort the operation."""
        if self._audit is None:
            raise BreakGlassRequiredError(f"{bypass} requires an audit trail.", details={"bypass": bypass})
        return await self._audit.record(
            AuditEntry(
                action=BREAK_GLASS_ACTION,
                target=target,
                result="acknowledged",
                detail=f"Action={operation}; Bypass={bypass}; Reason={reason}",
            )
        )
