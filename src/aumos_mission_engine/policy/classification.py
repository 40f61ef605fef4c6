"""Default compile step: resolve each control's initial status from classification scope."""

from collections.abc import Sequence

from aumos_mission_engine.core.models import (
    ClassificationMode,
    CompiledControl,
    CompiledControls,
    ControlRecord,
    ControlStatus,
    Profile,
    ScopeTag,
)

# Scope that is out of bounds for each system classification.
_OUT_OF_SCOPE = {
    ClassificationMode.CLASSIFIED: ScopeTag.UNCLASSIFIED_ONLY,
    ClassificationMode.UNCLASSIFIED: ScopeTag.CLASSIFIED_ONLY,
}


class ClassificationScopeService:
    """Marks out-of-scope controls NotApplicable and flags uncertain ones for review.

    - NA policy disabled: every control is Open.
    - Scope out of bounds for the profile's mode with confidence at or above
      the threshold: NotApplicable, comment from the NA template.
    - Same scope with lower confidence: Open, flagged for review.
    - Unknown scope on a Classified/Unclassified system: Open, flagged for review.
    - Mixed systems: everything Open.
    """

    def compile(self, profile: Profile, controls: Sequence[ControlRecord]) -> CompiledControls:
        compiled = [self._compile_one(profile, control) for control in controls]
        return CompiledControls(
            controls=compiled,
            review_queue=[c for c in compiled if c.needs_review],
        )

    def _compile_one(self, profile: Profile, control: ControlRecord) -> CompiledControl:
        policy = profile.na_policy
        if not policy.auto_na_out_of_scope:
            return CompiledControl(control=control, status=ControlStatus.OPEN)

        out_of_scope = _OUT_OF_SCOPE.get(profile.classification_mode)
        if out_of_scope is None:
            return CompiledControl(control=control, status=ControlStatus.OPEN)

        scope = control.applicability.classification_scope
        if scope == out_of_scope:
            if control.applicability.confidence.rank >= policy.confidence_threshold.rank:
                return CompiledControl(
                    control=control,
                    status=ControlStatus.NOT_APPLICABLE,
                    comment=policy.default_na_comment_template.format(
                        scope=scope.value, mode=profile.classification_mode.value
                    ),
                )
            return CompiledControl(
                control=control,
                status=ControlStatus.OPEN,
                needs_review=True,
                review_reason=f"Low confidence scope match: {scope.value}",
            )

        if scope == ScopeTag.UNKNOWN:
            return CompiledControl(
                control=control,
                status=ControlStatus.OPEN,
                needs_review=True,
                review_reason="Unknown classification scope",
            )

        return CompiledControl(control=control, status=ControlStatus.OPEN)
