"""Tests for BundleBuilder and review-queue assembly."""

import json
from datetime import timedelta
from pathlib import Path

import pytest

from aumos_mission_engine.build import layout
from aumos_mission_engine.build.bundle_builder import NEW_RULE_REVIEW_REASON, BundleBuilder, build_review_queue
from aumos_mission_engine.core.models import (
    AutomationPolicy,
    BundleBuildRequest,
    CompiledControl,
    ContentPack,
    ControlOverride,
    ControlStatus,
    Profile,
    ScopeTag,
)
from aumos_mission_engine.errors import BlockingOverlayConflictError, BundleValidationError

from tests.conftest import FIXED_NOW, make_control, make_overlay


def _request(profile: Profile, pack: ContentPack, **kwargs) -> BundleBuildRequest:
    controls = kwargs.pop(
        "controls",
        [
            make_control(1),
            make_control(2, scope=ScopeTag.UNCLASSIFIED_ONLY),
            make_control(3, scope=ScopeTag.UNKNOWN, is_manual=True),
        ],
    )
    return BundleBuildRequest(profile=profile, pack=pack, controls=controls, bundle_id="bundle-1", **kwargs)


class TestBuildReviewQueue:
    """Review queue assembly order."""

    def test_open_controls_then_recent_rules_deduplicated(self) -> None:
        merged = [
            CompiledControl(control=make_control(1), status=ControlStatus.OPEN),
            CompiledControl(control=make_control(2), status=ControlStatus.PASS),
            CompiledControl(control=make_control(3), status=ControlStatus.OPEN, review_reason="Unknown"),
        ]
        queue = build_review_queue(merged, recent_control_ids={"C-2", "C-3"}, widen=True)

        assert [c.control.control_id for c in queue] == ["C-1", "C-3", "C-2"]
        assert queue[1].review_reason == "Unknown"
        assert queue[2].review_reason == NEW_RULE_REVIEW_REASON

    def test_not_widened_when_auto_apply_allowed(self) -> None:
        merged = [CompiledControl(control=make_control(2), status=ControlStatus.PASS)]
        assert build_review_queue(merged, recent_control_ids={"C-2"}, widen=False) == []

    def test_not_applicable_controls_are_dropped_last(self) -> None:
        merged = [CompiledControl(control=make_control(1), status=ControlStatus.NOT_APPLICABLE)]
        assert build_review_queue(merged, recent_control_ids={"C-1"}, widen=True) == []


class TestBundleBuild:
    """End-to-end bundle builds into tmp_path."""

    @pytest.mark.asyncio()
    async def test_build_writes_layout_reports_and_manifest(
        self, bundle_builder: BundleBuilder, profile: Profile, content_pack: ContentPack, tmp_path: Path
    ) -> None:
        result = await bundle_builder.build(_request(profile, content_pack))

        root = tmp_path / "bundles" / "bundle-1"
        assert result.bundle_root == root
        for folder in layout.BUNDLE_DIRS:
            assert (root / folder).is_dir()

        manifest = json.loads((root / layout.MANIFEST_FILE).read_text(encoding="utf-8"))
        assert manifest["bundleId"] == "bundle-1"
        assert manifest["totalControls"] == 3
        assert manifest["autoNaCount"] == 1
        assert manifest["reviewQueueCount"] == 2
        assert str(tmp_path) not in (root / layout.MANIFEST_FILE).read_text(encoding="utf-8")

        na_report = (root / layout.NA_SCOPE_REPORT_FILE).read_text(encoding="utf-8").splitlines()
        assert na_report[0] == "VulnId,RuleId,Title,Scope,Confidence,Reason"
        assert na_report[1].startswith("V-2,SV-2r1_rule,Control 2,UnclassifiedOnly,High,")

        review = (root / layout.REVIEW_REPORT_FILE).read_text(encoding="utf-8").splitlines()
        assert review[1:] == [
            "V-1,SV-1r1_rule,Control 1,Open status requires review",
            "V-3,SV-3r1_rule,Control 3,Unknown classification scope",
        ]

    @pytest.mark.asyncio()
    async def test_hash_manifest_covers_every_file_except_itself(
        self, bundle_builder: BundleBuilder, profile: Profile, content_pack: ContentPack
    ) -> None:
        result = await bundle_builder.build(_request(profile, content_pack))

        lines = result.hash_manifest_path.read_text(encoding="utf-8").splitlines()
        paths = [line.split("  ", 1)[1] for line in lines]
        assert paths == sorted(paths)
        assert layout.HASH_MANIFEST_FILE not in paths
        assert layout.MANIFEST_FILE in paths
        assert len(paths) == len(result.file_hashes)

    @pytest.mark.asyncio()
    async def test_identical_inputs_produce_identical_hash_manifests(
        self, bundle_builder: BundleBuilder, profile: Profile, content_pack: ContentPack, tmp_path: Path
    ) -> None:
        overlays = [make_overlay("A", ControlOverride(vuln_id="V-1", status_override="Pass"))]
        first = await bundle_builder.build(_request(profile, content_pack, overlays=overlays, output_root=tmp_path / "one"))
        second = await bundle_builder.build(
            _request(profile, content_pack, overlays=overlays, output_root=tmp_path / "two")
        )

        assert first.hash_manifest_path.read_bytes() == second.hash_manifest_path.read_bytes()
        assert first.manifest.run.run_id == second.manifest.run.run_id

    @pytest.mark.asyncio()
    async def test_blocking_conflict_aborts_before_writing_manifest(
        self, bundle_builder: BundleBuilder, profile: Profile, content_pack: ContentPack, tmp_path: Path
    ) -> None:
        overlays = [
            make_overlay("A", ControlOverride(rule_id="SV-1r1_rule", status_override="NotApplicable")),
            make_overlay("B", ControlOverride(rule_id="SV-1r1_rule", status_override="Pass")),
        ]
        root = tmp_path / "blocked"

        with pytest.raises(BlockingOverlayConflictError) as exc_info:
            await bundle_builder.build(_request(profile, content_pack, overlays=overlays, output_root=root))

        message = str(exc_info.value)
        assert "RULE:SV-1r1_rule" in message
        assert "winning=B" in message
        assert "overridden=A" in message
        assert root.is_dir()
        assert not (root / layout.MANIFEST_FILE).exists()
        assert not (root / layout.HASH_MANIFEST_FILE).exists()

    @pytest.mark.asyncio()
    async def test_force_auto_apply_builds_despite_blocking_conflict(
        self, bundle_builder: BundleBuilder, profile: Profile, content_pack: ContentPack
    ) -> None:
        overlays = [
            make_overlay("A", ControlOverride(vuln_id="V-1", status_override="NotApplicable")),
            make_overlay("B", ControlOverride(vuln_id="V-1", status_override="Pass")),
        ]
        result = await bundle_builder.build(_request(profile, content_pack, overlays=overlays, force_auto_apply=True))

        assert result.conflict_report.blocking_conflict_count == 1
        report = (result.bundle_root / layout.CONFLICT_REPORT_FILE).read_text(encoding="utf-8").splitlines()
        assert report[0] == "ControlKey,WinningOverlayId,OverriddenOverlayId,WinningValue,OverriddenValue,IsBlocking,Reason"
        assert len(report) == 2
        assert result.manifest.conflict_count == 1

    @pytest.mark.asyncio()
    async def test_recent_rules_widen_review_queue_inside_grace_period(
        self, bundle_builder: BundleBuilder, profile: Profile, content_pack: ContentPack
    ) -> None:
        fresh_pack = content_pack.model_copy(update={"release_date": FIXED_NOW - timedelta(days=5)})
        controls = [make_control(1, benchmark_date=FIXED_NOW - timedelta(days=5))]
        overlays = [make_overlay("A", ControlOverride(vuln_id="V-1", status_override="Pass"))]

        result = await bundle_builder.build(_request(profile, fresh_pack, controls=controls, overlays=overlays))

        assert [c.review_reason for c in result.review_queue] == [NEW_RULE_REVIEW_REASON]
        gate = json.loads((result.bundle_root / layout.AUTOMATION_GATE_FILE).read_text(encoding="utf-8"))
        assert gate["autoApplyAllowed"] is False
        assert gate["newRuleCount"] == 1

    @pytest.mark.asyncio()
    async def test_forced_build_inside_grace_period_records_auto_apply_allowed(
        self, bundle_builder: BundleBuilder, profile: Profile, content_pack: ContentPack
    ) -> None:
        fresh_pack = content_pack.model_copy(update={"release_date": FIXED_NOW - timedelta(days=5)})
        controls = [make_control(1, benchmark_date=FIXED_NOW - timedelta(days=5))]
        overlays = [make_overlay("A", ControlOverride(vuln_id="V-1", status_override="Pass"))]

        result = await bundle_builder.build(
            _request(profile, fresh_pack, controls=controls, overlays=overlays, force_auto_apply=True)
        )

        assert result.review_queue == []
        gate = json.loads((result.bundle_root / layout.AUTOMATION_GATE_FILE).read_text(encoding="utf-8"))
        assert gate["forceAutoApply"] is True
        assert gate["autoApplyAllowed"] is True
        assert gate["newRuleCount"] == 1

    @pytest.mark.asyncio()
    async def test_zero_grace_does_not_widen_review_queue(
        self, bundle_builder: BundleBuilder, profile: Profile, content_pack: ContentPack
    ) -> None:
        no_grace = profile.model_copy(update={"automation_policy": AutomationPolicy(new_rule_grace_days=0)})
        controls = [make_control(1, benchmark_date=FIXED_NOW)]
        overlays = [make_overlay("A", ControlOverride(vuln_id="V-1", status_override="Pass"))]

        result = await bundle_builder.build(_request(no_grace, content_pack, controls=controls, overlays=overlays))
        assert result.review_queue == []

    @pytest.mark.asyncio()
    async def test_answer_template_lists_manual_controls_that_are_not_na(
        self, bundle_builder: BundleBuilder, profile: Profile, content_pack: ContentPack
    ) -> None:
        controls = [
            make_control(1, is_manual=True),
            make_control(2, is_manual=True, scope=ScopeTag.UNCLASSIFIED_ONLY),
            make_control(3),
        ]
        result = await bundle_builder.build(_request(profile, content_pack, controls=controls))

        template = json.loads((result.bundle_root / layout.ANSWER_TEMPLATE_FILE).read_text(encoding="utf-8"))
        assert [answer["vulnId"] for answer in template["answers"]] == ["V-1"]

    @pytest.mark.asyncio()
    async def test_output_root_that_is_a_file_is_rejected(
        self, bundle_builder: BundleBuilder, profile: Profile, content_pack: ContentPack, tmp_path: Path
    ) -> None:
        target = tmp_path / "not-a-dir"
        target.write_text("x", encoding="utf-8")

        with pytest.raises(BundleValidationError):
            await bundle_builder.build(_request(profile, content_pack, output_root=target))

    @pytest.mark.asyncio()
    async def test_blank_bundle_id_generates_one(
        self, bundle_builder: BundleBuilder, profile: Profile, content_pack: ContentPack
    ) -> None:
        request = _request(profile, content_pack).model_copy(update={"bundle_id": "   "})
        result = await bundle_builder.build(request)
        assert len(result.bundle_id) == 32
