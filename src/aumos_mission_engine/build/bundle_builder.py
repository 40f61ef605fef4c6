"""Bundle builder: compiles, merges and writes one self-contained bundle.

Build steps:
1. Validate the request and resolve the bundle root.
2. Create the fixed folder layout and copy apply templates (if configured).
3. Compile controls against the profile (classification scope service).
4. Merge overlays (OverlayMergeService).
5. Build the review queue and evaluate the release-age gate.
6. Detect blocking overlay conflicts on the raw overlays; abort unless forced.
7. Write reports, manual answer template and manifest files.
8. Hash every file except the hash manifest itself and write
   Manifest/file_hashes.sha256.

Determinism: every timestamp comes from the injected clock and the run id is
derived from the bundle id and that timestamp, so identical inputs produce a
byte-identical hash manifest regardless of the output root.

Concurrency: builds of different bundle ids share no state. No lock is taken
on the bundle directory; callers must not build the same bundle root from two
tasks at once.
"""

import asyncio
import shutil
import uuid
from collections.abc import Sequence
from pathlib import Path

from aumos_mission_engine.build import layout, reports
from aumos_mission_engine.build.overlay_merge import OverlayMergeService
from aumos_mission_engine.core.context import OperatorContext
from aumos_mission_engine.core.interfaces import IClassificationScopeService, IHashingService, IPathBuilder
from aumos_mission_engine.core.models import (
    BundleBuildRequest,
    BundleBuildResult,
    BundleManifest,
    CompiledControl,
    ControlStatus,
    FileHashEntry,
    RunManifest,
)
from aumos_mission_engine.errors import BlockingOverlayConflictError, BundleValidationError
from aumos_mission_engine.observability import get_logger
from aumos_mission_engine.policy.age_gate import ReleaseAgeGate
from aumos_mission_engine.policy.conflict_detector import OverlayConflictDetector
from aumos_mission_engine.policy.decisions import is_not_applicable

logger = get_logger(__name__)

NEW_RULE_REVIEW_REASON = "New rule within release grace period"


def build_review_queue(
    merged: Sequence[CompiledControl],
    recent_control_ids: set[str],
    widen: bool,
) -> list[CompiledControl]:
    """Assemble the review queue from merged controls.

    Order of operations: take every merged control still Open, then (when
    ``widen`` is set) add recently introduced rules, drop duplicates by
    control id keeping the first occurrence, and only then exclude every
    control whose final status is NotApplicable.

    Args:
        merged: Controls after the overlay merge, in pack order.
        recent_control_ids: Ids of controls inside the release grace window.
        widen: True when auto-apply is neither permitted nor forced.

    Returns:
        Review queue in pack order.
    """
    candidates = [c for c in merged if c.status == ControlStatus.OPEN]
    if widen:
        candidates.extend(
            c.model_copy(update={"needs_review": True, "review_reason": c.review_reason or NEW_RULE_REVIEW_REASON})
            for c in merged
            if c.control.control_id in recent_control_ids
        )

    seen: set[str] = set()
    queue: list[CompiledControl] = []
    for compiled in candidates:
        if compiled.control.control_id in seen:
            continue
        seen.add(compiled.control.control_id)
        queue.append(compiled)
    return [c for c in queue if not is_not_applicable(c.status)]


class BundleBuilder:
    """Produces a bundle directory plus a content-hash manifest proving its integrity.

    Args:
        classification: Compile service resolving initial control statuses.
        hashing: File hashing service.
        paths: Resolves the bundle root when the request has no output root.
        context: Operator context; its clock stamps every written timestamp.
        merge_service: Overlay merge; a default instance is used when omitted.
        conflict_detector: Blocking conflict detector; default when omitted.
        apply_template_root: Directory copied into Apply/ when it exists.
        tool_version: Version string recorded in the run manifest.
    """

    def __init__(
        self,
        classification: IClassificationScopeService,
        hashing: IHashingService,
        paths: IPathBuilder,
        context: OperatorContext,
        merge_service: OverlayMergeService | None = None,
        conflict_detector: OverlayConflictDetector | None = None,
        apply_template_root: Path | None = None,
        tool_version: str = "0.1.0",
    ) -> None:
        self._classification = classification
        self._hashing = hashing
        self._paths = paths
        self._context = context
        self._merge = merge_service or OverlayMergeService()
        self._detector = conflict_detector or OverlayConflictDetector()
        self._age_gate = ReleaseAgeGate(context.clock)
        self._apply_template_root = apply_template_root
        self._tool_version = tool_version

    async def build(self, request: BundleBuildRequest) -> BundleBuildResult:
        """Build a bundle.

        Args:
            request: Profile, pack, controls, overlays and output options.

        Returns:
            BundleBuildResult with the manifest, review queue, conflict report
            and file hash entries.

        Raises:
            BundleValidationError: If the output root exists as a regular file.
            BlockingOverlayConflictError: If overlays disagree on a control's
                status and ``force_auto_apply`` is False. The bundle root and
                its folders exist but no reports or manifest are written.
            OSError: File I/O failures propagate unchanged.
        """
        bundle_id = (request.bundle_id or "").strip() or uuid.uuid4().hex
        root = request.output_root or self._paths.bundle_root(bundle_id)
        if root.exists() and not root.is_dir():
            raise BundleValidationError(
                f"Bundle root '{root}' exists and is not a directory.",
                details={"bundle_root": str(root)},
            )

        built_at = self._context.now()
        logger.info("Building bundle", bundle_id=bundle_id, bundle_root=str(root))

        for folder in layout.BUNDLE_DIRS:
            (root / folder).mkdir(parents=True, exist_ok=True)
        await self._copy_apply_templates(root)

        profile, pack = request.profile, request.pack
        compiled = self._classification.compile(profile, request.controls)
        merge_result = self._merge.merge(compiled.controls, request.overlays)
        merged = merge_result.merged_controls

        grace_days = profile.automation_policy.new_rule_grace_days
        auto_apply_allowed = self._age_gate.should_auto_apply(profile, pack)
        recent = self._age_gate.recent_controls([c.control for c in merged], grace_days)
        review_queue = build_review_queue(
            merged,
            recent_control_ids={control.control_id for control in recent},
            widen=not (auto_apply_allowed or request.force_auto_apply),
        )

        conflict_report = self._detector.detect(request.overlays)
        if conflict_report.has_blocking_conflicts:
            if not request.force_auto_apply:
                logger.warning(
                    "Bundle build blocked by overlay conflicts",
                    bundle_id=bundle_id,
                    blocking_count=conflict_report.blocking_conflict_count,
                )
                raise BlockingOverlayConflictError(conflict_report.blocking_conflicts)
            logger.warning(
                "Blocking overlay conflicts overridden by force_auto_apply",
                bundle_id=bundle_id,
                blocking_count=conflict_report.blocking_conflict_count,
            )

        auto_na_count = sum(1 for c in merged if is_not_applicable(c.status))
        run_id = uuid.uuid5(uuid.NAMESPACE_URL, f"aumos-mission:{bundle_id}:{built_at.isoformat()}").hex
        manifest = BundleManifest(
            bundle_id=bundle_id,
            run=RunManifest(
                run_id=run_id,
                system_name=request.system_name or profile.name,
                os_target=profile.os_target,
                role_template=profile.role_template,
                profile_id=profile.profile_id,
                profile_name=profile.name,
                pack_id=pack.pack_id,
                pack_name=pack.name,
                timestamp=built_at,
                tool_version=self._tool_version,
            ),
            pack=pack,
            profile=profile,
            total_controls=len(merged),
            auto_na_count=auto_na_count,
            review_queue_count=len(review_queue),
            overlay_count=len(request.overlays),
            conflict_count=len(merge_result.conflicts),
        )

        files = {
            layout.NA_SCOPE_REPORT_FILE: reports.render_na_scope_report(merged),
            layout.REVIEW_REPORT_FILE: reports.render_review_report(review_queue),
            layout.OVERLAY_CONFLICTS_FILE: reports.render_overlay_conflicts(merge_result.conflicts),
            layout.OVERLAY_DECISIONS_FILE: reports.render_overlay_decisions(merge_result.applied_decisions),
            layout.CONFLICT_REPORT_FILE: reports.render_conflict_report(conflict_report),
            layout.AUTOMATION_GATE_FILE: reports.render_automation_gate(
                force_auto_apply=request.force_auto_apply,
                release_date=pack.release_date,
                grace_days=grace_days,
                auto_apply_allowed=auto_apply_allowed or request.force_auto_apply,
                new_rule_count=len(recent),
            ),
            layout.ANSWER_TEMPLATE_FILE: reports.render_answer_template(
                profile.profile_id, pack.pack_id, built_at, merged
            ),
            layout.MANIFEST_FILE: reports.render_json(manifest.model_dump(mode="json", by_alias=True)),
            layout.PACK_CONTROLS_FILE: reports.render_json(
                [
                    control.model_dump(mode="json", by_alias=True)
                    for control in sorted(request.controls, key=lambda c: c.control_id.casefold())
                ]
            ),
            layout.OVERLAYS_FILE: reports.render_json(
                [overlay.model_dump(mode="json", by_alias=True) for overlay in request.overlays]
            ),
            layout.RUN_LOG_FILE: (
                f"{built_at.isoformat()} bundle={bundle_id} run={run_id} profile={profile.name} "
                f"pack={pack.name} controls={len(merged)} auto_na={auto_na_count} "
                f"review={len(review_queue)} overlays={len(request.overlays)} "
                f"conflicts={len(merge_result.conflicts)}\n"
            ),
        }
        for relative_path, content in files.items():
            _write_text(root / relative_path, content)

        file_hashes = await self._write_hash_manifest(root)

        logger.info(
            "Bundle built",
            bundle_id=bundle_id,
            total_controls=len(merged),
            auto_na_count=auto_na_count,
            review_queue_count=len(review_queue),
            file_count=len(file_hashes),
        )
        return BundleBuildResult(
            bundle_id=bundle_id,
            bundle_root=root,
            manifest_path=root / layout.MANIFEST_FILE,
            hash_manifest_path=root / layout.HASH_MANIFEST_FILE,
            manifest=manifest,
            review_queue=review_queue,
            conflict_report=conflict_report,
            file_hashes=file_hashes,
        )

    async def _copy_apply_templates(self, root: Path) -> None:
        source = self._apply_template_root
        if source is None or not source.is_dir():
            logger.debug("No apply templates to copy", template_root=str(source) if source else None)
            return
        await asyncio.to_thread(shutil.copytree, source, root / layout.APPLY_DIR, dirs_exist_ok=True)

    async def _write_hash_manifest(self, root: Path) -> list[FileHashEntry]:
        hash_manifest = root / layout.HASH_MANIFEST_FILE
        relative_paths = sorted(
            path.relative_to(root).as_posix()
            for path in root.rglob("*")
            if path.is_file() and path != hash_manifest
        )
        entries = [
            FileHashEntry(sha256=await self._hashing.sha256_file(root / relative), relative_path=relative)
            for relative in relative_paths
        ]
        _write_text(hash_manifest, "".join(f"{e.sha256}  {e.relative_path}\n" for e in entries))
        return entries


def _write_text(path: Path, content: str) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(content, encoding="utf-8", newline="\n")
