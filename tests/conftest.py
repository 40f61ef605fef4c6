"""Test fixtures for aumos-mission-engine.

Provides:
- fixed_clock / operator_context: deterministic time and identity
- make_control / make_overlay: builders for domain records
- profile / content_pack: a baseline classified workstation profile and pack
- memory_ledger / memory_audit_store / audit_service: in-memory stores
- sql_ledger / sql_audit_store: SQLite-backed stores in tmp_path
- mock_apply_executor / mock_verification: AsyncMock collaborators
"""

from collections.abc import AsyncGenerator
from datetime import UTC, datetime
from pathlib import Path
from unittest.mock import AsyncMock

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from aumos_mission_engine.adapters.audit_trail import AuditTrailService, InMemoryAuditTrailStore, SqlAuditTrailStore
from aumos_mission_engine.adapters.database import create_engine_with_schema
from aumos_mission_engine.adapters.hashing import Sha256HashingService
from aumos_mission_engine.adapters.mission_ledger import InMemoryMissionLedger, SqlMissionLedger
from aumos_mission_engine.adapters.orm import AuditBase, LedgerBase
from aumos_mission_engine.build.bundle_builder import BundleBuilder
from aumos_mission_engine.build.layout import PathBuilder
from aumos_mission_engine.core.context import FixedClock, OperatorContext
from aumos_mission_engine.core.models import (
    ApplyResult,
    Applicability,
    ClassificationMode,
    Confidence,
    ContentPack,
    ControlOverride,
    ControlRecord,
    ExternalIds,
    OsTarget,
    Overlay,
    Profile,
    RevisionInfo,
    RoleTemplate,
    ScopeTag,
    VerificationToolRun,
    VerificationWorkflowResult,
)
from aumos_mission_engine.policy.classification import ClassificationScopeService

FIXED_NOW = datetime(2026, 3, 1, 12, 0, 0, tzinfo=UTC)


def make_control(
    number: int,
    scope: ScopeTag = ScopeTag.BOTH,
    confidence: Confidence = Confidence.HIGH,
    benchmark_date: datetime | None = None,
    is_manual: bool = False,
    title: str | None = None,
) -> ControlRecord:
    """Build a ControlRecord with rule id ``SV-<n>r1_rule`` and vuln id ``V-<n>``."""
    return ControlRecord(
        control_id=f"C-{number}",
        external_ids=ExternalIds(vuln_id=f"V-{number}", rule_id=f"SV-{number}r1_rule"),
        title=title or f"Control {number}",
        severity="medium",
        fix_text=f"Fix control {number}",
        is_manual=is_manual,
        applicability=Applicability(classification_scope=scope, confidence=confidence),
        revision=RevisionInfo(pack_name="Test Pack", benchmark_date=benchmark_date) if benchmark_date else None,
    )


def make_overlay(overlay_id: str, *overrides: ControlOverride, name: str | None = None) -> Overlay:
    return Overlay(overlay_id=overlay_id, name=name or f"Overlay {overlay_id}", overrides=list(overrides))


@pytest.fixture()
def fixed_clock() -> FixedClock:
    """Return a clock frozen at FIXED_NOW."""
    return FixedClock(FIXED_NOW)


@pytest.fixture()
def operator_context(fixed_clock: FixedClock) -> OperatorContext:
    """Return a deterministic operator context.

    Args:
        fixed_clock: Injected fixed clock fixture.

    Returns:
        OperatorContext for actor ``tester`` on host ``test-host``.
    """
    return OperatorContext(actor="tester", host="test-host", clock=fixed_clock)


@pytest.fixture()
def profile() -> Profile:
    """Return a classified workstation profile with a 30-day grace period."""
    return Profile(
        profile_id="profile-1",
        name="Classified Workstation",
        os_target=OsTarget.WIN11,
        role_template=RoleTemplate.WORKSTATION,
        classification_mode=ClassificationMode.CLASSIFIED,
    )


@pytest.fixture()
def content_pack() -> ContentPack:
    """Return a pack released well before FIXED_NOW."""
    return ContentPack(
        pack_id="pack-1",
        name="Test Pack",
        imported_at=datetime(2026, 1, 10, tzinfo=UTC),
        release_date=datetime(2026, 1, 1, tzinfo=UTC),
        version="1",
        release="1",
    )


@pytest.fixture()
def bundle_builder(operator_context: OperatorContext, tmp_path: Path) -> BundleBuilder:
    """Return a BundleBuilder wired with the default classification and hashing services."""
    return BundleBuilder(
        classification=ClassificationScopeService(),
        hashing=Sha256HashingService(),
        paths=PathBuilder(tmp_path / "bundles"),
        context=operator_context,
    )


@pytest.fixture()
def memory_ledger() -> InMemoryMissionLedger:
    return InMemoryMissionLedger()


@pytest.fixture()
def memory_audit_store() -> InMemoryAuditTrailStore:
    return InMemoryAuditTrailStore()


@pytest.fixture()
def audit_service(memory_audit_store: InMemoryAuditTrailStore, operator_context: OperatorContext) -> AuditTrailService:
    return AuditTrailService(memory_audit_store, operator_context)


@pytest_asyncio.fixture()
async def sql_ledger(tmp_path: Path) -> AsyncGenerator[SqlMissionLedger, None]:
    """Return a SqlMissionLedger on a fresh SQLite file."""
    engine, factory = await create_engine_with_schema(
        f"sqlite+aiosqlite:///{tmp_path / 'ledger.db'}", LedgerBase.metadata
    )
    yield SqlMissionLedger(factory)
    await engine.dispose()


@pytest_asyncio.fixture()
async def sql_audit_sessions(tmp_path: Path) -> AsyncGenerator[async_sessionmaker[AsyncSession], None]:
    """Yield a session factory for a fresh SQLite audit trail database."""
    engine, factory = await create_engine_with_schema(
        f"sqlite+aiosqlite:///{tmp_path / 'audit.db'}", AuditBase.metadata
    )
    yield factory
    await engine.dispose()


@pytest.fixture()
def sql_audit_store(sql_audit_sessions: async_sessionmaker[AsyncSession]) -> SqlAuditTrailStore:
    return SqlAuditTrailStore(sql_audit_sessions)


@pytest.fixture()
def mock_apply_executor() -> AsyncMock:
    """Create a mock apply executor that succeeds with two steps.

    Returns:
        AsyncMock whose run() returns an ApplyResult.
    """
    executor = AsyncMock()
    executor.run.return_value = ApplyResult(log_path=None, steps=["registry", "services"])
    return executor


@pytest.fixture()
def mock_verification() -> AsyncMock:
    """Create a mock verification workflow that reports every requested tool as executed.

    Returns:
        AsyncMock whose run() echoes the tool name back as an executed run.
    """

    async def run(output_root: Path, tool_options):  # noqa: ARG001
        return VerificationWorkflowResult(
            consolidated_counts={"xml": 3},
            tool_runs=[VerificationToolRun(tool=tool_options.tool, executed=True, result_count=3)],
        )

    workflow = AsyncMock()
    workflow.run.side_effect = run
    return workflow
