"""AumOS Mission Engine service entry point.

Initializes the FastAPI application with:
- Mission ledger database (runs + timeline)
- Audit database for the hash-chained audit trail
- structlog logging configured from settings
- A MissionOrchestrator on app.state when an apply script is configured
"""

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI

from aumos_mission_engine import __version__
from aumos_mission_engine.adapters.audit_trail import AuditTrailService, SqlAuditTrailStore
from aumos_mission_engine.adapters.database import close_databases, init_audit_db, init_ledger_db
from aumos_mission_engine.adapters.hashing import Sha256HashingService
from aumos_mission_engine.adapters.mission_ledger import SqlMissionLedger
from aumos_mission_engine.adapters.process_runner import CommandVerificationWorkflow, ScriptApplyExecutor
from aumos_mission_engine.api.router import register_exception_handlers, router
from aumos_mission_engine.build.bundle_builder import BundleBuilder
from aumos_mission_engine.build.layout import PathBuilder
from aumos_mission_engine.core.context import OperatorContext
from aumos_mission_engine.core.interfaces import IMissionLedger
from aumos_mission_engine.errors import ValidationError
from aumos_mission_engine.observability import configure_logging, get_logger
from aumos_mission_engine.orchestration.orchestrator import MissionOrchestrator
from aumos_mission_engine.policy.classification import ClassificationScopeService
from aumos_mission_engine.settings import Settings

logger = get_logger(__name__)


def create_orchestrator(
    settings: Settings,
    ledger: IMissionLedger | None = None,
    audit: AuditTrailService | None = None,
    context: OperatorContext | None = None,
) -> MissionOrchestrator:
    """Wire a MissionOrchestrator and its BundleBuilder from settings.

    Args:
        settings: Service settings.
        ledger: Mission ledger for run and timeline records.
        audit: Audit trail service; required for break-glass flags.
        context: Operator context; read from the environment when omitted.

    Returns:
        MissionOrchestrator using the subprocess apply executor and
        verification workflow.

    Raises:
        ValidationError: If no apply script is configured.
    """
    if settings.apply_script_path is None:
        raise ValidationError(
            "No apply script configured. Set AUMOS_MISSION_APPLY_SCRIPT_PATH.",
            details={"setting": "apply_script_path"},
        )
    context = context or OperatorContext.from_environment()
    hashing = Sha256HashingService()
    builder = BundleBuilder(
        classification=ClassificationScopeService(),
        hashing=hashing,
        paths=PathBuilder(settings.bundles_root),
        context=context,
        apply_template_root=settings.apply_template_root,
        tool_version=settings.tool_version,
    )
    return MissionOrchestrator(
        builder=builder,
        apply_executor=ScriptApplyExecutor(
            settings.apply_script_path,
            interpreter=settings.apply_interpreter,
            timeout=settings.process_timeout_seconds,
        ),
        verification=CommandVerificationWorkflow(timeout=settings.process_timeout_seconds),
        hashing=hashing,
        context=context,
        ledger=ledger,
        audit=audit,
        min_break_glass_reason_length=settings.break_glass_min_reason_length,
    )


def create_app(settings: Settings | None = None) -> FastAPI:
    """Build the FastAPI application.

    Args:
        settings: Settings to use; read from the environment when omitted.

    Returns:
        Configured FastAPI app with the read API under /api/v1.
    """
    settings = settings or Settings()
    configure_logging(settings.log_level, settings.json_logs)

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
        """Open both databases on startup and dispose them on shutdown.

        Args:
            app: The FastAPI application instance.

        Yields:
            None
        """
        logger.info("Initializing mission ledger", service=settings.service_name)
        ledger_sessions = await init_ledger_db(settings.ledger_db_url)

        logger.info("Initializing audit trail database", service=settings.service_name)
        audit_sessions = await init_audit_db(settings.audit_db_url)

        context = OperatorContext.from_environment()
        app.state.settings = settings
        app.state.mission_ledger = SqlMissionLedger(ledger_sessions)
        app.state.audit_service = AuditTrailService(SqlAuditTrailStore(audit_sessions), context)
        app.state.orchestrator = None
        if settings.apply_script_path is not None:
            app.state.orchestrator = create_orchestrator(
                settings, app.state.mission_ledger, app.state.audit_service, context
            )
        logger.info("Mission engine startup complete", orchestrator=app.state.orchestrator is not None)

        yield

        logger.info("Shutting down mission engine")
        await close_databases()
        logger.info("Mission engine shutdown complete")

    app = FastAPI(title=settings.service_name, version=__version__, lifespan=lifespan)
    app.include_router(router, prefix="/api/v1")
    register_exception_handlers(app)
    return app
