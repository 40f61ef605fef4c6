"""Logging and tracing setup.

Logging is structlog with keyword-argument events::

    logger = get_logger(__name__)
    logger.info("Bundle built", bundle_id=bundle_id, file_count=12)

Tracing uses the OpenTelemetry API only. When no SDK is installed and
configured by the host process, spans are no-ops.
"""

import logging
import sys

import structlog
from opentelemetry import trace

_TRACER_NAME = "aumos_mission_engine"
_configured = False


def configure_logging(level: str = "INFO", json_logs: bool = False) -> None:
    """Configure structlog processors once for the whole process.

    Calls after the first are ignored.

    Args:
        level: Minimum log level name (DEBUG, INFO, WARNING, ...).
        json_logs: Render JSON lines instead of the console renderer.
    """
    global _configured  # noqa: PLW0603
    if _configured:
        return

    log_level = logging.getLevelName(level.upper())
    if not isinstance(log_level, int):
        log_level = logging.INFO

    logging.basicConfig(format="%(message)s", stream=sys.stderr, level=log_level)

    renderer: structlog.types.Processor = (
        structlog.processors.JSONRenderer() if json_logs else structlog.dev.ConsoleRenderer()
    )
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            renderer,
        ],
        wrapper_class=structlog.make_filtering_bound_logger(log_level),
        cache_logger_on_first_use=True,
    )
    _configured = True


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    """Return a structlog logger bound to the given module name."""
    return structlog.get_logger(name)


def get_tracer() -> trace.Tracer:
    """Return the engine's OpenTelemetry tracer."""
    return trace.get_tracer(_TRACER_NAME)
