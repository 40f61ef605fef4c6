"""Tests for logging setup."""

from collections.abc import Generator

import pytest
import structlog

from aumos_mission_engine import observability


@pytest.fixture()
def fresh_logging(monkeypatch: pytest.MonkeyPatch) -> Generator[None, None, None]:
    """Start unconfigured and restore structlog defaults afterwards."""
    monkeypatch.setattr(observability, "_configured", False)
    yield
    structlog.reset_defaults()


class TestConfigureLogging:
    """configure_logging applies once per process."""

    def test_second_call_keeps_first_configuration(self, fresh_logging: None) -> None:
        observability.configure_logging("DEBUG", json_logs=True)
        observability.configure_logging("INFO", json_logs=False)

        processors = structlog.get_config()["processors"]
        assert isinstance(processors[-1], structlog.processors.JSONRenderer)
        assert observability._configured is True
