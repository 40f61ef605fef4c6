"""Service settings for aumos-mission-engine.

Settings use the AUMOS_MISSION_ prefix and cover:
- Data root for bundles and the embedded ledger databases
- Mission ledger and Audit database URLs (separate files)
- Apply template location and remediation script
- Break-glass and subprocess policy
- Logging
"""

from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Settings for aumos-mission-engine.

    Environment variable prefix: AUMOS_MISSION_
    """

    service_name: str = "aumos-mission-engine"
    tool_version: str = Field(
        default="0.1.0",
        description="Version string recorded in every RunManifest.",
    )

    # -------------------------------------------------------------------------
    # Storage
    # -------------------------------------------------------------------------

    data_root: Path = Field(
        default=Path(".aumos-mission"),
        description="Root directory for bundles and the embedded ledger databases.",
    )
    ledger_db_url: str = Field(
        default="sqlite+aiosqlite:///.aumos-mission/mission_ledger.db",
        description="SQLAlchemy async URL for the mission ledger (runs + timeline).",
    )
    audit_db_url: str = Field(
        default="sqlite+aiosqlite:///.aumos-mission/audit_trail.db",
        description="SQLAlchemy async URL for the SEPARATE audit trail database. "
        "Only AuditTrailService writes here.",
    )

    # -------------------------------------------------------------------------
    # Bundle build
    # -------------------------------------------------------------------------

    apply_template_root: Path | None = Field(
        default=None,
        description="Directory whose contents are copied into every bundle's Apply/ folder. "
        "Skipped when unset or missing.",
    )

    # -------------------------------------------------------------------------
    # Apply
    # -------------------------------------------------------------------------

    apply_script_path: Path | None = Field(
        default=None,
        description="Remediation script run by the Apply phase.",
    )
    apply_interpreter: list[str] = Field(
        default_factory=list,
        description='Launcher prefix for the apply script, e.g. ["pwsh", "-File"].',
    )

    # -------------------------------------------------------------------------
    # Orchestration
    # -------------------------------------------------------------------------

    break_glass_min_reason_length: int = Field(
        default=8,
        description="Minimum non-blank characters required in a break-glass reason.",
    )
    process_timeout_seconds: float | None = Field(
        default=None,
        description="Wall-clock limit for apply and verification subprocesses. None means no limit.",
    )

    # -------------------------------------------------------------------------
    # Logging
    # -------------------------------------------------------------------------

    log_level: str = Field(default="INFO", description="Minimum log level.")
    json_logs: bool = Field(default=False, description="Emit JSON log lines.")

    model_config = SettingsConfigDict(env_prefix="AUMOS_MISSION_")

    @property
    def bundles_root(self) -> Path:
        """Directory under which bundles are created when no output root is given."""
        return self.data_root / "bundles"
