"""SQLAlchemy ORM tables for the embedded mission ledger and audit trail.

Two declarative bases keep the stores physically separate: LedgerBase tables
live in the ledger database, AuditBase tables in the audit database.

Tables:
- mission_runs: run headers; status/finished_at/detail are the only mutable columns
- mission_timeline: append-only events, UNIQUE(run_id, seq)
- audit_trail: append-only hash-chained entries

Timestamps are stored as UTC ISO-8601 text (IsoDateTime) so the value read
back is exactly the value that was hashed, on every backend.
"""

from datetime import UTC, datetime

from sqlalchemy import ForeignKey, Integer, String, Text, UniqueConstraint
from sqlalchemy.engine import Dialect
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column
from sqlalchemy.types import TypeDecorator


def to_utc_iso(value: datetime) -> str:
    """Canonical text form of a timestamp: UTC, microsecond precision."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=UTC)
    return value.astimezone(UTC).isoformat(timespec="microseconds")


class IsoDateTime(TypeDecorator[datetime]):
    """Timezone-aware datetime persisted as canonical UTC ISO text."""

    impl = String(40)
    cache_ok = True

    def process_bind_param(self, value: datetime | None, dialect: Dialect) -> str | None:  # noqa: ARG002
        return None if value is None else to_utc_iso(value)

    def process_result_value(self, value: str | None, dialect: Dialect) -> datetime | None:  # noqa: ARG002
        return None if value is None else datetime.fromisoformat(value)


class LedgerBase(DeclarativeBase):
    pass


class AuditBase(DeclarativeBase):
    pass


class MissionRunRow(LedgerBase):
    """Header of one mission run."""

    __tablename__ = "mission_runs"

    run_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    label: Mapped[str] = mapped_column(String(255), nullable=False)
    bundle_root: Mapped[str] = mapped_column(Text, nullable=False)
    status: Mapped[str] = mapped_column(String(32), nullable=False, index=True)
    created_at: Mapped[datetime] = mapped_column(IsoDateTime, nullable=False, index=True)
    finished_at: Mapped[datetime | None] = mapped_column(IsoDateTime, nullable=True)
    input_fingerprint: Mapped[str | None] = mapped_column(String(64), nullable=True)
    detail: Mapped[str | None] = mapped_column(Text, nullable=True)


class MissionTimelineRow(LedgerBase):
    """One append-only timeline event. (run_id, seq) is unique."""

    __tablename__ = "mission_timeline"
    __table_args__ = (UniqueConstraint("run_id", "seq", name="uq_mission_timeline_run_seq"),)

    event_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    run_id: Mapped[str] = mapped_column(
        String(64), ForeignKey("mission_runs.run_id"), nullable=False, index=True
    )
    seq: Mapped[int] = mapped_column(Integer, nullable=False)
    phase: Mapped[str] = mapped_column(String(32), nullable=False)
    step_name: Mapped[str] = mapped_column(String(128), nullable=False)
    status: Mapped[str] = mapped_column(String(32), nullable=False)
    occurred_at: Mapped[datetime] = mapped_column(IsoDateTime, nullable=False)
    message: Mapped[str | None] = mapped_column(Text, nullable=True)
    evidence_path: Mapped[str | None] = mapped_column(Text, nullable=True)
    evidence_sha256: Mapped[str | None] = mapped_column(String(64), nullable=True)


class AuditEntryRow(AuditBase):
    """Hash-chained audit entry. INSERT and SELECT only."""

    __tablename__ = "audit_trail"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    timestamp: Mapped[datetime] = mapped_column(IsoDateTime, nullable=False, index=True)
    actor: Mapped[str] = mapped_column(String(255), nullable=False)
    host: Mapped[str] = mapped_column(String(255), nullable=False)
    action: Mapped[str] = mapped_column(String(128), nullable=False, index=True)
    target: Mapped[str] = mapped_column(Text, nullable=False)
    result: Mapped[str] = mapped_column(String(64), nullable=False)
    detail: Mapped[str] = mapped_column(Text, nullable=False, default="")
    previous_hash: Mapped[str] = mapped_column(String(64), nullable=False)
    entry_hash: Mapped[str] = mapped_column(String(64), nullable=False, unique=True)
