"""Response schemas for the mission engine read API.

Mission runs, timeline events and audit entries are returned as the domain
models themselves (camelCase JSON). The schemas here cover responses with no
domain counterpart.
"""

from pydantic import BaseModel, Field


class AuditIntegrityResponse(BaseModel):
    """Result of walking the audit chain."""

    valid: bool = Field(description="True when every entry links to its predecessor and its hash matches")


class ErrorResponse(BaseModel):
    """Error body for MissionEngineError responses."""

    error_code: str = Field(description="Stable machine-readable error code")
    message: str = Field(description="Human-readable description")
    details: dict[str, object] = Field(default_factory=dict, description="Structured context")
