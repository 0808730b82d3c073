"""Audit event models.

An audit event records one observable action taken by the migration engine:
a run starting or finishing, an owner being created or activated, a record
being repaired.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class AuditSeverity(str, Enum):
    """Severity levels for audit events."""
    INFO = "INFO"
    WARN = "WARN"
    ERROR = "ERROR"


class AuditEvent(BaseModel):
    """An audit event for tracking engine actions."""
    event_id: str = Field(..., description="Unique event identifier")
    timestamp: datetime = Field(default_factory=_utc_now, description="Event timestamp")
    event_type: str = Field(..., description="Type of event (MIGRATION_STARTED, OWNER_CREATED, etc.)")
    severity: AuditSeverity = Field(default=AuditSeverity.INFO, description="Event severity")

    # Context
    migration_run_id: Optional[str] = Field(None, description="Run that produced the event")
    target_version: Optional[int] = Field(None, description="Ledger version the run migrates to")
    pass_name: Optional[str] = Field(None, description="Pass that generated the event")
    entity_type: Optional[str] = Field(None, description="Type of the affected record")
    entity_id: Optional[str] = Field(None, description="Id of the affected record")

    # Details
    message: str = Field(..., description="Human-readable message")
    details: dict = Field(default_factory=dict, description="Additional event details")

    # Actor
    actor: str = Field(default="system", description="Who/what performed the action")
