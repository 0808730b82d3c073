"""Audit event logging and persistence.

Provides structured audit logging for migration runs: every owner created
or activated and every record repaired leaves an event behind. Supports
multiple persistence backends.
"""

import json
import uuid
from abc import ABC, abstractmethod
from datetime import datetime, timedelta, timezone
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional

from core.models.audit import AuditEvent, AuditSeverity
from core.observability.logging import get_logger

logger = get_logger(__name__)


class AuditEventType(str, Enum):
    """Standard audit event types."""
    # Run events
    MIGRATION_STARTED = "MIGRATION_STARTED"
    MIGRATION_SKIPPED = "MIGRATION_SKIPPED"
    MIGRATION_COMPLETED = "MIGRATION_COMPLETED"
    MIGRATION_FAILED = "MIGRATION_FAILED"
    MIGRATION_DRY_RUN = "MIGRATION_DRY_RUN"

    # Owner events
    OWNER_CREATED = "OWNER_CREATED"
    OWNER_ACTIVATED = "OWNER_ACTIVATED"
    OWNER_DEACTIVATED = "OWNER_DEACTIVATED"

    # Repair events
    FOREIGN_KEY_REMAPPED = "FOREIGN_KEY_REMAPPED"
    ENUM_CANONICALIZED = "ENUM_CANONICALIZED"
    ENUM_DEFAULTED = "ENUM_DEFAULTED"
    ENUM_CLEARED = "ENUM_CLEARED"
    TRANSIENT_STATE_RESET = "TRANSIENT_STATE_RESET"
    DERIVED_STATE_CORRECTED = "DERIVED_STATE_CORRECTED"

    # Ledger events
    LEDGER_ADVANCED = "LEDGER_ADVANCED"


def create_audit_event(
    event_type: AuditEventType,
    message: str,
    severity: AuditSeverity = AuditSeverity.INFO,
    migration_run_id: Optional[str] = None,
    target_version: Optional[int] = None,
    pass_name: Optional[str] = None,
    entity_type: Optional[str] = None,
    entity_id: Optional[str] = None,
    details: Optional[Dict[str, Any]] = None,
    actor: str = "system",
) -> AuditEvent:
    """Create a new audit event with auto-generated ID and timestamp.

    Args:
        event_type: Type of event
        message: Human-readable message
        severity: Event severity level
        migration_run_id: Run that produced the event
        target_version: Ledger version being migrated to
        pass_name: Pass that generated the event
        entity_type: Type of the affected record
        entity_id: Id of the affected record
        details: Additional structured details
        actor: Who/what performed the action

    Returns:
        Configured AuditEvent ready for logging
    """
    return AuditEvent(
        event_id=str(uuid.uuid4()),
        timestamp=datetime.now(timezone.utc),
        event_type=event_type.value,
        severity=severity,
        migration_run_id=migration_run_id,
        target_version=target_version,
        pass_name=pass_name,
        entity_type=entity_type,
        entity_id=entity_id,
        message=message,
        details=details or {},
        actor=actor,
    )


class AuditBackend(ABC):
    """Abstract base class for audit persistence backends."""

    @abstractmethod
    def log(self, event: AuditEvent) -> None:
        """Persist an audit event."""
        pass

    @abstractmethod
    def query(
        self,
        event_type: Optional[str] = None,
        migration_run_id: Optional[str] = None,
        start_time: Optional[datetime] = None,
        end_time: Optional[datetime] = None,
        limit: int = 100,
    ) -> List[AuditEvent]:
        """Query audit events with filters."""
        pass


def _matches(
    event: AuditEvent,
    event_type: Optional[str],
    migration_run_id: Optional[str],
    start_time: Optional[datetime],
    end_time: Optional[datetime],
) -> bool:
    if event_type and event.event_type != event_type:
        return False
    if migration_run_id and event.migration_run_id != migration_run_id:
        return False
    if start_time and event.timestamp < start_time:
        return False
    if end_time and event.timestamp > end_time:
        return False
    return True


class JSONFileAuditBackend(AuditBackend):
    """Audit backend that stores events in JSON files.

    Stores one file per day in YYYY-MM-DD.json format.
    """

    def __init__(self, base_path: Path):
        """Initialize with base directory for audit files."""
        self.base_path = Path(base_path)
        self.base_path.mkdir(parents=True, exist_ok=True)

    def _get_file_path(self, date: datetime) -> Path:
        """Get file path for a given date."""
        return self.base_path / f"{date.strftime('%Y-%m-%d')}.json"

    def log(self, event: AuditEvent) -> None:
        """Append event to daily file."""
        file_path = self._get_file_path(event.timestamp)

        events = []
        if file_path.exists():
            with open(file_path, "r", encoding="utf-8") as f:
                events = json.load(f)

        events.append(event.model_dump(mode="json"))

        with open(file_path, "w", encoding="utf-8") as f:
            json.dump(events, f, indent=2)

    def query(
        self,
        event_type: Optional[str] = None,
        migration_run_id: Optional[str] = None,
        start_time: Optional[datetime] = None,
        end_time: Optional[datetime] = None,
        limit: int = 100,
    ) -> List[AuditEvent]:
        """Query events from JSON files."""
        results = []

        if start_time is None:
            start_time = datetime(2020, 1, 1, tzinfo=timezone.utc)
        if end_time is None:
            end_time = datetime.now(timezone.utc)

        current = start_time.replace(hour=0, minute=0, second=0, microsecond=0)
        while current <= end_time and len(results) < limit:
            file_path = self._get_file_path(current)
            if file_path.exists():
                with open(file_path, "r", encoding="utf-8") as f:
                    events = json.load(f)

                for event_data in events:
                    event = AuditEvent.model_validate(event_data)
                    if not _matches(event, event_type, migration_run_id, start_time, end_time):
                        continue
                    results.append(event)
                    if len(results) >= limit:
                        break

            current = current + timedelta(days=1)

        return results


class InMemoryAuditBackend(AuditBackend):
    """In-memory audit backend for testing."""

    def __init__(self):
        self._events: List[AuditEvent] = []

    def log(self, event: AuditEvent) -> None:
        self._events.append(event)

    def query(
        self,
        event_type: Optional[str] = None,
        migration_run_id: Optional[str] = None,
        start_time: Optional[datetime] = None,
        end_time: Optional[datetime] = None,
        limit: int = 100,
    ) -> List[AuditEvent]:
        results = []
        for event in self._events:
            if not _matches(event, event_type, migration_run_id, start_time, end_time):
                continue
            results.append(event)
            if len(results) >= limit:
                break
        return results

    def clear(self) -> None:
        """Clear all events (for testing)."""
        self._events.clear()


class AuditLogger:
    """Main audit logger that supports multiple backends.

    Usage:
        audit = AuditLogger()
        audit.add_backend(JSONFileAuditBackend(Path("./audit")))

        audit.log_info(
            AuditEventType.FOREIGN_KEY_REMAPPED,
            "client 42 reassigned to active business",
            migration_run_id="run-123",
        )
    """

    def __init__(self):
        self._backends: List[AuditBackend] = []

    def add_backend(self, backend: AuditBackend) -> None:
        """Add an audit backend."""
        self._backends.append(backend)

    def log(self, event: AuditEvent) -> None:
        """Log event to all backends."""
        for backend in self._backends:
            try:
                backend.log(event)
            except Exception as e:
                # Don't let audit failures break a migration run
                logger.warning(f"Audit logging failed for backend {type(backend).__name__}: {e}")

    def log_info(
        self,
        event_type: AuditEventType,
        message: str,
        **kwargs,
    ) -> None:
        """Log an INFO level event."""
        event = create_audit_event(event_type, message, AuditSeverity.INFO, **kwargs)
        self.log(event)

    def log_warning(
        self,
        event_type: AuditEventType,
        message: str,
        **kwargs,
    ) -> None:
        """Log a WARN level event."""
        event = create_audit_event(event_type, message, AuditSeverity.WARN, **kwargs)
        self.log(event)

    def log_error(
        self,
        event_type: AuditEventType,
        message: str,
        **kwargs,
    ) -> None:
        """Log an ERROR level event."""
        event = create_audit_event(event_type, message, AuditSeverity.ERROR, **kwargs)
        self.log(event)

    def query(
        self,
        event_type: Optional[str] = None,
        migration_run_id: Optional[str] = None,
        start_time: Optional[datetime] = None,
        end_time: Optional[datetime] = None,
        limit: int = 100,
    ) -> List[AuditEvent]:
        """Query events from all backends (returns first backend's results)."""
        if not self._backends:
            return []
        return self._backends[0].query(event_type, migration_run_id, start_time, end_time, limit)
