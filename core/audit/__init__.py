"""Core audit module - audit event tracking and persistence."""

from core.audit.events import (
    AuditLogger,
    AuditEventType,
    AuditBackend,
    InMemoryAuditBackend,
    JSONFileAuditBackend,
    create_audit_event,
)

__all__ = [
    "AuditLogger",
    "AuditEventType",
    "AuditBackend",
    "InMemoryAuditBackend",
    "JSONFileAuditBackend",
    "create_audit_event",
]
