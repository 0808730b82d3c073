"""Core data models.

Stored record types for the small-business record store, the owner scope
accessor, and audit event types.
"""

from core.models.entities import (
    # Base
    EntityBase,
    DependentBase,
    PortalSyncFields,
    EntityType,

    # Records
    Owner,
    Client,
    Invoice,
    Contract,
    Job,

    # Registries
    ENTITY_MODELS,
    DEPENDENT_TYPES,
    DOCUMENT_TYPES,
    entity_type_of,
    new_id,
    utc_now,
)

from core.models.scope import (
    OWNER_PRECEDENCE,
    owner_candidates,
    resolve_owner_id,
    make_owner_lookup,
)

from core.models.audit import (
    AuditEvent,
    AuditSeverity,
)

__all__ = [
    # Base
    "EntityBase",
    "DependentBase",
    "PortalSyncFields",
    "EntityType",

    # Records
    "Owner",
    "Client",
    "Invoice",
    "Contract",
    "Job",

    # Registries
    "ENTITY_MODELS",
    "DEPENDENT_TYPES",
    "DOCUMENT_TYPES",
    "entity_type_of",
    "new_id",
    "utc_now",

    # Scope
    "OWNER_PRECEDENCE",
    "owner_candidates",
    "resolve_owner_id",
    "make_owner_lookup",

    # Audit
    "AuditEvent",
    "AuditSeverity",
]
