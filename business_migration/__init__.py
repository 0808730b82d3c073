"""Business Migration - versioned repair of the local record store.

This package provides:
- A version gate backed by a persisted migration ledger
- Active-owner resolution (exactly one active business)
- Referential repair of dangling owner foreign keys
- Enum normalization driven by a per-field policy table
- Transient portal-sync state reset
- Derived state correction for booked jobs
- A single commit point that advances the ledger with the data

Usage:
    from business_migration import run_on_launch
    from entity_store import SQLiteEntityStore, SQLiteMigrationLedger

    with SQLiteEntityStore(db_path) as store:
        report = run_on_launch(store, SQLiteMigrationLedger(store))
"""

from business_migration.errors import (
    InvariantViolation,
    MigrationError,
    StoreError,
    StoreReadError,
    StoreWriteError,
)
from business_migration.models import (
    MigrationReport,
    MigrationSnapshot,
    MigrationStatus,
    PassResult,
    RepairChange,
    RepairKind,
)
from business_migration.enums import (
    ENUM_FIELD_POLICIES,
    ContractStatus,
    DocumentType,
    EnumFieldPolicy,
    EstimateStatus,
    Invalid,
    InvalidPolicy,
    InvoiceTemplateKey,
    JobStage,
    Ok,
    decode_contract_status,
    decode_document_type,
    decode_estimate_status,
    decode_invoice_template_key,
    decode_job_stage,
)
from business_migration.version_gate import CURRENT_VERSION, should_run
from business_migration.owner_resolver import resolve_active_owner
from business_migration.referential_repair import repair_owner_references
from business_migration.enum_normalization import normalize_enum_fields
from business_migration.transient_reset import reset_transient_state
from business_migration.derived_state import correct_derived_state
from business_migration.engine import (
    MigrationEngine,
    load_snapshot,
    run_if_needed,
    run_on_launch,
)

__all__ = [
    # Errors
    "InvariantViolation",
    "MigrationError",
    "StoreError",
    "StoreReadError",
    "StoreWriteError",
    # Models
    "MigrationReport",
    "MigrationSnapshot",
    "MigrationStatus",
    "PassResult",
    "RepairChange",
    "RepairKind",
    # Enums
    "ENUM_FIELD_POLICIES",
    "ContractStatus",
    "DocumentType",
    "EnumFieldPolicy",
    "EstimateStatus",
    "Invalid",
    "InvalidPolicy",
    "InvoiceTemplateKey",
    "JobStage",
    "Ok",
    "decode_contract_status",
    "decode_document_type",
    "decode_estimate_status",
    "decode_invoice_template_key",
    "decode_job_stage",
    # Passes
    "CURRENT_VERSION",
    "should_run",
    "resolve_active_owner",
    "repair_owner_references",
    "normalize_enum_fields",
    "reset_transient_state",
    "correct_derived_state",
    # Engine
    "MigrationEngine",
    "load_snapshot",
    "run_if_needed",
    "run_on_launch",
]
