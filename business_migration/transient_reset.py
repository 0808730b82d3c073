"""Transient state reset pass.

Portal sync bookkeeping describes an upload in progress under the previous
schema. After a schema change it must not be replayed, so pending and
in-flight flags are forced off and the last error is dropped on every run
that includes this pass. Empty strings in optional descriptive fields are
normalized to unset.
"""

from business_migration.models import MigrationSnapshot, PassResult, RepairKind
from core.models.entities import DOCUMENT_TYPES

PASS_NAME = "transient_reset"

# field -> value forced on every run
FORCED_FIELDS = (
    ("portal_needs_upload", False),
    ("portal_upload_in_flight", False),
    ("portal_last_error", None),
)

# Optional text where "" is not a valid "set" value
BLANK_TO_UNSET_FIELDS = (
    "portal_last_uploaded_location",
    "portal_last_uploaded_hash",
    "booking_request_id",
)

_MISSING = object()


def reset_transient_state(snapshot: MigrationSnapshot) -> PassResult:
    """Reset portal sync state on invoices and contracts."""
    result = PassResult(pass_name=PASS_NAME)

    for entity_type in DOCUMENT_TYPES:
        for record in snapshot.records(entity_type):
            result.records_examined += 1

            for field_name, forced in FORCED_FIELDS:
                current = getattr(record, field_name)
                if current != forced:
                    setattr(record, field_name, forced)
                    snapshot.mark_dirty(record)
                    result.record(RepairKind.TRANSIENT_RESET, record, field_name, current, forced)

            for field_name in BLANK_TO_UNSET_FIELDS:
                current = getattr(record, field_name, _MISSING)
                if isinstance(current, str) and current.strip() == "":
                    setattr(record, field_name, None)
                    snapshot.mark_dirty(record)
                    result.record(RepairKind.TRANSIENT_RESET, record, field_name, current, None)

    return result
