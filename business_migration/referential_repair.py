"""Referential repair of owner foreign keys.

Every dependent record must point at an existing business. Records that
don't are reassigned; nothing is deleted.

By default a dangling record goes to the active business. With
``prefer_linked_owner`` a document first tries the businesses of the
records it links to (see ``core.models.scope``) and only falls back to the
active business when none of those exist either.
"""

from typing import Optional

from core.models.entities import EntityType
from core.models.scope import make_owner_lookup
from business_migration.errors import InvariantViolation
from business_migration.models import MigrationSnapshot, PassResult, RepairKind

PASS_NAME = "referential_repair"


def repair_owner_references(
    snapshot: MigrationSnapshot,
    default_owner_id: Optional[str] = None,
    prefer_linked_owner: bool = False,
) -> PassResult:
    """Reassign dependents whose ``owner_id`` matches no business.

    Args:
        snapshot: Records of the current run
        default_owner_id: Owner to reassign to (defaults to the snapshot's)
        prefer_linked_owner: Resolve through linked records first

    Returns:
        PassResult with one FK_REMAPPED change per repaired record
    """
    default_owner_id = default_owner_id or snapshot.default_owner_id
    valid_ids = snapshot.owner_ids()
    if default_owner_id not in valid_ids:
        raise InvariantViolation(
            f"Default business {default_owner_id} does not exist",
            invariant="default_owner_exists",
        )

    lookup = None
    if prefer_linked_owner:
        lookup = make_owner_lookup(
            valid_ids,
            jobs=snapshot.records(EntityType.JOB),
            invoices=snapshot.records(EntityType.INVOICE),
            fallback=default_owner_id,
        )

    result = PassResult(pass_name=PASS_NAME)
    for _, record in snapshot.all_dependents():
        result.records_examined += 1
        if record.owner_id in valid_ids:
            continue

        new_owner_id = lookup(record) if lookup else default_owner_id
        old_owner_id = record.owner_id
        record.owner_id = new_owner_id
        snapshot.mark_dirty(record)
        result.record(RepairKind.FK_REMAPPED, record, "owner_id", old_owner_id, new_owner_id)

    return result
