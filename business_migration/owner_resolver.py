"""Active-owner resolution.

Guarantees exactly one active business once the pass finishes:

1. Businesses already flagged active: keep the earliest, deactivate the rest.
2. No active business: activate the earliest.
3. No business at all: create a default one and activate it.

"Earliest" is ``(created_at, id)`` order so the choice is stable across runs.
"""

from dataclasses import dataclass
from decimal import Decimal

from core.config import MigrationSettings
from core.models.entities import Owner
from business_migration.errors import InvariantViolation
from business_migration.models import MigrationSnapshot, PassResult, RepairKind
from entity_store.base import EntityStore

PASS_NAME = "active_owner"


@dataclass
class OwnerResolution:
    owner: Owner
    created: bool
    result: PassResult


def build_default_owner(settings: MigrationSettings) -> Owner:
    return Owner(
        name=settings.default_business_name,
        is_active=True,
        default_tax_rate=Decimal("0"),
        currency_code=settings.default_currency,
    )


def resolve_active_owner(
    snapshot: MigrationSnapshot,
    store: EntityStore,
    settings: MigrationSettings,
) -> OwnerResolution:
    """Select (or create) the single active owner.

    Args:
        snapshot: Records of the current run; ``owners`` is updated in place
        store: Store used to stage the default owner when none exists
        settings: Defaults for a created owner

    Returns:
        OwnerResolution with the active owner; also sets
        ``snapshot.default_owner_id``

    Raises:
        InvariantViolation: If the result does not have exactly one active owner
    """
    result = PassResult(pass_name=PASS_NAME, records_examined=len(snapshot.owners))
    owners = sorted(snapshot.owners, key=lambda o: (o.created_at, o.id))
    created = False

    if not owners:
        selected = build_default_owner(settings)
        store.insert(selected)
        snapshot.owners.append(selected)
        created = True
        result.record(RepairKind.OWNER_CREATED, selected, "id", None, selected.id)
    else:
        active = [o for o in owners if o.is_active]
        selected = active[0] if active else owners[0]

        if not selected.is_active:
            selected.is_active = True
            snapshot.mark_dirty(selected)
            result.record(RepairKind.OWNER_ACTIVATED, selected, "is_active", False, True)

        for other in active[1:]:
            other.is_active = False
            snapshot.mark_dirty(other)
            result.record(RepairKind.OWNER_DEACTIVATED, other, "is_active", True, False)

    active_count = sum(1 for o in snapshot.owners if o.is_active)
    if active_count != 1:
        raise InvariantViolation(
            f"Expected exactly one active business, found {active_count}",
            invariant="single_active_owner",
        )

    snapshot.default_owner_id = selected.id
    return OwnerResolution(owner=selected, created=created, result=result)
