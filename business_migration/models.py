"""Migration run data models.

This module defines the models produced by a migration run:
- RepairChange: One field rewritten on one record
- PassResult: Everything one pass examined and changed
- MigrationReport: The outcome of ``run_if_needed``
- MigrationSnapshot: The in-memory record set shared by all passes
"""

from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from pydantic import BaseModel, Field

from core.models.entities import (
    DEPENDENT_TYPES,
    DependentBase,
    EntityBase,
    EntityType,
    Owner,
    entity_type_of,
)


class MigrationStatus(str, Enum):
    """How a run ended."""
    SKIPPED = "skipped"        # Version gate said the store is current
    COMPLETED = "completed"    # Passes committed and ledger advanced
    DRY_RUN = "dry_run"        # Passes executed, changes rolled back


class RepairKind(str, Enum):
    """Kinds of change a pass can make."""
    OWNER_CREATED = "owner_created"
    OWNER_ACTIVATED = "owner_activated"
    OWNER_DEACTIVATED = "owner_deactivated"
    FK_REMAPPED = "fk_remapped"
    ENUM_CANONICALIZED = "enum_canonicalized"  # Decoded fine, stored text rewritten to canonical form
    ENUM_DEFAULTED = "enum_defaulted"
    ENUM_CLEARED = "enum_cleared"
    TRANSIENT_RESET = "transient_reset"
    DERIVED_CORRECTED = "derived_corrected"


class RepairChange(BaseModel):
    """A single field rewritten on a single record."""
    kind: RepairKind
    entity_type: EntityType
    entity_id: str
    field_name: str
    old_value: Any = None
    new_value: Any = None


class PassResult(BaseModel):
    """Result of one pass over the snapshot.

    Attributes:
        pass_name: Pass identifier (e.g., "referential_repair")
        records_examined: Records the pass looked at
        changes: Every field the pass rewrote
        duration_ms: Wall time spent in the pass
    """
    pass_name: str
    records_examined: int = 0
    changes: List[RepairChange] = Field(default_factory=list)
    duration_ms: Optional[float] = None

    @property
    def records_changed(self) -> int:
        return len({(c.entity_type, c.entity_id) for c in self.changes})

    def record(
        self,
        kind: RepairKind,
        entity: EntityBase,
        field_name: str,
        old_value: Any,
        new_value: Any,
    ) -> RepairChange:
        change = RepairChange(
            kind=kind,
            entity_type=entity_type_of(entity),
            entity_id=entity.id,
            field_name=field_name,
            old_value=old_value,
            new_value=new_value,
        )
        self.changes.append(change)
        return change


class MigrationReport(BaseModel):
    """Outcome of a migration run.

    If status is SKIPPED, no records were read and ``passes`` is empty.
    """
    run_id: str
    status: MigrationStatus
    from_version: int
    target_version: int
    default_owner_id: Optional[str] = None
    owner_created: bool = False
    passes: List[PassResult] = Field(default_factory=list)
    started_at: datetime
    completed_at: Optional[datetime] = None

    @property
    def total_changes(self) -> int:
        return sum(len(p.changes) for p in self.passes)

    def changes_by_kind(self) -> Dict[str, int]:
        counts = Counter(c.kind.value for p in self.passes for c in p.changes)
        return dict(counts)

    def get_pass(self, pass_name: str) -> Optional[PassResult]:
        for result in self.passes:
            if result.pass_name == pass_name:
                return result
        return None


@dataclass
class MigrationSnapshot:
    """All records of one run, loaded once and shared by every pass.

    Passes mutate records in place and call ``mark_dirty``; the commit step
    saves exactly the dirty records.
    """
    owners: List[Owner] = field(default_factory=list)
    dependents: Dict[EntityType, List[DependentBase]] = field(default_factory=dict)
    default_owner_id: Optional[str] = None
    _dirty: Dict[Tuple[EntityType, str], EntityBase] = field(default_factory=dict)

    def records(self, entity_type: EntityType) -> List[EntityBase]:
        if entity_type == EntityType.BUSINESS:
            return list(self.owners)
        return list(self.dependents.get(entity_type, []))

    def all_dependents(self):
        for entity_type in DEPENDENT_TYPES:
            for record in self.dependents.get(entity_type, []):
                yield entity_type, record

    def owner_ids(self) -> set:
        return {owner.id for owner in self.owners}

    def mark_dirty(self, entity: EntityBase) -> None:
        self._dirty[(entity_type_of(entity), entity.id)] = entity

    def dirty_records(self) -> List[EntityBase]:
        return list(self._dirty.values())
