"""In-memory Entity Store.

Keeps committed records in dicts and stages inserts/updates separately until
``commit()``. Records handed out by ``fetch_all`` are copies, so mutating
them has no effect until they are passed to ``save``.
"""

from typing import Dict, List

from core.models.entities import ENTITY_MODELS, EntityBase, EntityType, entity_type_of
from entity_store.errors import StoreWriteError


class InMemoryEntityStore:
    """EntityStore for tests and tooling."""

    def __init__(self):
        self._committed: Dict[EntityType, Dict[str, EntityBase]] = {t: {} for t in ENTITY_MODELS}
        self._staged: Dict[EntityType, Dict[str, EntityBase]] = {t: {} for t in ENTITY_MODELS}
        self.commit_count = 0

    def _current(self, entity_type: EntityType) -> Dict[str, EntityBase]:
        merged = dict(self._committed[entity_type])
        merged.update(self._staged[entity_type])
        return merged

    def fetch_all(self, entity_type: EntityType) -> List[EntityBase]:
        records = sorted(
            self._current(entity_type).values(),
            key=lambda r: (r.created_at, r.id),
        )
        return [r.model_copy(deep=True) for r in records]

    def insert(self, entity: EntityBase) -> None:
        entity_type = entity_type_of(entity)
        if entity.id in self._current(entity_type):
            raise StoreWriteError(
                f"Duplicate {entity_type.value} {entity.id}",
                entity_type=entity_type.value,
            )
        self._staged[entity_type][entity.id] = entity.model_copy(deep=True)

    def save(self, entity: EntityBase) -> None:
        entity_type = entity_type_of(entity)
        if entity.id not in self._current(entity_type):
            raise StoreWriteError(
                f"Cannot update missing {entity_type.value} {entity.id}",
                entity_type=entity_type.value,
            )
        self._staged[entity_type][entity.id] = entity.model_copy(deep=True)

    def commit(self) -> None:
        for entity_type, staged in self._staged.items():
            self._committed[entity_type].update(staged)
            staged.clear()
        self.commit_count += 1

    def rollback(self) -> None:
        for staged in self._staged.values():
            staged.clear()

    def add(self, *entities: EntityBase) -> None:
        """Insert and commit records directly (test setup helper)."""
        for entity in entities:
            self.insert(entity)
        self.commit()
