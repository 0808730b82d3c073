"""Entity store and migration ledger contracts.

The migration engine only talks to these protocols. Any store that can fetch
every record of a type, stage inserts and updates, and commit them as one unit
can be migrated.
"""

from typing import List, Protocol, runtime_checkable

from core.models.entities import EntityBase, EntityType


@runtime_checkable
class EntityStore(Protocol):
    """Local, single-writer record store."""

    def fetch_all(self, entity_type: EntityType) -> List[EntityBase]:
        """Return every record of a type, oldest first.

        Raises:
            StoreReadError: If the records cannot be read
        """
        ...

    def insert(self, entity: EntityBase) -> None:
        """Stage a new record for the next commit."""
        ...

    def save(self, entity: EntityBase) -> None:
        """Stage an update to an existing record for the next commit."""
        ...

    def commit(self) -> None:
        """Persist everything staged since the last commit.

        Raises:
            StoreWriteError: On I/O failure; nothing is persisted
        """
        ...

    def rollback(self) -> None:
        """Discard everything staged since the last commit."""
        ...


@runtime_checkable
class MigrationLedger(Protocol):
    """Persisted version of the last completed migration.

    ``joins_store_transaction`` is True when ``write_version`` is staged in
    the same transaction as the store's writes and only becomes durable on
    ``EntityStore.commit``. When False, the write is durable immediately.
    """

    joins_store_transaction: bool

    def read_version(self) -> int:
        """Return the last completed version (0 if never migrated)."""
        ...

    def write_version(self, version: int) -> None:
        """Record ``version`` as completed."""
        ...
