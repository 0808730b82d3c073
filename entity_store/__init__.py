"""Entity Store - local record storage consumed by the migration engine.

This package provides:
- The EntityStore and MigrationLedger contracts
- A SQLite store whose ledger shares the store's transaction
- In-memory store and ledger for tests and tooling
- The store error taxonomy (StoreReadError, StoreWriteError)

Usage:
    from entity_store import SQLiteEntityStore, SQLiteMigrationLedger

    with SQLiteEntityStore(db_path) as store:
        ledger = SQLiteMigrationLedger(store)
        print(ledger.read_version())
"""

from entity_store.errors import (
    StoreError,
    StoreReadError,
    StoreWriteError,
)
from entity_store.base import EntityStore, MigrationLedger
from entity_store.db import (
    SQLiteEntityStore,
    init_store_db,
    seed_legacy_sample_data,
    clear_store,
    count_records,
)
from entity_store.memory import InMemoryEntityStore
from entity_store.ledger import (
    LEDGER_KEY,
    SQLiteMigrationLedger,
    InMemoryMigrationLedger,
)

__all__ = [
    # Errors
    "StoreError",
    "StoreReadError",
    "StoreWriteError",
    # Contracts
    "EntityStore",
    "MigrationLedger",
    # SQLite
    "SQLiteEntityStore",
    "SQLiteMigrationLedger",
    "init_store_db",
    "seed_legacy_sample_data",
    "clear_store",
    "count_records",
    "LEDGER_KEY",
    # In-memory
    "InMemoryEntityStore",
    "InMemoryMigrationLedger",
]
