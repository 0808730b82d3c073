"""Migration ledger implementations.

The ledger is a single integer: the last migration version that completed.
"""

import sqlite3
from datetime import datetime, timezone

from entity_store.db import SQLiteEntityStore
from entity_store.errors import StoreReadError, StoreWriteError

LEDGER_KEY = "business_migration_version"


class SQLiteMigrationLedger:
    """Ledger stored in the record store's own database.

    Writes go through the store's connection and are committed together with
    the migration's record changes.
    """

    joins_store_transaction = True

    def __init__(self, store: SQLiteEntityStore, key: str = LEDGER_KEY):
        self.store = store
        self.key = key

    def read_version(self) -> int:
        try:
            row = self.store.connection.execute(
                "SELECT version FROM migration_ledger WHERE key = ?",
                (self.key,),
            ).fetchone()
        except sqlite3.Error as e:
            raise StoreReadError(f"Failed to read migration ledger: {e}") from e
        return int(row["version"]) if row else 0

    def write_version(self, version: int) -> None:
        try:
            self.store.connection.execute(
                """
                INSERT INTO migration_ledger (key, version, updated_at)
                VALUES (?, ?, ?)
                ON CONFLICT(key) DO UPDATE SET
                    version = excluded.version,
                    updated_at = excluded.updated_at
                """,
                (self.key, version, datetime.now(timezone.utc).isoformat()),
            )
        except sqlite3.Error as e:
            raise StoreWriteError(f"Failed to stage migration ledger write: {e}") from e


class InMemoryMigrationLedger:
    """Ledger held in process memory; writes are durable immediately."""

    joins_store_transaction = False

    def __init__(self, version: int = 0):
        self.version = version
        self.write_count = 0

    def read_version(self) -> int:
        return self.version

    def write_version(self, version: int) -> None:
        self.version = version
        self.write_count += 1
