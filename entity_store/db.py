"""SQLite Entity Store.

This module handles all database operations for the record store:
- Schema initialization
- Fetch-all / insert / update of stored records
- Transaction control (one open transaction per store connection)
- Sample legacy data seeding

Writes are staged on a single connection and only become durable on
``commit()``. The migration ledger table lives in the same database so the
ledger can be advanced inside the migration transaction.
"""

import sqlite3
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Dict, List, Optional

from pydantic import ValidationError

from core.config import DEFAULT_DB_PATH
from core.models.entities import (
    ENTITY_MODELS,
    Client,
    Contract,
    EntityBase,
    EntityType,
    Invoice,
    Job,
    Owner,
    entity_type_of,
)
from core.observability.logging import get_logger
from entity_store.errors import StoreReadError, StoreWriteError

logger = get_logger(__name__)


SCHEMA = {
    EntityType.BUSINESS: """
        CREATE TABLE IF NOT EXISTS business (
            id TEXT PRIMARY KEY,
            created_at TEXT NOT NULL,
            name TEXT NOT NULL DEFAULT '',
            is_active INTEGER NOT NULL DEFAULT 0,
            default_tax_rate TEXT NOT NULL DEFAULT '0',
            currency_code TEXT NOT NULL DEFAULT 'USD',
            default_invoice_template_key TEXT NOT NULL DEFAULT 'classic_business',
            stripe_account_id TEXT,
            travel_buffer_minutes INTEGER NOT NULL DEFAULT 15,
            workday_start_minutes INTEGER NOT NULL DEFAULT 540,
            workday_end_minutes INTEGER NOT NULL DEFAULT 1020
        )
    """,
    EntityType.CLIENT: """
        CREATE TABLE IF NOT EXISTS client (
            id TEXT PRIMARY KEY,
            created_at TEXT NOT NULL,
            owner_id TEXT NOT NULL,
            name TEXT NOT NULL DEFAULT '',
            email TEXT NOT NULL DEFAULT '',
            phone TEXT NOT NULL DEFAULT '',
            address TEXT NOT NULL DEFAULT '',
            portal_enabled INTEGER NOT NULL DEFAULT 1
        )
    """,
    EntityType.INVOICE: """
        CREATE TABLE IF NOT EXISTS invoice (
            id TEXT PRIMARY KEY,
            created_at TEXT NOT NULL,
            owner_id TEXT NOT NULL,
            invoice_number TEXT NOT NULL DEFAULT '',
            document_type TEXT NOT NULL DEFAULT 'invoice',
            estimate_status TEXT NOT NULL DEFAULT 'draft',
            template_key_override TEXT,
            is_paid INTEGER NOT NULL DEFAULT 0,
            issue_date TEXT NOT NULL,
            client_id TEXT,
            job_id TEXT,
            booking_request_id TEXT,
            portal_needs_upload INTEGER NOT NULL DEFAULT 0,
            portal_upload_in_flight INTEGER NOT NULL DEFAULT 0,
            portal_last_error TEXT,
            portal_last_uploaded_at_ms INTEGER,
            portal_last_uploaded_hash TEXT,
            portal_last_uploaded_location TEXT
        )
    """,
    EntityType.CONTRACT: """
        CREATE TABLE IF NOT EXISTS contract (
            id TEXT PRIMARY KEY,
            created_at TEXT NOT NULL,
            owner_id TEXT NOT NULL,
            title TEXT NOT NULL DEFAULT '',
            status TEXT NOT NULL DEFAULT 'draft',
            client_id TEXT,
            invoice_id TEXT,
            estimate_id TEXT,
            job_id TEXT,
            portal_needs_upload INTEGER NOT NULL DEFAULT 0,
            portal_upload_in_flight INTEGER NOT NULL DEFAULT 0,
            portal_last_error TEXT,
            portal_last_uploaded_at_ms INTEGER,
            portal_last_uploaded_hash TEXT,
            portal_last_uploaded_location TEXT
        )
    """,
    EntityType.JOB: """
        CREATE TABLE IF NOT EXISTS job (
            id TEXT PRIMARY KEY,
            created_at TEXT NOT NULL,
            owner_id TEXT NOT NULL,
            title TEXT NOT NULL DEFAULT '',
            client_id TEXT,
            stage TEXT NOT NULL DEFAULT 'booked',
            source_booking_request_id TEXT,
            start_date TEXT NOT NULL,
            end_date TEXT NOT NULL
        )
    """,
}

LEDGER_SCHEMA = """
    CREATE TABLE IF NOT EXISTS migration_ledger (
        key TEXT PRIMARY KEY,
        version INTEGER NOT NULL,
        updated_at TEXT NOT NULL
    )
"""


def get_db_connection(db_path: Path = DEFAULT_DB_PATH) -> sqlite3.Connection:
    """Get database connection with row factory"""
    conn = sqlite3.connect(str(db_path))
    conn.row_factory = sqlite3.Row
    return conn


def init_store_db(db_path: Path = DEFAULT_DB_PATH) -> None:
    """Initialize record store tables.

    Creates:
    - business, client, invoice, contract, job: stored records
    - migration_ledger: last completed migration version per key

    Dependent tables get an index on owner_id for scoped lookups.

    Args:
        db_path: Path to SQLite database file
    """
    conn = sqlite3.connect(str(db_path))
    try:
        cursor = conn.cursor()

        for ddl in SCHEMA.values():
            cursor.execute(ddl)
        cursor.execute(LEDGER_SCHEMA)

        for table in ("client", "invoice", "contract", "job"):
            cursor.execute(f"""
                CREATE INDEX IF NOT EXISTS idx_{table}_owner
                ON {table}(owner_id)
            """)

        conn.commit()
        logger.info(f"Record store tables initialized at {db_path}")

    finally:
        conn.close()


def _columns(entity: EntityBase) -> List[str]:
    return list(type(entity).model_fields)


def _row_values(entity: EntityBase) -> Dict[str, object]:
    return entity.model_dump(mode="json")


class SQLiteEntityStore:
    """EntityStore backed by one SQLite connection.

    Example:
        store = SQLiteEntityStore(Path("smallbiz.db"))
        clients = store.fetch_all(EntityType.CLIENT)
        clients[0].owner_id = owner.id
        store.save(clients[0])
        store.commit()
    """

    def __init__(self, db_path: Path = DEFAULT_DB_PATH, initialize: bool = True):
        """Open the store.

        Args:
            db_path: Path to SQLite database file
            initialize: Create missing tables first
        """
        self.db_path = Path(db_path)
        if initialize:
            init_store_db(self.db_path)
        self._conn = get_db_connection(self.db_path)

    @property
    def connection(self) -> sqlite3.Connection:
        return self._conn

    def fetch_all(self, entity_type: EntityType) -> List[EntityBase]:
        model = ENTITY_MODELS[entity_type]
        try:
            cursor = self._conn.execute(
                f"SELECT * FROM {entity_type.value} ORDER BY created_at, id"
            )
            rows = cursor.fetchall()
        except sqlite3.Error as e:
            raise StoreReadError(
                f"Failed to read {entity_type.value} records: {e}",
                entity_type=entity_type.value,
            ) from e

        try:
            return [model.model_validate(dict(row)) for row in rows]
        except ValidationError as e:
            raise StoreReadError(
                f"Unreadable {entity_type.value} record: {e}",
                entity_type=entity_type.value,
            ) from e

    def insert(self, entity: EntityBase) -> None:
        entity_type = entity_type_of(entity)
        columns = _columns(entity)
        values = _row_values(entity)
        placeholders = ", ".join("?" for _ in columns)
        try:
            self._conn.execute(
                f"INSERT INTO {entity_type.value} ({', '.join(columns)}) VALUES ({placeholders})",
                [values[c] for c in columns],
            )
        except sqlite3.Error as e:
            raise StoreWriteError(
                f"Failed to insert {entity_type.value} {entity.id}: {e}",
                entity_type=entity_type.value,
            ) from e

    def save(self, entity: EntityBase) -> None:
        entity_type = entity_type_of(entity)
        columns = [c for c in _columns(entity) if c != "id"]
        values = _row_values(entity)
        assignments = ", ".join(f"{c} = ?" for c in columns)
        try:
            cursor = self._conn.execute(
                f"UPDATE {entity_type.value} SET {assignments} WHERE id = ?",
                [values[c] for c in columns] + [entity.id],
            )
        except sqlite3.Error as e:
            raise StoreWriteError(
                f"Failed to update {entity_type.value} {entity.id}: {e}",
                entity_type=entity_type.value,
            ) from e

        if cursor.rowcount == 0:
            raise StoreWriteError(
                f"Cannot update missing {entity_type.value} {entity.id}",
                entity_type=entity_type.value,
            )

    def commit(self) -> None:
        try:
            self._conn.commit()
        except sqlite3.Error as e:
            raise StoreWriteError(f"Commit failed: {e}") from e

    def rollback(self) -> None:
        self._conn.rollback()

    def close(self) -> None:
        self._conn.close()

    def __enter__(self) -> "SQLiteEntityStore":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        if exc_type is not None:
            self.rollback()
        self.close()


# =============================================================================
# Sample Data Seeding
# =============================================================================

def seed_legacy_sample_data(db_path: Path = DEFAULT_DB_PATH) -> Dict[str, int]:
    """Seed the database with records shaped like an older schema wrote them.

    Includes an inactive business, a client pointing at a deleted business,
    free-form status text, a stale in-flight upload and a booked job marked
    completed ahead of its start date.

    Args:
        db_path: Path to database

    Returns:
        Dict with count of created records per table
    """
    now = datetime.now(timezone.utc)
    business = Owner(name="Legacy Plumbing Co", is_active=False)
    missing_business_id = "00000000-0000-0000-0000-00000000dead"

    records: List[EntityBase] = [
        business,
        Client(owner_id=missing_business_id, name="Orphaned Client"),
        Client(owner_id=business.id, name="Scoped Client"),
        Invoice(
            owner_id=business.id,
            invoice_number="SI-2026-001",
            estimate_status=" Sent ",
            template_key_override="bogus",
            portal_needs_upload=True,
            portal_upload_in_flight=True,
            portal_last_error="timeout",
            portal_last_uploaded_hash="",
        ),
        Contract(owner_id=missing_business_id, title="Service Agreement", status="Canceled"),
        Job(
            owner_id=business.id,
            title="Water heater install",
            stage="completed",
            source_booking_request_id="bk-1001",
            start_date=now + timedelta(days=3),
            end_date=now + timedelta(days=3, hours=2),
        ),
        Job(owner_id=business.id, title="Leak repair", stage="scheduled"),
    ]

    created: Dict[str, int] = {}
    with SQLiteEntityStore(db_path) as store:
        for record in records:
            store.insert(record)
            table = entity_type_of(record).value
            created[table] = created.get(table, 0) + 1
        store.commit()

    logger.info(f"Seeded {sum(created.values())} legacy records")
    return created


def clear_store(db_path: Path = DEFAULT_DB_PATH, include_ledger: bool = True) -> None:
    """Delete all records (for testing).

    Args:
        db_path: Path to database
        include_ledger: Also reset the migration ledger
    """
    tables: List[str] = [t.value for t in SCHEMA]
    if include_ledger:
        tables.append("migration_ledger")

    conn = sqlite3.connect(str(db_path))
    try:
        cursor = conn.cursor()
        for table in tables:
            cursor.execute(f"DELETE FROM {table}")
        conn.commit()
    finally:
        conn.close()


def count_records(db_path: Path = DEFAULT_DB_PATH, entity_type: Optional[EntityType] = None) -> Dict[str, int]:
    """Count stored records per table."""
    types = [entity_type] if entity_type else list(SCHEMA)
    conn = sqlite3.connect(str(db_path))
    try:
        return {
            t.value: conn.execute(f"SELECT COUNT(*) FROM {t.value}").fetchone()[0]
            for t in types
        }
    finally:
        conn.close()
