"""
Business Migration Engine Test Suite

Covers the launch-time migration end to end:
1. Active business selection + orphan reassignment
2. Empty store gets a default business
3. Bad template override cleared, stale portal upload flags reset
4. Second launch is a no-op; forced re-run changes nothing
5. Commit failure leaves the ledger where it was (both ledger kinds)
6. Read failure aborts before any write
7. Dry run executes every pass and commits nothing
8. SQLite store with legacy sample data

Pass Criteria:
- Exactly one active business after every successful run
- No dependent record points at a missing business
- Ledger only advances together with the repaired data
"""

from datetime import datetime, timedelta, timezone
from unittest.mock import patch

import pytest

from business_migration import (
    CURRENT_VERSION,
    ENUM_FIELD_POLICIES,
    InvalidPolicy,
    MigrationError,
    MigrationStatus,
    Ok,
    RepairKind,
    run_if_needed,
    run_on_launch,
)
from business_migration.engine import MigrationEngine, build_audit_logger
from core.audit.events import AuditEventType, AuditLogger, InMemoryAuditBackend
from core.config import MigrationSettings
from core.models.entities import Client, Contract, EntityType, Invoice, Job, Owner
from core.observability.metrics import get_metrics
from entity_store import (
    InMemoryEntityStore,
    InMemoryMigrationLedger,
    SQLiteEntityStore,
    SQLiteMigrationLedger,
    StoreReadError,
    StoreWriteError,
    seed_legacy_sample_data,
)

FIXED_NOW = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


def fixed_clock():
    return FIXED_NOW


@pytest.fixture
def settings():
    return MigrationSettings(default_business_name="Fallback Co")


@pytest.fixture
def audit_backend():
    return InMemoryAuditBackend()


@pytest.fixture
def audit(audit_backend):
    audit = AuditLogger()
    audit.add_backend(audit_backend)
    return audit


@pytest.fixture
def store():
    return InMemoryEntityStore()


@pytest.fixture
def ledger():
    return InMemoryMigrationLedger()


@pytest.fixture
def migrate(settings, audit):
    def _migrate(store, ledger, **kwargs):
        return run_if_needed(
            store, ledger, settings=settings, audit=audit, clock=fixed_clock, **kwargs
        )
    return _migrate


def active_owners(store):
    return [o for o in store.fetch_all(EntityType.BUSINESS) if o.is_active]


def assert_no_dangling_owner_refs(store):
    owner_ids = {o.id for o in store.fetch_all(EntityType.BUSINESS)}
    for entity_type in (EntityType.CLIENT, EntityType.INVOICE, EntityType.CONTRACT, EntityType.JOB):
        for record in store.fetch_all(entity_type):
            assert record.owner_id in owner_ids, f"{entity_type.value} {record.id} is dangling"


# =============================================================================
# Launch scenarios
# =============================================================================

class TestLaunchScenarios:
    """Scenarios a real store hits on first launch after an upgrade."""

    def test_existing_active_owner_kept_and_orphan_reassigned(self, store, ledger, migrate):
        owner_a = Owner(id="A", name="Alpha", is_active=False, created_at=FIXED_NOW - timedelta(days=30))
        owner_b = Owner(id="B", name="Bravo", is_active=True, created_at=FIXED_NOW - timedelta(days=10))
        orphan = Client(owner_id="Z", name="Orphan")
        store.add(owner_a, owner_b, orphan)

        report = migrate(store, ledger)

        assert report.status == MigrationStatus.COMPLETED
        assert report.default_owner_id == "B"
        assert [o.id for o in active_owners(store)] == ["B"]
        assert store.fetch_all(EntityType.CLIENT)[0].owner_id == "B"
        assert ledger.read_version() == CURRENT_VERSION

    def test_empty_store_gets_default_owner(self, store, ledger, migrate):
        report = migrate(store, ledger)

        owners = store.fetch_all(EntityType.BUSINESS)
        assert len(owners) == 1
        assert owners[0].is_active
        assert owners[0].name == "Fallback Co"
        assert report.owner_created
        assert report.default_owner_id == owners[0].id
        assert ledger.read_version() == CURRENT_VERSION

    def test_dependents_of_empty_owner_set_reference_created_owner(self, store, ledger, migrate):
        store.add(
            Client(owner_id="gone", name="C1"),
            Job(owner_id="gone", title="J1"),
        )

        report = migrate(store, ledger)

        owner_id = report.default_owner_id
        assert all(c.owner_id == owner_id for c in store.fetch_all(EntityType.CLIENT))
        assert all(j.owner_id == owner_id for j in store.fetch_all(EntityType.JOB))

    def test_bogus_override_cleared_and_pending_upload_reset(self, store, ledger, migrate):
        owner = Owner(name="Acme", is_active=True)
        invoice = Invoice(
            owner_id=owner.id,
            template_key_override="bogus",
            portal_needs_upload=True,
            portal_upload_in_flight=True,
            portal_last_error="HTTP 500",
        )
        store.add(owner, invoice)

        migrate(store, ledger)

        stored = store.fetch_all(EntityType.INVOICE)[0]
        assert stored.template_key_override is None
        assert stored.portal_needs_upload is False
        assert stored.portal_upload_in_flight is False
        assert stored.portal_last_error is None

    def test_valid_override_survives(self, store, ledger, migrate):
        owner = Owner(name="Acme", is_active=True)
        store.add(owner, Invoice(owner_id=owner.id, template_key_override="Modern Clean"))

        migrate(store, ledger)

        assert store.fetch_all(EntityType.INVOICE)[0].template_key_override == "modern_clean"

    def test_premature_booking_completion_reverted(self, store, ledger, migrate):
        owner = Owner(name="Acme", is_active=True)
        future_job = Job(
            owner_id=owner.id,
            stage="completed",
            source_booking_request_id="bk-1",
            start_date=FIXED_NOW + timedelta(days=1),
        )
        past_job = Job(
            owner_id=owner.id,
            stage="completed",
            source_booking_request_id="bk-2",
            start_date=FIXED_NOW - timedelta(days=1),
        )
        store.add(owner, future_job, past_job)

        migrate(store, ledger)

        stages = {j.id: j.stage for j in store.fetch_all(EntityType.JOB)}
        assert stages[future_job.id] == "booked"
        assert stages[past_job.id] == "completed"

    def test_several_active_owners_collapse_to_earliest(self, store, ledger, migrate):
        first = Owner(id="first", is_active=True, created_at=FIXED_NOW - timedelta(days=5))
        second = Owner(id="second", is_active=True, created_at=FIXED_NOW - timedelta(days=1))
        store.add(second, first)

        report = migrate(store, ledger)

        assert [o.id for o in active_owners(store)] == ["first"]
        assert report.changes_by_kind() == {RepairKind.OWNER_DEACTIVATED.value: 1}


# =============================================================================
# Idempotence
# =============================================================================

class TestIdempotence:
    """Running the migration again must be safe."""

    def _seed(self, store):
        owner = Owner(name="Acme")
        store.add(
            owner,
            Client(owner_id="missing", name="Orphan"),
            Invoice(owner_id=owner.id, estimate_status=" SENT ", portal_needs_upload=True),
            Contract(owner_id="missing", status="Canceled"),
            Job(owner_id=owner.id, stage="scheduled"),
        )

    def test_second_launch_is_skipped(self, store, ledger, migrate):
        self._seed(store)
        first = migrate(store, ledger)
        commits_after_first = store.commit_count

        second = migrate(store, ledger)

        assert first.status == MigrationStatus.COMPLETED
        assert first.total_changes > 0
        assert second.status == MigrationStatus.SKIPPED
        assert second.passes == []
        assert store.commit_count == commits_after_first
        assert ledger.write_count == 1

    def test_forced_rerun_changes_nothing(self, store, ledger, migrate):
        self._seed(store)
        migrate(store, ledger)
        before = {t: [r.model_dump() for r in store.fetch_all(t)] for t in EntityType}

        ledger.version = 0
        report = migrate(store, ledger)

        after = {t: [r.model_dump() for r in store.fetch_all(t)] for t in EntityType}
        assert report.status == MigrationStatus.COMPLETED
        assert report.total_changes == 0
        assert after == before
        assert len(store.fetch_all(EntityType.BUSINESS)) == 1

    def test_empty_store_rerun_creates_no_second_owner(self, store, ledger, migrate):
        migrate(store, ledger)
        ledger.version = 0

        report = migrate(store, ledger)

        assert not report.owner_created
        assert len(store.fetch_all(EntityType.BUSINESS)) == 1

    def test_ledger_ahead_of_engine_is_skipped(self, store, migrate):
        ledger = InMemoryMigrationLedger(version=CURRENT_VERSION + 1)
        store.add(Client(owner_id="missing"))

        report = migrate(store, ledger)

        assert report.status == MigrationStatus.SKIPPED
        assert store.fetch_all(EntityType.CLIENT)[0].owner_id == "missing"


# =============================================================================
# Failure atomicity
# =============================================================================

class TestFailureAtomicity:
    """A failed run commits nothing and leaves the ledger unadvanced."""

    def test_commit_failure_keeps_in_memory_ledger(self, store, ledger, migrate):
        store.add(Client(owner_id="missing"))

        with patch.object(store, "commit", side_effect=StoreWriteError("disk full")):
            with pytest.raises(MigrationError) as exc_info:
                migrate(store, ledger)

        assert exc_info.value.pass_name == "commit"
        assert isinstance(exc_info.value.cause, StoreWriteError)
        assert ledger.read_version() == 0
        assert ledger.write_count == 0
        assert store.fetch_all(EntityType.BUSINESS) == []
        assert store.fetch_all(EntityType.CLIENT)[0].owner_id == "missing"

    def test_commit_failure_audits_no_repairs(self, store, ledger, migrate, audit_backend):
        store.add(Client(owner_id="missing"))
        repairs_before = dict(get_metrics().get_summary()["repairs"])

        with patch.object(store, "commit", side_effect=StoreWriteError("disk full")):
            with pytest.raises(MigrationError):
                migrate(store, ledger)

        assert audit_backend.query(event_type=AuditEventType.OWNER_CREATED.value) == []
        assert audit_backend.query(event_type=AuditEventType.FOREIGN_KEY_REMAPPED.value) == []
        assert [e.event_type for e in audit_backend.query()] == ["MIGRATION_STARTED", "MIGRATION_FAILED"]
        assert get_metrics().get_summary()["repairs"] == repairs_before

    def test_commit_failure_rolls_back_sqlite_ledger(self, tmp_path, migrate):
        db_path = tmp_path / "store.db"
        with SQLiteEntityStore(db_path) as store:
            store.insert(Owner(name="Acme", is_active=False))
            store.commit()
            ledger = SQLiteMigrationLedger(store)

            with patch.object(store, "commit", side_effect=StoreWriteError("disk full")):
                with pytest.raises(MigrationError):
                    migrate(store, ledger)

            assert ledger.read_version() == 0
            assert active_owners(store) == []

    def test_retry_after_commit_failure_succeeds(self, store, ledger, migrate):
        store.add(Client(owner_id="missing"))
        with patch.object(store, "commit", side_effect=StoreWriteError("disk full")):
            with pytest.raises(MigrationError):
                migrate(store, ledger)

        report = migrate(store, ledger)

        assert report.status == MigrationStatus.COMPLETED
        assert ledger.read_version() == CURRENT_VERSION
        assert_no_dangling_owner_refs(store)

    def test_fetch_failure_aborts_before_writes(self, store, ledger, migrate):
        with patch.object(store, "fetch_all", side_effect=StoreReadError("io error")):
            with patch.object(store, "save") as save, patch.object(store, "insert") as insert:
                with pytest.raises(MigrationError) as exc_info:
                    migrate(store, ledger)

        assert exc_info.value.pass_name == "snapshot"
        assert isinstance(exc_info.value.cause, StoreReadError)
        save.assert_not_called()
        insert.assert_not_called()
        assert ledger.read_version() == 0

    def test_ledger_read_failure_reported_as_version_gate(self, store, ledger, migrate):
        with patch.object(ledger, "read_version", side_effect=StoreReadError("locked")):
            with pytest.raises(MigrationError) as exc_info:
                migrate(store, ledger)

        assert exc_info.value.pass_name == "version_gate"

    def test_pass_failure_is_wrapped_with_pass_name(self, store, ledger, migrate):
        store.add(Owner(is_active=True))
        with patch(
            "business_migration.transient_reset.reset_transient_state",
            side_effect=RuntimeError("boom"),
        ):
            with pytest.raises(MigrationError) as exc_info:
                migrate(store, ledger)

        assert exc_info.value.pass_name == "transient_reset"
        assert "boom" in str(exc_info.value)
        assert ledger.read_version() == 0

    def test_run_on_launch_swallows_failure(self, store, ledger, settings, audit):
        with patch.object(store, "commit", side_effect=StoreWriteError("disk full")):
            report = run_on_launch(store, ledger, settings=settings, audit=audit)

        assert report is None
        assert ledger.read_version() == 0

    def test_failure_is_audited(self, store, ledger, migrate, audit_backend):
        with patch.object(store, "commit", side_effect=StoreWriteError("disk full")):
            with pytest.raises(MigrationError):
                migrate(store, ledger)

        failed = audit_backend.query(event_type=AuditEventType.MIGRATION_FAILED.value)
        assert len(failed) == 1
        assert failed[0].pass_name == "commit"
        assert audit_backend.query(event_type=AuditEventType.LEDGER_ADVANCED.value) == []


# =============================================================================
# Dry run
# =============================================================================

class TestDryRun:

    def test_dry_run_reports_changes_but_commits_nothing(self, store, ledger, migrate):
        store.add(Client(owner_id="missing"))

        report = migrate(store, ledger, dry_run=True)

        assert report.status == MigrationStatus.DRY_RUN
        assert report.owner_created
        assert report.get_pass("referential_repair").records_changed == 1
        assert store.fetch_all(EntityType.BUSINESS) == []
        assert store.fetch_all(EntityType.CLIENT)[0].owner_id == "missing"
        assert ledger.read_version() == 0

    def test_dry_run_then_real_run(self, store, ledger, migrate):
        store.add(Client(owner_id="missing"))
        dry = migrate(store, ledger, dry_run=True)

        real = migrate(store, ledger)

        assert real.status == MigrationStatus.COMPLETED
        assert real.changes_by_kind() == dry.changes_by_kind()

    def test_dry_run_audits_summary_only(self, store, ledger, migrate, audit_backend):
        store.add(Client(owner_id="missing"))

        report = migrate(store, ledger, dry_run=True)

        events = audit_backend.query(migration_run_id=report.run_id)
        assert [e.event_type for e in events] == ["MIGRATION_STARTED", "MIGRATION_DRY_RUN"]
        assert events[-1].details == report.changes_by_kind()


# =============================================================================
# Enum safety
# =============================================================================

class TestEnumSafety:
    """After a run, every policy-governed field decodes to a known variant."""

    def test_every_policy_field_decodes_after_run(self, store, ledger, migrate):
        owner = Owner(default_invoice_template_key="Neon Retro", is_active=True)
        store.add(
            owner,
            Invoice(
                owner_id=owner.id,
                template_key_override="unknown_layout",
                document_type="receipt",
                estimate_status="pending review",
            ),
            Invoice(owner_id=owner.id, template_key_override="  "),
            Contract(owner_id=owner.id, status="voided"),
            Job(owner_id=owner.id, stage="on hold"),
            Job(owner_id=owner.id, stage=""),
        )

        migrate(store, ledger)

        for policy in ENUM_FIELD_POLICIES:
            for record in store.fetch_all(policy.entity_type):
                value = getattr(record, policy.field_name)
                if policy.policy == InvalidPolicy.CLEAR and value is None:
                    continue
                assert isinstance(policy.decode(value), Ok), (
                    f"{policy.entity_type.value}.{policy.field_name} = {value!r}"
                )
        assert all(i.template_key_override is None for i in store.fetch_all(EntityType.INVOICE))


# =============================================================================
# Report and audit trail
# =============================================================================

class TestReportAndAudit:

    def test_passes_reported_in_order(self, store, ledger, migrate):
        report = migrate(store, ledger)

        assert [p.pass_name for p in report.passes] == [
            "active_owner",
            "referential_repair",
            "enum_normalization",
            "transient_reset",
            "derived_state",
        ]
        assert all(p.duration_ms is not None for p in report.passes)

    def test_one_audit_event_per_change(self, store, ledger, migrate, audit_backend):
        owner = Owner(is_active=True)
        store.add(owner, Client(owner_id="x"), Contract(owner_id="y", status="signed"))

        report = migrate(store, ledger)

        remapped = audit_backend.query(
            event_type=AuditEventType.FOREIGN_KEY_REMAPPED.value,
            migration_run_id=report.run_id,
        )
        assert len(remapped) == 2
        assert {e.entity_type for e in remapped} == {"client", "contract"}
        assert all(e.pass_name == "referential_repair" for e in remapped)
        assert len(audit_backend.query(event_type=AuditEventType.MIGRATION_COMPLETED.value)) == 1
        assert len(audit_backend.query(event_type=AuditEventType.LEDGER_ADVANCED.value)) == 1

    def test_canonicalized_enum_audited_separately(self, store, ledger, migrate, audit_backend):
        owner = Owner(is_active=True)
        store.add(owner, Job(owner_id=owner.id, stage=" In Progress "), Job(owner_id=owner.id, stage="on hold"))

        migrate(store, ledger)

        canonicalized = audit_backend.query(event_type=AuditEventType.ENUM_CANONICALIZED.value)
        defaulted = audit_backend.query(event_type=AuditEventType.ENUM_DEFAULTED.value)
        assert [e.details for e in canonicalized] == [{"kind": RepairKind.ENUM_CANONICALIZED.value}]
        assert [e.details for e in defaulted] == [{"kind": RepairKind.ENUM_DEFAULTED.value}]

    def test_skip_is_audited(self, store, migrate, audit_backend):
        migrate(store, InMemoryMigrationLedger(version=CURRENT_VERSION))

        assert len(audit_backend.query(event_type=AuditEventType.MIGRATION_SKIPPED.value)) == 1
        assert audit_backend.query(event_type=AuditEventType.MIGRATION_STARTED.value) == []

    def test_engine_with_custom_target_version(self, store, settings, audit):
        ledger = InMemoryMigrationLedger(version=CURRENT_VERSION)
        engine = MigrationEngine(settings=settings, audit=audit, target_version=CURRENT_VERSION + 1)

        report = engine.run_if_needed(store, ledger)

        assert report.status == MigrationStatus.COMPLETED
        assert ledger.read_version() == CURRENT_VERSION + 1

    def test_audit_dir_adds_file_backend(self, tmp_path, store, ledger):
        settings = MigrationSettings(audit_dir=tmp_path / "audit")

        run_if_needed(store, ledger, settings=settings, audit=build_audit_logger(settings))

        files = list((tmp_path / "audit").glob("*.json"))
        assert len(files) == 1


# =============================================================================
# SQLite end to end
# =============================================================================

class TestSQLiteEndToEnd:

    def test_legacy_sample_data_repaired(self, tmp_path, settings, audit):
        db_path = tmp_path / "legacy.db"
        seed_legacy_sample_data(db_path)

        with SQLiteEntityStore(db_path) as store:
            report = run_if_needed(store, SQLiteMigrationLedger(store), settings=settings, audit=audit)

        assert report.status == MigrationStatus.COMPLETED

        with SQLiteEntityStore(db_path) as store:
            assert len(active_owners(store)) == 1
            assert_no_dangling_owner_refs(store)

            invoice = store.fetch_all(EntityType.INVOICE)[0]
            assert invoice.estimate_status == "sent"
            assert invoice.template_key_override is None
            assert invoice.portal_needs_upload is False
            assert invoice.portal_last_uploaded_hash is None

            contract = store.fetch_all(EntityType.CONTRACT)[0]
            assert contract.status == "cancelled"

            assert {j.stage for j in store.fetch_all(EntityType.JOB)} == {"booked"}
            assert SQLiteMigrationLedger(store).read_version() == CURRENT_VERSION

    def test_second_launch_on_sqlite_is_skipped(self, tmp_path, settings, audit):
        db_path = tmp_path / "legacy.db"
        seed_legacy_sample_data(db_path)

        with SQLiteEntityStore(db_path) as store:
            run_if_needed(store, SQLiteMigrationLedger(store), settings=settings, audit=audit)
        with SQLiteEntityStore(db_path) as store:
            report = run_if_needed(store, SQLiteMigrationLedger(store), settings=settings, audit=audit)

        assert report.status == MigrationStatus.SKIPPED
