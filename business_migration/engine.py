"""Business migration engine.

Runs once per schema-version bump, before normal traffic reaches the store:

    version gate -> snapshot -> active owner -> referential repair
      -> enum normalization -> transient reset -> derived state -> commit

Every pass works on one in-memory snapshot. The commit step is the only
place anything becomes durable: dirty records are saved, then the ledger is
advanced either inside the same transaction (SQLite ledger) or strictly
after a successful commit. Any failure rolls the store back and leaves the
ledger where it was, so the next launch retries the whole sequence. All
passes are idempotent, which makes that retry safe.

Usage:
    from business_migration import run_if_needed
    from entity_store import SQLiteEntityStore, SQLiteMigrationLedger

    with SQLiteEntityStore(db_path) as store:
        report = run_if_needed(store, SQLiteMigrationLedger(store))
        print(report.status, report.changes_by_kind())
"""

import time
import uuid
from datetime import datetime
from typing import Callable, Dict, List, Optional

from core.audit.events import AuditEventType, AuditLogger, JSONFileAuditBackend
from core.config import MigrationSettings, load_settings
from core.models.entities import DEPENDENT_TYPES, EntityType, utc_now
from core.observability.logging import (
    get_correlation_context,
    get_logger,
    log_pass_complete,
    log_pass_error,
    log_pass_start,
    with_correlation,
)
from core.observability.metrics import get_metrics
from business_migration import (
    derived_state,
    enum_normalization,
    owner_resolver,
    referential_repair,
    transient_reset,
)
from business_migration.errors import MigrationError
from business_migration.models import (
    MigrationReport,
    MigrationSnapshot,
    MigrationStatus,
    PassResult,
    RepairKind,
)
from business_migration.version_gate import CURRENT_VERSION, should_run
from entity_store.base import EntityStore, MigrationLedger

logger = get_logger(__name__)


AUDIT_EVENT_BY_KIND: Dict[RepairKind, AuditEventType] = {
    RepairKind.OWNER_CREATED: AuditEventType.OWNER_CREATED,
    RepairKind.OWNER_ACTIVATED: AuditEventType.OWNER_ACTIVATED,
    RepairKind.OWNER_DEACTIVATED: AuditEventType.OWNER_DEACTIVATED,
    RepairKind.FK_REMAPPED: AuditEventType.FOREIGN_KEY_REMAPPED,
    RepairKind.ENUM_CANONICALIZED: AuditEventType.ENUM_CANONICALIZED,
    RepairKind.ENUM_DEFAULTED: AuditEventType.ENUM_DEFAULTED,
    RepairKind.ENUM_CLEARED: AuditEventType.ENUM_CLEARED,
    RepairKind.TRANSIENT_RESET: AuditEventType.TRANSIENT_STATE_RESET,
    RepairKind.DERIVED_CORRECTED: AuditEventType.DERIVED_STATE_CORRECTED,
}


def build_audit_logger(settings: MigrationSettings) -> AuditLogger:
    audit = AuditLogger()
    if settings.audit_dir:
        audit.add_backend(JSONFileAuditBackend(settings.audit_dir))
    return audit


def load_snapshot(store: EntityStore) -> MigrationSnapshot:
    """Read every owner and dependent record. Any read failure propagates."""
    snapshot = MigrationSnapshot(owners=list(store.fetch_all(EntityType.BUSINESS)))
    for entity_type in DEPENDENT_TYPES:
        snapshot.dependents[entity_type] = list(store.fetch_all(entity_type))
    return snapshot


class MigrationEngine:
    """Runs the business migration against one store and ledger.

    Not safe for concurrent use: callers must make sure only one run is in
    flight and that no other writes reach the store while it runs.
    """

    def __init__(
        self,
        settings: Optional[MigrationSettings] = None,
        audit: Optional[AuditLogger] = None,
        clock: Callable[[], datetime] = utc_now,
        target_version: int = CURRENT_VERSION,
    ):
        """Initialize the engine.

        Args:
            settings: Engine settings (default: from environment)
            audit: Audit logger (default: built from settings)
            clock: Source of "now" for the derived state pass
            target_version: Version the ledger is advanced to
        """
        self.settings = settings or load_settings()
        self.audit = audit or build_audit_logger(self.settings)
        self.clock = clock
        self.target_version = target_version
        self.metrics = get_metrics()

    # =========================================================================
    # Public API
    # =========================================================================

    def run_if_needed(
        self,
        store: EntityStore,
        ledger: MigrationLedger,
        dry_run: bool = False,
    ) -> MigrationReport:
        """Run every pass if the ledger is behind ``target_version``.

        Args:
            store: Record store to repair
            ledger: Ledger holding the last completed version
            dry_run: Execute the passes but roll back instead of committing

        Returns:
            MigrationReport (status SKIPPED when there was nothing to do)

        Raises:
            MigrationError: Wrapping the first failure; the store is rolled
                back and the ledger is unchanged
        """
        run_id = str(uuid.uuid4())
        started_at = utc_now()

        with with_correlation(migration_run_id=run_id, target_version=self.target_version):
            last_version = self._read_ledger(ledger)

            if not should_run(last_version, self.target_version):
                logger.info(
                    f"Business migration already at v{last_version}, nothing to do",
                    extra_fields={"ledger_version": last_version},
                )
                self.metrics.record_run_skipped()
                self._audit_run(
                    AuditEventType.MIGRATION_SKIPPED,
                    run_id,
                    f"Ledger at v{last_version}, target v{self.target_version}; nothing to do",
                )
                return MigrationReport(
                    run_id=run_id,
                    status=MigrationStatus.SKIPPED,
                    from_version=last_version,
                    target_version=self.target_version,
                    started_at=started_at,
                    completed_at=utc_now(),
                )

            self.metrics.record_run_started(self.target_version)
            self._audit_run(
                AuditEventType.MIGRATION_STARTED,
                run_id,
                f"Business migration v{last_version} -> v{self.target_version} started",
            )
            logger.info(f"Business migration v{last_version} -> v{self.target_version} started")

            report = MigrationReport(
                run_id=run_id,
                status=MigrationStatus.DRY_RUN if dry_run else MigrationStatus.COMPLETED,
                from_version=last_version,
                target_version=self.target_version,
                started_at=started_at,
            )

            try:
                self._run_passes(store, ledger, report, dry_run)
            except MigrationError as e:
                self._rollback(store)
                self.metrics.record_run_failed(self.target_version, str(e.cause))
                self._audit_run(
                    AuditEventType.MIGRATION_FAILED,
                    run_id,
                    str(e),
                    error=True,
                    pass_name=e.pass_name,
                    details={"error_type": type(e.cause).__name__},
                )
                logger.error(f"Business migration aborted in {e.pass_name}; ledger left at v{last_version}")
                raise

            report.completed_at = utc_now()
            duration_ms = (report.completed_at - started_at).total_seconds() * 1000
            self.metrics.record_run_completed(self.target_version, duration_ms)

            # Per-change events only describe repairs that are now durable
            if dry_run:
                self._audit_run(
                    AuditEventType.MIGRATION_DRY_RUN,
                    run_id,
                    f"Dry run found {report.total_changes} changes; nothing committed",
                    details=report.changes_by_kind(),
                )
            else:
                self._publish_changes(report)
                self._audit_run(
                    AuditEventType.MIGRATION_COMPLETED,
                    run_id,
                    f"Business migration v{self.target_version} completed",
                    details=report.changes_by_kind(),
                )
            logger.info(
                f"Business migration v{self.target_version} {report.status.value}: "
                f"{report.total_changes} changes",
                extra_fields={"duration_ms": round(duration_ms, 1), **report.changes_by_kind()},
            )
            return report

    # =========================================================================
    # Steps
    # =========================================================================

    def _read_ledger(self, ledger: MigrationLedger) -> int:
        try:
            return ledger.read_version()
        except Exception as e:
            log_pass_error("version_gate", str(e))
            raise MigrationError("version_gate", e) from e

    def _run_passes(
        self,
        store: EntityStore,
        ledger: MigrationLedger,
        report: MigrationReport,
        dry_run: bool,
    ) -> None:
        snapshot = self._step("snapshot", load_snapshot, store)

        resolution = self._step(
            owner_resolver.PASS_NAME,
            owner_resolver.resolve_active_owner,
            snapshot,
            store,
            self.settings,
        )
        report.default_owner_id = resolution.owner.id
        report.owner_created = resolution.created
        self._record_pass(report, resolution.result)

        with with_correlation(owner_id=resolution.owner.id):
            passes: List[tuple] = [
                (
                    referential_repair.PASS_NAME,
                    referential_repair.repair_owner_references,
                    (snapshot, resolution.owner.id, self.settings.prefer_linked_owner),
                ),
                (
                    enum_normalization.PASS_NAME,
                    enum_normalization.normalize_enum_fields,
                    (snapshot,),
                ),
                (
                    transient_reset.PASS_NAME,
                    transient_reset.reset_transient_state,
                    (snapshot,),
                ),
                (
                    derived_state.PASS_NAME,
                    derived_state.correct_derived_state,
                    (snapshot, self.clock),
                ),
            ]
            for pass_name, func, args in passes:
                result = self._step(pass_name, func, *args)
                self._record_pass(report, result)

            self._step("commit", self._commit, store, ledger, snapshot, dry_run)

    def _commit(
        self,
        store: EntityStore,
        ledger: MigrationLedger,
        snapshot: MigrationSnapshot,
        dry_run: bool,
    ) -> None:
        for record in snapshot.dirty_records():
            store.save(record)

        if dry_run:
            store.rollback()
            return

        if ledger.joins_store_transaction:
            ledger.write_version(self.target_version)
            store.commit()
        else:
            store.commit()
            ledger.write_version(self.target_version)

        self._audit_run(
            AuditEventType.LEDGER_ADVANCED,
            None,
            f"Migration ledger advanced to v{self.target_version}",
            pass_name="commit",
            details={"records_saved": len(snapshot.dirty_records())},
        )

    def _step(self, pass_name: str, func, *args):
        """Run one step with timing, logging and metrics; wrap any failure."""
        with with_correlation(pass_name=pass_name):
            log_pass_start(pass_name)
            self.metrics.record_pass_started(pass_name)
            start = time.perf_counter()
            try:
                value = func(*args)
            except Exception as e:
                log_pass_error(pass_name, str(e), error_type=type(e).__name__)
                self.metrics.record_pass_failed(pass_name, str(e))
                raise MigrationError(pass_name, e) from e

            duration_ms = (time.perf_counter() - start) * 1000
            result = getattr(value, "result", value)
            if isinstance(result, PassResult):
                result.duration_ms = duration_ms
            self.metrics.record_pass_completed(pass_name, duration_ms)
            log_pass_complete(pass_name, round(duration_ms, 2))
            return value

    def _record_pass(self, report: MigrationReport, result: PassResult) -> None:
        report.passes.append(result)

        if result.changes:
            logger.info(
                f"{result.pass_name}: {len(result.changes)} changes on "
                f"{result.records_changed}/{result.records_examined} records"
            )

    def _publish_changes(self, report: MigrationReport) -> None:
        """Count and audit every change of a committed run."""
        for kind, count in report.changes_by_kind().items():
            self.metrics.record_repairs(kind, count)

        for result in report.passes:
            for change in result.changes:
                self.audit.log_info(
                    AUDIT_EVENT_BY_KIND[change.kind],
                    f"{change.entity_type.value} {change.entity_id}: "
                    f"{change.field_name} {change.old_value!r} -> {change.new_value!r}",
                    migration_run_id=report.run_id,
                    target_version=report.target_version,
                    pass_name=result.pass_name,
                    entity_type=change.entity_type.value,
                    entity_id=change.entity_id,
                    details={"kind": change.kind.value},
                )

    def _rollback(self, store: EntityStore) -> None:
        try:
            store.rollback()
        except Exception as e:
            logger.exception(f"Rollback after failed migration also failed: {e}")

    def _audit_run(
        self,
        event_type: AuditEventType,
        run_id: Optional[str],
        message: str,
        error: bool = False,
        **kwargs,
    ) -> None:
        kwargs.setdefault("migration_run_id", run_id or get_correlation_context().migration_run_id)
        kwargs.setdefault("target_version", self.target_version)
        if error:
            self.audit.log_error(event_type, message, **kwargs)
        else:
            self.audit.log_info(event_type, message, **kwargs)


# =============================================================================
# Module-level entry points
# =============================================================================

def run_if_needed(
    store: EntityStore,
    ledger: MigrationLedger,
    settings: Optional[MigrationSettings] = None,
    audit: Optional[AuditLogger] = None,
    clock: Callable[[], datetime] = utc_now,
    target_version: int = CURRENT_VERSION,
    dry_run: bool = False,
) -> MigrationReport:
    """Run the business migration if the ledger is behind.

    Raises:
        MigrationError: Wrapping the first pass failure
    """
    engine = MigrationEngine(
        settings=settings,
        audit=audit,
        clock=clock,
        target_version=target_version,
    )
    return engine.run_if_needed(store, ledger, dry_run=dry_run)


def run_on_launch(
    store: EntityStore,
    ledger: MigrationLedger,
    **kwargs,
) -> Optional[MigrationReport]:
    """Launch-time wrapper: a failed migration is a warning, not a crash.

    The app keeps working on possibly inconsistent data and the migration is
    retried on the next launch.

    Returns:
        MigrationReport, or None if the migration failed
    """
    try:
        return run_if_needed(store, ledger, **kwargs)
    except MigrationError as e:
        logger.warning(
            f"Business migration failed at startup, will retry next launch: {e}",
            extra_fields={"pass_name": e.pass_name},
        )
        return None
