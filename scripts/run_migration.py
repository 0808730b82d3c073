"""
Run the business migration against a local SQLite store.

Mirrors what the app does at launch: the migration runs only if the ledger
is behind, and a failure is reported without aborting.

Usage:
    python scripts/run_migration.py
    python scripts/run_migration.py --db ./smallbiz.db --seed
    python scripts/run_migration.py --dry-run --output report.json
"""

import argparse
import json
import sys
from pathlib import Path

sys.path.append(str(Path(__file__).resolve().parents[1]))

from business_migration import MigrationReport, run_on_launch
from core.config import load_settings
from core.observability.logging import configure_logging
from core.observability.metrics import get_metrics
from entity_store import (
    SQLiteEntityStore,
    SQLiteMigrationLedger,
    count_records,
    seed_legacy_sample_data,
)


def print_report(report: MigrationReport) -> None:
    """Print a migration report in a readable format."""
    print(f"\nRun: {report.run_id}")
    print(f"Status: {report.status.value}")
    print(f"Ledger: v{report.from_version} -> v{report.target_version}")
    if report.default_owner_id:
        created = " (created)" if report.owner_created else ""
        print(f"Active business: {report.default_owner_id}{created}")

    for result in report.passes:
        print(
            f"  {result.pass_name:<20} examined={result.records_examined:<5} "
            f"changed={result.records_changed:<5} changes={len(result.changes)}"
        )
        for change in result.changes:
            print(
                f"    - [{change.kind.value}] {change.entity_type.value} {change.entity_id[:8]} "
                f"{change.field_name}: {change.old_value!r} -> {change.new_value!r}"
            )

    print(f"\nTotal changes: {report.total_changes}")


def main():
    settings = load_settings()

    parser = argparse.ArgumentParser(description="Run the business migration")
    parser.add_argument("--db", type=Path, default=settings.db_path, help="SQLite database file")
    parser.add_argument("--seed", action="store_true", help="Seed legacy sample records first")
    parser.add_argument("--dry-run", action="store_true", help="Run every pass, then roll back")
    parser.add_argument("--json-logs", action="store_true", help="Emit JSON log lines")
    parser.add_argument("--output", type=Path, help="Write the report as JSON")
    args = parser.parse_args()

    configure_logging(level=settings.log_level_value, json_format=args.json_logs or settings.log_json)

    if args.seed:
        created = seed_legacy_sample_data(args.db)
        print(f"Seeded: {created}")

    settings = settings.model_copy(update={"db_path": args.db})
    with SQLiteEntityStore(args.db) as store:
        report = run_on_launch(
            store,
            SQLiteMigrationLedger(store),
            settings=settings,
            dry_run=args.dry_run,
        )

    if report is None:
        print("\nMigration failed; ledger not advanced. See log for details.")
        sys.exit(1)

    print_report(report)
    print(f"Records: {count_records(args.db)}")
    print(f"Metrics: {json.dumps(get_metrics().get_summary()['repairs'])}")

    if args.output:
        args.output.write_text(report.model_dump_json(indent=2), encoding="utf-8")
        print(f"\nReport written to {args.output}")


if __name__ == "__main__":
    main()
