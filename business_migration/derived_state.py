"""Derived state correction pass.

A job created from a booking cannot be completed before it starts. Jobs
that say otherwise are moved back to booked. ``now`` is read once when the
pass starts; this is a one-off repair, not a live rule.
"""

from datetime import datetime, timezone
from typing import Callable, Optional

from business_migration.enums import JobStage, Ok, decode_job_stage
from business_migration.models import MigrationSnapshot, PassResult, RepairKind
from core.models.entities import EntityType, Job, utc_now

PASS_NAME = "derived_state"


def _is_set(value: Optional[str]) -> bool:
    return value is not None and value.strip() != ""


def _as_utc(value: datetime) -> datetime:
    return value if value.tzinfo else value.replace(tzinfo=timezone.utc)


def is_premature_completion(job: Job, now: datetime) -> bool:
    """True for a booked-origin job marked completed with a start still ahead."""
    decoded = decode_job_stage(job.stage)
    if not (isinstance(decoded, Ok) and decoded.variant == JobStage.COMPLETED):
        return False
    if not _is_set(job.source_booking_request_id):
        return False
    return _as_utc(job.start_date) >= _as_utc(now)


def correct_derived_state(
    snapshot: MigrationSnapshot,
    clock: Callable[[], datetime] = utc_now,
) -> PassResult:
    """Move prematurely completed booking jobs back to booked."""
    now = clock()
    result = PassResult(pass_name=PASS_NAME)

    for job in snapshot.records(EntityType.JOB):
        result.records_examined += 1
        if not is_premature_completion(job, now):
            continue
        old_stage = job.stage
        job.stage = JobStage.BOOKED.value
        snapshot.mark_dirty(job)
        result.record(RepairKind.DERIVED_CORRECTED, job, "stage", old_stage, job.stage)

    return result
