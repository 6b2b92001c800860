"""Local batch job statuses, the transitions between them, and vendor status mapping."""

import enum
from typing import assert_never

from paperbatch.models.batch_job import BatchJob
from paperbatch.services.types import VendorStatus


class JobStatus(enum.StrEnum):
    SUBMITTED = "submitted"
    POLLING = "polling"
    COMPLETED = "completed"
    PROCESSING_RESULTS = "processing_results"
    PROCESSED = "processed"
    PROCESSED_WITH_ERRORS = "processed_with_errors"
    FAILED = "failed"
    EXPIRED = "expired"
    CANCELED = "canceled"
    CANCELING = "canceling"


# Statuses the poller selects on each cycle.
POLLABLE = frozenset({JobStatus.SUBMITTED, JobStatus.POLLING, JobStatus.COMPLETED})

# Statuses a job can be in while its papers are still owned by the batch.
IN_FLIGHT = POLLABLE | {JobStatus.PROCESSING_RESULTS, JobStatus.CANCELING}

TERMINAL = frozenset(
    {
        JobStatus.PROCESSED,
        JobStatus.PROCESSED_WITH_ERRORS,
        JobStatus.FAILED,
        JobStatus.EXPIRED,
        JobStatus.CANCELED,
    }
)

_VENDOR_ENDINGS = frozenset(
    {JobStatus.FAILED, JobStatus.EXPIRED, JobStatus.CANCELED, JobStatus.CANCELING}
)

_TRANSITIONS: dict[JobStatus, frozenset[JobStatus]] = {
    JobStatus.SUBMITTED: frozenset({JobStatus.POLLING, JobStatus.COMPLETED}) | _VENDOR_ENDINGS,
    JobStatus.POLLING: frozenset({JobStatus.POLLING, JobStatus.COMPLETED}) | _VENDOR_ENDINGS,
    JobStatus.COMPLETED: frozenset({JobStatus.COMPLETED, JobStatus.PROCESSING_RESULTS})
    | _VENDOR_ENDINGS,
    JobStatus.CANCELING: frozenset(
        {JobStatus.CANCELING, JobStatus.CANCELED, JobStatus.COMPLETED, JobStatus.FAILED, JobStatus.EXPIRED}
    ),
    JobStatus.PROCESSING_RESULTS: frozenset(
        {JobStatus.PROCESSED, JobStatus.PROCESSED_WITH_ERRORS, JobStatus.FAILED}
    ),
    JobStatus.PROCESSED: frozenset(),
    JobStatus.PROCESSED_WITH_ERRORS: frozenset(),
    JobStatus.FAILED: frozenset(),
    JobStatus.EXPIRED: frozenset(),
    JobStatus.CANCELED: frozenset(),
}


class InvalidTransitionError(Exception):
    """Raised when a job would move backwards or out of a terminal status."""


def can_transition(current: JobStatus, target: JobStatus) -> bool:
    return target in _TRANSITIONS[current]


def advance(job: BatchJob, target: JobStatus) -> None:
    """Set *job*'s status to *target*, refusing moves the lifecycle does not allow."""
    current = JobStatus(job.status)
    if not can_transition(current, target):
        raise InvalidTransitionError(f"batch {job.batch_id}: cannot move from {current} to {target}")
    job.status = target


def next_status(current: JobStatus, vendor: VendorStatus) -> JobStatus:
    """Local status implied by *vendor* for a job currently in *current*.

    Returns *current* unchanged when the implied status would be a regression.
    """
    target: JobStatus
    match vendor:
        case VendorStatus.ENDED | VendorStatus.COMPLETED:
            target = JobStatus.COMPLETED
        case VendorStatus.FAILED:
            target = JobStatus.FAILED
        case VendorStatus.EXPIRED:
            target = JobStatus.EXPIRED
        case VendorStatus.CANCELED:
            target = JobStatus.CANCELED
        case VendorStatus.CANCELING:
            target = JobStatus.CANCELING
        case VendorStatus.IN_PROGRESS | VendorStatus.UNKNOWN:
            target = JobStatus.POLLING
        case _:
            assert_never(vendor)
    return target if can_transition(current, target) else current


def is_vendor_failure(status: JobStatus) -> bool:
    return status in (JobStatus.FAILED, JobStatus.EXPIRED, JobStatus.CANCELED)
