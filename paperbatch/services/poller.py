"""Batch job poller. Reconciles local batch_jobs rows with the vendor and applies results."""

import logging
import threading
import time
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime

from sqlalchemy.orm import Session

from paperbatch.config import PollerSettings
from paperbatch.db import utcnow
from paperbatch.models.batch_job import BatchJob
from paperbatch.services.lifecycle import (
    POLLABLE,
    JobStatus,
    advance,
    can_transition,
    is_vendor_failure,
    next_status,
)
from paperbatch.services.results import ResultProcessor
from paperbatch.services.types import BatchSnapshot
from paperbatch.services.vendor import BatchVendor

logger = logging.getLogger(__name__)

# Non-terminal statuses the stale sweep closes out once past the lookback window.
_STALE = POLLABLE | {JobStatus.CANCELING}


class CycleGuard:
    """Lets one poll cycle run at a time; a second caller is turned away, not queued."""

    def __init__(self) -> None:
        self._lock = threading.Lock()

    @property
    def busy(self) -> bool:
        return self._lock.locked()

    @contextmanager
    def hold(self) -> Iterator[bool]:
        acquired = self._lock.acquire(blocking=False)
        try:
            yield acquired
        finally:
            if acquired:
                self._lock.release()


@dataclass
class CycleReport:
    skipped: bool = False
    checked: int = 0
    # Jobs whose results were processed this cycle.
    processed: int = 0
    # Vendor-reported failures plus jobs failed by a polling exception.
    failed: int = 0
    # Vendor-reported expiry plus jobs closed by the stale sweep.
    expired: int = 0
    canceled: int = 0


def select_pollable_jobs(db: Session, now: datetime, settings: PollerSettings) -> list[BatchJob]:
    """Jobs to check this cycle: pollable, inside the lookback window, oldest first."""
    cutoff = now - settings.lookback
    return (
        db.query(BatchJob)
        .filter(BatchJob.status.in_(sorted(POLLABLE)), BatchJob.submitted_at >= cutoff)
        .order_by(BatchJob.submitted_at.asc())
        .limit(settings.poll_limit)
        .all()
    )


def expire_stale_jobs(db: Session, now: datetime, settings: PollerSettings) -> int:
    """Move non-terminal jobs submitted before the lookback window to ``expired``."""
    cutoff = now - settings.lookback
    stale = (
        db.query(BatchJob)
        .filter(BatchJob.status.in_(sorted(_STALE)), BatchJob.submitted_at < cutoff)
        .all()
    )
    hours = settings.lookback.total_seconds() / 3600
    for job in stale:
        logger.warning("batch %s still %s after %.0fh, marking expired", job.batch_id, job.status, hours)
        advance(job, JobStatus.EXPIRED)
        job.completed_at = job.completed_at or now
        job.error_message = job.error_message or f"No final result within the {hours:.0f}h polling window"
    if stale:
        db.commit()
    return len(stale)


def apply_snapshot(job: BatchJob, snapshot: BatchSnapshot, now: datetime) -> JobStatus:
    """Copy the vendor's view of the batch onto *job*; return the new local status."""
    current = JobStatus(job.status)
    target = next_status(current, snapshot.status)

    job.last_polled_at = now
    job.succeeded_count = snapshot.succeeded
    job.failed_count = snapshot.failed
    job.results_url = snapshot.results_url or job.results_url
    job.completed_at = snapshot.ended_at or job.completed_at
    if target is JobStatus.COMPLETED or is_vendor_failure(target):
        job.completed_at = job.completed_at or now
    if is_vendor_failure(target) and not job.error_message:
        job.error_message = f"Vendor reported final status: {snapshot.status}"
    if target is not current:
        advance(job, target)
    return target


class BatchPoller:
    """Runs poll cycles over the batch_jobs table.

    A cycle selects pollable jobs, refreshes each from the vendor and, when a
    job has completed, processes its results before moving on.
    """

    def __init__(
        self,
        vendor: BatchVendor,
        processor: ResultProcessor,
        session_factory: Callable[[], Session],
        guard: CycleGuard | None = None,
        settings: PollerSettings | None = None,
        clock: Callable[[], datetime] = utcnow,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self._vendor = vendor
        self._processor = processor
        self._session_factory = session_factory
        self.guard = guard or CycleGuard()
        self._settings = settings or PollerSettings()
        self._clock = clock
        self._sleep = sleep

    def run_cycle(self) -> CycleReport:
        with self.guard.hold() as acquired:
            if not acquired:
                logger.info("poll cycle already running, skipping")
                return CycleReport(skipped=True)
            started = time.monotonic()
            report = self._cycle()
            logger.info(
                "poll cycle finished in %.1fs: %d checked, %d processed, %d failed, %d expired, %d canceled",
                time.monotonic() - started,
                report.checked,
                report.processed,
                report.failed,
                report.expired,
                report.canceled,
            )
            return report

    def run_forever(self, stop: threading.Event) -> None:
        """Run a cycle now, then every interval, until *stop* is set."""
        logger.info("poller started, interval %.0fs", self._settings.interval_seconds)
        while not stop.is_set():
            try:
                self.run_cycle()
            except Exception:
                logger.exception("poll cycle failed")
            stop.wait(self._settings.interval_seconds)
        logger.info("poller stopped")

    def _cycle(self) -> CycleReport:
        report = CycleReport()
        db = self._session_factory()
        try:
            now = self._clock()
            if self._settings.expire_stale_jobs:
                report.expired = expire_stale_jobs(db, now, self._settings)
            jobs = select_pollable_jobs(db, now, self._settings)
            logger.info("found %d batch jobs to check", len(jobs))
            for job in jobs:
                report.checked += 1
                outcome = self._check_job(job, db)
                if outcome is JobStatus.PROCESSING_RESULTS:
                    report.processed += 1
                elif outcome is JobStatus.FAILED:
                    report.failed += 1
                elif outcome is JobStatus.EXPIRED:
                    report.expired += 1
                elif outcome is JobStatus.CANCELED:
                    report.canceled += 1
                else:
                    # Still running at the vendor; results processing is its own pause.
                    self._sleep(self._settings.job_delay_seconds)
        finally:
            db.close()
        return report

    def _check_job(self, job: BatchJob, db: Session) -> JobStatus | None:
        """Refresh one job.

        Returns PROCESSING_RESULTS when results were processed, the terminal status
        when the job ended unsuccessfully, or None while it is still running.
        """
        batch_id = job.batch_id
        logger.info("checking batch %s (status %s)", batch_id, job.status)
        try:
            if job.status != JobStatus.COMPLETED:
                advance(job, JobStatus.POLLING)
                job.last_polled_at = self._clock()
                db.commit()

            snapshot = self._vendor.retrieve(batch_id)
            logger.info("batch %s vendor status: %s", batch_id, snapshot.status)
            target = apply_snapshot(job, snapshot, self._clock())
            db.commit()

            if target is not JobStatus.COMPLETED:
                return target if is_vendor_failure(target) else None
            advance(job, JobStatus.PROCESSING_RESULTS)
            db.commit()
            self._processor.process(job, db)
            return JobStatus.PROCESSING_RESULTS
        except Exception as exc:
            logger.exception("polling batch %s failed", batch_id)
            self._mark_failed(job, db, exc)
            return JobStatus.FAILED

    def _mark_failed(self, job: BatchJob, db: Session, exc: Exception) -> None:
        try:
            db.rollback()
            current = JobStatus(job.status)
            if not can_transition(current, JobStatus.FAILED):
                logger.error("batch %s is %s, not marking failed", job.batch_id, current)
                return
            advance(job, JobStatus.FAILED)
            job.error_message = self._settings.truncate(f"Polling/processing exception: {exc}")
            db.commit()
        except Exception:
            logger.exception("could not mark batch %s failed", job.batch_id)
            db.rollback()


def build_poller(
    session_factory: Callable[[], Session] | None = None,
    settings: PollerSettings | None = None,
) -> BatchPoller:
    """Wire a poller from the environment: vendor, embeddings and optional revalidation."""
    from paperbatch.db import get_session_factory
    from paperbatch.services.embeddings import EmbeddingService
    from paperbatch.services.revalidation import Revalidator
    from paperbatch.services.vendor import get_batch_vendor

    settings = settings or PollerSettings.from_env()
    vendor = get_batch_vendor()
    processor = ResultProcessor(
        vendor,
        EmbeddingService.from_env(),
        revalidator=Revalidator.from_env(),
        settings=settings,
    )
    return BatchPoller(
        vendor,
        processor,
        session_factory or get_session_factory(),
        settings=settings,
    )
