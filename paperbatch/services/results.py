"""Result-stream processing for a completed batch.

Each item of the vendor's stream becomes an ``Applied`` or an ``ItemError``;
the outcomes are folded into a ``ResultTally`` which decides the batch's final
status.
"""

import logging
import time
from collections.abc import Callable
from dataclasses import dataclass, field

from sqlalchemy.orm import Session

from paperbatch.config import PollerSettings
from paperbatch.db import utcnow
from paperbatch.models.batch_job import BatchJob
from paperbatch.models.paper import Paper
from paperbatch.services.embeddings import EmbeddingService
from paperbatch.services.lifecycle import JobStatus, advance
from paperbatch.services.revalidation import Revalidator
from paperbatch.services.types import BatchResultItem, BatchType
from paperbatch.services.vendor import BatchVendor

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Applied:
    paper_id: int


@dataclass(frozen=True)
class ItemError:
    reason: str
    paper_id: int | None = None
    # True when the paper row was updated before the item failed (e.g. embedding).
    written: bool = False


ItemOutcome = Applied | ItemError


@dataclass
class ResultTally:
    succeeded: int = 0
    failed: int = 0
    errors: list[ItemError] = field(default_factory=list)

    def record(self, outcome: ItemOutcome) -> None:
        if isinstance(outcome, Applied):
            self.succeeded += 1
        else:
            self.failed += 1
            self.errors.append(outcome)

    def estimate_aborted(self, total_requests: int | None) -> None:
        """Count every item the stream never delivered as failed."""
        self.failed = max((total_requests or 0) - self.succeeded, self.failed)

    @property
    def final_status(self) -> JobStatus:
        return JobStatus.PROCESSED if self.failed == 0 else JobStatus.PROCESSED_WITH_ERRORS


def _batch_type(job: BatchJob) -> BatchType | None:
    try:
        return BatchType(job.batch_type)
    except ValueError:
        return None


def _parse_paper_id(custom_id: str) -> int | None:
    try:
        return int(custom_id)
    except ValueError:
        return None


class ResultProcessor:
    """Applies a completed batch's results to paper rows and closes out the job."""

    def __init__(
        self,
        vendor: BatchVendor,
        embeddings: EmbeddingService,
        revalidator: Revalidator | None = None,
        settings: PollerSettings | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self._vendor = vendor
        self._embeddings = embeddings
        self._revalidator = revalidator
        self._settings = settings or PollerSettings()
        self._sleep = sleep

    def process(self, job: BatchJob, db: Session) -> ResultTally:
        """Consume *job*'s result stream and record the final status and tallies.

        *job* must be in ``processing_results``.
        """
        logger.info("processing results for batch %s (type %s)", job.batch_id, job.batch_type)
        tally = ResultTally()
        error_message: str | None = None
        try:
            for item in self._vendor.results(job.batch_id, list(job.paper_ids or [])):
                try:
                    outcome = self._apply_item(job, item, db)
                except Exception:
                    logger.exception("unexpected error applying %s in batch %s", item.custom_id, job.batch_id)
                    db.rollback()
                    outcome = ItemError("unexpected_error")
                tally.record(outcome)
                self._sleep(self._settings.item_delay_seconds)
            final = tally.final_status
        except Exception as exc:
            logger.exception("result stream failed for batch %s", job.batch_id)
            db.rollback()
            tally.estimate_aborted(job.total_requests)
            final = JobStatus.FAILED
            error_message = self._settings.truncate(f"Result processing error: {exc}")

        advance(job, final)
        job.processed_at = utcnow()
        job.succeeded_count = tally.succeeded
        job.failed_count = tally.failed
        job.error_message = error_message
        db.commit()
        logger.info(
            "batch %s finished: %d succeeded, %d failed, status %s",
            job.batch_id,
            tally.succeeded,
            tally.failed,
            final,
        )
        return tally

    def _apply_item(self, job: BatchJob, item: BatchResultItem, db: Session) -> ItemOutcome:
        if not item.custom_id:
            logger.warning("result without custom_id in batch %s", job.batch_id)
            return ItemError("missing_custom_id")
        paper_id = _parse_paper_id(item.custom_id)
        if paper_id is None:
            logger.warning("result with invalid custom_id %r in batch %s", item.custom_id, job.batch_id)
            return ItemError("invalid_custom_id")

        if not item.succeeded:
            logger.warning(
                "result %s for paper %s in batch %s (%s)",
                item.outcome,
                paper_id,
                job.batch_id,
                item.error or "n/a",
            )
            return ItemError(f"vendor_{item.outcome}", paper_id)

        text = (item.text or "").strip()
        if not text:
            logger.warning("empty content for paper %s in batch %s", paper_id, job.batch_id)
            return ItemError("empty_content", paper_id)

        batch_type = _batch_type(job)
        if batch_type is None:
            logger.warning("unknown batch_type %r for paper %s in batch %s", job.batch_type, paper_id, job.batch_id)
            return ItemError("unknown_batch_type", paper_id)

        try:
            paper = db.query(Paper).filter(Paper.id == paper_id).first()
            if paper is None:
                logger.warning("paper %s from batch %s not found", paper_id, job.batch_id)
                return ItemError("paper_not_found", paper_id)
            now = utcnow()
            if batch_type is BatchType.OUTLINE:
                paper.generated_outline = text
                paper.outline_generated_at = now
            else:
                paper.generated_summary = text
                paper.summary_generated_at = now
            paper.last_updated = now
            db.commit()
        except Exception as exc:
            db.rollback()
            logger.error("failed to update paper %s from batch %s: %s", paper_id, job.batch_id, exc)
            return ItemError("write_failed", paper_id)

        if self._revalidator is not None:
            self._revalidator.revalidate(paper_id, db)

        if batch_type is BatchType.SUMMARY:
            if self._embeddings.create_for_paper(paper_id, text, db) is None:
                logger.warning("summary stored but embedding failed for paper %s", paper_id)
                return ItemError("embedding_failed", paper_id, written=True)
        logger.info("applied %s for paper %s", batch_type, paper_id)
        return Applied(paper_id)
