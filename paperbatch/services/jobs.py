"""Read access to batch job records."""

from sqlalchemy.orm import Session

from paperbatch.models.batch_job import BatchJob
from paperbatch.services.lifecycle import JobStatus


class NotFoundError(Exception):
    """Raised when the requested batch job does not exist."""


def get_job(db: Session, batch_id: str) -> BatchJob:
    job = db.query(BatchJob).filter(BatchJob.batch_id == batch_id).first()
    if job is None:
        raise NotFoundError(f"Batch job {batch_id} not found")
    return job


def list_jobs(db: Session, status: JobStatus | None = None, limit: int = 50) -> list[BatchJob]:
    """Most recently submitted jobs first, optionally restricted to one *status*."""
    query = db.query(BatchJob)
    if status is not None:
        query = query.filter(BatchJob.status == status)
    return query.order_by(BatchJob.submitted_at.desc()).limit(limit).all()
