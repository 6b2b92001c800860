"""Batch job status API router."""

import logging
import threading

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from sqlalchemy.orm import Session

from paperbatch.db import get_session
from paperbatch.schemas.batch import BatchJobStatus, PollCycleResponse
from paperbatch.services.jobs import get_job, list_jobs
from paperbatch.services.lifecycle import JobStatus
from paperbatch.services.poller import BatchPoller, build_poller

logger = logging.getLogger(__name__)

router = APIRouter()

# Guards lazy construction of app.state.poller: one poller, and so one cycle guard, per app.
_poller_lock = threading.Lock()


def get_poller(request: Request) -> BatchPoller:
    """The app's shared poller, built on first use."""
    poller: BatchPoller | None = getattr(request.app.state, "poller", None)
    if poller is not None:
        return poller
    with _poller_lock:
        poller = getattr(request.app.state, "poller", None)
        if poller is None:
            poller = build_poller()
            request.app.state.poller = poller
    return poller


@router.get("/jobs")
def jobs(
    status: JobStatus | None = None,
    limit: int = Query(50, ge=1, le=500),
    db: Session = Depends(get_session),
) -> dict[str, list[BatchJobStatus]]:
    """List recent batch jobs, newest first."""
    rows = list_jobs(db, status=status, limit=limit)
    return {"jobs": [BatchJobStatus.model_validate(job) for job in rows]}


@router.get("/jobs/{batch_id}")
def job_detail(batch_id: str, db: Session = Depends(get_session)) -> BatchJobStatus:
    return BatchJobStatus.model_validate(get_job(db, batch_id))


@router.post("/poll")
def poll_now(poller: BatchPoller = Depends(get_poller)) -> PollCycleResponse:
    """Run one poll cycle now. 409 if a cycle is already in progress."""
    report = poller.run_cycle()
    if report.skipped:
        raise HTTPException(status_code=409, detail="A poll cycle is already running")
    return PollCycleResponse.model_validate(report)
