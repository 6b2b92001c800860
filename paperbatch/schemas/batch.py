"""Pydantic schemas for batch job endpoints."""

from datetime import datetime

from pydantic import BaseModel


class BatchJobStatus(BaseModel):
    batch_id: str
    batch_type: str
    status: str
    submitted_at: datetime
    last_polled_at: datetime | None
    completed_at: datetime | None
    processed_at: datetime | None
    total_requests: int | None
    succeeded_count: int
    failed_count: int
    results_url: str | None
    error_message: str | None

    model_config = {"from_attributes": True}


class PollCycleResponse(BaseModel):
    skipped: bool
    checked: int
    processed: int
    failed: int
    expired: int
    canceled: int

    model_config = {"from_attributes": True}


class ErrorResponse(BaseModel):
    error: str
    detail: str | None = None
