"""BatchJob ORM model; tracks one batch submitted to an LLM batch API."""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import Integer, Text
from sqlalchemy.orm import Mapped, mapped_column

from paperbatch.db import Base, TextArray, utcnow


class BatchJob(Base):
    __tablename__ = "batch_jobs"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    batch_id: Mapped[str] = mapped_column(Text, nullable=False, unique=True)
    # batch_type: outline | summary
    batch_type: Mapped[str] = mapped_column(Text, nullable=False)
    # status: see paperbatch.services.lifecycle.JobStatus
    status: Mapped[str] = mapped_column(Text, nullable=False, index=True)
    submitted_at: Mapped[datetime] = mapped_column(nullable=False, default=utcnow, index=True)
    last_polled_at: Mapped[datetime | None] = mapped_column(nullable=True)
    completed_at: Mapped[datetime | None] = mapped_column(nullable=True)
    processed_at: Mapped[datetime | None] = mapped_column(nullable=True)
    total_requests: Mapped[int | None] = mapped_column(Integer, nullable=True)
    succeeded_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    failed_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    results_url: Mapped[str | None] = mapped_column(Text, nullable=True)
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)
    # Custom ids in request order; positional result streams are matched against it.
    paper_ids: Mapped[list[str]] = mapped_column(TextArray, nullable=False, default=list)
