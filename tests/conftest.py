"""Shared pytest fixtures."""

from collections.abc import Callable, Iterator, Sequence
from datetime import datetime, timedelta
from typing import Any
from unittest.mock import MagicMock

import pytest
from sqlalchemy import Engine, create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

import paperbatch.models.batch_job  # noqa: F401
import paperbatch.models.paper  # noqa: F401
from paperbatch.db import Base
from paperbatch.models.batch_job import BatchJob
from paperbatch.models.paper import Paper
from paperbatch.services.types import BatchRequest, BatchResultItem, BatchSnapshot, VendorStatus

NOW = datetime(2026, 3, 2, 12, 0, 0)


class FakeVendor:
    """In-memory batch vendor keyed by batch id."""

    def __init__(self) -> None:
        self.snapshots: dict[str, BatchSnapshot] = {}
        self.items: dict[str, list[BatchResultItem]] = {}
        # Raised by retrieve() for the given batch id.
        self.retrieve_errors: dict[str, Exception] = {}
        # Raised by results() after the batch's items have been yielded.
        self.stream_errors: dict[str, Exception] = {}
        self.retrieved: list[str] = []
        self.streamed: list[str] = []
        self.created: list[list[BatchRequest]] = []
        self.next_batch_id = "msgbatch_new"

    def create(self, requests: Sequence[BatchRequest]) -> str:
        self.created.append(list(requests))
        return self.next_batch_id

    def retrieve(self, batch_id: str) -> BatchSnapshot:
        self.retrieved.append(batch_id)
        if batch_id in self.retrieve_errors:
            raise self.retrieve_errors[batch_id]
        return self.snapshots.get(batch_id, BatchSnapshot(status=VendorStatus.IN_PROGRESS))

    def results(self, batch_id: str, paper_ids: Sequence[str] = ()) -> Iterator[BatchResultItem]:
        self.streamed.append(batch_id)
        yield from self.items.get(batch_id, [])
        if batch_id in self.stream_errors:
            raise self.stream_errors[batch_id]


@pytest.fixture()
def mock_db() -> MagicMock:
    """Mock database session for unit tests."""
    return MagicMock()


@pytest.fixture()
def engine() -> Iterator[Engine]:
    """In-memory SQLite engine shared by every session of one test."""
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture()
def session_factory(engine: Engine) -> sessionmaker[Session]:
    return sessionmaker(bind=engine, autocommit=False, autoflush=False)


@pytest.fixture()
def session(session_factory: sessionmaker[Session]) -> Iterator[Session]:
    db = session_factory()
    yield db
    db.close()


@pytest.fixture()
def vendor() -> FakeVendor:
    return FakeVendor()


@pytest.fixture()
def make_job(session: Session) -> Callable[..., BatchJob]:
    """Insert a batch job; defaults to a submitted outline batch one hour old."""

    def _make(batch_id: str = "msgbatch_1", **overrides: Any) -> BatchJob:
        values: dict[str, Any] = {
            "batch_type": "outline",
            "status": "submitted",
            "submitted_at": NOW - timedelta(hours=1),
            "total_requests": 1,
            "paper_ids": [],
        }
        values.update(overrides)
        job = BatchJob(batch_id=batch_id, **values)
        session.add(job)
        session.commit()
        return job

    return _make


@pytest.fixture()
def make_paper(session: Session) -> Callable[..., Paper]:
    def _make(paper_id: int = 1, **overrides: Any) -> Paper:
        values: dict[str, Any] = {
            "arxiv_id": f"2401.{paper_id:05d}",
            "title": f"Paper {paper_id}",
            "abstract": "We study things.",
            "authors": ["A. Author"],
            "arxiv_categories": ["cs.LG"],
            "slug": f"paper-{paper_id}",
            "platform": "arxiv",
        }
        values.update(overrides)
        paper = Paper(id=paper_id, **values)
        session.add(paper)
        session.commit()
        return paper

    return _make


@pytest.fixture()
def now() -> datetime:
    return NOW


@pytest.fixture()
def reload_job(session: Session) -> Callable[[str], BatchJob]:
    """Fresh copy of a job after another session changed it."""

    def _reload(batch_id: str) -> BatchJob:
        session.expire_all()
        return session.query(BatchJob).filter(BatchJob.batch_id == batch_id).one()

    return _reload
