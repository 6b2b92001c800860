"""Unit tests for BatchPoller poll cycles."""

import threading
from collections.abc import Callable
from datetime import datetime, timedelta
from unittest.mock import MagicMock

from sqlalchemy.orm import Session, sessionmaker

from paperbatch.config import PollerSettings
from paperbatch.models.batch_job import BatchJob
from paperbatch.models.paper import Paper
from paperbatch.services.embeddings import EmbeddingService
from paperbatch.services.lifecycle import JobStatus
from paperbatch.services.poller import BatchPoller, CycleGuard, apply_snapshot
from paperbatch.services.results import ResultProcessor
from paperbatch.services.types import BatchResultItem, BatchSnapshot, VendorStatus


def _poller(
    vendor: object,
    session_factory: sessionmaker[Session],
    now: datetime,
    sleeps: list[float],
    settings: PollerSettings | None = None,
    guard: CycleGuard | None = None,
) -> BatchPoller:
    settings = settings or PollerSettings()
    processor = ResultProcessor(
        vendor,  # type: ignore[arg-type]
        EmbeddingService(client=None),
        settings=settings,
        sleep=sleeps.append,
    )
    return BatchPoller(
        vendor,  # type: ignore[arg-type]
        processor,
        session_factory,
        guard=guard,
        settings=settings,
        clock=lambda: now,
        sleep=sleeps.append,
    )


class TestPollWindow:
    def test_job_just_inside_lookback_is_checked(
        self, vendor, session_factory, now: datetime, make_job: Callable[..., BatchJob]
    ) -> None:
        make_job("inside", submitted_at=now - timedelta(hours=24, minutes=59))
        make_job("outside", submitted_at=now - timedelta(hours=25, minutes=1))

        report = _poller(vendor, session_factory, now, []).run_cycle()

        assert vendor.retrieved == ["inside"]
        assert report.checked == 1

    def test_stale_job_is_expired(
        self, vendor, session_factory, now: datetime, make_job, reload_job
    ) -> None:
        make_job("outside", status="polling", submitted_at=now - timedelta(hours=25, minutes=1))

        report = _poller(vendor, session_factory, now, []).run_cycle()

        job = reload_job("outside")
        assert job.status == JobStatus.EXPIRED
        assert job.completed_at == now
        assert job.error_message == "No final result within the 25h polling window"
        assert report.expired == 1
        assert vendor.retrieved == []

    def test_stale_job_left_alone_when_sweep_disabled(
        self, vendor, session_factory, now: datetime, make_job, reload_job
    ) -> None:
        make_job("outside", submitted_at=now - timedelta(hours=25, minutes=1))
        settings = PollerSettings(expire_stale_jobs=False)

        report = _poller(vendor, session_factory, now, [], settings=settings).run_cycle()

        assert reload_job("outside").status == JobStatus.SUBMITTED
        assert report.expired == 0

    def test_terminal_and_processing_jobs_are_not_selected(
        self, vendor, session_factory, now: datetime, make_job
    ) -> None:
        for i, status in enumerate(
            ["processed", "processed_with_errors", "failed", "expired", "canceled", "processing_results"]
        ):
            make_job(f"b{i}", status=status)

        report = _poller(vendor, session_factory, now, []).run_cycle()

        assert vendor.retrieved == []
        assert report.checked == 0

    def test_limit_and_oldest_first(self, vendor, session_factory, now: datetime, make_job) -> None:
        make_job("newest", submitted_at=now - timedelta(hours=1))
        make_job("oldest", submitted_at=now - timedelta(hours=3))
        make_job("middle", submitted_at=now - timedelta(hours=2))
        settings = PollerSettings(poll_limit=2)

        _poller(vendor, session_factory, now, [], settings=settings).run_cycle()

        assert vendor.retrieved == ["oldest", "middle"]


class TestCycleOutcomes:
    def test_completed_outline_batch_is_processed(
        self, vendor, session_factory, session: Session, now: datetime, make_job, make_paper, reload_job
    ) -> None:
        make_paper(1)
        make_job("msgbatch_1", paper_ids=["1"])
        vendor.snapshots["msgbatch_1"] = BatchSnapshot(status=VendorStatus.ENDED, succeeded=1)
        vendor.items["msgbatch_1"] = [BatchResultItem(custom_id="1", outcome="succeeded", text="# Outline")]
        sleeps: list[float] = []

        report = _poller(vendor, session_factory, now, sleeps).run_cycle()

        job = reload_job("msgbatch_1")
        assert job.status == JobStatus.PROCESSED
        assert job.succeeded_count == 1
        assert job.failed_count == 0
        assert job.processed_at is not None
        assert job.completed_at == now
        paper = session.get(Paper, 1)
        assert paper is not None
        assert paper.generated_outline == "# Outline"
        assert paper.outline_generated_at is not None
        assert report.processed == 1
        # Only the per-item delay; no job delay after a processed batch.
        assert sleeps == [0.1]

    def test_vendor_failure_marks_job_failed_without_reading_results(
        self, vendor, session_factory, now: datetime, make_job, reload_job
    ) -> None:
        make_job("msgbatch_1")
        vendor.snapshots["msgbatch_1"] = BatchSnapshot(status=VendorStatus.FAILED, failed=1)
        sleeps: list[float] = []

        report = _poller(vendor, session_factory, now, sleeps).run_cycle()

        job = reload_job("msgbatch_1")
        assert job.status == JobStatus.FAILED
        assert job.error_message == "Vendor reported final status: failed"
        assert job.completed_at == now
        assert job.processed_at is None
        assert vendor.streamed == []
        assert report.failed == 1
        assert sleeps == []

    def test_vendor_expiry_and_cancellation_are_counted_separately(
        self, vendor, session_factory, now: datetime, make_job, reload_job
    ) -> None:
        make_job("msgbatch_1", submitted_at=now - timedelta(hours=2))
        make_job("msgbatch_2", submitted_at=now - timedelta(hours=1))
        vendor.snapshots["msgbatch_1"] = BatchSnapshot(status=VendorStatus.EXPIRED)
        vendor.snapshots["msgbatch_2"] = BatchSnapshot(status=VendorStatus.CANCELED)

        report = _poller(vendor, session_factory, now, []).run_cycle()

        assert reload_job("msgbatch_1").status == JobStatus.EXPIRED
        assert reload_job("msgbatch_2").status == JobStatus.CANCELED
        assert report.expired == 1
        assert report.canceled == 1
        assert report.failed == 0

    def test_in_progress_job_moves_to_polling_with_fresh_counts(
        self, vendor, session_factory, now: datetime, make_job, reload_job
    ) -> None:
        make_job("msgbatch_1", succeeded_count=9, failed_count=9)
        vendor.snapshots["msgbatch_1"] = BatchSnapshot(
            status=VendorStatus.IN_PROGRESS, succeeded=3, failed=1
        )
        sleeps: list[float] = []

        _poller(vendor, session_factory, now, sleeps).run_cycle()

        job = reload_job("msgbatch_1")
        assert job.status == JobStatus.POLLING
        assert job.succeeded_count == 3
        assert job.failed_count == 1
        assert job.last_polled_at == now
        assert sleeps == [0.5]

    def test_canceling_is_mirrored(
        self, vendor, session_factory, now: datetime, make_job, reload_job
    ) -> None:
        make_job("msgbatch_1", status="polling")
        vendor.snapshots["msgbatch_1"] = BatchSnapshot(status=VendorStatus.CANCELING)

        report = _poller(vendor, session_factory, now, []).run_cycle()

        assert reload_job("msgbatch_1").status == JobStatus.CANCELING
        assert report.failed == 0

    def test_previously_completed_job_is_processed_again(
        self, vendor, session_factory, now: datetime, make_job, make_paper, reload_job
    ) -> None:
        make_paper(1)
        make_job("msgbatch_1", status="completed", paper_ids=["1"])
        vendor.snapshots["msgbatch_1"] = BatchSnapshot(status=VendorStatus.ENDED, succeeded=1)
        vendor.items["msgbatch_1"] = [BatchResultItem(custom_id="1", outcome="succeeded", text="Outline")]

        _poller(vendor, session_factory, now, []).run_cycle()

        assert reload_job("msgbatch_1").status == JobStatus.PROCESSED
        assert vendor.streamed == ["msgbatch_1"]

    def test_retrieve_error_fails_job_and_cycle_continues(
        self, vendor, session_factory, now: datetime, make_job, reload_job
    ) -> None:
        make_job("msgbatch_1", submitted_at=now - timedelta(hours=2))
        make_job("msgbatch_2", submitted_at=now - timedelta(hours=1))
        vendor.retrieve_errors["msgbatch_1"] = RuntimeError("boom")

        report = _poller(vendor, session_factory, now, []).run_cycle()

        job = reload_job("msgbatch_1")
        assert job.status == JobStatus.FAILED
        assert job.error_message == "Polling/processing exception: boom"
        assert reload_job("msgbatch_2").status == JobStatus.POLLING
        assert vendor.retrieved == ["msgbatch_1", "msgbatch_2"]
        assert report.checked == 2
        assert report.failed == 1

    def test_long_error_message_is_truncated(
        self, vendor, session_factory, now: datetime, make_job, reload_job
    ) -> None:
        make_job("msgbatch_1")
        vendor.retrieve_errors["msgbatch_1"] = RuntimeError("x" * 5000)

        _poller(vendor, session_factory, now, []).run_cycle()

        assert len(reload_job("msgbatch_1").error_message or "") == 1000

    def test_result_stream_error_fails_job(
        self, vendor, session_factory, now: datetime, make_job, reload_job
    ) -> None:
        make_job("msgbatch_1", total_requests=4)
        vendor.snapshots["msgbatch_1"] = BatchSnapshot(status=VendorStatus.ENDED, succeeded=4)
        vendor.stream_errors["msgbatch_1"] = ConnectionError("stream reset")

        _poller(vendor, session_factory, now, []).run_cycle()

        job = reload_job("msgbatch_1")
        assert job.status == JobStatus.FAILED
        assert job.failed_count == 4
        assert (job.error_message or "").startswith("Result processing error: stream reset")


class TestCycleGuard:
    def test_second_cycle_is_skipped_while_one_runs(
        self, vendor, session_factory, now: datetime, make_job
    ) -> None:
        make_job("msgbatch_1")
        guard = CycleGuard()
        poller = _poller(vendor, session_factory, now, [], guard=guard)

        with guard.hold() as acquired:
            assert acquired
            assert guard.busy
            report = poller.run_cycle()

        assert report.skipped
        assert vendor.retrieved == []
        assert not guard.busy

    def test_guard_released_after_cycle(self, vendor, session_factory, now: datetime) -> None:
        poller = _poller(vendor, session_factory, now, [])

        poller.run_cycle()

        assert not poller.guard.busy


class TestRunForever:
    def test_keeps_running_after_a_failed_cycle(self, vendor, session_factory, now: datetime) -> None:
        stop = threading.Event()
        calls: list[int] = []

        def _cycle() -> None:
            calls.append(1)
            if len(calls) == 1:
                raise RuntimeError("db down")
            stop.set()

        poller = _poller(vendor, session_factory, now, [], settings=PollerSettings(interval_seconds=0))
        poller.run_cycle = MagicMock(side_effect=_cycle)  # type: ignore[method-assign]

        poller.run_forever(stop)

        assert len(calls) == 2

    def test_does_nothing_when_already_stopped(self, vendor, session_factory, now: datetime) -> None:
        stop = threading.Event()
        stop.set()
        poller = _poller(vendor, session_factory, now, [])
        poller.run_cycle = MagicMock()  # type: ignore[method-assign]

        poller.run_forever(stop)

        poller.run_cycle.assert_not_called()


class TestApplySnapshot:
    def test_keeps_existing_results_url_and_uses_vendor_end_time(self, now: datetime) -> None:
        job = BatchJob(batch_id="b", batch_type="outline", status="polling", results_url="https://old")
        ended = now - timedelta(minutes=5)

        target = apply_snapshot(job, BatchSnapshot(status=VendorStatus.ENDED, ended_at=ended), now)

        assert target is JobStatus.COMPLETED
        assert job.status == JobStatus.COMPLETED
        assert job.results_url == "https://old"
        assert job.completed_at == ended

    def test_keeps_existing_error_message(self, now: datetime) -> None:
        job = BatchJob(batch_id="b", batch_type="outline", status="polling", error_message="earlier")

        apply_snapshot(job, BatchSnapshot(status=VendorStatus.EXPIRED), now)

        assert job.status == JobStatus.EXPIRED
        assert job.error_message == "earlier"
