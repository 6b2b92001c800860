"""Command-line entry point for the batch tracker.

Usage:
    # Poll forever: one cycle now, then every POLL_INTERVAL_MINUTES
    paperbatch poll

    # Run a single cycle and print its report
    paperbatch poll-once

    # Submit papers that need outlines (or summaries) as one batch
    paperbatch submit --kind outline --limit 200
    paperbatch submit --kind summary --dry-run

    # Show one job
    paperbatch status --batch-id msgbatch_abc123

    # Create tables on a fresh database
    paperbatch init-db
"""

import argparse
import json
import logging
import signal
import sys
import threading
from dataclasses import asdict
from datetime import datetime
from types import FrameType

from dotenv import load_dotenv

from paperbatch.logs import configure_logging

logger = logging.getLogger(__name__)


def _install_signal_handlers(stop: threading.Event) -> None:
    def _handle(signum: int, frame: FrameType | None) -> None:
        logger.info("received %s, shutting down poller", signal.Signals(signum).name)
        stop.set()
        raise SystemExit(0)

    signal.signal(signal.SIGINT, _handle)
    signal.signal(signal.SIGTERM, _handle)


def cmd_poll(args: argparse.Namespace) -> None:
    """Poll forever until interrupted."""
    from paperbatch.services.poller import build_poller

    poller = build_poller()
    stop = threading.Event()
    _install_signal_handlers(stop)
    poller.run_forever(stop)


def cmd_poll_once(args: argparse.Namespace) -> None:
    """Run a single poll cycle."""
    from paperbatch.services.poller import build_poller

    report = build_poller().run_cycle()
    print(json.dumps(asdict(report), indent=2))


def cmd_submit(args: argparse.Namespace) -> None:
    """Submit an outline or summary batch."""
    from paperbatch.db import get_session_factory
    from paperbatch.services import submission
    from paperbatch.services.types import BatchType
    from paperbatch.services.vendor import get_batch_vendor

    batch_type = BatchType(args.kind)
    since = datetime.fromisoformat(args.since) if args.since else None
    db = get_session_factory()()
    try:
        if args.dry_run:
            if batch_type is BatchType.OUTLINE:
                papers = submission.papers_needing_outlines(db, limit=args.limit, since=since)
            else:
                papers = submission.papers_needing_summaries(db, limit=args.limit)
            print(f"DRY RUN: would submit {len(papers)} {batch_type} request(s)")
            for paper in papers:
                print(f"  {paper.id:>10}  {(paper.title or '')[:70]}")
            return

        job = submission.submit_pending(batch_type, get_batch_vendor(), db, limit=args.limit, since=since)
        if job is None:
            print(f"No papers need a {batch_type}.")
            return
        print(f"Batch ID: {job.batch_id} ({job.total_requests} requests)")
        print("\nTo check it:")
        print(f"  paperbatch status --batch-id {job.batch_id}")
    finally:
        db.close()


def cmd_status(args: argparse.Namespace) -> None:
    """Print one batch job."""
    from paperbatch.db import get_session_factory
    from paperbatch.schemas.batch import BatchJobStatus
    from paperbatch.services.jobs import NotFoundError, get_job

    db = get_session_factory()()
    try:
        job = get_job(db, args.batch_id)
    except NotFoundError as exc:
        print(f"ERROR: {exc}", file=sys.stderr)
        sys.exit(1)
    else:
        print(BatchJobStatus.model_validate(job).model_dump_json(indent=2))
    finally:
        db.close()


def cmd_init_db(args: argparse.Namespace) -> None:
    """Create tables."""
    from paperbatch.db import create_tables

    create_tables()
    print("Tables created.")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="paperbatch",
        description="Outline/summary batch job tracker",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )
    subparsers = parser.add_subparsers(dest="command", required=True, help="Command to run")

    p_poll = subparsers.add_parser("poll", help="Poll batch jobs until interrupted")
    p_poll.set_defaults(func=cmd_poll)

    p_once = subparsers.add_parser("poll-once", help="Run one poll cycle")
    p_once.set_defaults(func=cmd_poll_once)

    p_submit = subparsers.add_parser("submit", help="Submit an outline or summary batch")
    p_submit.add_argument("--kind", required=True, choices=["outline", "summary"], help="Batch type")
    p_submit.add_argument("--limit", type=int, default=200, help="Maximum papers per batch (default: 200)")
    p_submit.add_argument("--since", help="Only outline papers indexed since this ISO date")
    p_submit.add_argument("--dry-run", action="store_true", help="List candidates without submitting")
    p_submit.set_defaults(func=cmd_submit)

    p_status = subparsers.add_parser("status", help="Show one batch job")
    p_status.add_argument("--batch-id", required=True, help="Vendor batch id")
    p_status.set_defaults(func=cmd_status)

    p_init = subparsers.add_parser("init-db", help="Create database tables")
    p_init.set_defaults(func=cmd_init_db)

    return parser


def main(argv: list[str] | None = None) -> None:
    load_dotenv()
    configure_logging()
    args = build_parser().parse_args(argv)
    args.func(args)


if __name__ == "__main__":
    main()
