"""Unit tests for the command-line interface."""

from unittest.mock import MagicMock, patch

import pytest

from paperbatch.cli import build_parser, main
from paperbatch.services.poller import CycleReport


class TestParser:
    def test_submit_arguments(self) -> None:
        args = build_parser().parse_args(["submit", "--kind", "summary", "--limit", "20", "--dry-run"])

        assert args.kind == "summary"
        assert args.limit == 20
        assert args.dry_run
        assert args.since is None

    def test_submit_default_limit(self) -> None:
        args = build_parser().parse_args(["submit", "--kind", "outline"])

        assert args.limit == 200
        assert not args.dry_run

    def test_submit_rejects_unknown_kind(self) -> None:
        with pytest.raises(SystemExit):
            build_parser().parse_args(["submit", "--kind", "abstract"])

    def test_command_required(self) -> None:
        with pytest.raises(SystemExit):
            build_parser().parse_args([])

    def test_status_requires_batch_id(self) -> None:
        with pytest.raises(SystemExit):
            build_parser().parse_args(["status"])


class TestPollOnce:
    def test_prints_report(self, capsys: pytest.CaptureFixture[str]) -> None:
        poller = MagicMock()
        poller.run_cycle.return_value = CycleReport(checked=3, processed=1)

        with patch("paperbatch.services.poller.build_poller", return_value=poller):
            main(["poll-once"])

        out = capsys.readouterr().out
        assert '"checked": 3' in out
        assert '"processed": 1' in out
