"""Unit tests for database helpers."""

from datetime import UTC, datetime, timedelta, timezone

import pytest

from paperbatch.db import _get_database_url, to_naive_utc, utcnow


class TestTimestamps:
    def test_utcnow_is_naive(self) -> None:
        assert utcnow().tzinfo is None

    def test_to_naive_utc_converts_offset(self) -> None:
        aware = datetime(2026, 1, 1, 14, 0, tzinfo=timezone(timedelta(hours=2)))
        assert to_naive_utc(aware) == datetime(2026, 1, 1, 12, 0)

    def test_to_naive_utc_passes_naive_and_none(self) -> None:
        naive = datetime(2026, 1, 1)
        assert to_naive_utc(naive) is naive
        assert to_naive_utc(None) is None
        assert to_naive_utc(datetime(2026, 1, 1, tzinfo=UTC)) == naive


class TestDatabaseUrl:
    def test_missing_url_raises(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.delenv("DATABASE_URL", raising=False)

        with pytest.raises(RuntimeError, match="DATABASE_URL"):
            _get_database_url()
