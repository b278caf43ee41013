"""Tests for datetime helpers."""

from __future__ import annotations

from datetime import UTC, datetime, timedelta

from backend.services.datetime_service import format_iso, is_older_than, parse_datetime


class TestParseDatetime:
    def test_github_timestamp(self) -> None:
        result = parse_datetime("2026-02-02T22:21:29Z")
        assert result == datetime(2026, 2, 2, 22, 21, 29, tzinfo=UTC)

    def test_offset_timestamp(self) -> None:
        result = parse_datetime("2026-02-02 22:21:29+00:00")
        assert result == datetime(2026, 2, 2, 22, 21, 29, tzinfo=UTC)

    def test_date_only(self) -> None:
        result = parse_datetime("2026-02-02")
        assert result == datetime(2026, 2, 2, tzinfo=UTC)

    def test_naive_datetime_gets_timezone(self) -> None:
        result = parse_datetime(datetime(2026, 2, 2, 12, 0))
        assert result.tzinfo is not None
        assert result == datetime(2026, 2, 2, 12, 0, tzinfo=UTC)


class TestIsOlderThan:
    def test_older(self) -> None:
        now = datetime(2026, 3, 1, tzinfo=UTC)
        assert is_older_than(now - timedelta(minutes=21), timedelta(minutes=20), now)

    def test_not_older(self) -> None:
        now = datetime(2026, 3, 1, tzinfo=UTC)
        assert not is_older_than(now - timedelta(minutes=5), timedelta(minutes=20), now)

    def test_naive_is_treated_as_utc(self) -> None:
        now = datetime(2026, 3, 1, tzinfo=UTC)
        assert is_older_than(datetime(2026, 2, 1), timedelta(days=1), now)


def test_format_iso_naive() -> None:
    assert format_iso(datetime(2026, 1, 5, 10, 0)) == "2026-01-05T10:00:00+00:00"
