"""Tests for datetime parsing service."""

from datetime import datetime, timezone

from imagesync.services.datetime_service import format_iso, now_utc, parse_datetime


class TestDatetimeParsing:
    def test_parse_iso_with_offset(self) -> None:
        result = parse_datetime("2026-02-02T22:21:29.975359+00:00")
        assert result.year == 2026
        assert result.month == 2
        assert result.hour == 22
        assert result.utcoffset() is not None

    def test_parse_date_only(self) -> None:
        result = parse_datetime("2026-02-02")
        assert result.day == 2
        assert result.hour == 0
        assert result.tzinfo is not None

    def test_parse_datetime_object(self) -> None:
        dt = datetime(2026, 1, 1, 12, 0, tzinfo=timezone.utc)
        assert parse_datetime(dt) == dt

    def test_parse_datetime_naive_adds_tz(self) -> None:
        result = parse_datetime(datetime(2026, 1, 1, 12, 0), default_tz="UTC")
        assert result.tzinfo is not None

    def test_format_round_trips_through_parse(self) -> None:
        dt = datetime(2026, 2, 2, 22, 21, 29, tzinfo=timezone.utc)
        assert parse_datetime(format_iso(dt)) == dt

    def test_format_naive_assumes_utc(self) -> None:
        assert format_iso(datetime(2026, 2, 2, 8, 0)).endswith("+00:00")

    def test_now_utc(self) -> None:
        assert now_utc().tzinfo is not None
