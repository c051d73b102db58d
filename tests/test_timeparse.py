from __future__ import annotations

from datetime import UTC, datetime

import pytest

from rsvpbot.errors import TimeParseError, ValidationError
from rsvpbot.timeparse import format_local, parse_flexible_time

CHICAGO = "America/Chicago"


@pytest.mark.parametrize(
    ("text", "expected"),
    [
        ("2025", datetime(2025, 1, 1, 6, 0, tzinfo=UTC)),
        ("2025-05", datetime(2025, 5, 1, 5, 0, tzinfo=UTC)),
        ("2025-05-02", datetime(2025, 5, 2, 5, 0, tzinfo=UTC)),
        ("2025-05-02 15", datetime(2025, 5, 2, 20, 0, tzinfo=UTC)),
        ("2025-05-02 15:04", datetime(2025, 5, 2, 20, 4, tzinfo=UTC)),
        ("2025-05-02 15:04:05", datetime(2025, 5, 2, 20, 4, 5, tzinfo=UTC)),
    ],
)
def test_partial_inputs_default_to_start_of_period(text, expected):
    assert parse_flexible_time(text, CHICAGO) == expected


def test_single_digit_fields_are_padded():
    assert parse_flexible_time("2025-5-2 9:5", CHICAGO) == parse_flexible_time(
        "2025-05-02 09:05", CHICAGO
    )


def test_surrounding_whitespace_is_ignored():
    assert parse_flexible_time("  2025-05-02   19:30 ", CHICAGO) == datetime(
        2025, 5, 3, 0, 30, tzinfo=UTC
    )


def test_winter_dates_use_standard_time():
    assert parse_flexible_time("2025-12-24 18:00", CHICAGO) == datetime(
        2025, 12, 25, 0, 0, tzinfo=UTC
    )


@pytest.mark.parametrize(
    "text",
    [
        "",
        "   ",
        "2025-13-40",
        "2025-02-30",
        "2025-05-02 25:00",
        "25-05-02",
        "2025-05-02T15:04",
        "2025-05-02 15:04 CST",
        "2025-05-02 15:04+00:00",
        "next friday",
        "2025-005-02",
        "2025-05-02-01",
    ],
)
def test_rejects_malformed_input(text):
    with pytest.raises(TimeParseError):
        parse_flexible_time(text, CHICAGO)


def test_time_parse_error_is_a_validation_error():
    with pytest.raises(ValidationError) as excinfo:
        parse_flexible_time("tomorrow", CHICAGO)
    assert "YYYY-MM-DD HH:MM:SS" in str(excinfo.value)


def test_result_is_aware_utc():
    instant = parse_flexible_time("2025-07-04 12:00", CHICAGO)
    assert instant.tzinfo is UTC


def test_format_local_round_trips_complete_values():
    text = "2025-05-02 15:04:05"
    instant = parse_flexible_time(text, CHICAGO)
    assert format_local(instant, CHICAGO) == text
    assert parse_flexible_time(format_local(instant, CHICAGO), CHICAGO) == instant


def test_default_reference_zone_is_chicago():
    assert parse_flexible_time("2025-05-02 15:04") == parse_flexible_time(
        "2025-05-02 15:04", CHICAGO
    )


def test_other_reference_zone():
    assert parse_flexible_time("2025-05-02 15:04", "UTC") == datetime(
        2025, 5, 2, 15, 4, tzinfo=UTC
    )
