"""Completion of partial, human-typed date/time strings.

Accepted shapes are ``YYYY``, ``YYYY-MM`` and ``YYYY-MM-DD``, optionally
followed by ``HH``, ``HH:MM`` or ``HH:MM:SS``. Missing fields default to the
start of the period, so ``2025-05`` means midnight on 1 May 2025. The wall
clock value is read in a fixed reference timezone and returned as a UTC
instant. This is not a timezone-aware parser: zone suffixes are rejected.
"""

from __future__ import annotations

from datetime import UTC, datetime
from zoneinfo import ZoneInfo

from .errors import TimeParseError

DEFAULT_TIMEZONE = "America/Chicago"
HELP_TEXT = "Please provide a valid time (formats like YYYY-MM-DD HH:MM:SS)."


def _reference_zone(tz: ZoneInfo | str | None) -> ZoneInfo:
    if tz is None:
        return ZoneInfo(DEFAULT_TIMEZONE)
    if isinstance(tz, str):
        return ZoneInfo(tz)
    return tz


def _numeric_fields(segment: str, separator: str, label: str) -> list[str]:
    parts = segment.split(separator)
    if not 1 <= len(parts) <= 3 or not all(part.isascii() and part.isdigit() for part in parts):
        raise TimeParseError(f"Could not read the {label} in {segment!r}. {HELP_TEXT}")
    return parts


def _pad(value: str, width: int = 2) -> str:
    if len(value) > width:
        raise TimeParseError(f"{value!r} has too many digits. {HELP_TEXT}")
    return value.zfill(width)


def parse_flexible_time(text: str, tz: ZoneInfo | str | None = None) -> datetime:
    """Complete ``text`` with start-of-period defaults and return a UTC instant."""
    tokens = (text or "").split()
    if not tokens:
        raise TimeParseError(f"No time given. {HELP_TEXT}")
    if len(tokens) > 2:
        raise TimeParseError(f"Unexpected text after the time in {text!r}. {HELP_TEXT}")

    date_fields = _numeric_fields(tokens[0], "-", "date")
    year = date_fields[0]
    if len(year) != 4:
        raise TimeParseError(f"The year must have four digits. {HELP_TEXT}")
    month, day = (_pad(value) for value in (date_fields[1:] + ["01", "01"])[:2])

    hour, minute, second = "00", "00", "00"
    if len(tokens) == 2:
        time_fields = _numeric_fields(tokens[1], ":", "time")
        hour, minute, second = (
            _pad(value) for value in (time_fields + ["00", "00"])[:3]
        )

    try:
        wall_clock = datetime(
            int(year), int(month), int(day), int(hour), int(minute), int(second)
        )
    except ValueError as exc:
        raise TimeParseError(f"{text.strip()!r} is not a real date/time. {HELP_TEXT}") from exc
    return wall_clock.replace(tzinfo=_reference_zone(tz)).astimezone(UTC)


def format_local(instant: datetime, tz: ZoneInfo | str | None = None) -> str:
    """Format an instant as ``YYYY-MM-DD HH:MM:SS`` wall clock time in the reference zone."""
    if instant.tzinfo is None:
        instant = instant.replace(tzinfo=UTC)
    return instant.astimezone(_reference_zone(tz)).strftime("%Y-%m-%d %H:%M:%S")
