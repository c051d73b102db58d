"""Utility helpers for rsvpbot."""

from __future__ import annotations

from datetime import UTC, datetime
import math
import re
import unicodedata

_slug_invalid = re.compile(r"[^a-z0-9_]+")


def utcnow() -> datetime:
    """Return an aware UTC datetime."""

    return datetime.now(UTC)


def ensure_utc(value: datetime | None) -> datetime | None:
    """Return ``value`` as an aware UTC datetime.

    SQLite hands timestamps back without tzinfo even for timezone-aware
    columns; those values were written as UTC.
    """
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


def slugify(value: str) -> str:
    """Return a chat-safe channel name for an event title."""
    value = (
        unicodedata.normalize("NFKD", value or "")
        .encode("ascii", "ignore")
        .decode("ascii")
    )
    value = value.strip().lower()
    value = _slug_invalid.sub("-", value)
    value = value.strip("-")
    return value or "event"


def mention(user_id: str | int) -> str:
    """Return the chat mention token for a user id."""
    return f"<@{user_id}>"


def parse_stakes(raw: str | None) -> tuple[float | None, float | None, str | None]:
    """Split a stakes string such as ``"1/2"`` into (small, big, raw).

    Halves that are not numbers come back as ``None``; the trimmed raw text is
    preserved so the original input is never lost.
    """
    text = (raw or "").strip()
    if not text:
        return None, None, None
    parts = text.split("/")

    def _number(part: str) -> float | None:
        try:
            number = float(part.strip())
        except ValueError:
            return None
        return number if math.isfinite(number) else None

    small = _number(parts[0]) if len(parts) >= 1 else None
    big = _number(parts[1]) if len(parts) >= 2 else None
    return small, big, text


def discord_timestamp(value: datetime, style: str = "R") -> str:
    """Return a chat timestamp marker that clients render in local time."""
    return f"<t:{int(ensure_utc(value).timestamp())}:{style}>"
