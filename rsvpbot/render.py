"""Render the canonical announcement text for an event.

The text is always derived from the store: the event row plus its RSVP rows
are re-read and pushed through the Jinja2 template on every render, so the
same store state produces byte-identical output.
"""

from __future__ import annotations

import logging
from datetime import datetime
from functools import lru_cache
from pathlib import Path

from jinja2 import Environment, FileSystemLoader, StrictUndefined
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from .config import settings
from .crud import ResponseLists, get_event_by_channel, get_responses
from .models import Event
from .utils import discord_timestamp, ensure_utc, mention

logger = logging.getLogger(__name__)

TBD = "TBD"


@lru_cache(maxsize=8)
def template_environment(template_dir: str) -> Environment:
    return Environment(
        loader=FileSystemLoader(template_dir),
        autoescape=False,
        trim_blocks=True,
        lstrip_blocks=True,
        undefined=StrictUndefined,
    )


def display_date(value: datetime | None) -> str:
    """Return the relative timestamp marker, or ``TBD`` when no date is set."""
    if value is None:
        return TBD
    return discord_timestamp(value, "R")


def build_context(event: Event, responses: ResponseLists) -> dict:
    return {
        "Emoji": event.emoji,
        "Title": event.title,
        "Organizer": mention(event.author_id),
        "Dates": display_date(event.date),
        "Location": event.location,
        "Price": event.price,
        "Going": [mention(user_id) for user_id in responses.going],
        "Maybe": [mention(user_id) for user_id in responses.maybe],
        "CantMakeIt": [mention(user_id) for user_id in responses.declined],
        "Notes": [event.description] if event.description else [],
    }


def render_event_message(
    session: Session,
    channel_id: str,
    *,
    template_dir: Path | str | None = None,
    template_name: str | None = None,
) -> str:
    """Render the announcement for the channel's event from current store state."""
    event = get_event_by_channel(session, channel_id)
    try:
        responses = get_responses(session, event.id)
    except SQLAlchemyError:
        logger.warning(
            "Could not load RSVPs for event %s, rendering without them",
            event.id,
            exc_info=True,
        )
        responses = ResponseLists(going=[], maybe=[], declined=[])

    environment = template_environment(str(template_dir or settings.template_dir))
    template = environment.get_template(template_name or settings.template_name)
    return template.render(build_context(event, responses))


def render_fallback_message(
    *,
    emoji: str,
    title: str,
    when: datetime | None,
    location: str,
    price: str,
    author_id: str,
) -> str:
    """Plain announcement used when the template cannot be rendered."""
    time_display = ensure_utc(when).isoformat() if when else TBD
    return (
        f"{emoji} **{title}**\n"
        f"Time: {time_display}\n"
        f"Location: {location}\n"
        f"Price: {price}\n"
        f"Created by: {mention(author_id)}"
    )
