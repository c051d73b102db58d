"""Apply event mutations to the store and mirror them onto the chat surface.

Every command follows the same sequence: validate the input, write the store,
then re-render the announcement from the store and edit the chat message.
The store is the source of truth. A failed store write is reported to the
user and stops the command; a failed render or edit is only logged, because
the change is already durable and the next render will correct the message.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime
from zoneinfo import ZoneInfo

from jinja2 import TemplateError
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import scoped_session, sessionmaker

from .config import settings
from .crud import (
    EventField,
    create_event,
    get_event_by_channel,
    log_command,
    log_message,
    normalize_response_kind,
    update_event_field,
    upsert_channel,
    upsert_response,
    upsert_user,
)
from .database import session_scope
from .errors import (
    EventNotFoundError,
    RSVPBotError,
    StoreError,
    SurfaceError,
    ValidationError,
)
from .render import render_event_message, render_fallback_message
from .surface import ChatSurface
from .timeparse import parse_flexible_time
from .utils import discord_timestamp, mention, slugify

logger = logging.getLogger(__name__)

NO_EVENT_MESSAGE = "Could not find the event record."
RENDER_ERRORS = (RSVPBotError, SQLAlchemyError, TemplateError, OSError)


@dataclass(frozen=True)
class CommandResult:
    ok: bool
    message: str


def _required(value: str | None, label: str) -> str:
    cleaned = (value or "").strip()
    if not cleaned:
        raise ValidationError(f"The {label} cannot be empty.")
    return cleaned


class MutationCoordinator:
    """Runs the write, render, edit sequence for each event command."""

    def __init__(
        self,
        session_factory: scoped_session | sessionmaker,
        surface: ChatSurface,
        *,
        tz: ZoneInfo | None = None,
        bot_user: tuple[str, str] | None = None,
    ):
        self.session_factory = session_factory
        self.surface = surface
        self.tz = tz or settings.tz
        self.bot_user = bot_user

    # store steps, executed on worker threads

    def _write_field(self, channel_id: str, field: EventField, value) -> None:
        with session_scope(self.session_factory) as session:
            update_event_field(session, channel_id, field, value)

    def _render_snapshot(self, channel_id: str) -> tuple[str, str] | None:
        with session_scope(self.session_factory) as session:
            event = get_event_by_channel(session, channel_id)
            if not event.message_id:
                return None
            return event.message_id, render_event_message(session, channel_id)

    def _record_response(
        self, channel_id: str, user_id: str, user_name: str | None, kind
    ) -> None:
        with session_scope(self.session_factory) as session:
            event = get_event_by_channel(session, channel_id)
            upsert_user(session, user_id, user_name)
            upsert_response(session, event.id, user_id, kind)

    # surface steps

    async def refresh_message(self, channel_id: str) -> bool:
        """Re-render the announcement and edit it in place.

        Returns ``False`` when there is no message yet or the mirror could not
        be updated; failures are logged and never raised.
        """
        try:
            snapshot = await asyncio.to_thread(self._render_snapshot, channel_id)
        except RENDER_ERRORS:
            logger.exception("Could not render the event message for channel %s", channel_id)
            return False
        if snapshot is None:
            return False
        message_id, text = snapshot
        try:
            await self.surface.edit_message(channel_id, message_id, text)
        except SurfaceError:
            logger.warning(
                "Failed to update event message %s in channel %s",
                message_id,
                channel_id,
                exc_info=True,
            )
            return False
        return True

    async def change_field(
        self,
        channel_id: str,
        field: EventField,
        value,
        *,
        success: str,
        failure: str,
    ) -> CommandResult:
        try:
            await asyncio.to_thread(self._write_field, channel_id, field, value)
        except ValidationError as exc:
            return CommandResult(False, str(exc))
        except EventNotFoundError:
            return CommandResult(False, NO_EVENT_MESSAGE)
        except (StoreError, SQLAlchemyError):
            logger.exception(
                "Failed to update event %s for channel %s", field.value, channel_id
            )
            return CommandResult(False, failure)
        await self.refresh_message(channel_id)
        return CommandResult(True, success)

    async def change_title(self, channel_id: str, new_title: str) -> CommandResult:
        try:
            title = _required(new_title, "event name")
        except ValidationError as exc:
            return CommandResult(False, str(exc))
        result = await self.change_field(
            channel_id,
            EventField.TITLE,
            title,
            success=f"Event name changed to '{title}'!",
            failure="Failed to update event in DB.",
        )
        if result.ok:
            try:
                await self.surface.rename_channel(channel_id, slugify(title))
            except SurfaceError:
                logger.warning("Failed to rename channel %s", channel_id, exc_info=True)
        return result

    async def change_date(self, channel_id: str, new_date: str) -> CommandResult:
        try:
            when = parse_flexible_time(new_date, self.tz)
        except ValidationError as exc:
            return CommandResult(False, str(exc))
        return await self.change_field(
            channel_id,
            EventField.DATE,
            when.isoformat(),
            success=f"Event date changed to {discord_timestamp(when)}!",
            failure="Failed to update event date in DB.",
        )

    async def change_location(self, channel_id: str, new_location: str) -> CommandResult:
        try:
            location = _required(new_location, "location")
        except ValidationError as exc:
            return CommandResult(False, str(exc))
        return await self.change_field(
            channel_id,
            EventField.LOCATION,
            location,
            success=f"Location updated: {location}",
            failure="Failed to update event location in DB.",
        )

    async def change_price(self, channel_id: str, new_price: str) -> CommandResult:
        try:
            price = _required(new_price, "price")
        except ValidationError as exc:
            return CommandResult(False, str(exc))
        return await self.change_field(
            channel_id,
            EventField.PRICE,
            price,
            success=f"Price updated: {price}",
            failure="Failed to update event price in DB.",
        )

    async def change_notes(self, channel_id: str, notes: str | None) -> CommandResult:
        return await self.change_field(
            channel_id,
            EventField.DESCRIPTION,
            (notes or "").strip(),
            success="Notes updated.",
            failure="Failed to update event notes in DB.",
        )

    async def change_emoji(self, channel_id: str, new_emoji: str) -> CommandResult:
        try:
            emoji = _required(new_emoji, "emoji")
        except ValidationError as exc:
            return CommandResult(False, str(exc))
        return await self.change_field(
            channel_id,
            EventField.EMOJI,
            emoji,
            success=f"Emoji updated to {emoji}",
            failure="Failed to update event emoji in DB.",
        )

    async def rsvp(
        self,
        channel_id: str,
        user_id: str,
        response: str,
        *,
        user_name: str | None = None,
    ) -> CommandResult:
        try:
            kind = normalize_response_kind(response)
        except ValidationError as exc:
            return CommandResult(False, str(exc))
        try:
            await asyncio.to_thread(
                self._record_response, channel_id, user_id, user_name, kind
            )
        except EventNotFoundError:
            return CommandResult(False, NO_EVENT_MESSAGE)
        except (StoreError, SQLAlchemyError):
            logger.exception("Failed to persist RSVP for channel %s", channel_id)
            return CommandResult(False, "Failed to save RSVP.")
        await self.refresh_message(channel_id)
        return CommandResult(True, f"RSVP updated for {mention(user_id)}: {kind.value}")

    # event creation

    def _record_identities(
        self, channel_id: str, channel_name: str, author_id: str, author_name: str | None
    ) -> None:
        try:
            with session_scope(self.session_factory) as session:
                upsert_user(session, author_id, author_name)
                upsert_channel(session, channel_id, channel_name)
        except SQLAlchemyError:
            logger.exception("Failed to upsert channel %s before persisting event", channel_id)

    def _create_row(self, **fields) -> int | None:
        try:
            with session_scope(self.session_factory) as session:
                return create_event(session, **fields)
        except (StoreError, SQLAlchemyError):
            logger.exception("Failed to persist event for channel %s", fields["channel_id"])
            return None

    def _render_new(self, channel_id: str) -> str:
        with session_scope(self.session_factory) as session:
            return render_event_message(session, channel_id)

    def _record_announcement(
        self,
        *,
        channel_id: str,
        channel_name: str,
        message_id: str,
        content: str,
        preliminary_id: int | None,
        fields: dict,
    ) -> None:
        self._record_identities(
            channel_id, channel_name, fields["author_id"], None
        )
        if preliminary_id is not None:
            try:
                with session_scope(self.session_factory) as session:
                    update_event_field(session, channel_id, EventField.MESSAGE_ID, message_id)
            except (RSVPBotError, SQLAlchemyError):
                logger.exception("Failed to update event message_id for channel %s", channel_id)
        else:
            self._create_row(message_id=message_id, **fields)
        if self.bot_user is not None:
            bot_id, bot_name = self.bot_user
            try:
                with session_scope(self.session_factory) as session:
                    log_message(
                        session,
                        message_id=message_id,
                        channel_id=channel_id,
                        channel_name=channel_name,
                        user_id=bot_id,
                        username=bot_name,
                        content=content,
                    )
            except SQLAlchemyError:
                logger.exception("Failed to log announcement message %s", message_id)

    async def _find_category(self, guild_id: str) -> str | None:
        try:
            channels = await self.surface.list_channels(guild_id)
        except SurfaceError:
            logger.warning("Could not list channels of guild %s", guild_id, exc_info=True)
            return None
        wanted = settings.event_category.strip().lower()
        for channel in channels:
            if channel.is_category and channel.name.strip().lower() == wanted:
                return channel.id
        return None

    async def create_event(
        self,
        *,
        guild_id: str,
        author_id: str,
        author_name: str | None,
        name: str,
        time_text: str | None,
        location: str,
        price: str | None = None,
        emoji: str | None = None,
    ) -> CommandResult:
        """Create the channel, the event row and the announcement message.

        The event row references its channel, and the announcement is rendered
        from the event row, so the order is: channel, channel row, preliminary
        event row, render, send, then record the message reference.
        """
        try:
            title = _required(name, "event name")
            when: datetime | None = None
            if time_text and time_text.strip().upper() != "TBD":
                when = parse_flexible_time(time_text, self.tz)
        except ValidationError as exc:
            return CommandResult(False, str(exc))
        price = (price or "").strip() or settings.default_price
        emoji = (emoji or "").strip() or settings.default_emoji
        location = (location or "").strip()

        category_id = await self._find_category(guild_id)
        channel_name = slugify(title)
        try:
            channel = await self.surface.create_channel(
                guild_id,
                name=channel_name,
                topic=f"Event planning for {title}",
                owner_id=author_id,
                category_id=category_id,
            )
        except SurfaceError:
            logger.exception("Failed to create channel for event %r", title)
            return CommandResult(False, "Failed to create event channel.")

        fields = dict(
            channel_id=channel.id,
            emoji=emoji,
            title=title,
            location=location,
            price=price,
            author_id=author_id,
            when=when,
        )
        await asyncio.to_thread(
            self._record_identities, channel.id, channel.name, author_id, author_name
        )
        preliminary_id = await asyncio.to_thread(self._create_row, **fields)

        rendered = None
        if preliminary_id is not None:
            try:
                rendered = await asyncio.to_thread(self._render_new, channel.id)
            except RENDER_ERRORS:
                logger.exception("Failed to render announcement for channel %s", channel.id)
        if rendered is None:
            rendered = render_fallback_message(
                emoji=emoji,
                title=title,
                when=when,
                location=location,
                price=price,
                author_id=author_id,
            )

        try:
            message_id = await self.surface.send_message(channel.id, rendered)
        except SurfaceError:
            logger.exception("Failed to send event message to channel %s", channel.id)
        else:
            await asyncio.to_thread(
                self._record_announcement,
                channel_id=channel.id,
                channel_name=channel.name,
                message_id=message_id,
                content=rendered,
                preliminary_id=preliminary_id,
                fields=fields,
            )
        return CommandResult(True, f"Event channel '{channel.name}' created!")

    # audit trail

    def _log_command(self, user_id: str, username: str, command_text: str) -> None:
        with session_scope(self.session_factory) as session:
            log_command(session, user_id, username, command_text)

    async def record_command(self, user_id: str, username: str, command_text: str) -> None:
        try:
            await asyncio.to_thread(self._log_command, user_id, username, command_text)
        except SQLAlchemyError:
            logger.warning("Failed to record command from user %s", user_id, exc_info=True)

    def _log_message(self, **fields) -> None:
        with session_scope(self.session_factory) as session:
            log_message(session, **fields)

    async def record_message(
        self,
        *,
        message_id: str,
        channel_id: str,
        channel_name: str | None,
        user_id: str,
        username: str | None,
        content: str,
    ) -> None:
        try:
            await asyncio.to_thread(
                self._log_message,
                message_id=message_id,
                channel_id=channel_id,
                channel_name=channel_name,
                user_id=user_id,
                username=username,
                content=content,
            )
        except SQLAlchemyError:
            logger.warning("Failed to insert message %s into DB", message_id, exc_info=True)
