"""Error taxonomy shared by the store, renderer and coordinator."""

from __future__ import annotations


class RSVPBotError(Exception):
    """Base class for errors raised by rsvpbot."""


class ValidationError(RSVPBotError, ValueError):
    """Malformed user input. The message is safe to show to the user."""


class TimeParseError(ValidationError):
    """A date/time string could not be completed into an instant."""


class InvalidFieldError(ValidationError):
    """An event field name outside the mutable allow-list."""


class InvalidResponseKindError(ValidationError):
    """An RSVP response other than yes, maybe or no."""


class EventNotFoundError(RSVPBotError):
    """No event row exists for the channel."""

    def __init__(self, channel_id: str):
        super().__init__(f"No event record for channel {channel_id}")
        self.channel_id = channel_id


class StoreError(RSVPBotError):
    """Connectivity or constraint failure in the relational store."""


class SurfaceError(RSVPBotError):
    """Sending or editing a chat message failed."""


class ConfigError(RSVPBotError):
    """Required configuration is missing; fatal at startup."""
