"""The chat surface: where the announcement message is posted and edited.

The coordinator only needs the narrow :class:`ChatSurface` contract;
:class:`DiscordSurface` fulfils it with discord.py. Every failure is raised as
:class:`~rsvpbot.errors.SurfaceError` so callers can treat the surface as a
best-effort mirror of the store.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Protocol

import discord

from .errors import SurfaceError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ChannelInfo:
    id: str
    name: str
    is_category: bool = False


class ChatSurface(Protocol):
    async def list_channels(self, guild_id: str) -> list[ChannelInfo]: ...

    async def create_channel(
        self,
        guild_id: str,
        *,
        name: str,
        topic: str,
        owner_id: str,
        category_id: str | None = None,
    ) -> ChannelInfo: ...

    async def send_message(self, channel_id: str, content: str) -> str: ...

    async def edit_message(self, channel_id: str, message_id: str, content: str) -> None: ...

    async def rename_channel(self, channel_id: str, name: str) -> None: ...


class DiscordSurface:
    """:class:`ChatSurface` backed by a connected discord.py client."""

    def __init__(self, client: discord.Client):
        self.client = client

    async def _guild(self, guild_id: str) -> discord.Guild:
        guild = self.client.get_guild(int(guild_id))
        if guild is None:
            guild = await self.client.fetch_guild(int(guild_id))
        return guild

    async def _channel(self, channel_id: str):
        channel = self.client.get_channel(int(channel_id))
        if channel is None:
            channel = await self.client.fetch_channel(int(channel_id))
        return channel

    async def list_channels(self, guild_id: str) -> list[ChannelInfo]:
        try:
            guild = await self._guild(guild_id)
            channels = await guild.fetch_channels()
        except discord.DiscordException as exc:
            raise SurfaceError(f"Could not list channels of guild {guild_id}") from exc
        return [
            ChannelInfo(
                id=str(channel.id),
                name=channel.name,
                is_category=isinstance(channel, discord.CategoryChannel),
            )
            for channel in channels
        ]

    async def create_channel(
        self,
        guild_id: str,
        *,
        name: str,
        topic: str,
        owner_id: str,
        category_id: str | None = None,
    ) -> ChannelInfo:
        try:
            guild = await self._guild(guild_id)
            category = guild.get_channel(int(category_id)) if category_id else None
            owner = guild.get_member(int(owner_id)) or discord.Object(id=int(owner_id))
            overwrites = {
                guild.default_role: discord.PermissionOverwrite(view_channel=False),
                owner: discord.PermissionOverwrite(view_channel=True, send_messages=True),
            }
            if guild.me is not None:
                overwrites[guild.me] = discord.PermissionOverwrite(
                    view_channel=True, send_messages=True
                )
            channel = await guild.create_text_channel(
                name,
                category=category,
                topic=topic,
                overwrites=overwrites,
            )
        except discord.DiscordException as exc:
            raise SurfaceError(f"Could not create channel {name!r}") from exc
        return ChannelInfo(id=str(channel.id), name=channel.name)

    async def send_message(self, channel_id: str, content: str) -> str:
        try:
            channel = await self._channel(channel_id)
            message = await channel.send(content)
        except discord.DiscordException as exc:
            raise SurfaceError(f"Could not send a message to channel {channel_id}") from exc
        return str(message.id)

    async def edit_message(self, channel_id: str, message_id: str, content: str) -> None:
        try:
            channel = await self._channel(channel_id)
            await channel.get_partial_message(int(message_id)).edit(content=content)
        except discord.DiscordException as exc:
            raise SurfaceError(
                f"Could not edit message {message_id} in channel {channel_id}"
            ) from exc

    async def rename_channel(self, channel_id: str, name: str) -> None:
        try:
            channel = await self._channel(channel_id)
            await channel.edit(name=name)
        except discord.DiscordException as exc:
            raise SurfaceError(f"Could not rename channel {channel_id}") from exc
