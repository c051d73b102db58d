"""discord.py front end: slash commands that delegate to the coordinator."""

from __future__ import annotations

import logging
from collections.abc import Awaitable

import discord
from discord import Intents, app_commands
from discord.ext import commands

from .config import Settings, require_bot_settings
from .coordinator import CommandResult, MutationCoordinator
from .ledger import PokerLedger
from .surface import DiscordSurface

logger = logging.getLogger(__name__)

NOTES_MODAL_ID = "change_notes_modal"

HELP_MESSAGE = (
    "**Available Commands:**\n"
    "1. `/help` - Get a list of available commands.\n"
    "2. `/event [name] [time] [location] [price] [emoji]` - Create an event channel and announcement.\n"
    "3. `/rsvp [yes/no/maybe] (@user optional)` - RSVP to the event in this channel, "
    "for yourself or for someone else.\n"
    "4. `/change_name [name]` - Change the name of the event.\n"
    "5. `/change_date [new_date]` - Change the event's date/time (e.g. 2025-05-02 19:30).\n"
    "6. `/change_location [new_location]` - Change the event location.\n"
    "7. `/change_price [new_price]` - Change the event price.\n"
    "8. `/change_notes` - Edit the event notes in a form.\n"
    "9. `/change_emoji [new_emoji]` - Change the event emoji.\n"
    "10. `/session [in] [out] (location) (stakes)` - Log a poker session.\n"
    "11. `/lifetime (@user optional)` - Show lifetime poker results.\n"
)


def describe_command(data: dict) -> str:
    """Flatten an application command payload into ``name opt=value ...``."""
    parts = [data.get("name", "")]
    for option in data.get("options", []) or []:
        if "value" in option:
            parts.append(f"{option['name']}={option['value']}")
        else:
            parts.append(option["name"])
    return " ".join(part for part in parts if part)


async def respond(interaction: discord.Interaction, work: Awaitable[CommandResult]) -> None:
    """Acknowledge the interaction, run the command and reply privately."""
    await interaction.response.defer(ephemeral=True, thinking=True)
    result = await work
    await interaction.followup.send(result.message, ephemeral=True)


class NotesModal(discord.ui.Modal, title="Change event notes"):
    notes = discord.ui.TextInput(
        label="Notes / Description",
        style=discord.TextStyle.paragraph,
        required=False,
        placeholder="Add or edit notes for this event...",
        max_length=2000,
    )

    def __init__(self, bot: EventBot):
        super().__init__(custom_id=NOTES_MODAL_ID)
        self.bot = bot

    async def on_submit(self, interaction: discord.Interaction) -> None:
        await self.bot.coordinator.record_command(
            str(interaction.user.id),
            interaction.user.name,
            f"change_notes: {self.notes.value}",
        )
        await respond(
            interaction,
            self.bot.coordinator.change_notes(str(interaction.channel_id), self.notes.value),
        )


class EventBot(commands.Bot):
    """Announces events in their own channels and keeps the announcement current."""

    def __init__(self, settings: Settings, session_factory):
        intents = Intents.default()
        intents.message_content = True
        super().__init__(command_prefix="!", intents=intents)
        self.settings = settings
        self.session_factory = session_factory
        self.coordinator: MutationCoordinator | None = None
        self.ledger = PokerLedger(session_factory)
        self._setup_commands()

    def _setup_commands(self) -> None:
        """Register slash commands on the bot's command tree."""

        @self.tree.command(name="event", description="Create an event.")
        @app_commands.describe(
            event_name="Name of the event",
            time="Time/date of the event (flexible formats like YYYY-MM-DD HH:MM:SS; partials accepted e.g. 2025-05)",
            location="Location of the event",
            price="Price of the event (default: Free)",
            emoji="Custom emoji for the event (default: :loudspeaker:)",
        )
        async def event_command(
            interaction: discord.Interaction,
            event_name: str,
            time: str,
            location: str,
            price: str | None = None,
            emoji: str | None = None,
        ) -> None:
            await respond(
                interaction,
                self.coordinator.create_event(
                    guild_id=str(interaction.guild_id),
                    author_id=str(interaction.user.id),
                    author_name=interaction.user.name,
                    name=event_name,
                    time_text=time,
                    location=location,
                    price=price,
                    emoji=emoji,
                ),
            )

        @self.tree.command(
            name="change_name",
            description="Change the name of the event in the current channel",
        )
        @app_commands.describe(new_name="New name of event")
        async def change_name_command(interaction: discord.Interaction, new_name: str) -> None:
            await respond(
                interaction,
                self.coordinator.change_title(str(interaction.channel_id), new_name),
            )

        @self.tree.command(
            name="change_date",
            description="Change the date/time of the event in the current channel",
        )
        @app_commands.describe(
            new_date="New date/time of event (flexible formats like YYYY-MM-DD HH:MM:SS)"
        )
        async def change_date_command(interaction: discord.Interaction, new_date: str) -> None:
            await respond(
                interaction,
                self.coordinator.change_date(str(interaction.channel_id), new_date),
            )

        @self.tree.command(
            name="change_location",
            description="Change the location of the event in the current channel",
        )
        @app_commands.describe(new_location="New location of the event")
        async def change_location_command(
            interaction: discord.Interaction, new_location: str
        ) -> None:
            await respond(
                interaction,
                self.coordinator.change_location(str(interaction.channel_id), new_location),
            )

        @self.tree.command(
            name="change_price",
            description="Change the price of the event in the current channel",
        )
        @app_commands.describe(new_price="New price of the event")
        async def change_price_command(interaction: discord.Interaction, new_price: str) -> None:
            await respond(
                interaction,
                self.coordinator.change_price(str(interaction.channel_id), new_price),
            )

        @self.tree.command(
            name="change_notes",
            description="Change the notes for the event in the current channel",
        )
        async def change_notes_command(interaction: discord.Interaction) -> None:
            await interaction.response.send_modal(NotesModal(self))

        @self.tree.command(
            name="change_emoji",
            description="Change the emoji for the event in the current channel",
        )
        @app_commands.describe(new_emoji="New emoji for the event (e.g., :tada:, :calendar:)")
        async def change_emoji_command(interaction: discord.Interaction, new_emoji: str) -> None:
            await respond(
                interaction,
                self.coordinator.change_emoji(str(interaction.channel_id), new_emoji),
            )

        @self.tree.command(
            name="rsvp", description="RSVP for the event by choosing yes, no, or maybe"
        )
        @app_commands.describe(
            response="Your RSVP response (yes, no, maybe)",
            user="Optional: The user to RSVP for",
        )
        @app_commands.choices(
            response=[
                app_commands.Choice(name="Yes", value="yes"),
                app_commands.Choice(name="Maybe", value="maybe"),
                app_commands.Choice(name="No", value="no"),
            ]
        )
        async def rsvp_command(
            interaction: discord.Interaction,
            response: app_commands.Choice[str],
            user: discord.Member | None = None,
        ) -> None:
            target = user or interaction.user
            await respond(
                interaction,
                self.coordinator.rsvp(
                    str(interaction.channel_id),
                    str(target.id),
                    response.value,
                    user_name=target.name,
                ),
            )

        @self.tree.command(
            name="session",
            description="Log a poker session: /session [in] [out] (location) (stakes)",
        )
        @app_commands.rename(buy_in="in", cash_out="out")
        @app_commands.describe(
            buy_in="Buy-in amount (e.g. 100.00)",
            cash_out="Cash-out amount (e.g. 250.00)",
            location="Optional location",
            stakes="Optional stakes (e.g. 1/2)",
        )
        async def session_command(
            interaction: discord.Interaction,
            buy_in: float,
            cash_out: float,
            location: str | None = None,
            stakes: str | None = None,
        ) -> None:
            await respond(
                interaction,
                self.ledger.log_session(
                    str(interaction.user.id), buy_in, cash_out, location, stakes
                ),
            )

        @self.tree.command(name="lifetime", description="Show lifetime poker stats for a user")
        @app_commands.describe(user="Optional user to query")
        async def lifetime_command(
            interaction: discord.Interaction, user: discord.Member | None = None
        ) -> None:
            target = user or interaction.user
            await respond(interaction, self.ledger.lifetime(str(target.id)))

        @self.tree.command(name="help", description="Get a list of available commands.")
        async def help_command(interaction: discord.Interaction) -> None:
            await interaction.response.send_message(HELP_MESSAGE, ephemeral=True)

    async def setup_hook(self) -> None:
        """Build the coordinator once logged in and sync commands to the guild."""
        self.coordinator = MutationCoordinator(
            self.session_factory,
            DiscordSurface(self),
            tz=self.settings.tz,
            bot_user=(str(self.user.id), self.user.name) if self.user else None,
        )
        guild = discord.Object(id=int(self.settings.guild_id))
        self.tree.copy_global_to(guild=guild)
        await self.tree.sync(guild=guild)
        logger.info("Slash commands synced to guild %s", self.settings.guild_id)

    async def on_ready(self) -> None:
        logger.info("%s has connected to Discord!", self.user)

    async def on_interaction(self, interaction: discord.Interaction) -> None:
        if interaction.type is not discord.InteractionType.application_command:
            return
        if self.coordinator is None:
            return
        await self.coordinator.record_command(
            str(interaction.user.id),
            interaction.user.name,
            describe_command(interaction.data or {}),
        )

    async def on_message(self, message: discord.Message) -> None:
        if self.user is not None and message.author.id == self.user.id:
            return
        logger.debug("[%s] %s: %s", message.channel.id, message.author.name, message.content)
        if self.coordinator is not None:
            await self.coordinator.record_message(
                message_id=str(message.id),
                channel_id=str(message.channel.id),
                channel_name=getattr(message.channel, "name", None),
                user_id=str(message.author.id),
                username=message.author.name,
                content=message.content,
            )
        await self.process_commands(message)


def run_bot(settings: Settings, session_factory) -> None:
    """Start the bot; blocks until the gateway connection closes."""
    require_bot_settings(settings)
    bot = EventBot(settings, session_factory)
    bot.run(settings.discord_token, log_handler=None)
