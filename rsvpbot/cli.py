"""Typer CLI for rsvpbot."""

from __future__ import annotations

import json
import logging
from pathlib import Path

from sqlalchemy.exc import OperationalError, SQLAlchemyError
import typer
import uvicorn

from .config import (
    load_settings,
    require_bot_settings,
    settings,
    settings_as_dict,
    update_config_file,
)
from .crud import get_poker_lifetime
from .database import SessionLocal, get_session
from .errors import ConfigError, EventNotFoundError, TimeParseError
from .render import render_event_message
from .storage import init_db, upgrade_database
from .timeparse import format_local, parse_flexible_time

logger = logging.getLogger(__name__)

app = typer.Typer(help="rsvpbot command-line interface")


def _configure_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


@app.callback(invoke_without_command=True)
def main(ctx: typer.Context) -> None:
    """Show help when no subcommand is provided."""
    _configure_logging(settings.log_level)
    if ctx.invoked_subcommand is None:
        typer.echo(ctx.get_help())
        raise typer.Exit()


@app.command("run")
def run() -> None:
    """Connect to Discord and serve slash commands."""
    from .bot import run_bot

    try:
        require_bot_settings(settings)
    except ConfigError as exc:
        typer.secho(str(exc), err=True, fg=typer.colors.RED)
        raise typer.Exit(code=1)
    init_db()
    run_bot(settings, SessionLocal)


@app.command("upgrade-db")
def upgrade_db(
    no_backup: bool = typer.Option(
        False,
        "--no-backup",
        help="Skip creating a .bak copy of a SQLite database before upgrading",
    ),
) -> None:
    """Create the events database or migrate it to the latest schema."""
    target = settings_as_dict(settings)["database_url"]
    typer.echo(f"Upgrading {target}")
    try:
        actions = upgrade_database(make_backup=not no_backup)
    except OperationalError as exc:
        reason = str(getattr(exc, "orig", None) or exc)
        logger.error("Schema upgrade of %s failed: %s", target, reason)
        typer.secho(f"Could not upgrade the database: {reason}", err=True, fg=typer.colors.RED)
        raise typer.Exit(code=1)

    typer.echo("Database upgrade complete:")
    for action in actions:
        typer.echo(f"- {action}")


@app.command("render")
def render(channel_id: str = typer.Argument(..., help="Channel hosting the event")) -> None:
    """Print the announcement text the bot would post for a channel."""
    try:
        with get_session() as session:
            text = render_event_message(session, channel_id)
    except EventNotFoundError as exc:
        typer.secho(str(exc), err=True, fg=typer.colors.RED)
        raise typer.Exit(code=1)
    typer.echo(text)


@app.command("parse-time")
def parse_time(value: str = typer.Argument(..., help="e.g. 2025-05 or '2025-05-02 15:04'")) -> None:
    """Show how a date/time string is completed and stored."""
    try:
        instant = parse_flexible_time(value, settings.tz)
    except TimeParseError as exc:
        typer.secho(str(exc), err=True, fg=typer.colors.RED)
        raise typer.Exit(code=1)
    typer.echo(f"{settings.reference_timezone}: {format_local(instant, settings.tz)}")
    typer.echo(f"UTC: {instant.isoformat()}")


@app.command("lifetime")
def lifetime(user_id: str = typer.Argument(..., help="Chat user id")) -> None:
    """Print lifetime poker results for a user."""
    try:
        with get_session() as session:
            stats = get_poker_lifetime(session, user_id)
    except SQLAlchemyError as exc:
        typer.secho(f"Failed to fetch lifetime stats: {exc}", err=True, fg=typer.colors.RED)
        raise typer.Exit(code=1)
    typer.echo(f"{stats.sessions} sessions, Net={stats.net:.2f}")


@app.command("serve")
def serve(
    host: str = typer.Option(settings.app_host, "--host", help="Host to bind"),
    port: int = typer.Option(settings.app_port, "--port", help="Port to bind"),
):
    """Start the read-only status API."""
    config = uvicorn.Config(
        "rsvpbot.api:app",
        host=host,
        port=port,
        reload=False,
        proxy_headers=True,
    )
    server = uvicorn.Server(config)
    typer.echo(f"Starting rsvpbot status API on {host}:{port}")
    server.run()


@app.command("config")
def configure(
    show: bool = typer.Option(
        False, "--show", help="Show the current effective configuration"
    ),
    reference_timezone: str | None = typer.Option(
        None, "--timezone", help="Zone used to read dates typed without one"
    ),
    event_category: str | None = typer.Option(
        None, "--event-category", help="Category that new event channels go under"
    ),
    default_price: str | None = typer.Option(
        None, "--default-price", help="Price shown when /event omits one"
    ),
    default_emoji: str | None = typer.Option(
        None, "--default-emoji", help="Emoji shown when /event omits one"
    ),
    template_name: str | None = typer.Option(
        None, "--template-name", help="Announcement template file name"
    ),
    log_level: str | None = typer.Option(None, "--log-level", help="Logging level"),
    host: str | None = typer.Option(None, "--host", help="Default host for serve"),
    port: int | None = typer.Option(None, "--port", help="Default port for serve"),
    config_path: Path | None = typer.Option(
        None, "--config-path", help="Path to rsvpbot.toml (default: ./rsvpbot.toml)"
    ),
):
    """View or update the persistent configuration file."""

    updates = {
        "reference_timezone": reference_timezone,
        "event_category": event_category,
        "default_price": default_price,
        "default_emoji": default_emoji,
        "template_name": template_name,
        "log_level": log_level,
        "app_host": host,
        "app_port": port,
    }
    clean_updates = {k: v for k, v in updates.items() if v is not None}

    target_path = config_path or settings.config_path
    if clean_updates:
        settings_ref = update_config_file(clean_updates, path=target_path)
        typer.echo(f"Updated configuration in {target_path}")
    else:
        settings_ref = load_settings(target_path)
    if show or not clean_updates:
        effective = settings_as_dict(settings_ref)
        effective["config_path"] = str(target_path)
        typer.echo(json.dumps(effective, indent=2))


if __name__ == "__main__":
    app()
