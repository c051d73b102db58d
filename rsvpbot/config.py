"""Global configuration for rsvpbot."""

from __future__ import annotations

import os
import tomllib
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable
from zoneinfo import ZoneInfo

from dotenv import load_dotenv
from sqlalchemy.engine import URL, make_url

from .errors import ConfigError

PACKAGE_DIR = Path(__file__).resolve().parent

DEFAULTS: dict[str, Any] = {
    "reference_timezone": "America/Chicago",
    "template_name": "event.txt.j2",
    "event_category": "Active Plans",
    "default_price": "Free",
    "default_emoji": ":loudspeaker:",
    "log_level": "INFO",
    "db_user": "discord_bot",
    "db_host": "localhost",
    "db_name": "discord_events",
    "db_connect_timeout": 10,
    "db_pool_size": 10,
    "app_host": "127.0.0.1",
    "app_port": 8000,
}

TYPE_CASTERS: dict[str, Callable[[Any], Any]] = {
    "reference_timezone": str,
    "template_name": str,
    "event_category": str,
    "default_price": str,
    "default_emoji": str,
    "log_level": lambda value: str(value).upper(),
    "db_user": str,
    "db_host": str,
    "db_name": str,
    "db_connect_timeout": int,
    "db_pool_size": int,
    "app_host": str,
    "app_port": int,
}

# Secrets keep the names used by existing deployments.
SECRET_ENV_KEYS = {
    "discord_token": "DISCORD_TOKEN",
    "guild_id": "GUILD_ID",
    "db_password": "DB_PASSWORD",
}


@dataclass(frozen=True)
class Settings:
    base_dir: Path
    data_dir: Path
    database_path: Path
    database_url: str
    template_dir: Path
    template_name: str
    reference_timezone: str
    event_category: str
    default_price: str
    default_emoji: str
    log_level: str
    db_user: str
    db_host: str
    db_name: str
    db_connect_timeout: int
    db_pool_size: int
    app_host: str
    app_port: int
    discord_token: str | None
    guild_id: str | None
    db_password: str | None
    config_path: Path

    @property
    def tz(self) -> ZoneInfo:
        return ZoneInfo(self.reference_timezone)

    @property
    def uses_sqlite(self) -> bool:
        return self.database_url.startswith("sqlite")


def _cast_value(key: str, value: Any) -> Any:
    if key not in TYPE_CASTERS:
        return value
    return TYPE_CASTERS[key](value)


def _load_toml_config(config_path: Path) -> dict[str, Any]:
    if not config_path.exists():
        return {}
    with config_path.open("rb") as handle:
        return tomllib.load(handle)


def _config_layered_value(key: str, *, toml_config: dict[str, Any]) -> Any:
    env_key = f"RSVPBOT_{key.upper()}"
    if env_key in os.environ:
        return _cast_value(key, os.environ[env_key])
    if key in toml_config:
        return _cast_value(key, toml_config[key])
    return DEFAULTS[key]


def _secret(key: str) -> str | None:
    value = os.getenv(SECRET_ENV_KEYS[key], "").strip()
    return value or None


def _resolve_paths(
    *,
    base_dir: Path,
    data_dir: str | Path | None,
    database_path: str | Path | None,
):
    resolved_base = Path(base_dir)
    resolved_data = Path(data_dir) if data_dir else resolved_base / "data"
    if not resolved_data.is_absolute():
        resolved_data = resolved_base / resolved_data
    resolved_db = Path(database_path) if database_path else resolved_data / "rsvpbot.db"
    if not resolved_db.is_absolute():
        resolved_db = resolved_base / resolved_db
    return resolved_base, resolved_data, resolved_db


def _resolve_database_url(
    *,
    explicit: str | None,
    password: str | None,
    user: str,
    host: str,
    name: str,
    database_path: Path,
) -> str:
    if explicit:
        return explicit
    if password:
        url = URL.create(
            "postgresql+psycopg",
            username=user,
            password=password,
            host=host,
            database=name,
        )
        return url.render_as_string(hide_password=False)
    return f"sqlite:///{database_path}"


def load_settings(config_override: Path | None = None) -> Settings:
    base_dir = Path(os.getenv("RSVPBOT_BASE_DIR", Path.cwd()))
    load_dotenv(base_dir / ".env", override=False)
    env_config = os.getenv("RSVPBOT_CONFIG")
    config_path = Path(config_override or env_config or base_dir / "rsvpbot.toml")
    toml_config = _load_toml_config(config_path)

    base_dir_value, data_dir_value, database_path_value = _resolve_paths(
        base_dir=base_dir,
        data_dir=os.getenv("RSVPBOT_DATA_DIR", toml_config.get("data_dir")),
        database_path=os.getenv("RSVPBOT_DB", toml_config.get("database_path")),
    )
    template_dir = Path(
        os.getenv("RSVPBOT_TEMPLATE_DIR", toml_config.get("template_dir") or "")
        or PACKAGE_DIR / "templates"
    )

    layered = {
        key: _config_layered_value(key, toml_config=toml_config) for key in DEFAULTS
    }
    db_password = _secret("db_password")
    database_url = _resolve_database_url(
        explicit=os.getenv("RSVPBOT_DATABASE_URL", toml_config.get("database_url")),
        password=db_password,
        user=layered["db_user"],
        host=layered["db_host"],
        name=layered["db_name"],
        database_path=database_path_value,
    )

    settings = Settings(
        base_dir=base_dir_value,
        data_dir=data_dir_value,
        database_path=database_path_value,
        database_url=database_url,
        template_dir=template_dir,
        discord_token=_secret("discord_token"),
        guild_id=_secret("guild_id"),
        db_password=db_password,
        config_path=config_path,
        **layered,
    )
    if settings.uses_sqlite:
        settings.data_dir.mkdir(parents=True, exist_ok=True)
    return settings


def require_bot_settings(settings: Settings) -> None:
    """Fail fast when the bot cannot start with the current settings."""
    missing = [
        env_key
        for key, env_key in (("discord_token", "DISCORD_TOKEN"), ("guild_id", "GUILD_ID"))
        if not getattr(settings, key)
    ]
    if missing:
        raise ConfigError(
            f"Missing required environment variables: {', '.join(missing)}"
        )
    if not settings.guild_id.isdigit():
        raise ConfigError("GUILD_ID must be a numeric guild identifier")
    try:
        settings.tz
    except (KeyError, ValueError) as exc:
        raise ConfigError(
            f"Unknown reference timezone {settings.reference_timezone!r}"
        ) from exc


def settings_as_dict(settings: Settings) -> dict[str, Any]:
    database_url = make_url(settings.database_url).render_as_string(hide_password=True)
    return {
        "base_dir": str(settings.base_dir),
        "data_dir": str(settings.data_dir),
        "database_url": database_url,
        "template_dir": str(settings.template_dir),
        "template_name": settings.template_name,
        "reference_timezone": settings.reference_timezone,
        "event_category": settings.event_category,
        "default_price": settings.default_price,
        "default_emoji": settings.default_emoji,
        "log_level": settings.log_level,
        "db_user": settings.db_user,
        "db_host": settings.db_host,
        "db_name": settings.db_name,
        "db_connect_timeout": settings.db_connect_timeout,
        "db_pool_size": settings.db_pool_size,
        "app_host": settings.app_host,
        "app_port": settings.app_port,
        "discord_token": "set" if settings.discord_token else None,
        "guild_id": settings.guild_id,
    }


def _toml_literal(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (int, float)):
        return str(value)
    escaped = str(value).replace("\\", "\\\\").replace('"', '\\"')
    return f'"{escaped}"'


def write_config_file(config: dict[str, Any], *, path: Path) -> None:
    lines = ["# rsvpbot configuration\n"]
    for key in sorted(config.keys()):
        lines.append(f"{key} = {_toml_literal(config[key])}\n")
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text("".join(lines), encoding="utf-8")


def update_config_file(updates: dict[str, Any], *, path: Path | None = None) -> Settings:
    current_settings = settings if "settings" in globals() else load_settings()
    target_path = path or current_settings.config_path
    existing = _load_toml_config(target_path)
    merged = {**existing}
    for key, value in updates.items():
        if key not in DEFAULTS:
            continue
        merged[key] = _cast_value(key, value)
    write_config_file(merged, path=target_path)
    new_settings = load_settings(target_path)
    globals()["settings"] = new_settings
    return new_settings


settings = load_settings()
