from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml
from dotenv import load_dotenv


class ConfigError(RuntimeError):
    pass


DEFAULT_EXTENSIONS = ["cogs.events", "cogs.tickets", "cogs.admin"]
DEFAULT_STAFF_ROLE_NAMES = ["support", "staff", "moderator", "admin"]


@dataclass(slots=True)
class DiscordConfig:
    token: str
    prefix: str = "!"
    application_id: int | None = None
    sync_commands_on_start: bool = True
    status_text: str = "Support tickets"
    activity_type: str = "watching"
    allowed_mentions_everyone: bool = False


@dataclass(slots=True)
class DatabaseConfig:
    url: str = "sqlite:///./data/tickets.db"
    pool_min_size: int = 2
    pool_max_size: int = 10
    timeout_seconds: int = 30


@dataclass(slots=True)
class RedisConfig:
    enabled: bool = False
    url: str = "redis://localhost:6379/0"
    key_prefix: str = "ticketdesk"


@dataclass(slots=True)
class LoggingConfig:
    level: str = "INFO"
    directory: str = "logs"
    file_name: str = "bot.log"
    max_bytes: int = 10_000_000
    backup_count: int = 10
    json_console: bool = False
    quiet_loggers: list[str] = field(default_factory=lambda: ["discord.gateway", "aiosqlite"])


@dataclass(slots=True)
class TicketConfig:
    confirm_timeout_seconds: int = 30
    menu_timeout_seconds: int = 60
    form_timeout_seconds: int = 300
    close_modal_timeout_seconds: int = 120
    delete_grace_seconds: float = 3.0
    creation_cooldown_seconds: int = 0
    staff_role_names: list[str] = field(default_factory=lambda: list(DEFAULT_STAFF_ROLE_NAMES))


@dataclass(slots=True)
class TranscriptConfig:
    enabled: bool = True
    html_enabled: bool = True
    txt_enabled: bool = True
    include_attachments: bool = True
    message_limit: int | None = None
    # Empty keeps transcripts in memory only.
    storage_directory: str = ""


@dataclass(slots=True)
class FastApiConfig:
    enabled: bool = False
    host: str = "0.0.0.0"
    port: int = 8000
    api_key: str = ""


@dataclass(slots=True)
class AppConfig:
    discord: DiscordConfig
    database: DatabaseConfig = field(default_factory=DatabaseConfig)
    redis: RedisConfig = field(default_factory=RedisConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)
    tickets: TicketConfig = field(default_factory=TicketConfig)
    transcripts: TranscriptConfig = field(default_factory=TranscriptConfig)
    fastapi: FastApiConfig = field(default_factory=FastApiConfig)
    enabled_extensions: list[str] = field(default_factory=lambda: list(DEFAULT_EXTENSIONS))


def _get_env_str(key: str, fallback: str | None = None) -> str | None:
    value = os.getenv(key)
    if value is None:
        return fallback
    cleaned = value.strip()
    return cleaned if cleaned else fallback


def _as_bool(value: Any, default: bool) -> bool:
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() in {"1", "true", "yes", "on"}


def _as_int(value: Any, default: int) -> int:
    if value is None:
        return default
    try:
        return int(value)
    except (TypeError, ValueError):
        return default


def _as_float(value: Any, default: float) -> float:
    if value is None:
        return default
    try:
        return float(value)
    except (TypeError, ValueError):
        return default


def _deep_get(data: dict[str, Any], *keys: str, default: Any = None) -> Any:
    node: Any = data
    for key in keys:
        if not isinstance(node, dict):
            return default
        node = node.get(key)
        if node is None:
            return default
    return node


def _load_yaml(path: Path) -> dict[str, Any]:
    if not path.exists():
        raise ConfigError(f"Missing config file: {path}")
    with path.open("r", encoding="utf-8") as handle:
        raw = yaml.safe_load(handle) or {}
    if not isinstance(raw, dict):
        raise ConfigError("Config root must be a mapping")
    return raw


def _load_ticket_config(raw: dict[str, Any]) -> TicketConfig:
    defaults = TicketConfig()
    timeouts = {
        name: _as_int(_deep_get(raw, "tickets", name), getattr(defaults, name))
        for name in (
            "confirm_timeout_seconds",
            "menu_timeout_seconds",
            "form_timeout_seconds",
            "close_modal_timeout_seconds",
        )
    }
    for name, value in timeouts.items():
        if value <= 0:
            raise ConfigError(f"tickets.{name} must be positive")

    cooldown = _as_int(
        _get_env_str("TICKET_CREATION_COOLDOWN_SECONDS"),
        _as_int(_deep_get(raw, "tickets", "creation_cooldown_seconds"), defaults.creation_cooldown_seconds),
    )
    grace = _as_float(
        _get_env_str("TICKET_DELETE_GRACE_SECONDS"),
        _as_float(_deep_get(raw, "tickets", "delete_grace_seconds"), defaults.delete_grace_seconds),
    )
    if cooldown < 0 or grace < 0:
        raise ConfigError("Ticket cooldown and delete grace must not be negative")

    role_names = _deep_get(raw, "tickets", "staff_role_names", default=DEFAULT_STAFF_ROLE_NAMES)
    return TicketConfig(
        creation_cooldown_seconds=cooldown,
        delete_grace_seconds=grace,
        staff_role_names=[str(name).lower() for name in list(role_names)],
        **timeouts,
    )


def load_config(config_path: Path) -> AppConfig:
    env_path = config_path.parent.parent / ".env"
    load_dotenv(env_path)
    raw = _load_yaml(config_path)

    discord_token = _get_env_str("DISCORD_TOKEN", _deep_get(raw, "discord", "token"))
    if not discord_token or "${" in discord_token:
        raise ConfigError("DISCORD_TOKEN is required")

    application_id = _get_env_str("DISCORD_APPLICATION_ID")
    discord_cfg = DiscordConfig(
        token=discord_token,
        prefix=str(_get_env_str("BOT_PREFIX", _deep_get(raw, "discord", "prefix", default="!"))),
        application_id=(
            int(application_id) if application_id else _deep_get(raw, "discord", "application_id")
        ),
        sync_commands_on_start=_as_bool(
            _get_env_str("SYNC_COMMANDS"),
            _as_bool(_deep_get(raw, "discord", "sync_commands_on_start"), True),
        ),
        status_text=str(_deep_get(raw, "discord", "status_text", default="Support tickets")),
        activity_type=str(_deep_get(raw, "discord", "activity_type", default="watching")),
        allowed_mentions_everyone=_as_bool(
            _deep_get(raw, "discord", "allowed_mentions_everyone"), False
        ),
    )

    database_cfg = DatabaseConfig(
        url=str(_get_env_str("DATABASE_URL", _deep_get(raw, "database", "url", default="sqlite:///./data/tickets.db"))),
        pool_min_size=_as_int(
            _get_env_str("DB_POOL_MIN", None),
            _as_int(_deep_get(raw, "database", "pool_min_size"), 2),
        ),
        pool_max_size=_as_int(
            _get_env_str("DB_POOL_MAX", None),
            _as_int(_deep_get(raw, "database", "pool_max_size"), 10),
        ),
        timeout_seconds=_as_int(
            _get_env_str("DB_TIMEOUT_SECONDS", None),
            _as_int(_deep_get(raw, "database", "timeout_seconds"), 30),
        ),
    )

    redis_cfg = RedisConfig(
        enabled=_as_bool(_get_env_str("REDIS_ENABLED"), _as_bool(_deep_get(raw, "redis", "enabled"), False)),
        url=str(_get_env_str("REDIS_URL", _deep_get(raw, "redis", "url", default="redis://localhost:6379/0"))),
        key_prefix=str(_deep_get(raw, "redis", "key_prefix", default="ticketdesk")),
    )

    logging_cfg = LoggingConfig(
        level=str(_get_env_str("LOG_LEVEL", _deep_get(raw, "logging", "level", default="INFO"))),
        directory=str(_deep_get(raw, "logging", "directory", default="logs")),
        file_name=str(_deep_get(raw, "logging", "file_name", default="bot.log")),
        max_bytes=_as_int(_deep_get(raw, "logging", "max_bytes"), 10_000_000),
        backup_count=_as_int(_deep_get(raw, "logging", "backup_count"), 10),
        json_console=_as_bool(_deep_get(raw, "logging", "json_console"), False),
        quiet_loggers=[
            str(name)
            for name in list(
                _deep_get(raw, "logging", "quiet_loggers", default=["discord.gateway", "aiosqlite"])
            )
        ],
    )

    transcript_cfg = TranscriptConfig(
        enabled=_as_bool(_deep_get(raw, "transcripts", "enabled"), True),
        html_enabled=_as_bool(_deep_get(raw, "transcripts", "html_enabled"), True),
        txt_enabled=_as_bool(_deep_get(raw, "transcripts", "txt_enabled"), True),
        include_attachments=_as_bool(_deep_get(raw, "transcripts", "include_attachments"), True),
        message_limit=_as_int(_deep_get(raw, "transcripts", "message_limit"), 0) or None,
        storage_directory=str(_deep_get(raw, "transcripts", "storage_directory", default="")),
    )

    fastapi_cfg = FastApiConfig(
        enabled=_as_bool(_deep_get(raw, "fastapi", "enabled"), False),
        host=str(_deep_get(raw, "fastapi", "host", default="0.0.0.0")),
        port=_as_int(_deep_get(raw, "fastapi", "port"), 8000),
        api_key=str(_get_env_str("API_KEY", _deep_get(raw, "fastapi", "api_key", default=""))),
    )

    enabled_extensions = [
        str(ext) for ext in list(_deep_get(raw, "enabled_extensions", default=DEFAULT_EXTENSIONS))
    ]

    return AppConfig(
        discord=discord_cfg,
        database=database_cfg,
        redis=redis_cfg,
        logging=logging_cfg,
        tickets=_load_ticket_config(raw),
        transcripts=transcript_cfg,
        fastapi=fastapi_cfg,
        enabled_extensions=enabled_extensions,
    )
