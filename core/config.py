from __future__ import annotations

import json
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Optional

from core.errors import ConfigError
from core.models import RGB

APP_NAME = "TerraRelay"
VERSION = "1.0.0"

DEFAULT_TIMESTAMP_FORMAT = "%Y-%m-%d %H:%M:%S"


@dataclass(frozen=True)
class GameHostConfig:
    base_url: str = "http://127.0.0.1:7879"
    token: str = ""
    listen_host: str = "127.0.0.1"
    listen_port: int = 7878
    timeout: float = 10.0


@dataclass(frozen=True)
class LogConfig:
    file: str = "logs/relay.log"
    max_bytes: int = 5 * 1024 * 1024
    backup_count: int = 5
    level: str = "INFO"


@dataclass(frozen=True)
class BridgeConfig:
    bot_token: str
    channel_id: int
    owner_id: int = 0
    command_prefix: str = "!"
    broadcast_color: RGB = (255, 215, 0)
    bot_game: str = "Terraria"
    locale: str = ""
    timestamp_format: str = DEFAULT_TIMESTAMP_FORMAT
    log_chat: bool = True
    remote_commands: bool = False
    remote_results: bool = True
    abort_on_error: bool = True
    debug_mode: bool = False
    game_host: GameHostConfig = field(default_factory=GameHostConfig)
    logging: LogConfig = field(default_factory=LogConfig)


class BridgeContext:
    """Holds what used to be process-wide state: the active config, the start
    time used for uptime, and the clock. The config is only ever replaced
    wholesale (see reload)."""

    def __init__(self, config: BridgeConfig, config_path: Optional[str] = None,
                 start_time: Optional[datetime] = None,
                 now: Callable[[], datetime] = datetime.now):
        self.config = config
        self.config_path = config_path
        self.now = now
        self.start_time = start_time or now()

    def reload(self) -> BridgeConfig:
        if not self.config_path:
            raise ConfigError("No configuration file to reload from")
        self.config = load_config(self.config_path)
        return self.config


def _parse_color(value) -> RGB:
    if isinstance(value, str):
        value = [part.strip() for part in value.split(",")]
    try:
        r, g, b = (int(part) for part in value)
    except (TypeError, ValueError) as exc:
        raise ConfigError(f"broadcast_color must be three integers, got {value!r}") from exc
    for part in (r, g, b):
        if not 0 <= part <= 255:
            raise ConfigError(f"broadcast_color component out of range: {part}")
    return r, g, b


def _number(section_raw: dict, section: str, key: str, default, cast):
    value = section_raw.get(key, default)
    try:
        return cast(value)
    except (TypeError, ValueError) as exc:
        raise ConfigError(f"{section}.{key} must be a number, got {value!r}") from exc


def parse_config(raw: dict) -> BridgeConfig:
    discord_raw = raw.get("discord", {})
    relay_raw = raw.get("relay", {})
    host_raw = raw.get("game_host", {})
    log_raw = raw.get("logging", {})

    token = str(discord_raw.get("token", "")).strip()
    if not token:
        raise ConfigError("discord.token is required")
    try:
        channel_id = int(discord_raw.get("channel_id", 0))
        owner_id = int(discord_raw.get("owner_id", 0))
    except (TypeError, ValueError) as exc:
        raise ConfigError(f"Discord ids must be integers: {exc}") from exc
    if channel_id <= 0:
        raise ConfigError("discord.channel_id is required")

    prefix = str(relay_raw.get("command_prefix", "!"))
    if len(prefix) != 1:
        raise ConfigError(f"relay.command_prefix must be a single character, got {prefix!r}")

    game_host = GameHostConfig(
        base_url=str(host_raw.get("base_url", GameHostConfig.base_url)).rstrip("/"),
        token=str(host_raw.get("token", "")),
        listen_host=str(host_raw.get("listen_host", GameHostConfig.listen_host)),
        listen_port=_number(host_raw, "game_host", "listen_port", GameHostConfig.listen_port, int),
        timeout=_number(host_raw, "game_host", "timeout", GameHostConfig.timeout, float),
    )
    log_config = LogConfig(
        file=str(log_raw.get("file", LogConfig.file)),
        max_bytes=_number(log_raw, "logging", "max_bytes", LogConfig.max_bytes, int),
        backup_count=_number(log_raw, "logging", "backup_count", LogConfig.backup_count, int),
        level=str(log_raw.get("level", LogConfig.level)).upper(),
    )

    return BridgeConfig(
        bot_token=token,
        channel_id=channel_id,
        owner_id=owner_id,
        command_prefix=prefix,
        broadcast_color=_parse_color(relay_raw.get("broadcast_color", [255, 215, 0])),
        bot_game=str(discord_raw.get("bot_game", "Terraria")),
        locale=str(relay_raw.get("locale", "")),
        timestamp_format=str(relay_raw.get("timestamp_format", DEFAULT_TIMESTAMP_FORMAT)),
        log_chat=bool(relay_raw.get("log_chat", True)),
        remote_commands=bool(relay_raw.get("remote_commands", False)),
        remote_results=bool(relay_raw.get("remote_results", True)),
        abort_on_error=bool(relay_raw.get("abort_on_error", True)),
        debug_mode=bool(relay_raw.get("debug_mode", False)),
        game_host=game_host,
        logging=log_config,
    )


def load_config(path: str) -> BridgeConfig:
    try:
        with open(path, "r", encoding="utf-8") as handle:
            raw = json.load(handle)
    except (OSError, json.JSONDecodeError) as exc:
        raise ConfigError(f"Unable to read {path}: {exc}") from exc
    return parse_config(raw)
