# Log sink: colored console plus a rotating relay log file
import locale
import logging
import logging.handlers
from pathlib import Path

import discord

from core.config import BridgeConfig

APP_LOGGER = "TerraRelay"

NOISY_LOGGERS = ("discord", "discord.gateway", "discord.http", "aiohttp.access")


def setup_logging(config: BridgeConfig) -> logging.Logger:
    level = logging.DEBUG if config.debug_mode else getattr(logging, config.logging.level, logging.INFO)

    # discord.py's own handler colors the level name when the terminal supports it
    discord.utils.setup_logging(level=level, root=True)
    root = logging.getLogger()

    if config.logging.file:
        log_path = Path(config.logging.file)
        log_path.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.handlers.RotatingFileHandler(
            log_path,
            maxBytes=config.logging.max_bytes,
            backupCount=config.logging.backup_count,
            encoding="utf-8",
        )
        file_handler.setFormatter(logging.Formatter(
            "[%(asctime)s] [%(levelname)s] %(name)s: %(message)s",
            datefmt=config.timestamp_format,
        ))
        root.addHandler(file_handler)

    if not config.debug_mode:
        for name in NOISY_LOGGERS:
            logging.getLogger(name).setLevel(logging.WARNING)

    logger = logging.getLogger(APP_LOGGER)
    if config.locale:
        try:
            locale.setlocale(locale.LC_TIME, config.locale)
        except locale.Error:
            logger.warning(f"Locale {config.locale} is not available, using the system default")
    return logger
