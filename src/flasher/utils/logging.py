"""Logger setup for the flasher: rotating file plus console."""

import logging
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Iterable, Union

# Chatty libraries that log every request or flash block at INFO
NOISY_LOGGERS = ("httpx", "httpcore", "esptool")

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
DATE_FORMAT = "%Y-%m-%dT%H:%M:%S%z"


def resolve_level(level: Union[int, str]) -> int:
    """Turn a level name such as "debug" into its numeric value.

    Unknown names fall back to INFO.
    """
    if isinstance(level, int):
        return level
    value = logging.getLevelName(level.strip().upper())
    return value if isinstance(value, int) else logging.INFO


def setup_logger(
    name: str = "flasher",
    log_file: str = "./logs/flasher.log",
    max_bytes: int = 10 * 1024 * 1024,  # 10MB
    backup_count: int = 3,
    level: Union[int, str] = logging.INFO,
    quiet: Iterable[str] = NOISY_LOGGERS,
) -> logging.Logger:
    """Configure the flasher logger tree.

    Every ``flasher.*`` module logger propagates into the handlers set up
    here.

    Args:
        name: Root logger name of the tree
        log_file: Path to log file (parent directories are created)
        max_bytes: Max size before rotation
        backup_count: Number of rotated files to keep
        level: Level number or name
        quiet: Third-party loggers raised to WARNING

    Returns:
        Configured logger instance
    """
    level = resolve_level(level)
    Path(log_file).parent.mkdir(parents=True, exist_ok=True)

    logger = logging.getLogger(name)
    logger.setLevel(level)

    for noisy in quiet:
        logging.getLogger(noisy).setLevel(max(level, logging.WARNING))

    # Called again on reload: keep the existing handlers
    if logger.handlers:
        return logger

    formatter = logging.Formatter(fmt=LOG_FORMAT, datefmt=DATE_FORMAT)

    file_handler = RotatingFileHandler(
        log_file, maxBytes=max_bytes, backupCount=backup_count, encoding="utf-8"
    )
    console_handler = logging.StreamHandler()
    for handler in (file_handler, console_handler):
        handler.setLevel(level)
        handler.setFormatter(formatter)
        logger.addHandler(handler)

    return logger
