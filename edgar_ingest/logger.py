"""Logging for the ingest pipeline: console plus a rotating file under log_dir."""

import logging
import os
from logging.handlers import RotatingFileHandler
from typing import Union

LOGGER_NAME = "edgar_ingest"
LOG_FILE = "ingest.log"

# httpx logs every request at INFO; the downloader already logs failures
NOISY_LOGGERS = ("httpx", "httpcore")


def _level(level: Union[int, str]) -> int:
    if isinstance(level, int):
        return level
    value = logging.getLevelName(level.strip().upper())
    if not isinstance(value, int):
        raise ValueError(f"Unknown log level: {level!r}")
    return value


def setup_logger(log_dir: str = "logs", level: Union[int, str] = logging.INFO,
                 console: bool = True) -> logging.Logger:
    """Configure the `edgar_ingest` logger once; later calls only adjust the level."""
    level = _level(level)
    logger = logging.getLogger(LOGGER_NAME)
    logger.setLevel(level)
    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(max(level, logging.WARNING))

    if logger.handlers:
        for handler in logger.handlers:
            handler.setLevel(level)
        return logger

    fmt = logging.Formatter(
        "%(asctime)s [%(levelname)s] %(name)s (%(threadName)s): %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )
    handlers = []
    if console:
        handlers.append(logging.StreamHandler())

    os.makedirs(log_dir, exist_ok=True)
    # 10MB per file, keep 5
    handlers.append(RotatingFileHandler(os.path.join(log_dir, LOG_FILE),
                                        maxBytes=10 * 1024 * 1024, backupCount=5,
                                        encoding="utf-8"))
    for handler in handlers:
        handler.setLevel(level)
        handler.setFormatter(fmt)
        logger.addHandler(handler)

    return logger
