"""
Logging Setup - Single place for logger creation

Single Responsibility: Attach ChainReactor's file / console handlers to a logger
Console output goes to stderr so it never interleaves with streamed build output on stdout.
"""

import logging
import sys
from pathlib import Path
from logging.handlers import RotatingFileHandler
from typing import Optional, Union


FILE_FORMAT = '%(asctime)s | %(levelname)s | %(name)s | %(message)s'
CONSOLE_FORMAT = '%(levelname)s | %(message)s'


def parse_level(level: Union[int, str]) -> int:
    """
    Accept a logging level as int or name ("debug", "INFO", ...).

    Raises:
        ValueError: For an unknown level name
    """
    if isinstance(level, int):
        return level
    value = logging.getLevelName(str(level).strip().upper())
    if not isinstance(value, int):
        raise ValueError(f"Unknown log level: {level!r}")
    return value


def create_logger(
    name: str,
    log_file: Optional[Path] = None,
    level: Union[int, str] = logging.INFO,
    console: bool = True,
    max_bytes: int = 10 * 1024 * 1024,  # 10 MB
    backup_count: int = 5
) -> logging.Logger:
    """
    Configure `name` with a rotating file handler and/or a stderr console handler.

    Handlers from an earlier call are closed and replaced, so calling this
    repeatedly in one process (tests, several CLI invocations) is safe.

    Args:
        name: Logger name (children such as "chainreactor.service" propagate to it)
        log_file: Rotating log file; None for console-only logging
        level: Level as int or name
        console: Whether to log to stderr

    Returns:
        Configured logger
    """
    level = parse_level(level)
    logger = logging.getLogger(name)
    logger.setLevel(level)

    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()

    if log_file is not None:
        log_file = Path(log_file)
        log_file.parent.mkdir(parents=True, exist_ok=True)
        file_handler = RotatingFileHandler(
            log_file,
            maxBytes=max_bytes,
            backupCount=backup_count,
            encoding='utf-8'
        )
        file_handler.setFormatter(logging.Formatter(FILE_FORMAT, datefmt='%Y-%m-%d %H:%M:%S'))
        logger.addHandler(file_handler)

    if console:
        console_handler = logging.StreamHandler(sys.stderr)
        console_handler.setFormatter(logging.Formatter(CONSOLE_FORMAT))
        logger.addHandler(console_handler)

    if not logger.handlers:
        logger.addHandler(logging.NullHandler())

    return logger
