"""Logging setup and timing helpers for the language-server bridge."""

import logging
import os
import sys
import time
from contextlib import contextmanager
from functools import wraps
from typing import Callable, Generator, Optional, TypeVar

SIMPLE_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s"
DETAILED_FORMAT = (
    "%(asctime)s | %(levelname)-8s | %(name)s:%(funcName)s:%(lineno)d | %(message)s"
)
LOG_LEVEL_ENV = "LOG_LEVEL"
DEFAULT_LOG_LEVEL = "INFO"

# Libraries whose INFO chatter drowns out server traffic
NOISY_LOGGERS = ("httpx", "httpcore", "asyncio")

T = TypeVar("T")


def setup_logging(level: Optional[str] = None) -> None:
    """Send log records to stderr, keeping stdout free for command output.

    ``level`` wins over the LOG_LEVEL environment variable; unknown names
    fall back to INFO. DEBUG switches to a format with function and line.
    """
    level_name = (level or os.environ.get(LOG_LEVEL_ENV, DEFAULT_LOG_LEVEL)).upper()
    log_level = getattr(logging, level_name, logging.INFO)

    logging.basicConfig(
        level=log_level,
        format=DETAILED_FORMAT if log_level == logging.DEBUG else SIMPLE_FORMAT,
        datefmt="%Y-%m-%d %H:%M:%S",
        stream=sys.stderr,
        force=True,
    )
    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def _log_elapsed(logger: logging.Logger, level: int, operation: str, start: float) -> None:
    logger.log(level, "%s completed in %.1fms", operation, (time.perf_counter() - start) * 1000)


@contextmanager
def log_timing(
    logger: logging.Logger, operation: str, level: int = logging.DEBUG
) -> Generator[None, None, None]:
    """Log how long the block took, whether or not it raised."""
    start = time.perf_counter()
    try:
        yield
    finally:
        _log_elapsed(logger, level, operation, start)


def timed(
    operation: Optional[str] = None, level: int = logging.DEBUG
) -> Callable[[Callable[..., T]], Callable[..., T]]:
    """Async-method decorator form of ``log_timing``, logged on the callee's module logger."""

    def decorator(func: Callable[..., T]) -> Callable[..., T]:
        name = operation or func.__name__
        logger = logging.getLogger(func.__module__)

        @wraps(func)
        async def wrapper(*args, **kwargs) -> T:
            start = time.perf_counter()
            try:
                return await func(*args, **kwargs)
            finally:
                _log_elapsed(logger, level, name, start)

        return wrapper

    return decorator
