"""
Core package.

Transport-agnostic building blocks shared by the language-server bridge:
exceptions, per-session event channels, constants and logging setup.
"""

from .events import DiagnosticsEvent, Event, EventChannel
from .exceptions import (
    CoreError,
    LSPConnectionError,
    LSPError,
    LSPInitializationError,
    LSPRequestError,
    LSPTimeoutError,
)
from .logging_config import log_timing, setup_logging, timed

__all__ = [
    # Events
    "Event",
    "DiagnosticsEvent",
    "EventChannel",
    # Exceptions
    "CoreError",
    "LSPError",
    "LSPConnectionError",
    "LSPTimeoutError",
    "LSPRequestError",
    "LSPInitializationError",
    # Logging
    "setup_logging",
    "log_timing",
    "timed",
]
