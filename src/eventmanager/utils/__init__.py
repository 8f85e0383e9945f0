"""
Utilities for EventManager notifications.
"""

from .logging import setup_logging, DispatchLogger, JsonFormatter

__all__ = [
    "setup_logging",
    "DispatchLogger",
    "JsonFormatter",
]
