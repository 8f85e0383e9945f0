"""
Logging utilities for EventManager notifications.
"""

import json
import logging
import logging.handlers
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Optional

import structlog
from structlog.stdlib import LoggerFactory

from ..core.config import LoggingConfig

ROOT_LOGGER = "eventmanager"

_RESERVED_ATTRS = {
    'name', 'msg', 'args', 'levelname', 'levelno', 'pathname',
    'filename', 'module', 'lineno', 'funcName', 'created',
    'msecs', 'relativeCreated', 'thread', 'threadName',
    'processName', 'process', 'getMessage', 'exc_info',
    'exc_text', 'stack_info', 'message', 'asctime', 'taskName',
}


class JsonFormatter(logging.Formatter):
    """One JSON object per record, with ``extra=`` fields under ``data``."""

    def format(self, record: logging.LogRecord) -> str:
        extra_data = {
            key: value for key, value in record.__dict__.items()
            if key not in _RESERVED_ATTRS
        }

        log_entry = {
            'timestamp': datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            'level': record.levelname,
            'logger': record.name,
            'message': record.getMessage(),
            'module': record.module,
            'line': record.lineno,
        }

        if extra_data:
            log_entry['data'] = extra_data

        if record.exc_info:
            log_entry['exception'] = {
                'type': record.exc_info[0].__name__ if record.exc_info[0] else None,
                'message': str(record.exc_info[1]) if record.exc_info[1] else None,
                'traceback': self.formatException(record.exc_info),
            }

        return json.dumps(log_entry, default=str, ensure_ascii=False)


class DispatchLogger:
    """Structured events emitted by the dispatch engine."""

    def __init__(self, logger: Optional[logging.Logger] = None):
        self.logger = logger or logging.getLogger(f"{ROOT_LOGGER}.dispatch")

    def dispatch_started(self, due: int, **extra_data: Any) -> None:
        self.logger.info(
            f"Dispatch pass started: {due} due",
            extra={'event_type': 'dispatch_started', 'due_count': due, **extra_data}
        )

    def notification_sent(self, notification_id: int, channel: str, recipients: int,
                          attempts: Optional[int] = None, **extra_data: Any) -> None:
        self.logger.info(
            f"Notification {notification_id} sent via {channel}",
            extra={
                'event_type': 'notification_sent',
                'notification_id': notification_id,
                'channel': channel,
                'recipient_count': recipients,
                'attempts': attempts,
                **extra_data
            }
        )

    def notification_failed(self, notification_id: int, error: str, attempts: Optional[int] = None,
                            final: bool = False, **extra_data: Any) -> None:
        """Log a failed attempt; ``final`` marks the notification as given up."""
        self.logger.warning(
            f"Notification {notification_id} failed: {error}",
            extra={
                'event_type': 'notification_failed',
                'notification_id': notification_id,
                'error': error,
                'attempts': attempts,
                'final': final,
                **extra_data
            }
        )

    def dispatch_completed(self, processed: int, sent: int, failed: int, skipped: int,
                           duration_seconds: float, **extra_data: Any) -> None:
        self.logger.info(
            f"Dispatch pass completed: {sent} sent, {failed} failed, {skipped} skipped",
            extra={
                'event_type': 'dispatch_completed',
                'processed': processed,
                'sent': sent,
                'failed': failed,
                'skipped': skipped,
                'duration_seconds': round(duration_seconds, 3),
                **extra_data
            }
        )


def setup_logging(config: LoggingConfig) -> tuple[logging.Logger, DispatchLogger]:
    """
    Configure logging for EventManager.

    Args:
        config: Logging configuration

    Returns:
        Tuple of (main_logger, dispatch_logger)
    """
    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            structlog.processors.JSONRenderer()
        ],
        context_class=dict,
        logger_factory=LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    logger = logging.getLogger(ROOT_LOGGER)
    logger.setLevel(getattr(logging, config.level.upper(), logging.INFO))
    logger.handlers.clear()

    if config.format == 'json':
        formatter = JsonFormatter()
    else:
        formatter = logging.Formatter(
            '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
        )

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setFormatter(formatter)
    logger.addHandler(console_handler)

    if config.file:
        file_path = Path(config.file)
        file_path.parent.mkdir(parents=True, exist_ok=True)

        file_handler = logging.handlers.RotatingFileHandler(
            file_path,
            maxBytes=10 * 1024 * 1024,
            backupCount=5,
            encoding='utf-8',
        )
        file_handler.setFormatter(formatter)
        logger.addHandler(file_handler)

    dispatch_logger = DispatchLogger(logging.getLogger(f"{ROOT_LOGGER}.dispatch"))

    logger.debug("Logging system initialized", extra={
        'log_level': config.level,
        'log_format': config.format,
        'log_file': str(config.file) if config.file else None
    })

    return logger, dispatch_logger
