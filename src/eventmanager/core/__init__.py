"""
Core application components for EventManager notifications.
"""

from .config import AppConfig, DatabaseConfig, DispatchConfig, EmailConfig, PushConfig, TemplatesConfig, SessionConfig, LoggingConfig
from .models import Channel, NotificationState, RecipientState, TemplateState, Customer, Template, Recipient, Notification, NotificationCreate
from .session import SessionContext, MemorySessionStore, FileSessionStore

__all__ = [
    "AppConfig",
    "DatabaseConfig",
    "DispatchConfig",
    "EmailConfig",
    "PushConfig",
    "TemplatesConfig",
    "SessionConfig",
    "LoggingConfig",
    "Channel",
    "NotificationState",
    "RecipientState",
    "TemplateState",
    "Customer",
    "Template",
    "Recipient",
    "Notification",
    "NotificationCreate",
    "SessionContext",
    "MemorySessionStore",
    "FileSessionStore",
]
