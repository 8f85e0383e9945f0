"""
Persistence-backed stores for EventManager notifications.
"""

from .templates import TemplateStore
from .customers import CustomerStore
from .notifications import NotificationStore, normalize_notification_fields

__all__ = [
    "TemplateStore",
    "CustomerStore",
    "NotificationStore",
    "normalize_notification_fields",
]
