"""
Database components for EventManager notifications.
"""

from .models import TemplateRecord, NotificationRecord, RecipientRecord, CustomerRecord
from .manager import DatabaseManager, DatabaseError

__all__ = [
    "TemplateRecord",
    "NotificationRecord",
    "RecipientRecord",
    "CustomerRecord",
    "DatabaseManager",
    "DatabaseError",
]
