"""
Error taxonomy for EventManager notifications.
"""

from typing import Optional


class NotificationError(Exception):
    """Notification system error."""
    pass


class ValidationError(NotificationError):
    """A required field is missing or malformed."""

    def __init__(self, message: str, field: Optional[str] = None):
        super().__init__(message)
        self.field = field


class NotFoundError(NotificationError):
    """A referenced record does not exist."""
    pass


class TemplateNotFoundError(NotFoundError):
    pass


class NotificationNotFoundError(NotFoundError):
    pass


class RecipientNotFoundError(NotFoundError):
    """The customer addressed by a notification does not exist."""
    pass


class NoRecipientsError(NotificationError):
    """A broadcast found no customers to deliver to."""
    pass


class TransportError(NotificationError):
    """A channel transport could not deliver a message."""
    pass


class DuplicateTemplateNameError(NotificationError):
    """The composite template name collides with an existing template."""

    def __init__(self, stored_name: str, user_message: str):
        super().__init__(f"Duplicate template name: {stored_name}")
        self.stored_name = stored_name
        self.user_message = user_message
