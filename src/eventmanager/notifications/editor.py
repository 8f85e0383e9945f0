"""
Operator editing workflows for EventManager notifications.

TemplateEditor keeps the name and module a template was loaded with, so a
save only rewrites the stored composite name when the operator actually
renamed or re-filed the template. NotificationComposer schedules
notifications from a chosen template.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, Optional, Tuple

from ..core.exceptions import (
    DuplicateTemplateNameError,
    NotificationNotFoundError,
    TemplateNotFoundError,
    ValidationError,
)
from ..core.models import Notification, NotificationState, Template, ensure_utc
from ..core.session import SessionContext
from ..stores.notifications import NotificationStore
from ..stores.templates import TemplateStore
from .naming import TemplateName

logger = logging.getLogger(__name__)


@dataclass
class EditResult:
    """Outcome of an editor save, with a message fit for the operator."""

    success: bool
    template: Optional[Template] = None
    message: Optional[str] = None


class TemplateEditor:
    """Create-or-edit form state for a single template."""

    def __init__(self, templates: TemplateStore):
        self.templates = templates
        self.template_id: Optional[int] = None
        self.original: Optional[TemplateName] = None

    @property
    def is_edit_mode(self) -> bool:
        return self.template_id is not None

    async def load(self, template_id: int) -> Template:
        """Load a template for editing and remember its name and module."""
        template = await self.templates.get_by_id(template_id)
        if template is None:
            raise TemplateNotFoundError(f"Template {template_id} not found")

        self.template_id = template.id
        self.original = TemplateName(template.name, template.module)
        return template

    async def save(self, fields: Dict[str, Any]) -> EditResult:
        """
        Create a new template or update the loaded one.

        Args:
            fields: name, module, channel, subject, body, state

        Returns:
            EditResult; duplicate names and validation problems are reported
            through ``message`` instead of raising
        """
        try:
            if not self.is_edit_mode:
                template = await self.templates.create(fields)
                self.template_id = template.id
            else:
                template = await self.templates.update(self.template_id, fields, previous=self.original)
            self.original = TemplateName(template.name, template.module)
            return EditResult(True, template=template)

        except DuplicateTemplateNameError as e:
            return EditResult(False, message=e.user_message)
        except ValidationError as e:
            return EditResult(False, message=str(e))


class NotificationComposer:
    """Schedules notifications whose content comes from a template."""

    def __init__(self, notifications: NotificationStore, templates: TemplateStore,
                 session: Optional[SessionContext] = None):
        self.notifications = notifications
        self.templates = templates
        self.session = session

    async def load(self, notification_id: int) -> Tuple[Notification, Optional[Template]]:
        """
        Load a notification and the template it was created from.

        A deleted template is replaced by a placeholder.
        """
        notification = await self.notifications.get_by_id(notification_id)
        if notification is None:
            raise NotificationNotFoundError(f"Notification {notification_id} not found")
        template = await self.templates.resolve(notification.template_id)
        return notification, template

    async def schedule(
        self,
        template_id: int,
        subject: str,
        scheduled_at: datetime,
        customer_id: Optional[int] = None,
        notification_id: Optional[int] = None,
    ) -> Notification:
        """
        Create (or, with ``notification_id``, update) a scheduled notification.

        The body and channel are copied from the template. Without a
        customer the notification is a broadcast.

        Raises:
            ValidationError: subject or date missing, or the notification was already sent
            TemplateNotFoundError: the template does not exist
        """
        if not subject or not subject.strip():
            raise ValidationError("Asunto es requerido", field="subject")
        if scheduled_at is None:
            raise ValidationError("Selecciona la fecha y hora de envío", field="scheduled_at")

        template = await self.templates.get_by_id(template_id)
        if template is None:
            raise TemplateNotFoundError(f"Template {template_id} not found")

        fields: Dict[str, Any] = {
            "subject": subject.strip(),
            "body": template.body or "",
            "channel": template.channel or "Push",
            "template_id": template.id,
            "scheduled_at": ensure_utc(scheduled_at),
            "state": NotificationState.PENDING,
        }

        if notification_id is not None:
            return await self.notifications.update(notification_id, fields)

        fields["customer_id"] = customer_id
        fields["module"] = template.module
        if self.session and self.session.username:
            fields["created_by"] = self.session.username

        notification = await self.notifications.create(fields)
        kind = f"customer {customer_id}" if customer_id is not None else "broadcast"
        logger.info(f"Scheduled notification {notification.id} ({kind}) from template {template.id}")
        return notification
