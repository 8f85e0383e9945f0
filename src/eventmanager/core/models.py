"""
Core data models for EventManager notifications.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Optional
from pydantic import BaseModel, Field


def utcnow() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


def ensure_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Treat naive datetimes as UTC and convert aware ones to UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class Channel(str, Enum):
    """Delivery medium for a notification or template."""

    EMAIL = "Email"
    PUSH = "Push"


class NotificationState(str, Enum):
    """Notification lifecycle states."""

    PENDING = "Pendiente"
    SENT = "Enviada"
    FAILED = "Fallida"


class RecipientState(str, Enum):
    """Per-recipient delivery state."""

    PENDING = "Pendiente"
    SENT = "Enviado"
    FAILED = "Fallido"


class TemplateState(str, Enum):
    """Template active flag."""

    ACTIVE = "Activo"
    INACTIVE = "Inactivo"


class Customer(BaseModel):
    """Customer as seen by the notification module."""

    id: int
    first_name: str = ""
    last_name: str = ""
    email: Optional[str] = None
    phone: Optional[str] = None

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()


class Template(BaseModel):
    """Reusable message template, enriched with its split name."""

    id: int
    stored_name: str = Field(..., description="Persisted composite name 'base::module'")
    name: str = Field(..., description="Base name")
    module: str = Field(..., description="Module tag")
    channel: Optional[Channel] = None
    subject: Optional[str] = None
    body: Optional[str] = None
    state: TemplateState = TemplateState.ACTIVE
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    placeholder: bool = Field(False, description="True for the stand-in used for deleted templates")

    @property
    def is_active(self) -> bool:
        return self.state == TemplateState.ACTIVE


class Recipient(BaseModel):
    """Destinatario: one resolved audience member of a notification."""

    id: Optional[int] = None
    notification_id: int
    customer_id: int
    email: Optional[str] = None
    phone: Optional[str] = None
    state: RecipientState = RecipientState.PENDING
    sent_at: Optional[datetime] = None
    read_at: Optional[datetime] = None


class Notification(BaseModel):
    """Scheduled notification."""

    id: int
    subject: str = ""
    body: str = ""
    channel: Channel = Channel.PUSH
    state: NotificationState = NotificationState.PENDING
    scheduled_at: datetime
    sent_at: Optional[datetime] = None
    attempts: int = 0
    template_id: Optional[int] = None
    customer_id: Optional[int] = None
    module: Optional[str] = None
    ticket_id: Optional[int] = None
    invoice_id: Optional[int] = None
    error_message: Optional[str] = None
    created_by: Optional[str] = None
    created_at: Optional[datetime] = None
    recipient: Optional[Recipient] = Field(
        None, description="Delivery record when reached through a Destinatario"
    )

    @property
    def is_broadcast(self) -> bool:
        return self.customer_id is None


class NotificationCreate(BaseModel):
    """Canonical shape accepted by the notification store."""

    subject: str = ""
    body: str = ""
    channel: Channel = Channel.PUSH
    state: NotificationState = NotificationState.PENDING
    scheduled_at: datetime = Field(default_factory=utcnow)
    sent_at: Optional[datetime] = None
    attempts: int = 0
    template_id: Optional[int] = None
    customer_id: Optional[int] = None
    module: Optional[str] = None
    ticket_id: Optional[int] = None
    invoice_id: Optional[int] = None
    created_by: Optional[str] = None
