"""
Database models for EventManager notifications.
"""

from datetime import datetime, timezone
from sqlalchemy import (
    Column, Integer, String, Text, DateTime, Index, ForeignKey
)
from sqlalchemy.orm import declarative_base

Base = declarative_base()


def _now() -> datetime:
    return datetime.now(timezone.utc)


class TemplateRecord(Base):
    """Database model for message templates (plantillas)."""

    __tablename__ = "plantillas"

    id = Column(Integer, primary_key=True, autoincrement=True)

    # Composite 'base::module' name
    stored_name = Column(String, nullable=False, unique=True)
    channel = Column(String, index=True)
    subject = Column(String)
    body = Column(Text)
    state = Column(String, nullable=False, default="Activo", index=True)

    created_at = Column(DateTime(timezone=True), nullable=False, default=_now, index=True)
    updated_at = Column(DateTime(timezone=True), default=_now, onupdate=_now)


class CustomerRecord(Base):
    """Database model for customers (clientes), owned by the sales module."""

    __tablename__ = "clientes"

    id = Column(Integer, primary_key=True, autoincrement=True)
    first_name = Column(String, nullable=False, default="")
    last_name = Column(String, nullable=False, default="")
    email = Column(String, index=True)
    phone = Column(String)


class NotificationRecord(Base):
    """Database model for scheduled notifications (notificaciones)."""

    __tablename__ = "notificaciones"

    id = Column(Integer, primary_key=True, autoincrement=True)

    # Content
    subject = Column(String, nullable=False, default="")
    body = Column(Text, nullable=False, default="")
    channel = Column(String, nullable=False, default="Push", index=True)

    # Lifecycle
    state = Column(String, nullable=False, default="Pendiente", index=True)
    scheduled_at = Column(DateTime(timezone=True), nullable=False, default=_now, index=True)
    sent_at = Column(DateTime(timezone=True))
    attempts = Column(Integer, nullable=False, default=0)
    error_message = Column(Text)

    # Plain references, not enforced
    template_id = Column(Integer, index=True)
    customer_id = Column(Integer, index=True)
    ticket_id = Column(Integer)
    invoice_id = Column(Integer)
    module = Column(String)

    created_by = Column(String)
    created_at = Column(DateTime(timezone=True), nullable=False, default=_now)

    # Dispatch lease
    lease_token = Column(String)
    lease_expires_at = Column(DateTime(timezone=True))

    __table_args__ = (
        Index('idx_notificaciones_due', 'state', 'scheduled_at'),
    )


class RecipientRecord(Base):
    """Database model for resolved recipients (destinatarios)."""

    __tablename__ = "destinatarios"

    id = Column(Integer, primary_key=True, autoincrement=True)
    notification_id = Column(Integer, ForeignKey('notificaciones.id', ondelete="CASCADE"), nullable=False, index=True)
    customer_id = Column(Integer, nullable=False, index=True)

    # Contact snapshot taken at resolution time
    email = Column(String)
    phone = Column(String)

    state = Column(String, nullable=False, default="Pendiente")
    sent_at = Column(DateTime(timezone=True))
    read_at = Column(DateTime(timezone=True))

    __table_args__ = (
        Index('idx_destinatarios_customer_notification', 'customer_id', 'notification_id'),
    )
