"""
Ticket purchase confirmations for EventManager notifications.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Optional

from jinja2 import Environment, FileSystemLoader

from ..core.exceptions import NotificationError
from ..core.models import Channel, utcnow
from ..database.manager import DatabaseError
from ..stores.customers import CustomerStore
from ..stores.notifications import NotificationStore
from .delivery import OutcomeStatus, SendResult
from .dispatcher import DispatchEngine
from .push import PushNotifier, PushPermission

logger = logging.getLogger(__name__)

PURCHASE_MODULE = "Boletos"
TEMPLATE_DIR = Path(__file__).parent / "templates"


@dataclass
class PurchaseInfo:
    """A completed ticket purchase."""

    customer_id: int
    ticket_id: int
    quantity: int
    total_amount: float
    event_name: str = "Evento"
    event_date: Optional[datetime] = None
    event_location: str = "Por confirmar"
    ticket_type: str = "General"


class PurchaseNotifier:
    """Emails (and, when allowed, pushes) a confirmation after a ticket purchase."""

    def __init__(
        self,
        customers: CustomerStore,
        notifications: NotificationStore,
        dispatcher: DispatchEngine,
        push: Optional[PushNotifier] = None,
        events_url: str = "/pages/eventos/",
    ):
        self.customers = customers
        self.notifications = notifications
        self.dispatcher = dispatcher
        self.push = push
        self.events_url = events_url
        self.template_env = Environment(
            loader=FileSystemLoader(str(TEMPLATE_DIR)),
            autoescape=True
        )

    def render_confirmation(self, info: PurchaseInfo, customer_name: str) -> str:
        template = self.template_env.get_template("purchase_confirmation.html")
        now = utcnow()
        return template.render(
            customer_name=customer_name,
            event_name=info.event_name,
            event_date=info.event_date.strftime("%d/%m/%Y %H:%M") if info.event_date else "Por confirmar",
            event_location=info.event_location,
            ticket_type=info.ticket_type,
            quantity=info.quantity,
            total_amount=float(info.total_amount),
            purchased_on=now.strftime("%d/%m/%Y"),
            events_url=self.events_url,
            year=now.year,
        )

    async def on_ticket_purchased(self, info: PurchaseInfo) -> SendResult:
        """
        Send the purchase confirmation.

        Never raises: the purchase is already stored, so any failure is
        reported in the returned result.

        Args:
            info: Purchase details

        Returns:
            Send result; ``data["notification_id"]`` is set once recorded
        """
        try:
            customer = await self.customers.get_by_id(info.customer_id)
            if customer is None:
                return SendResult.fail("Cliente no encontrado")

            notification = await self.notifications.create({
                "subject": f"Confirmación de Compra - {info.event_name}",
                "body": self.render_confirmation(info, customer.full_name),
                "channel": Channel.EMAIL,
                "customer_id": customer.id,
                "ticket_id": info.ticket_id,
                "module": PURCHASE_MODULE,
                "scheduled_at": utcnow(),
            })

            outcome = await self.dispatcher.send_now(notification.id)
            if outcome.status != OutcomeStatus.SENT:
                logger.error(f"Purchase confirmation {notification.id} not sent: {outcome.error}")
                return SendResult.fail(outcome.error or "No se pudo enviar la confirmación",
                                       recipient=customer.email, notification_id=notification.id)

            push_result = None
            if self.push and await self.push.get_permission() == PushPermission.GRANTED:
                push_result = await self.push.send(
                    title="¡Compra Confirmada!",
                    body=f"Has comprado {info.quantity} boletos para {info.event_name}",
                    url=self.events_url,
                )

            logger.info(f"Purchase confirmation sent for ticket {info.ticket_id} to customer {customer.id}")
            return SendResult.ok(
                recipient=customer.email,
                notification_id=notification.id,
                push=push_result.to_dict() if push_result else None,
            )

        except (NotificationError, DatabaseError) as e:
            logger.error(f"Error sending purchase confirmation: {e}")
            return SendResult.fail(str(e))
