"""
Recipient resolution for EventManager notifications.
"""

import logging
from typing import List

from ..core.exceptions import NoRecipientsError, RecipientNotFoundError
from ..core.models import Customer, Notification
from ..stores.customers import CustomerStore

logger = logging.getLogger(__name__)


class RecipientResolver:
    """Expands a notification into the customers it should reach."""

    def __init__(self, customers: CustomerStore):
        self.customers = customers

    async def resolve(self, notification: Notification) -> List[Customer]:
        """
        Resolve the audience of a notification.

        Args:
            notification: Notification being dispatched

        Returns:
            The addressed customer, or every customer for a broadcast

        Raises:
            RecipientNotFoundError: the addressed customer does not exist
            NoRecipientsError: a broadcast found no customers
        """
        if notification.customer_id is not None:
            customer = await self.customers.get_by_id(notification.customer_id)
            if customer is None:
                raise RecipientNotFoundError(f"Cliente #{notification.customer_id} no encontrado")
            return [customer]

        customers = await self.customers.get_all()
        if not customers:
            raise NoRecipientsError("No hay clientes en el sistema")

        logger.debug(f"Notification {notification.id}: broadcast to {len(customers)} customers")
        return customers
