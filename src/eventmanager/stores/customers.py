"""
Customer lookups for EventManager notifications.
"""

import logging
from typing import List, Optional

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError

from ..core.models import Customer
from ..database.manager import DatabaseError, DatabaseManager
from ..database.models import CustomerRecord

logger = logging.getLogger(__name__)


def _to_customer(record: CustomerRecord) -> Customer:
    return Customer(
        id=record.id,
        first_name=record.first_name or "",
        last_name=record.last_name or "",
        email=record.email,
        phone=record.phone,
    )


class CustomerStore:
    """Read access to the clientes table, plus create for seeding."""

    def __init__(self, db: DatabaseManager):
        self.db = db

    async def get_by_id(self, customer_id: int) -> Optional[Customer]:
        try:
            async with await self.db.get_session() as session:
                record = await session.get(CustomerRecord, customer_id)
        except SQLAlchemyError as e:
            logger.error(f"Failed to get customer {customer_id}: {e}")
            raise DatabaseError(f"Failed to get customer: {e}") from e
        return _to_customer(record) if record else None

    async def get_all(self) -> List[Customer]:
        try:
            async with await self.db.get_session() as session:
                result = await session.execute(select(CustomerRecord).order_by(CustomerRecord.id))
                return [_to_customer(r) for r in result.scalars().all()]
        except SQLAlchemyError as e:
            logger.error(f"Failed to list customers: {e}")
            raise DatabaseError(f"Failed to list customers: {e}") from e

    async def create(self, first_name: str, last_name: str = "", email: Optional[str] = None,
                     phone: Optional[str] = None) -> Customer:
        record = CustomerRecord(first_name=first_name, last_name=last_name, email=email, phone=phone)
        try:
            async with await self.db.get_session() as session:
                session.add(record)
                await session.commit()
                await session.refresh(record)
        except SQLAlchemyError as e:
            logger.error(f"Failed to create customer: {e}")
            raise DatabaseError(f"Failed to create customer: {e}") from e
        return _to_customer(record)
