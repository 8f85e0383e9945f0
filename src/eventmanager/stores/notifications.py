"""
Notification store for EventManager notifications.

Persists notificaciones and their destinatarios. Mutations that the dispatch
engine relies on (attempt counting, leases, outcome recording) are single
UPDATE statements so concurrent passes cannot lose updates.
"""

import logging
from datetime import datetime, timedelta
from typing import Any, Dict, Iterable, List, Optional, Sequence

from sqlalchemy import case, delete, func, or_, select, update
from sqlalchemy.exc import SQLAlchemyError
from pydantic import ValidationError as PydanticValidationError

from ..core.exceptions import NotificationNotFoundError, ValidationError
from ..core.models import (
    Channel,
    Customer,
    Notification,
    NotificationCreate,
    NotificationState,
    Recipient,
    RecipientState,
    ensure_utc,
    utcnow,
)
from ..database.manager import DatabaseError, DatabaseManager
from ..database.models import NotificationRecord, RecipientRecord

logger = logging.getLogger(__name__)

# Canonical field -> accepted spellings, first match wins
FIELD_ALIASES: Dict[str, Sequence[str]] = {
    "subject": ("subject", "not_asunto", "Not_Asunto", "asunto"),
    "body": ("body", "not_mensaje", "Not_Mensaje", "mensaje"),
    "channel": ("channel", "not_tipo", "Not_TipoEnvio", "Not_Tipo", "tipo"),
    "template_id": ("template_id", "id_plantillas_fk", "id_Plantillas_Fk"),
    "scheduled_at": ("scheduled_at", "not_fechaprogramada", "Not_FechaProgramada", "fechaprogramada"),
    "state": ("state", "not_estado", "Not_Estado", "estado"),
    "attempts": ("attempts", "not_intentosenvio", "Not_IntentosEnvio", "Not_NumIntentos", "intentosenvio"),
    "module": ("module", "not_modulo", "Not_Modulo"),
    "sent_at": ("sent_at", "not_fechaenvio", "Not_FechaEnvio", "fechaenvio"),
    "customer_id": ("customer_id", "id_cliente_fk", "id_Cliente_Fk"),
    "ticket_id": ("ticket_id", "id_boleto_fk", "id_Boleto_Fk"),
    "invoice_id": ("invoice_id", "id_factura_fk", "id_Factura_Fk"),
    "created_by": ("created_by",),
}

UPDATABLE_FIELDS = {"state", "subject", "body", "channel", "scheduled_at", "sent_at", "attempts", "template_id"}

ORDERABLE_COLUMNS = {
    "scheduled_at": NotificationRecord.scheduled_at,
    "created_at": NotificationRecord.created_at,
    "sent_at": NotificationRecord.sent_at,
    "id": NotificationRecord.id,
    "state": NotificationRecord.state,
    "attempts": NotificationRecord.attempts,
}


def _pick(fields: Dict[str, Any], aliases: Sequence[str]) -> Any:
    for alias in aliases:
        if fields.get(alias) is not None:
            return fields[alias]
    return None


def canonicalize_fields(fields: Dict[str, Any]) -> Dict[str, Any]:
    """Map any accepted spelling onto canonical field names, dropping unknowns."""
    canonical = {}
    for name, aliases in FIELD_ALIASES.items():
        for alias in aliases:
            if alias in fields:
                canonical[name] = fields[alias]
                break
    return canonical


def _coerce_enum(enum_cls, value: Any):
    if value is None or isinstance(value, enum_cls):
        return value
    lowered = str(value).strip().lower()
    for member in enum_cls:
        if member.value.lower() == lowered or member.name.lower() == lowered:
            return member
    raise ValidationError(f"Invalid {enum_cls.__name__} value: {value!r}")


def normalize_notification_fields(fields: Dict[str, Any]) -> NotificationCreate:
    """
    Build the canonical creation payload from any historical field naming.

    Args:
        fields: Raw field mapping (legacy Not_*/not_* names or snake_case)

    Returns:
        NotificationCreate with defaults applied

    Raises:
        ValidationError: a value cannot be interpreted
    """
    payload = {}
    for name, aliases in FIELD_ALIASES.items():
        value = _pick(fields, aliases)
        if value is not None:
            payload[name] = value

    if "channel" in payload:
        payload["channel"] = _coerce_enum(Channel, payload["channel"])
    if "state" in payload:
        payload["state"] = _coerce_enum(NotificationState, payload["state"])

    try:
        created = NotificationCreate(**payload)
    except PydanticValidationError as e:
        raise ValidationError(f"Invalid notification fields: {e}") from e

    created.scheduled_at = ensure_utc(created.scheduled_at)
    created.sent_at = ensure_utc(created.sent_at)
    return created


def _to_recipient(record: RecipientRecord) -> Recipient:
    return Recipient(
        id=record.id,
        notification_id=record.notification_id,
        customer_id=record.customer_id,
        email=record.email,
        phone=record.phone,
        state=RecipientState(record.state),
        sent_at=ensure_utc(record.sent_at),
        read_at=ensure_utc(record.read_at),
    )


def _to_notification(record: NotificationRecord, recipient: Optional[Recipient] = None) -> Notification:
    return Notification(
        id=record.id,
        subject=record.subject or "",
        body=record.body or "",
        channel=Channel(record.channel),
        state=NotificationState(record.state),
        scheduled_at=ensure_utc(record.scheduled_at),
        sent_at=ensure_utc(record.sent_at),
        attempts=record.attempts or 0,
        template_id=record.template_id,
        customer_id=record.customer_id,
        module=record.module,
        ticket_id=record.ticket_id,
        invoice_id=record.invoice_id,
        error_message=record.error_message,
        created_by=record.created_by,
        created_at=ensure_utc(record.created_at),
        recipient=recipient,
    )


class NotificationStore:
    """CRUD, scheduling and lease operations over notificaciones."""

    def __init__(self, db: DatabaseManager):
        self.db = db

    async def create(self, fields: Dict[str, Any]) -> Notification:
        """
        Create a notification from canonical or legacy field names.

        Args:
            fields: Notification fields

        Returns:
            The stored notification
        """
        data = normalize_notification_fields(fields)
        record = NotificationRecord(
            subject=data.subject,
            body=data.body,
            channel=data.channel.value,
            state=data.state.value,
            scheduled_at=data.scheduled_at,
            sent_at=data.sent_at,
            attempts=data.attempts,
            template_id=data.template_id,
            customer_id=data.customer_id,
            module=data.module,
            ticket_id=data.ticket_id,
            invoice_id=data.invoice_id,
            created_by=data.created_by,
            created_at=utcnow(),
        )

        try:
            async with await self.db.get_session() as session:
                session.add(record)
                await session.commit()
                await session.refresh(record)
        except SQLAlchemyError as e:
            logger.error(f"Failed to create notification: {e}")
            raise DatabaseError(f"Failed to create notification: {e}") from e

        logger.info(f"Created notification {record.id} ({data.channel.value}, scheduled {data.scheduled_at.isoformat()})")
        return _to_notification(record)

    async def _query(self, stmt) -> List[Notification]:
        try:
            async with await self.db.get_session() as session:
                result = await session.execute(stmt)
                return [_to_notification(r) for r in result.scalars().all()]
        except SQLAlchemyError as e:
            logger.error(f"Failed to query notifications: {e}")
            raise DatabaseError(f"Failed to query notifications: {e}") from e

    async def get_all(self, order_by: str = "scheduled_at", ascending: bool = False,
                      limit: Optional[int] = None) -> List[Notification]:
        """
        List notifications.

        Args:
            order_by: Column to sort on
            ascending: Sort direction
            limit: Maximum rows to return

        Returns:
            List of notifications
        """
        column = ORDERABLE_COLUMNS.get(order_by)
        if column is None:
            raise ValidationError(f"Cannot order notifications by {order_by!r}", field="order_by")

        stmt = select(NotificationRecord).order_by(
            column.asc() if ascending else column.desc(),
            NotificationRecord.id.asc() if ascending else NotificationRecord.id.desc(),
        )
        if isinstance(limit, int):
            stmt = stmt.limit(limit)
        return await self._query(stmt)

    async def get_by_id(self, notification_id: int) -> Optional[Notification]:
        try:
            async with await self.db.get_session() as session:
                record = await session.get(NotificationRecord, notification_id)
        except SQLAlchemyError as e:
            logger.error(f"Failed to get notification {notification_id}: {e}")
            raise DatabaseError(f"Failed to get notification: {e}") from e
        return _to_notification(record) if record else None

    async def _require(self, notification_id: int) -> Notification:
        notification = await self.get_by_id(notification_id)
        if notification is None:
            raise NotificationNotFoundError(f"Notification {notification_id} not found")
        return notification

    async def get_by_state(self, state: Any) -> List[Notification]:
        state = _coerce_enum(NotificationState, state)
        return await self._query(
            select(NotificationRecord)
            .where(NotificationRecord.state == state.value)
            .order_by(NotificationRecord.scheduled_at.desc(), NotificationRecord.id.desc())
        )

    async def get_by_channel(self, channel: Any) -> List[Notification]:
        channel = _coerce_enum(Channel, channel)
        return await self._query(
            select(NotificationRecord)
            .where(NotificationRecord.channel == channel.value)
            .order_by(NotificationRecord.scheduled_at.desc(), NotificationRecord.id.desc())
        )

    async def get_by_customer(self, customer_id: int) -> List[Notification]:
        """
        Notifications addressed to a customer directly or through a destinatario.

        Each id appears once. When both paths reach the same notification the
        direct row's fields are used and the delivery record is kept.
        """
        try:
            async with await self.db.get_session() as session:
                linked = await session.execute(
                    select(NotificationRecord, RecipientRecord)
                    .join(RecipientRecord, RecipientRecord.notification_id == NotificationRecord.id)
                    .where(RecipientRecord.customer_id == customer_id)
                )
                linked_rows = linked.all()
                direct = await session.execute(
                    select(NotificationRecord).where(NotificationRecord.customer_id == customer_id)
                )
                direct_rows = direct.scalars().all()
        except SQLAlchemyError as e:
            logger.error(f"Failed to get notifications for customer {customer_id}: {e}")
            raise DatabaseError(f"Failed to get customer notifications: {e}") from e

        merged: Dict[int, Notification] = {}
        recipients: Dict[int, Recipient] = {}
        for notification_record, recipient_record in linked_rows:
            if notification_record.id not in merged:
                recipient = _to_recipient(recipient_record)
                recipients[notification_record.id] = recipient
                merged[notification_record.id] = _to_notification(notification_record, recipient)

        for record in direct_rows:
            merged[record.id] = _to_notification(record, recipients.get(record.id))

        return sorted(merged.values(), key=lambda n: (n.scheduled_at, n.id), reverse=True)

    async def update(self, notification_id: int, fields: Dict[str, Any]) -> Notification:
        """
        Update whitelisted columns. Unknown fields are ignored.

        Raises:
            NotificationNotFoundError: no such notification
            ValidationError: attempts would decrease, the notification was already
                sent, sent_at is already set, or a value is invalid
        """
        canonical = canonicalize_fields(fields)
        ignored = set(fields) - {a for name in canonical for a in FIELD_ALIASES[name]}
        if ignored:
            logger.debug(f"Ignoring non-updatable notification fields: {sorted(ignored)}")
        values = {k: v for k, v in canonical.items() if k in UPDATABLE_FIELDS}

        try:
            async with await self.db.get_session() as session:
                record = await session.get(NotificationRecord, notification_id)
                if record is None:
                    raise NotificationNotFoundError(f"Notification {notification_id} not found")

                if "attempts" in values:
                    attempts = int(values["attempts"])
                    if attempts < (record.attempts or 0):
                        raise ValidationError("Attempt count cannot decrease", field="attempts")
                    record.attempts = attempts
                if values.get("sent_at") is not None:
                    if record.sent_at is not None:
                        raise ValidationError("sent_at is set only once", field="sent_at")
                    record.sent_at = normalize_notification_fields({"sent_at": values["sent_at"]}).sent_at
                if "state" in values:
                    state = _coerce_enum(NotificationState, values["state"])
                    # Enviada is terminal
                    if record.state == NotificationState.SENT.value and state != NotificationState.SENT:
                        raise ValidationError(
                            f"Notification {notification_id} was already sent", field="state"
                        )
                    record.state = state.value
                    if state == NotificationState.SENT and record.sent_at is None:
                        record.sent_at = utcnow()
                if "channel" in values:
                    record.channel = _coerce_enum(Channel, values["channel"]).value
                if values.get("scheduled_at") is not None:
                    record.scheduled_at = normalize_notification_fields(
                        {"scheduled_at": values["scheduled_at"]}
                    ).scheduled_at
                for name in ("subject", "body", "template_id"):
                    if name in values:
                        setattr(record, name, values[name])

                await session.commit()
                await session.refresh(record)
        except SQLAlchemyError as e:
            logger.error(f"Failed to update notification {notification_id}: {e}")
            raise DatabaseError(f"Failed to update notification: {e}") from e

        return _to_notification(record)

    async def update_state(self, notification_id: int, state: Any) -> Notification:
        state = _coerce_enum(NotificationState, state)
        if state == NotificationState.SENT:
            return await self.mark_sent(notification_id)
        return await self.update(notification_id, {"state": state})

    async def mark_sent(self, notification_id: int) -> Notification:
        """Mark as Enviada; sent_at is stamped only the first time."""
        await self._execute_update(
            update(NotificationRecord)
            .where(NotificationRecord.id == notification_id)
            .values(
                state=NotificationState.SENT.value,
                sent_at=func.coalesce(NotificationRecord.sent_at, utcnow()),
            ),
            notification_id,
        )
        return await self._require(notification_id)

    async def reschedule(self, notification_id: int, when: Optional[datetime] = None) -> Notification:
        """
        Put a notification back in the queue.

        Raises:
            ValidationError: the notification was already sent
        """
        notification = await self._require(notification_id)
        if notification.state == NotificationState.SENT:
            raise ValidationError(f"Notification {notification_id} was already sent", field="state")

        await self._execute_update(
            update(NotificationRecord)
            .where(NotificationRecord.id == notification_id)
            .values(
                state=NotificationState.PENDING.value,
                scheduled_at=ensure_utc(when) or utcnow(),
                error_message=None,
            ),
            notification_id,
        )
        return await self._require(notification_id)

    async def increment_attempts(self, notification_id: int, expected: Optional[int] = None) -> Optional[int]:
        """
        Atomically add one attempt.

        Args:
            notification_id: Notification ID
            expected: Only increment if the current count equals this value

        Returns:
            The new attempt count, or None when the compare-and-swap lost
        """
        stmt = (
            update(NotificationRecord)
            .where(NotificationRecord.id == notification_id)
            .values(attempts=NotificationRecord.attempts + 1)
        )
        if expected is not None:
            stmt = stmt.where(NotificationRecord.attempts == expected)

        rowcount = await self._execute_update(stmt, notification_id, require_row=False)
        if rowcount == 0:
            if expected is None:
                raise NotificationNotFoundError(f"Notification {notification_id} not found")
            return None
        return (await self._require(notification_id)).attempts

    async def _execute_update(self, stmt, notification_id: int, require_row: bool = True) -> int:
        try:
            async with await self.db.get_session() as session:
                result = await session.execute(stmt, execution_options={"synchronize_session": False})
                await session.commit()
        except SQLAlchemyError as e:
            logger.error(f"Failed to update notification {notification_id}: {e}")
            raise DatabaseError(f"Failed to update notification: {e}") from e
        if require_row and result.rowcount == 0:
            raise NotificationNotFoundError(f"Notification {notification_id} not found")
        return result.rowcount

    async def delete(self, notification_id: int) -> bool:
        """Delete a notification and its destinatarios."""
        try:
            async with await self.db.get_session() as session:
                await session.execute(
                    delete(RecipientRecord).where(RecipientRecord.notification_id == notification_id)
                )
                result = await session.execute(
                    delete(NotificationRecord).where(NotificationRecord.id == notification_id)
                )
                await session.commit()
        except SQLAlchemyError as e:
            logger.error(f"Failed to delete notification {notification_id}: {e}")
            raise DatabaseError(f"Failed to delete notification: {e}") from e
        return result.rowcount > 0

    async def delete_older_than(self, cutoff: datetime) -> List[int]:
        """Delete notifications scheduled before ``cutoff``; returns their ids."""
        try:
            async with await self.db.get_session() as session:
                result = await session.execute(
                    select(NotificationRecord.id).where(NotificationRecord.scheduled_at < ensure_utc(cutoff))
                )
                ids = list(result.scalars().all())
        except SQLAlchemyError as e:
            logger.error(f"Failed to select old notifications: {e}")
            raise DatabaseError(f"Failed to select old notifications: {e}") from e

        deleted = [i for i in ids if await self.delete(i)]
        logger.info(f"Deleted {len(deleted)} notifications scheduled before {cutoff.isoformat()}")
        return deleted

    async def get_due(self, now: datetime, max_attempts: int, limit: Optional[int] = None) -> List[Notification]:
        """Pendiente notifications due at ``now`` with attempts left, oldest first."""
        stmt = (
            select(NotificationRecord)
            .where(
                NotificationRecord.state == NotificationState.PENDING.value,
                NotificationRecord.scheduled_at <= ensure_utc(now),
                NotificationRecord.attempts < max_attempts,
            )
            .order_by(NotificationRecord.scheduled_at.asc(), NotificationRecord.id.asc())
        )
        if limit:
            stmt = stmt.limit(limit)
        return await self._query(stmt)

    async def claim(self, notification_id: int, token: str, ttl_seconds: int,
                    now: Optional[datetime] = None, max_attempts: Optional[int] = None,
                    expected_attempts: Optional[int] = None, due_only: bool = False) -> bool:
        """
        Take the dispatch lease on a Pendiente notification.

        Args:
            notification_id: Notification ID
            token: Lease owner token
            ttl_seconds: Lease duration
            now: Reference time (defaults to the current UTC time)
            max_attempts: Only claim while attempts are below this value
            expected_attempts: Only claim if the attempt count is unchanged
            due_only: Only claim if scheduled at or before ``now``

        Returns:
            True if this caller now holds the lease
        """
        now = ensure_utc(now) or utcnow()
        criteria = [
            NotificationRecord.id == notification_id,
            NotificationRecord.state == NotificationState.PENDING.value,
            or_(
                NotificationRecord.lease_token.is_(None),
                NotificationRecord.lease_expires_at < now,
            ),
        ]
        if max_attempts is not None:
            criteria.append(NotificationRecord.attempts < max_attempts)
        if expected_attempts is not None:
            criteria.append(NotificationRecord.attempts == expected_attempts)
        if due_only:
            criteria.append(NotificationRecord.scheduled_at <= now)

        stmt = (
            update(NotificationRecord)
            .where(*criteria)
            .values(lease_token=token, lease_expires_at=now + timedelta(seconds=ttl_seconds))
        )
        return await self._execute_update(stmt, notification_id, require_row=False) == 1

    async def release(self, notification_id: int, token: str) -> bool:
        stmt = (
            update(NotificationRecord)
            .where(NotificationRecord.id == notification_id, NotificationRecord.lease_token == token)
            .values(lease_token=None, lease_expires_at=None)
        )
        return await self._execute_update(stmt, notification_id, require_row=False) == 1

    async def record_outcome(self, notification_id: int, token: Optional[str], success: bool,
                             max_attempts: int, error: Optional[str] = None) -> Optional[Notification]:
        """
        Count an attempt and apply its result in one statement.

        Success moves the notification to Enviada. Failure returns it to
        Pendiente, or Fallida once attempts reach ``max_attempts``. The lease
        is cleared.

        Returns:
            The updated notification, or None if ``token`` no longer holds the lease
        """
        if success:
            values = {
                "state": NotificationState.SENT.value,
                "sent_at": func.coalesce(NotificationRecord.sent_at, utcnow()),
                "error_message": None,
            }
        else:
            values = {
                "state": case(
                    (NotificationRecord.attempts + 1 >= max_attempts, NotificationState.FAILED.value),
                    else_=NotificationState.PENDING.value,
                ),
                "error_message": error,
            }
        values.update(
            attempts=NotificationRecord.attempts + 1,
            lease_token=None,
            lease_expires_at=None,
        )

        stmt = update(NotificationRecord).where(NotificationRecord.id == notification_id)
        if token is not None:
            stmt = stmt.where(NotificationRecord.lease_token == token)
        stmt = stmt.values(**values)

        if await self._execute_update(stmt, notification_id, require_row=False) == 0:
            logger.warning(f"Outcome for notification {notification_id} not recorded: lease lost")
            return None
        return await self._require(notification_id)

    async def replace_recipients(self, notification_id: int, customers: Iterable[Customer]) -> List[Recipient]:
        """Swap the notification's destinatarios for one Pendiente row per customer."""
        records = [
            RecipientRecord(
                notification_id=notification_id,
                customer_id=c.id,
                email=c.email,
                phone=c.phone,
                state=RecipientState.PENDING.value,
            )
            for c in customers
        ]
        try:
            async with await self.db.get_session() as session:
                await session.execute(
                    delete(RecipientRecord).where(RecipientRecord.notification_id == notification_id)
                )
                session.add_all(records)
                await session.commit()
                for record in records:
                    await session.refresh(record)
        except SQLAlchemyError as e:
            logger.error(f"Failed to write recipients for notification {notification_id}: {e}")
            raise DatabaseError(f"Failed to write recipients: {e}") from e

        logger.debug(f"Notification {notification_id}: {len(records)} recipients")
        return [_to_recipient(r) for r in records]

    async def get_recipients(self, notification_id: int) -> List[Recipient]:
        try:
            async with await self.db.get_session() as session:
                result = await session.execute(
                    select(RecipientRecord)
                    .where(RecipientRecord.notification_id == notification_id)
                    .order_by(RecipientRecord.id)
                )
                return [_to_recipient(r) for r in result.scalars().all()]
        except SQLAlchemyError as e:
            logger.error(f"Failed to get recipients for notification {notification_id}: {e}")
            raise DatabaseError(f"Failed to get recipients: {e}") from e

    async def update_recipient_state(self, recipient_ids: Sequence[int], state: RecipientState) -> int:
        """Set the delivery state of several destinatarios; returns rows changed."""
        if not recipient_ids:
            return 0
        values = {"state": state.value}
        if state == RecipientState.SENT:
            values["sent_at"] = utcnow()
        try:
            async with await self.db.get_session() as session:
                result = await session.execute(
                    update(RecipientRecord)
                    .where(RecipientRecord.id.in_(list(recipient_ids)))
                    .values(**values)
                )
                await session.commit()
        except SQLAlchemyError as e:
            logger.error(f"Failed to update recipient state: {e}")
            raise DatabaseError(f"Failed to update recipient state: {e}") from e
        return result.rowcount
