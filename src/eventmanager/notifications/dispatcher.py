"""
Dispatch engine for EventManager notifications.

A dispatch pass picks up due notifications, expands each one to its
recipients, sends it through the matching transport and records the outcome.
Each notification is leased while it is processed so overlapping passes
(the periodic loop and an on-demand send) never handle the same row twice.
"""

import asyncio
import logging
import signal
import uuid
from datetime import datetime
from typing import Awaitable, Callable, Dict, List, Optional, Sequence

from ..core.config import DispatchConfig
from ..core.exceptions import NotificationError, NotificationNotFoundError
from ..core.models import Channel, Notification, NotificationState, Recipient, RecipientState, utcnow
from ..database.manager import DatabaseError
from ..stores.notifications import NotificationStore
from ..utils.logging import DispatchLogger
from .delivery import DispatchOutcome, DispatchSummary, OutcomeStatus, RetryPolicy, SendResult
from .email import EmailNotifier, valid_addresses
from .push import PushNotifier
from .resolver import RecipientResolver

logger = logging.getLogger(__name__)

ALREADY_SENT_MESSAGE = "La notificación ya fue enviada"

_OUTCOME_BY_STATE = {
    NotificationState.SENT: OutcomeStatus.SENT,
    NotificationState.PENDING: OutcomeStatus.RETRYING,
    NotificationState.FAILED: OutcomeStatus.FAILED,
}


class DispatchEngine:
    """Sends due notifications and applies the retry state machine."""

    def __init__(
        self,
        config: DispatchConfig,
        notifications: NotificationStore,
        resolver: RecipientResolver,
        email: EmailNotifier,
        push: PushNotifier,
        dispatch_logger: Optional[DispatchLogger] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.config = config
        self.notifications = notifications
        self.resolver = resolver
        self.email = email
        self.push = push
        self.events = dispatch_logger or DispatchLogger()
        self.retry_policy = RetryPolicy(max_attempts=config.max_attempts)
        self._sleep = sleep
        self._shutdown_event = asyncio.Event()
        self.running = False

    async def run_pass(self, now: Optional[datetime] = None) -> DispatchSummary:
        """
        Process every notification due at ``now``.

        Args:
            now: Reference time (defaults to the current UTC time)

        Returns:
            Summary of the pass
        """
        summary = DispatchSummary()
        now = now or utcnow()

        due = await self.notifications.get_due(now, self.config.max_attempts)
        self.events.dispatch_started(len(due))

        token = uuid.uuid4().hex
        for index, notification in enumerate(due):
            if index > 0 and self.config.item_delay_seconds > 0:
                await self._sleep(self.config.item_delay_seconds)
            summary.add(await self._process_safely(notification, token, due_at=now))

        summary.finished_at = utcnow()
        self.events.dispatch_completed(
            processed=summary.processed,
            sent=summary.sent,
            failed=summary.failed,
            skipped=summary.skipped,
            duration_seconds=summary.duration_seconds,
        )
        return summary

    async def send_now(self, notification_id: int) -> DispatchOutcome:
        """
        Process one notification immediately, whatever its scheduled time.

        A Fallida notification is put back to Pendiente first and gets one more
        attempt. An Enviada notification is refused.

        Raises:
            NotificationNotFoundError: no such notification
        """
        notification = await self.notifications.get_by_id(notification_id)
        if notification is None:
            raise NotificationNotFoundError(f"Notification {notification_id} not found")

        if notification.state == NotificationState.SENT:
            logger.info(f"Notification {notification_id} already sent")
            return DispatchOutcome(
                notification_id, OutcomeStatus.SKIPPED,
                attempts=notification.attempts, error=ALREADY_SENT_MESSAGE,
            )

        if notification.state == NotificationState.FAILED:
            notification = await self.notifications.reschedule(notification_id, notification.scheduled_at)

        return await self._process_safely(notification, uuid.uuid4().hex)

    async def _process_safely(self, notification: Notification, token: str,
                              due_at: Optional[datetime] = None) -> DispatchOutcome:
        try:
            return await self._process(notification, token, due_at)
        except (NotificationError, DatabaseError) as e:
            logger.error(f"Error dispatching notification {notification.id}: {e}", exc_info=True)
            self.events.notification_failed(notification.id, str(e), attempts=notification.attempts)
            return DispatchOutcome(notification.id, OutcomeStatus.FAILED, attempts=notification.attempts, error=str(e))

    async def _process(self, notification: Notification, token: str,
                       due_at: Optional[datetime] = None) -> DispatchOutcome:
        # Scheduled passes only take rows still due and untouched since they were listed
        claimed = await self.notifications.claim(
            notification.id, token, self.config.lease_seconds,
            now=due_at,
            max_attempts=self.config.max_attempts if due_at else None,
            expected_attempts=notification.attempts,
            due_only=due_at is not None,
        )
        if not claimed:
            logger.debug(f"Notification {notification.id} is leased or changed elsewhere, skipping")
            return DispatchOutcome(notification.id, OutcomeStatus.SKIPPED, attempts=notification.attempts)

        recipients: List[Recipient] = []
        try:
            try:
                customers = await self.resolver.resolve(notification)
                recipients = await self.notifications.replace_recipients(notification.id, customers)
                result = await self._send(notification, recipients)
            except (NotificationError, DatabaseError) as e:
                result = SendResult.fail(str(e))
            except Exception as e:
                logger.error(f"Unexpected error sending notification {notification.id}: {e}", exc_info=True)
                result = SendResult.fail(str(e) or type(e).__name__)

            updated = await self.notifications.record_outcome(
                notification.id, token, result.success, self.config.max_attempts, result.error
            )
        finally:
            await self.notifications.release(notification.id, token)

        if updated is None:
            return DispatchOutcome(notification.id, OutcomeStatus.SKIPPED, error="lease lost")

        status = _OUTCOME_BY_STATE[updated.state]
        if status == OutcomeStatus.SENT:
            self.events.notification_sent(
                notification.id, notification.channel.value, len(recipients), attempts=updated.attempts
            )
        else:
            self.events.notification_failed(
                notification.id, result.error or "unknown error",
                attempts=updated.attempts, final=not self.retry_policy.can_retry(updated.attempts),
            )

        return DispatchOutcome(
            notification.id, status,
            attempts=updated.attempts,
            recipients=len(recipients),
            error=None if result.success else result.error,
        )

    async def _send(self, notification: Notification, recipients: Sequence[Recipient]) -> SendResult:
        if notification.channel == Channel.EMAIL:
            result = await self.email.send_notification(notification, recipients)
            await self._record_email_deliveries(recipients, result)
            return result
        if notification.channel == Channel.PUSH:
            return await self.push.send_notification(notification)
        return SendResult.fail(f"Tipo de notificación no soportado: {notification.channel}")

    async def _record_email_deliveries(self, recipients: Sequence[Recipient], result: SendResult) -> None:
        """Mark each destinatario Enviado or Fallido from the per-address results."""
        per_address: Dict[str, bool] = {}
        for item in result.data.get("results", []):
            per_address[item.recipient] = per_address.get(item.recipient, False) or item.success

        sent, failed = [], []
        for recipient in recipients:
            address = valid_addresses([recipient.email])
            if address and address[0] in per_address:
                (sent if per_address[address[0]] else failed).append(recipient.id)
            elif not address:
                failed.append(recipient.id)

        await self.notifications.update_recipient_state(sent, RecipientState.SENT)
        await self.notifications.update_recipient_state(failed, RecipientState.FAILED)

    async def run_forever(self, install_signal_handlers: bool = False) -> None:
        """Run dispatch passes every ``interval_seconds`` until stopped."""
        if install_signal_handlers:
            self._setup_signal_handlers()

        self.running = True
        self._shutdown_event.clear()
        logger.info(f"Starting dispatch loop with {self.config.interval_seconds}s interval")

        try:
            while self.running:
                try:
                    await self.run_pass()
                except Exception as e:
                    logger.error(f"Dispatch pass failed: {e}", exc_info=True)

                try:
                    await asyncio.wait_for(
                        self._shutdown_event.wait(),
                        timeout=self.config.interval_seconds
                    )
                    break
                except asyncio.TimeoutError:
                    pass
        finally:
            self.running = False
            logger.info("Dispatch loop stopped")

    def stop(self) -> None:
        """Stop the periodic loop after the current pass."""
        self.running = False
        self._shutdown_event.set()

    def _setup_signal_handlers(self) -> None:
        def signal_handler(signum, frame):
            logger.info(f"Received signal {signum}, stopping dispatcher")
            self.stop()

        signal.signal(signal.SIGINT, signal_handler)
        signal.signal(signal.SIGTERM, signal_handler)
