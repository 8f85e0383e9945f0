import unittest
from datetime import timedelta
from unittest.mock import AsyncMock, patch

from eventmanager.core.exceptions import NotificationNotFoundError
from eventmanager.core.models import NotificationState, RecipientState, utcnow
from eventmanager.database.models import NotificationRecord
from eventmanager.notifications.delivery import OutcomeStatus
from eventmanager.notifications.dispatcher import ALREADY_SENT_MESSAGE
from eventmanager.notifications.push import PushPermission

from helpers import DatabaseTestCase, FakeEmailNotifier, FakePushNotifier, RecordingSleep, build_engine


class TestDispatchEngine(DatabaseTestCase):

    async def asyncSetUp(self):
        await super().asyncSetUp()
        self.email = FakeEmailNotifier()
        self.push = FakePushNotifier()
        self.sleep = RecordingSleep()
        self.engine = build_engine(self.notifications, self.customers, self.email, self.push, self.sleep)

    async def _seed_customers(self, count=3):
        return [
            await self.customers.create(f"Cliente{i}", "Prueba", f"cliente{i}@example.com")
            for i in range(count)
        ]

    async def _due(self, **fields):
        fields.setdefault("subject", "Aviso")
        fields.setdefault("body", "<p>Hola</p>")
        fields.setdefault("channel", "Email")
        fields.setdefault("scheduled_at", utcnow() - timedelta(minutes=1))
        return await self.notifications.create(fields)

    async def test_future_notification_is_not_processed(self):
        await self._seed_customers()
        future = await self._due(scheduled_at=utcnow() + timedelta(hours=1))

        summary = await self.engine.run_pass()

        self.assertEqual(summary.processed, 0)
        stored = await self.notifications.get_by_id(future.id)
        self.assertEqual(stored.state, NotificationState.PENDING)
        self.assertEqual(stored.attempts, 0)
        self.assertEqual(self.email.calls, [])

    async def test_broadcast_reaches_every_customer(self):
        customers = await self._seed_customers(3)
        broadcast = await self._due()

        summary = await self.engine.run_pass()

        self.assertEqual(summary.sent, 1)
        recipients = await self.notifications.get_recipients(broadcast.id)
        self.assertEqual(sorted(r.customer_id for r in recipients), sorted(c.id for c in customers))
        self.assertTrue(all(r.state == RecipientState.SENT for r in recipients))

        stored = await self.notifications.get_by_id(broadcast.id)
        self.assertEqual(stored.state, NotificationState.SENT)
        self.assertEqual(stored.attempts, 1)
        self.assertIsNotNone(stored.sent_at)

    async def test_addressed_notification_reaches_one_customer(self):
        customers = await self._seed_customers(3)
        addressed = await self._due(customer_id=customers[1].id)

        await self.engine.run_pass()

        recipients = await self.notifications.get_recipients(addressed.id)
        self.assertEqual([r.customer_id for r in recipients], [customers[1].id])
        self.assertEqual(self.email.calls[0]["addresses"], ["cliente1@example.com"])

    async def test_missing_customer_fails_after_max_attempts(self):
        notification = await self._due(customer_id=999)

        for expected_attempts in (1, 2):
            summary = await self.engine.run_pass()
            self.assertEqual(summary.outcomes[0].status, OutcomeStatus.RETRYING)
            stored = await self.notifications.get_by_id(notification.id)
            self.assertEqual(stored.state, NotificationState.PENDING)
            self.assertEqual(stored.attempts, expected_attempts)
            self.assertIn("no encontrado", stored.error_message)

        summary = await self.engine.run_pass()
        self.assertEqual(summary.outcomes[0].status, OutcomeStatus.FAILED)
        stored = await self.notifications.get_by_id(notification.id)
        self.assertEqual(stored.state, NotificationState.FAILED)
        self.assertEqual(stored.attempts, 3)

        summary = await self.engine.run_pass()
        self.assertEqual(summary.outcomes, [])
        self.assertEqual((await self.notifications.get_by_id(notification.id)).attempts, 3)

    async def test_broadcast_without_customers_is_retried(self):
        notification = await self._due()

        summary = await self.engine.run_pass()

        self.assertEqual(summary.failed, 1)
        stored = await self.notifications.get_by_id(notification.id)
        self.assertEqual(stored.state, NotificationState.PENDING)
        self.assertEqual(stored.error_message, "No hay clientes en el sistema")

    async def test_per_recipient_email_states(self):
        await self.customers.create("Ana", email="ana@example.com")
        await self.customers.create("Luis", email="luis@example.com")
        await self.customers.create("Sin", email=None)
        self.engine.email = FakeEmailNotifier(failing=["luis@example.com"])
        notification = await self._due()

        await self.engine.run_pass()

        states = {r.email: r.state for r in await self.notifications.get_recipients(notification.id)}
        self.assertEqual(states["ana@example.com"], RecipientState.SENT)
        self.assertEqual(states["luis@example.com"], RecipientState.FAILED)
        self.assertEqual(states[None], RecipientState.FAILED)
        self.assertEqual((await self.notifications.get_by_id(notification.id)).state, NotificationState.SENT)

    async def test_retry_replaces_recipients(self):
        await self._seed_customers(2)
        self.engine.email = FakeEmailNotifier(failing=["cliente0@example.com", "cliente1@example.com"])
        notification = await self._due()

        await self.engine.run_pass()
        await self.engine.run_pass()

        self.assertEqual(len(await self.notifications.get_recipients(notification.id)), 2)
        self.assertEqual((await self.notifications.get_by_id(notification.id)).attempts, 2)

    async def test_push_notification(self):
        await self._seed_customers(2)
        notification = await self._due(channel="Push", subject="Nuevo evento", body="Feria")

        summary = await self.engine.run_pass()

        self.assertEqual(summary.sent, 1)
        self.assertEqual(self.push.sent, [{"title": "Nuevo evento", "body": "Feria", "url": None}])
        recipients = await self.notifications.get_recipients(notification.id)
        self.assertTrue(all(r.state == RecipientState.PENDING for r in recipients))

    async def test_push_denied_counts_as_failure(self):
        await self._seed_customers(1)
        self.engine.push = FakePushNotifier(PushPermission.DENIED)
        notification = await self._due(channel="Push")

        await self.engine.run_pass()

        stored = await self.notifications.get_by_id(notification.id)
        self.assertEqual(stored.state, NotificationState.PENDING)
        self.assertEqual(stored.attempts, 1)

    async def test_leased_notification_is_skipped(self):
        await self._seed_customers(1)
        notification = await self._due()
        await self.notifications.claim(notification.id, "another-worker", ttl_seconds=600)

        summary = await self.engine.run_pass()

        self.assertEqual(summary.skipped, 1)
        self.assertEqual(self.email.calls, [])
        self.assertEqual((await self.notifications.get_by_id(notification.id)).attempts, 0)

    async def test_unexpected_transport_error_is_recorded(self):
        await self._seed_customers(1)

        class BrokenPushNotifier(FakePushNotifier):
            async def send_notification(self, notification):
                raise ValueError("malformed gateway reply")

        self.engine.push = BrokenPushNotifier()
        push = await self._due(channel="Push")
        email = await self._due(channel="Email")

        summary = await self.engine.run_pass()

        self.assertEqual(summary.processed, 2)
        stored_push = await self.notifications.get_by_id(push.id)
        self.assertEqual(stored_push.state, NotificationState.PENDING)
        self.assertEqual(stored_push.attempts, 1)
        self.assertEqual(stored_push.error_message, "malformed gateway reply")
        self.assertIsNone(await self._lease_token(push.id))
        self.assertEqual((await self.notifications.get_by_id(email.id)).state, NotificationState.SENT)

    async def test_stale_listing_is_skipped(self):
        await self._seed_customers(1)
        notification = await self._due()
        now = utcnow()
        stale = await self.notifications.get_due(now, max_attempts=3)

        # another worker fails the row between listing and claiming
        await self.notifications.claim(notification.id, "other", 60)
        await self.notifications.record_outcome(notification.id, "other", False, 3, "smtp down")

        with patch.object(self.notifications, "get_due", AsyncMock(return_value=stale)):
            summary = await self.engine.run_pass(now)

        self.assertEqual(summary.skipped, 1)
        self.assertEqual(self.email.calls, [])
        self.assertEqual((await self.notifications.get_by_id(notification.id)).attempts, 1)

    async def test_pass_skips_row_rescheduled_into_future(self):
        await self._seed_customers(1)
        notification = await self._due()
        now = utcnow()
        stale = await self.notifications.get_due(now, max_attempts=3)
        await self.notifications.reschedule(notification.id, now + timedelta(hours=2))

        with patch.object(self.notifications, "get_due", AsyncMock(return_value=stale)):
            summary = await self.engine.run_pass(now)

        self.assertEqual(summary.skipped, 1)
        self.assertEqual(self.email.calls, [])

    async def _lease_token(self, notification_id):
        async with await self.db.get_session() as session:
            record = await session.get(NotificationRecord, notification_id)
            return record.lease_token

    async def test_delay_between_items(self):
        await self._seed_customers(1)
        for _ in range(3):
            await self._due()
        self.engine.config.item_delay_seconds = 5.0

        await self.engine.run_pass()

        self.assertEqual(self.sleep.delays, [5.0, 5.0])

    async def test_send_now_ignores_schedule(self):
        await self._seed_customers(1)
        notification = await self._due(scheduled_at=utcnow() + timedelta(days=2))

        outcome = await self.engine.send_now(notification.id)

        self.assertEqual(outcome.status, OutcomeStatus.SENT)
        self.assertEqual(outcome.recipients, 1)

    async def test_send_now_refuses_sent(self):
        await self._seed_customers(1)
        notification = await self._due()
        await self.notifications.mark_sent(notification.id)

        outcome = await self.engine.send_now(notification.id)

        self.assertEqual(outcome.status, OutcomeStatus.SKIPPED)
        self.assertEqual(outcome.error, ALREADY_SENT_MESSAGE)
        self.assertEqual(self.email.calls, [])

    async def test_send_now_retries_failed_once(self):
        await self._seed_customers(1)
        notification = await self._due(state="Fallida", attempts=3)

        outcome = await self.engine.send_now(notification.id)

        self.assertEqual(outcome.status, OutcomeStatus.SENT)
        stored = await self.notifications.get_by_id(notification.id)
        self.assertEqual(stored.state, NotificationState.SENT)
        self.assertEqual(stored.attempts, 4)

    async def test_send_now_missing(self):
        with self.assertRaises(NotificationNotFoundError):
            await self.engine.send_now(404)

    async def test_dispatch_events_are_logged(self):
        await self._seed_customers(1)
        await self._due()

        with self.assertLogs("eventmanager.dispatch", level="INFO") as logs:
            await self.engine.run_pass()

        event_types = [record.event_type for record in logs.records]
        self.assertEqual(event_types, ["dispatch_started", "notification_sent", "dispatch_completed"])


if __name__ == "__main__":
    unittest.main()
