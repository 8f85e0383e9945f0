import unittest
from datetime import datetime

from eventmanager.core.models import Channel, NotificationState
from eventmanager.notifications.purchase import PURCHASE_MODULE, PurchaseInfo, PurchaseNotifier
from eventmanager.notifications.push import PushPermission

from helpers import DatabaseTestCase, FakeEmailNotifier, FakePushNotifier, build_engine


class TestPurchaseNotifier(DatabaseTestCase):

    async def asyncSetUp(self):
        await super().asyncSetUp()
        self.email = FakeEmailNotifier()
        self.push = FakePushNotifier(PushPermission.GRANTED)
        self.engine = build_engine(self.notifications, self.customers, self.email, self.push)
        self.purchases = PurchaseNotifier(self.customers, self.notifications, self.engine, push=self.push)
        self.customer = await self.customers.create("Ana", "Pérez", "ana@example.com")

    def _info(self, **overrides):
        fields = {
            "customer_id": self.customer.id,
            "ticket_id": 31,
            "quantity": 2,
            "total_amount": 150,
            "event_name": "Concierto de Primavera",
            "event_date": datetime(2030, 4, 12, 20, 30),
            "event_location": "Auditorio Central",
        }
        fields.update(overrides)
        return PurchaseInfo(**fields)

    def test_render_confirmation(self):
        html = self.purchases.render_confirmation(self._info(), "Ana Pérez")

        self.assertIn("Ana Pérez", html)
        self.assertIn("Concierto de Primavera", html)
        self.assertIn("12/04/2030 20:30", html)
        self.assertIn("Auditorio Central", html)
        self.assertIn("150.00", html)

    def test_render_escapes_html(self):
        html = self.purchases.render_confirmation(self._info(event_name="<script>x</script>"), "Ana")
        self.assertNotIn("<script>", html)

    async def test_confirmation_is_recorded_and_sent(self):
        result = await self.purchases.on_ticket_purchased(self._info())

        self.assertTrue(result.success)
        notification = await self.notifications.get_by_id(result.data["notification_id"])
        self.assertEqual(notification.state, NotificationState.SENT)
        self.assertEqual(notification.channel, Channel.EMAIL)
        self.assertEqual(notification.module, PURCHASE_MODULE)
        self.assertEqual(notification.ticket_id, 31)
        self.assertEqual(notification.customer_id, self.customer.id)
        self.assertEqual(notification.subject, "Confirmación de Compra - Concierto de Primavera")
        self.assertEqual(self.email.calls[0]["addresses"], ["ana@example.com"])

        self.assertEqual(self.push.sent[0]["title"], "¡Compra Confirmada!")
        self.assertEqual(self.push.sent[0]["body"], "Has comprado 2 boletos para Concierto de Primavera")

    async def test_no_push_without_permission(self):
        self.push.permission = PushPermission.DEFAULT

        result = await self.purchases.on_ticket_purchased(self._info())

        self.assertTrue(result.success)
        self.assertIsNone(result.data["push"])
        self.assertEqual(self.push.sent, [])

    async def test_unknown_customer(self):
        result = await self.purchases.on_ticket_purchased(self._info(customer_id=999))

        self.assertFalse(result.success)
        self.assertEqual(result.error, "Cliente no encontrado")
        self.assertEqual(await self.notifications.get_all(), [])

    async def test_failed_email_is_reported(self):
        self.engine.email = FakeEmailNotifier(failing=["ana@example.com"])

        result = await self.purchases.on_ticket_purchased(self._info())

        self.assertFalse(result.success)
        notification = await self.notifications.get_by_id(result.data["notification_id"])
        self.assertEqual(notification.state, NotificationState.PENDING)
        self.assertEqual(notification.attempts, 1)
        self.assertEqual(self.push.sent, [])


if __name__ == "__main__":
    unittest.main()
