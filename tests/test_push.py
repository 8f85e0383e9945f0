import asyncio
import unittest

from eventmanager.core.config import PushConfig
from eventmanager.core.exceptions import TransportError
from eventmanager.core.models import Channel, Notification, utcnow
from eventmanager.notifications.push import (
    INVALID_RESPONSE_MESSAGE,
    NOT_SUPPORTED_MESSAGE,
    PERMISSION_DENIED_MESSAGE,
    PUSH_TAG,
    HttpPushGateway,
    PushNotifier,
    PushPermission,
    UnavailablePushGateway,
)

from helpers import FakeHttpSession, FakeResponse


class FakePushGateway:
    def __init__(self, permission=PushPermission.GRANTED, answer=PushPermission.GRANTED):
        self.current = permission
        self.answer = answer
        self.requested = False
        self.shown = []

    async def permission(self):
        return self.current

    async def request_permission(self):
        self.requested = True
        self.current = self.answer
        return self.current

    async def show(self, payload):
        self.shown.append(payload)
        return {"shown": True}


class TestPushNotifier(unittest.IsolatedAsyncioTestCase):

    async def test_granted_shows_notification(self):
        gateway = FakePushGateway()
        notifier = PushNotifier(PushConfig(icon="/logo.png", click_url="/eventos"), gateway=gateway)

        result = await notifier.send("Título", "Cuerpo")

        self.assertTrue(result.success)
        self.assertEqual(gateway.shown[0]["tag"], PUSH_TAG)
        self.assertEqual(gateway.shown[0]["icon"], "/logo.png")
        self.assertEqual(gateway.shown[0]["badge"], "/logo.png")
        self.assertEqual(gateway.shown[0]["url"], "/eventos")
        self.assertFalse(gateway.requested)

    async def test_default_permission_is_requested(self):
        gateway = FakePushGateway(PushPermission.DEFAULT, answer=PushPermission.GRANTED)
        notifier = PushNotifier(PushConfig(), gateway=gateway)

        result = await notifier.send("Título", "Cuerpo")

        self.assertTrue(gateway.requested)
        self.assertTrue(result.success)

    async def test_refused_request_fails(self):
        gateway = FakePushGateway(PushPermission.DEFAULT, answer=PushPermission.DENIED)
        notifier = PushNotifier(PushConfig(), gateway=gateway)

        result = await notifier.send("Título", "Cuerpo")

        self.assertFalse(result.success)
        self.assertEqual(result.error, PERMISSION_DENIED_MESSAGE)
        self.assertEqual(gateway.shown, [])

    async def test_denied(self):
        notifier = PushNotifier(PushConfig(), gateway=FakePushGateway(PushPermission.DENIED))
        result = await notifier.send("Título", "Cuerpo")
        self.assertEqual(result.error, PERMISSION_DENIED_MESSAGE)

    async def test_not_supported(self):
        notifier = PushNotifier(PushConfig(), gateway=UnavailablePushGateway())

        result = await notifier.send("Título", "Cuerpo")

        self.assertFalse(result.success)
        self.assertEqual(result.error, NOT_SUPPORTED_MESSAGE)
        self.assertFalse(await notifier.is_supported())

    async def test_open_without_gateway_url_is_unsupported(self):
        notifier = PushNotifier(PushConfig(gateway_url=""))
        await notifier.open()
        self.assertIsInstance(notifier.gateway, UnavailablePushGateway)
        await notifier.close()

    async def test_send_notification_uses_default_title(self):
        gateway = FakePushGateway()
        notifier = PushNotifier(PushConfig(default_title="Nueva notificación"), gateway=gateway)
        notification = Notification(id=1, subject="", body="Hola", channel=Channel.PUSH, scheduled_at=utcnow())

        await notifier.send_notification(notification)

        self.assertEqual(gateway.shown[0]["title"], "Nueva notificación")
        self.assertEqual(gateway.shown[0]["body"], "Hola")

    async def test_disabled(self):
        gateway = FakePushGateway()
        notifier = PushNotifier(PushConfig(enabled=False), gateway=gateway)
        result = await notifier.send("Título", "Cuerpo")
        self.assertFalse(result.success)
        self.assertEqual(gateway.shown, [])


class TestHttpPushGateway(unittest.IsolatedAsyncioTestCase):

    async def test_http_round_trip(self):
        session = FakeHttpSession({
            "http://push.local/permission": FakeResponse(200, {"permission": "granted"}),
            "http://push.local/notify": FakeResponse(200, {"ok": True}),
        })
        gateway = HttpPushGateway("http://push.local/", session)

        self.assertEqual(await gateway.permission(), PushPermission.GRANTED)
        self.assertEqual(await gateway.show({"title": "x"}), {"ok": True})
        self.assertEqual(session.requests[1]["json"], {"title": "x"})

    async def test_non_json_permission_fails_send(self):
        session = FakeHttpSession({"http://push.local/permission": FakeResponse(200)})
        notifier = PushNotifier(PushConfig(), gateway=HttpPushGateway("http://push.local", session))

        result = await notifier.send("Título", "Cuerpo")

        self.assertFalse(result.success)
        self.assertIn(INVALID_RESPONSE_MESSAGE, result.error)
        self.assertEqual(await notifier.get_permission(), PushPermission.NOT_SUPPORTED)

    async def test_non_object_json_fails_send(self):
        session = FakeHttpSession({"http://push.local/permission": FakeResponse(200, ["granted"])})
        gateway = HttpPushGateway("http://push.local", session)

        with self.assertRaises(TransportError):
            await gateway.permission()

        result = await PushNotifier(PushConfig(), gateway=gateway).send("Título", "Cuerpo")
        self.assertFalse(result.success)
        self.assertEqual(result.error, INVALID_RESPONSE_MESSAGE)

    async def test_gateway_timeout_fails_send(self):
        session = FakeHttpSession({"http://push.local/permission": asyncio.TimeoutError()})
        notifier = PushNotifier(PushConfig(), gateway=HttpPushGateway("http://push.local", session))

        result = await notifier.send("Título", "Cuerpo")

        self.assertFalse(result.success)
        self.assertEqual(result.error, "TimeoutError")

    def test_parse_unknown_permission(self):
        self.assertEqual(PushPermission.parse("weird"), PushPermission.NOT_SUPPORTED)
        self.assertEqual(PushPermission.parse("denied"), PushPermission.DENIED)


if __name__ == "__main__":
    unittest.main()
