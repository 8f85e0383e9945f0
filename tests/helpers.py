import shutil
import tempfile
import unittest
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence

from eventmanager.core.config import AppConfig, DispatchConfig
from eventmanager.core.models import Notification, Recipient
from eventmanager.database.manager import DatabaseManager
from eventmanager.notifications.delivery import SendResult
from eventmanager.notifications.dispatcher import DispatchEngine
from eventmanager.notifications.email import valid_addresses
from eventmanager.notifications.push import PushPermission
from eventmanager.notifications.resolver import RecipientResolver
from eventmanager.stores.customers import CustomerStore
from eventmanager.stores.notifications import NotificationStore
from eventmanager.stores.templates import TemplateStore


class DatabaseTestCase(unittest.IsolatedAsyncioTestCase):
    """Gives each test a fresh SQLite file and the three stores."""

    async def asyncSetUp(self):
        self.tmp_dir = Path(tempfile.mkdtemp(prefix="eventmanager-test-"))
        self.config = AppConfig(data_dir=self.tmp_dir)
        self.db = DatabaseManager(self.config)
        await self.db.initialize()
        self.templates = TemplateStore(self.db)
        self.customers = CustomerStore(self.db)
        self.notifications = NotificationStore(self.db)

    async def asyncTearDown(self):
        await self.db.close()
        shutil.rmtree(self.tmp_dir, ignore_errors=True)


class FakeEmailNotifier:
    """Email transport that fails for chosen addresses."""

    def __init__(self, failing: Sequence[str] = ()):
        self.failing = set(failing)
        self.calls: List[Dict[str, Any]] = []

    async def send_notification(self, notification: Notification, recipients: Sequence[Recipient]) -> SendResult:
        addresses = valid_addresses([r.email for r in recipients])
        self.calls.append({"notification_id": notification.id, "addresses": addresses})
        if not addresses:
            return SendResult.fail("No hay emails válidos", results=[])

        results = [
            SendResult.fail("rejected", recipient=a) if a in self.failing else SendResult.ok(recipient=a)
            for a in addresses
        ]
        successful = sum(1 for r in results if r.success)
        return SendResult(
            success=successful > 0,
            error=None if successful == len(results) else f"{len(results) - successful} emails fallidos",
            data={"results": results},
        )


class FakePushNotifier:
    """Push transport with a fixed permission."""

    def __init__(self, permission: PushPermission = PushPermission.GRANTED):
        self.permission = permission
        self.sent: List[Dict[str, Any]] = []

    async def get_permission(self) -> PushPermission:
        return self.permission

    async def send(self, title: str, body: str, icon: Optional[str] = None, url: Optional[str] = None) -> SendResult:
        if self.permission != PushPermission.GRANTED:
            return SendResult.fail("Permiso de notificaciones denegado")
        self.sent.append({"title": title, "body": body, "url": url})
        return SendResult.ok()

    async def send_notification(self, notification: Notification) -> SendResult:
        return await self.send(notification.subject, notification.body)


class RecordingSleep:
    def __init__(self):
        self.delays: List[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


def build_engine(notifications: NotificationStore, customers: CustomerStore,
                 email=None, push=None, sleep=None, **dispatch_overrides) -> DispatchEngine:
    settings = {"item_delay_seconds": 0, "max_attempts": 3}
    settings.update(dispatch_overrides)
    return DispatchEngine(
        DispatchConfig(**settings),
        notifications,
        RecipientResolver(customers),
        email or FakeEmailNotifier(),
        push or FakePushNotifier(),
        sleep=sleep or RecordingSleep(),
    )


class FakeResponse:
    def __init__(self, status: int = 200, body: Any = None, text: str = ""):
        self.status = status
        self._body = body
        self._text = text

    async def json(self, content_type=None):
        if self._body is None:
            raise ValueError("no json body")
        return self._body

    async def text(self):
        return self._text

    def raise_for_status(self):
        if self.status >= 400:
            raise RuntimeError(f"HTTP {self.status}")

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        return False


class _RaisingContext:
    def __init__(self, error: BaseException):
        self.error = error

    async def __aenter__(self):
        raise self.error

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        return False


class FakeHttpSession:
    """Stands in for aiohttp.ClientSession; responses are keyed by URL."""

    def __init__(self, routes: Dict[str, Any]):
        self.routes = routes
        self.requests: List[Dict[str, Any]] = []
        self.closed = False

    def _respond(self, method: str, url: str, **kwargs):
        self.requests.append({"method": method, "url": url, **kwargs})
        route = self.routes[url]
        if callable(route):
            route = route(kwargs)
        if isinstance(route, BaseException):
            return _RaisingContext(route)
        return route

    def post(self, url, json=None, headers=None):
        return self._respond("POST", url, json=json, headers=headers)

    def get(self, url, headers=None):
        return self._respond("GET", url, headers=headers)

    async def close(self):
        self.closed = True
