"""
Push transport for EventManager notifications.

Push messages are shown in the operator's browser session. The service talks
to that session through a push gateway, which exposes the browser's
notification permission and displays notifications on request.
"""

import asyncio
import logging
from enum import Enum
from typing import Any, Dict, Optional, Protocol

import aiohttp

from ..core.config import PushConfig
from ..core.exceptions import TransportError
from ..core.models import Notification
from .delivery import SendResult

logger = logging.getLogger(__name__)

PUSH_TAG = "event-notification"

PERMISSION_DENIED_MESSAGE = "Permiso de notificaciones denegado"
NOT_SUPPORTED_MESSAGE = "Este navegador no soporta notificaciones"
INVALID_RESPONSE_MESSAGE = "Respuesta inválida del gateway de push"

# Everything a gateway call can raise short of a programming error
GATEWAY_ERRORS = (aiohttp.ClientError, asyncio.TimeoutError, OSError, RuntimeError, TransportError)


class PushPermission(Enum):
    """Browser notification permission."""
    DEFAULT = "default"
    GRANTED = "granted"
    DENIED = "denied"
    NOT_SUPPORTED = "not-supported"

    @classmethod
    def parse(cls, value: Any) -> "PushPermission":
        for member in cls:
            if member.value == value:
                return member
        return cls.NOT_SUPPORTED


class PushGateway(Protocol):
    """Relay to the browser session that displays notifications."""

    async def permission(self) -> PushPermission: ...

    async def request_permission(self) -> PushPermission: ...

    async def show(self, payload: Dict[str, Any]) -> Dict[str, Any]: ...


class UnavailablePushGateway:
    """Gateway used when no browser session is reachable."""

    async def permission(self) -> PushPermission:
        return PushPermission.NOT_SUPPORTED

    async def request_permission(self) -> PushPermission:
        return PushPermission.NOT_SUPPORTED

    async def show(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        raise RuntimeError(NOT_SUPPORTED_MESSAGE)


class HttpPushGateway:
    """Push gateway reached over HTTP."""

    def __init__(self, base_url: str, session: aiohttp.ClientSession):
        self.base_url = base_url.rstrip("/")
        self.session = session

    async def _read_json(self, response, allow_empty: bool = False) -> Dict[str, Any]:
        try:
            data = await response.json(content_type=None)
        except ValueError as e:
            raise TransportError(f"{INVALID_RESPONSE_MESSAGE}: {e}") from e
        if data is None and allow_empty:
            return {}
        if not isinstance(data, dict):
            raise TransportError(INVALID_RESPONSE_MESSAGE)
        return data

    async def permission(self) -> PushPermission:
        async with self.session.get(f"{self.base_url}/permission") as response:
            response.raise_for_status()
            data = await self._read_json(response)
            return PushPermission.parse(data.get("permission"))

    async def request_permission(self) -> PushPermission:
        async with self.session.post(f"{self.base_url}/permission/request") as response:
            response.raise_for_status()
            data = await self._read_json(response)
            return PushPermission.parse(data.get("permission"))

    async def show(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        async with self.session.post(f"{self.base_url}/notify", json=payload) as response:
            response.raise_for_status()
            return await self._read_json(response, allow_empty=True)


class PushNotifier:
    """Shows a single push notification in the operator's browser session."""

    def __init__(self, config: PushConfig, gateway: Optional[PushGateway] = None):
        self.config = config
        self.gateway = gateway
        self.session: Optional[aiohttp.ClientSession] = None

    async def __aenter__(self):
        """Async context manager entry."""
        await self.open()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        """Async context manager exit."""
        await self.close()

    async def open(self) -> None:
        """Connect to the configured gateway, if any."""
        if self.gateway is None:
            if self.config.gateway_url:
                self.session = aiohttp.ClientSession(
                    timeout=aiohttp.ClientTimeout(total=self.config.timeout_seconds)
                )
                self.gateway = HttpPushGateway(self.config.gateway_url, self.session)
            else:
                self.gateway = UnavailablePushGateway()

    async def close(self) -> None:
        if self.session:
            await self.session.close()
            self.session = None

    def _gateway(self) -> PushGateway:
        if self.gateway is None:
            self.gateway = UnavailablePushGateway()
        return self.gateway

    async def get_permission(self) -> PushPermission:
        try:
            return await self._gateway().permission()
        except GATEWAY_ERRORS as e:
            logger.warning(f"Could not read push permission: {e}")
            return PushPermission.NOT_SUPPORTED

    async def is_supported(self) -> bool:
        return await self.get_permission() != PushPermission.NOT_SUPPORTED

    async def send(self, title: str, body: str, icon: Optional[str] = None,
                   url: Optional[str] = None) -> SendResult:
        """
        Show one push notification.

        Permission is requested when still undecided. Denied or unsupported
        sessions produce a failed result.
        """
        if not self.config.enabled:
            return SendResult.fail("Push delivery disabled")

        try:
            permission = await self._gateway().permission()
            if permission == PushPermission.NOT_SUPPORTED:
                return SendResult.fail(NOT_SUPPORTED_MESSAGE)

            if permission == PushPermission.DEFAULT:
                permission = await self._gateway().request_permission()

            if permission != PushPermission.GRANTED:
                logger.info(f"Push not shown, permission is {permission.value}")
                return SendResult.fail(PERMISSION_DENIED_MESSAGE, permission=permission.value)

            payload = {
                "title": title,
                "body": body,
                "icon": icon or self.config.icon,
                "badge": self.config.icon,
                "tag": PUSH_TAG,
                "url": url or self.config.click_url,
                "require_interaction": False,
                "silent": False,
            }
            response = await self._gateway().show(payload)
            return SendResult.ok(notification_tag=PUSH_TAG, response=response)

        except GATEWAY_ERRORS as e:
            logger.error(f"Failed to send push notification: {e}")
            return SendResult.fail(str(e) or type(e).__name__)

    async def send_notification(self, notification: Notification) -> SendResult:
        return await self.send(
            title=notification.subject or self.config.default_title,
            body=notification.body,
        )
