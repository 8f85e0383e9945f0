"""
Email transport for EventManager notifications.

Mail goes through the server-side send-email function. If that call cannot
be made at all (connection error, timeout) the EmailJS HTTP API is used as a
fallback.
"""

import asyncio
import logging
from typing import Any, Dict, List, Optional, Sequence

import aiohttp

from ..core.config import EmailConfig
from ..core.models import Notification, Recipient
from .delivery import SendResult

logger = logging.getLogger(__name__)


def valid_addresses(addresses: Sequence[Optional[str]]) -> List[str]:
    """Keep addresses that look deliverable (non-empty and containing '@')."""
    return [a.strip() for a in addresses if a and "@" in a]


class EmailNotifier:
    """Sends HTML email through the mail function with an EmailJS fallback."""

    def __init__(self, config: EmailConfig, session: Optional[aiohttp.ClientSession] = None):
        self.config = config
        self.session = session
        self._owns_session = session is None

    async def __aenter__(self):
        """Async context manager entry."""
        if self.session is None:
            self.session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=self.config.timeout_seconds)
            )
            self._owns_session = True
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        """Async context manager exit."""
        await self.close()

    async def close(self) -> None:
        if self.session and self._owns_session:
            await self.session.close()
            self.session = None

    def _ensure_session(self) -> aiohttp.ClientSession:
        if self.session is None:
            self.session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=self.config.timeout_seconds)
            )
            self._owns_session = True
        return self.session

    async def send(self, to: str, subject: str, html: str) -> SendResult:
        """
        Send one email.

        Args:
            to: Recipient address
            subject: Subject line
            html: HTML body

        Returns:
            Send result; never raises
        """
        if not self.config.function_url:
            logger.debug("Mail function not configured, using EmailJS")
            return await self.send_via_fallback(to, subject, html)

        try:
            return await self._send_via_function(to, subject, html)
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            logger.warning(f"Mail function unreachable for {to}: {e}; trying EmailJS")
            return await self.send_via_fallback(to, subject, html)

    async def _send_via_function(self, to: str, subject: str, html: str) -> SendResult:
        session = self._ensure_session()
        headers = {"Content-Type": "application/json"}
        if self.config.function_key:
            headers["Authorization"] = f"Bearer {self.config.function_key}"

        payload = {"to": to, "subject": subject, "html": html}
        async with session.post(self.config.function_url, json=payload, headers=headers) as response:
            if response.status >= 300:
                error_text = await response.text()
                logger.error(f"Mail function returned HTTP {response.status} for {to}")
                return SendResult.fail(f"HTTP {response.status}: {error_text}", recipient=to)

            try:
                body: Dict[str, Any] = await response.json(content_type=None)
            except ValueError:
                body = {}

            if isinstance(body, dict) and body.get("error"):
                error = body["error"]
                message = error.get("message") if isinstance(error, dict) else str(error)
                logger.error(f"Mail function rejected {to}: {message}")
                return SendResult.fail(message, recipient=to)

            return SendResult.ok(recipient=to, provider="function", response=body)

    async def send_via_fallback(self, to: str, subject: str, html: str) -> SendResult:
        """Send one email through the EmailJS HTTP API."""
        payload = {
            "service_id": self.config.emailjs_service_id,
            "template_id": self.config.emailjs_template_id,
            "user_id": self.config.emailjs_public_key,
            "template_params": {
                "to_email": to,
                "subject": subject,
                "message": html,
            },
        }
        try:
            session = self._ensure_session()
            async with session.post(
                self.config.emailjs_url,
                json=payload,
                headers={"Content-Type": "application/json"}
            ) as response:
                text = await response.text()
                if response.status >= 300:
                    logger.error(f"EmailJS returned HTTP {response.status} for {to}")
                    return SendResult.fail(f"EmailJS error: HTTP {response.status}", recipient=to)
                return SendResult.ok(recipient=to, provider="emailjs", response=text)
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            logger.error(f"EmailJS fallback failed for {to}: {e}")
            return SendResult.fail(str(e) or type(e).__name__, recipient=to)

    async def send_batch(self, recipients: Sequence[str], subject: str, html: str) -> List[SendResult]:
        """
        Send the same email to many addresses.

        Addresses are sent in groups of ``batch_size`` concurrently, with a
        pause between groups.

        Returns:
            One result per address, in input order
        """
        results: List[SendResult] = []
        size = max(1, self.config.batch_size)

        for start in range(0, len(recipients), size):
            batch = recipients[start:start + size]
            results.extend(await asyncio.gather(*(self.send(to, subject, html) for to in batch)))

            if start + size < len(recipients):
                await asyncio.sleep(self.config.batch_pause_seconds)

        return results

    async def send_notification(self, notification: Notification, recipients: Sequence[Recipient]) -> SendResult:
        """
        Email a notification to its resolved recipients.

        Succeeds when at least one address was delivered. ``data["results"]``
        holds the per-address results.
        """
        if not self.config.enabled:
            return SendResult.fail("Email delivery disabled")

        addresses = valid_addresses([r.email for r in recipients])
        if not addresses:
            return SendResult.fail("No hay emails válidos", successful=0, failed=0, total=0, results=[])

        subject = notification.subject or self.config.default_subject
        results = await self.send_batch(addresses, subject, notification.body)

        successful = sum(1 for r in results if r.success)
        failed = len(results) - successful
        logger.info(f"Notification {notification.id}: {successful} emails sent, {failed} failed")

        return SendResult(
            success=successful > 0,
            error=f"{failed} emails fallidos" if failed else None,
            data={"successful": successful, "failed": failed, "total": len(results), "results": results},
        )
