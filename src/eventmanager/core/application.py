"""
Core application wiring for EventManager notifications.
"""

import logging
from typing import Any, Dict, Optional

from .config import AppConfig
from .session import SessionContext
from ..database.manager import DatabaseManager
from ..notifications.dispatcher import DispatchEngine
from ..notifications.editor import NotificationComposer, TemplateEditor
from ..notifications.email import EmailNotifier
from ..notifications.purchase import PurchaseNotifier
from ..notifications.push import PushNotifier
from ..notifications.resolver import RecipientResolver
from ..stores.customers import CustomerStore
from ..stores.notifications import NotificationStore
from ..stores.templates import TemplateStore
from ..utils.logging import DispatchLogger, setup_logging

logger = logging.getLogger(__name__)


class EventManagerApplication:
    """Builds the stores, transports and dispatch engine from configuration."""

    def __init__(self, config: AppConfig, session: Optional[SessionContext] = None,
                 configure_logging: bool = True):
        """
        Initialize the application.

        Args:
            config: Application configuration
            session: Operator session (built from config when omitted)
            configure_logging: Install log handlers during initialize()
        """
        self.config = config
        self.session = session or SessionContext.from_config(config.session)
        self.configure_logging = configure_logging

        self.database_manager = DatabaseManager(config)
        self.templates = TemplateStore(self.database_manager, config.templates.default_module)
        self.customers = CustomerStore(self.database_manager)
        self.notifications = NotificationStore(self.database_manager)
        self.resolver = RecipientResolver(self.customers)

        self.email = EmailNotifier(config.email)
        self.push = PushNotifier(config.push)
        self.dispatch_logger: Optional[DispatchLogger] = None
        self.dispatcher: Optional[DispatchEngine] = None
        self.purchases: Optional[PurchaseNotifier] = None
        self._initialized = False

    async def initialize(self) -> None:
        """Open the database and transports."""
        if self._initialized:
            return

        if self.configure_logging:
            _, self.dispatch_logger = setup_logging(self.config.logging)
        logger.info("Initializing EventManager notifications")

        await self.database_manager.initialize()
        await self.push.open()

        self.dispatcher = DispatchEngine(
            self.config.dispatch,
            self.notifications,
            self.resolver,
            self.email,
            self.push,
            dispatch_logger=self.dispatch_logger,
        )
        self.purchases = PurchaseNotifier(
            self.customers,
            self.notifications,
            self.dispatcher,
            push=self.push,
        )
        self._initialized = True

    def template_editor(self) -> TemplateEditor:
        return TemplateEditor(self.templates)

    def notification_composer(self) -> NotificationComposer:
        return NotificationComposer(self.notifications, self.templates, self.session)

    async def shutdown(self) -> None:
        """Stop the dispatcher and release connections."""
        logger.info("Shutting down EventManager notifications")
        if self.dispatcher:
            self.dispatcher.stop()
        await self.email.close()
        await self.push.close()
        await self.database_manager.close()
        self._initialized = False

    async def run(self) -> None:
        """Run the periodic dispatcher until interrupted."""
        await self.initialize()
        try:
            if not self.config.dispatch.enabled:
                logger.warning("Dispatcher disabled in configuration, nothing to run")
                return
            await self.dispatcher.run_forever(install_signal_handlers=True)
        finally:
            await self.shutdown()

    async def get_status(self) -> Dict[str, Any]:
        stats = await self.database_manager.get_database_stats()
        return {
            "database": stats,
            "dispatch_interval_seconds": self.config.dispatch.interval_seconds,
            "max_attempts": self.config.dispatch.max_attempts,
            "running": bool(self.dispatcher and self.dispatcher.running),
            "user": self.session.username,
        }
