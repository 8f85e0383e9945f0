"""
Command-line interface for EventManager notifications.
"""

import argparse
import asyncio
import logging
import sys
from datetime import timedelta
from rich.console import Console

from .core.config import AppConfig
from .core.application import EventManagerApplication
from .core.exceptions import NotificationError
from .core.models import utcnow
from .database.manager import DatabaseError
from .notifications.delivery import OutcomeStatus

console = Console()
logger = logging.getLogger(__name__)

_OUTCOME_STYLE = {
    OutcomeStatus.SENT: "green",
    OutcomeStatus.RETRYING: "yellow",
    OutcomeStatus.FAILED: "red",
    OutcomeStatus.SKIPPED: "dim",
}


def setup_logging():
    """Setup basic logging."""
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )


def _application(config_path, configure_logging: bool = False) -> EventManagerApplication:
    config = AppConfig.from_yaml(config_path)
    return EventManagerApplication(config, configure_logging=configure_logging)


async def run_dispatcher_with_config(config_path=None):
    """Run the periodic dispatcher."""
    console.print("[bold green]Starting EventManager dispatcher[/bold green]")
    app = _application(config_path, configure_logging=True)
    console.print(f"[dim]Dispatch interval: {app.config.dispatch.interval_seconds}s[/dim]")
    await app.run()


async def dispatch_once_with_config(config_path=None):
    """Run a single dispatch pass."""
    app = _application(config_path)
    await app.initialize()
    try:
        summary = await app.dispatcher.run_pass()
        for outcome in summary.outcomes:
            style = _OUTCOME_STYLE[outcome.status]
            line = f"  #{outcome.notification_id}: [{style}]{outcome.status.value}[/{style}]"
            if outcome.error:
                line += f" ({outcome.error})"
            console.print(line)
        console.print(
            f"[bold]Processed {summary.processed}[/bold]: "
            f"[green]{summary.sent} sent[/green], [red]{summary.failed} failed[/red], "
            f"{summary.skipped} skipped"
        )
    finally:
        await app.shutdown()


async def send_notification_with_config(config_path=None, notification_id=None):
    """Send one notification immediately."""
    app = _application(config_path)
    await app.initialize()
    try:
        outcome = await app.dispatcher.send_now(notification_id)
        style = _OUTCOME_STYLE[outcome.status]
        console.print(f"Notification #{notification_id}: [{style}]{outcome.status.value}[/{style}]")
        if outcome.error:
            console.print(f"[{style}]{outcome.error}[/{style}]")
        return outcome.status == OutcomeStatus.SENT
    finally:
        await app.shutdown()


async def init_database_with_config(config_path=None):
    """Create tables and show row counts."""
    app = _application(config_path)
    await app.initialize()
    try:
        stats = await app.database_manager.get_database_stats()
        console.print(f"[green]✓ Database ready: {app.config.database_url()}[/green]")
        for table, count in stats.items():
            console.print(f"  {table}: {count}")
    finally:
        await app.shutdown()


async def list_templates_with_config(config_path=None, module=None, active=False, search=None, modules=False):
    """List templates."""
    app = _application(config_path)
    await app.initialize()
    try:
        if modules:
            for name in app.config.templates.modules:
                count = len(await app.templates.get_by_module(name))
                console.print(f"  {name}: {count}")
            return

        if search:
            templates = await app.templates.search(search)
        elif module:
            templates = await app.templates.get_by_module(module)
        elif active:
            templates = await app.templates.get_active()
        else:
            templates = await app.templates.get_all()

        if not templates:
            console.print("[yellow]No templates found[/yellow]")
            return
        for t in templates:
            state_style = "green" if t.is_active else "dim"
            channel = t.channel.value if t.channel else "-"
            console.print(
                f"  #{t.id} [bold]{t.name}[/bold] [{t.module}] {channel} "
                f"[{state_style}]{t.state.value}[/{state_style}]"
            )
    finally:
        await app.shutdown()


async def list_notifications_with_config(config_path=None, state=None, customer_id=None, limit=None):
    """List notifications."""
    app = _application(config_path)
    await app.initialize()
    try:
        if customer_id is not None:
            notifications = await app.notifications.get_by_customer(customer_id)
        elif state:
            notifications = await app.notifications.get_by_state(state)
        else:
            notifications = await app.notifications.get_all(limit=limit)

        if not notifications:
            console.print("[yellow]No notifications found[/yellow]")
            return
        for n in notifications:
            template = await app.templates.resolve(n.template_id)
            template_name = template.name if template else "-"
            audience = f"cliente {n.customer_id}" if n.customer_id is not None else "todos"
            console.print(
                f"  #{n.id} {n.scheduled_at:%Y-%m-%d %H:%M} {n.channel.value} {n.state.value} "
                f"({n.attempts} intentos) [bold]{n.subject}[/bold] -> {audience} [dim]{template_name}[/dim]"
            )
            if n.error_message:
                console.print(f"      [red]{n.error_message}[/red]")
    finally:
        await app.shutdown()


async def purge_notifications_with_config(config_path=None, days=30):
    """Delete notifications scheduled more than ``days`` ago."""
    app = _application(config_path)
    await app.initialize()
    try:
        cutoff = utcnow() - timedelta(days=days)
        deleted = await app.notifications.delete_older_than(cutoff)
        console.print(f"[green]Deleted {len(deleted)} notifications older than {days} days[/green]")
    finally:
        await app.shutdown()


def create_parser():
    """Create argument parser."""
    parser = argparse.ArgumentParser(
        description="EventManager notification dispatcher",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  %(prog)s run --config config/default.yaml    Run the periodic dispatcher
  %(prog)s dispatch                           Run one dispatch pass
  %(prog)s send 42                            Send notification 42 now
  %(prog)s templates --module Clientes        List templates of a module
  %(prog)s purge --days 90                    Delete old notifications
        """
    )

    subparsers = parser.add_subparsers(dest='command', help='Available commands')

    def add_config(sub):
        sub.add_argument('--config', '-c',
                         help='Configuration file path (default: config/default.yaml)',
                         default='config/default.yaml')

    add_config(subparsers.add_parser('run', help='Run the periodic dispatcher'))
    add_config(subparsers.add_parser('dispatch', help='Run a single dispatch pass'))
    add_config(subparsers.add_parser('init-db', help='Create database tables'))

    send_parser = subparsers.add_parser('send', help='Send a notification now')
    add_config(send_parser)
    send_parser.add_argument('notification_id', type=int, help='Notification ID')

    templates_parser = subparsers.add_parser('templates', help='List templates')
    add_config(templates_parser)
    templates_parser.add_argument('--module', help='Only templates of this module')
    templates_parser.add_argument('--active', action='store_true', help='Only active templates')
    templates_parser.add_argument('--search', help='Search name, module or subject')
    templates_parser.add_argument('--modules', action='store_true', help='Count templates per known module')

    notifications_parser = subparsers.add_parser('notifications', help='List notifications')
    add_config(notifications_parser)
    notifications_parser.add_argument('--state', help='Pendiente, Enviada or Fallida')
    notifications_parser.add_argument('--customer', type=int, help='Notifications reaching this customer')
    notifications_parser.add_argument('--limit', type=int, help='Maximum rows')

    purge_parser = subparsers.add_parser('purge', help='Delete old notifications')
    add_config(purge_parser)
    purge_parser.add_argument('--days', type=int, default=30, help='Age in days (default: 30)')

    return parser


def main():
    """Main entry point."""
    setup_logging()

    parser = create_parser()
    args = parser.parse_args()

    if not args.command:
        parser.print_help()
        sys.exit(1)

    try:
        if args.command == 'run':
            asyncio.run(run_dispatcher_with_config(args.config))
        elif args.command == 'dispatch':
            asyncio.run(dispatch_once_with_config(args.config))
        elif args.command == 'send':
            if not asyncio.run(send_notification_with_config(args.config, args.notification_id)):
                sys.exit(1)
        elif args.command == 'init-db':
            asyncio.run(init_database_with_config(args.config))
        elif args.command == 'templates':
            asyncio.run(list_templates_with_config(
                args.config, args.module, args.active, args.search, args.modules
            ))
        elif args.command == 'notifications':
            asyncio.run(list_notifications_with_config(args.config, args.state, args.customer, args.limit))
        elif args.command == 'purge':
            asyncio.run(purge_notifications_with_config(args.config, args.days))
    except KeyboardInterrupt:
        console.print("\n[yellow]Interrupted by user[/yellow]")
        sys.exit(0)
    except (NotificationError, DatabaseError) as e:
        console.print(f"[red]Error: {e}[/red]")
        logger.debug("Command failed", exc_info=True)
        sys.exit(1)


if __name__ == "__main__":
    main()
