"""
Notification templating and delivery for EventManager.
"""

from .naming import TemplateName, split_template_name, compose_template_name, normalize_state
from .delivery import SendResult, RetryPolicy, DispatchOutcome, DispatchSummary, OutcomeStatus
from .email import EmailNotifier
from .push import PushNotifier, PushPermission, HttpPushGateway

__all__ = [
    "TemplateName",
    "split_template_name",
    "compose_template_name",
    "normalize_state",
    "SendResult",
    "RetryPolicy",
    "DispatchOutcome",
    "DispatchSummary",
    "OutcomeStatus",
    "EmailNotifier",
    "PushNotifier",
    "PushPermission",
    "HttpPushGateway",
]
