"""
Delivery results and retry budget for EventManager notifications.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional


@dataclass
class SendResult:
    """Outcome of a single transport send."""

    success: bool
    error: Optional[str] = None
    recipient: Optional[str] = None
    data: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def ok(cls, recipient: Optional[str] = None, **data: Any) -> "SendResult":
        return cls(success=True, recipient=recipient, data=data)

    @classmethod
    def fail(cls, error: str, recipient: Optional[str] = None, **data: Any) -> "SendResult":
        return cls(success=False, error=error, recipient=recipient, data=data)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": self.success,
            "error": self.error,
            "recipient": self.recipient,
            "data": self.data,
        }


@dataclass
class RetryPolicy:
    """Attempt budget for a notification."""

    max_attempts: int = 3

    def can_retry(self, attempts: int) -> bool:
        """True while another dispatch attempt is allowed."""
        return attempts < self.max_attempts


class OutcomeStatus(Enum):
    """Per-notification result of a dispatch pass."""
    SENT = "sent"
    RETRYING = "retrying"
    FAILED = "failed"
    SKIPPED = "skipped"


@dataclass
class DispatchOutcome:
    """What happened to one notification during a pass."""

    notification_id: int
    status: OutcomeStatus
    attempts: Optional[int] = None
    recipients: int = 0
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "notification_id": self.notification_id,
            "status": self.status.value,
            "attempts": self.attempts,
            "recipients": self.recipients,
            "error": self.error,
        }


@dataclass
class DispatchSummary:
    """Totals for one dispatch pass."""

    started_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    finished_at: Optional[datetime] = None
    outcomes: List[DispatchOutcome] = field(default_factory=list)

    def add(self, outcome: DispatchOutcome) -> None:
        self.outcomes.append(outcome)

    def _count(self, status: OutcomeStatus) -> int:
        return sum(1 for o in self.outcomes if o.status == status)

    @property
    def processed(self) -> int:
        return sum(1 for o in self.outcomes if o.status != OutcomeStatus.SKIPPED)

    @property
    def sent(self) -> int:
        return self._count(OutcomeStatus.SENT)

    @property
    def failed(self) -> int:
        """Attempts that failed, whether retried later or given up."""
        return self._count(OutcomeStatus.FAILED) + self._count(OutcomeStatus.RETRYING)

    @property
    def skipped(self) -> int:
        return self._count(OutcomeStatus.SKIPPED)

    @property
    def duration_seconds(self) -> float:
        if not self.finished_at:
            return 0.0
        return (self.finished_at - self.started_at).total_seconds()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "processed": self.processed,
            "sent": self.sent,
            "failed": self.failed,
            "skipped": self.skipped,
            "duration_seconds": self.duration_seconds,
            "outcomes": [o.to_dict() for o in self.outcomes],
        }
