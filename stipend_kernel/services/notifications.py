"""
Notification sink -- best-effort, fire-and-forget messages.

Responsibility:
    The interface the kernel calls after submit / approve / reject /
    allocation events, a logging sink used by default and a recording
    sink for tests.  Delivery (Slack, e-mail) is an outside adapter.

Invariants enforced:
    - A failing sink never rolls back or blocks the core transaction:
      services call ``notify_safely``, which logs and swallows errors.
    - Services notify as soon as they flush.  Wrap the sink in
      ``CommitBoundNotificationSink`` so nothing goes out for a transaction
      that later rolls back.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Mapping, Protocol, runtime_checkable

from sqlalchemy import event
from sqlalchemy.orm import Session, SessionTransaction

from stipend_kernel.logging_config import get_logger

logger = get_logger("services.notifications")


class NotificationEvent:
    REQUEST_SUBMITTED = "request_submitted"
    REQUEST_APPROVED = "request_approved"
    REQUEST_REJECTED = "request_rejected"
    REQUEST_DELETED = "request_deleted"
    PERIOD_PAID = "period_paid"
    PERIOD_CANCELLED = "period_cancelled"
    ALLOCATION_COMPLETED = "allocation_completed"
    SUSPENSE_DISTRIBUTED = "suspense_distributed"
    NEGATIVE_EARNINGS_SUBMITTED = "negative_earnings_submitted"
    NEGATIVE_EARNINGS_DECIDED = "negative_earnings_decided"
    REMEASUREMENT_COMPLETED = "remeasurement_completed"


@runtime_checkable
class NotificationSink(Protocol):
    def notify(self, event_type: str, message: str, payload: Mapping[str, Any]) -> None:
        ...


class LoggingNotificationSink:
    """Default sink: one structured log line per notification."""

    def notify(self, event_type: str, message: str, payload: Mapping[str, Any]) -> None:
        logger.info(
            "notification_emitted",
            extra={
                "event_type": event_type,
                "notification": message,
                "payload": dict(payload),
            },
        )


@dataclass(frozen=True)
class RecordedNotification:
    event_type: str
    message: str
    payload: dict[str, Any]


@dataclass
class RecordingNotificationSink:
    """Keeps every notification in memory."""

    messages: list[RecordedNotification] = field(default_factory=list)

    def notify(self, event_type: str, message: str, payload: Mapping[str, Any]) -> None:
        self.messages.append(RecordedNotification(event_type, message, dict(payload)))

    def of_type(self, event_type: str) -> list[RecordedNotification]:
        return [m for m in self.messages if m.event_type == event_type]


def notify_safely(
    sink: NotificationSink | None,
    event_type: str,
    message: str,
    payload: Mapping[str, Any] | None = None,
) -> None:
    """Deliver to ``sink``; any sink failure is logged, never raised."""
    if sink is None:
        return
    try:
        sink.notify(event_type, message, payload or {})
    except Exception:
        logger.warning(
            "notification_failed",
            extra={"event_type": event_type},
            exc_info=True,
        )


class CommitBoundNotificationSink:
    """
    Holds notifications until ``session`` commits, then hands them to ``sink``.

    Ending the session's transaction any other way drops them, so a unit of
    work that is rolled back and retried notifies once.
    """

    def __init__(self, session: Session, sink: NotificationSink):
        self._sink = sink
        self._pending: list[tuple[str, str, dict[str, Any]]] = []
        event.listen(session, "after_commit", self._deliver)
        event.listen(session, "after_transaction_end", self._discard)

    @property
    def pending(self) -> int:
        return len(self._pending)

    def notify(self, event_type: str, message: str, payload: Mapping[str, Any]) -> None:
        self._pending.append((event_type, message, dict(payload)))

    def _deliver(self, session: Session) -> None:
        pending, self._pending = self._pending, []
        for event_type, message, payload in pending:
            notify_safely(self._sink, event_type, message, payload)

    def _discard(self, session: Session, transaction: SessionTransaction) -> None:
        # Savepoints end inside the outer transaction; only the root decides
        if transaction.parent is not None or not self._pending:
            return
        logger.info("notifications_discarded", extra={"discarded": len(self._pending)})
        self._pending = []
