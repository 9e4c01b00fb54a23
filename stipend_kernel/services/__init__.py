"""Kernel services: every write goes through here, flush-only."""

from stipend_kernel.services.allocation_service import AllocationService
from stipend_kernel.services.ledger_service import LedgerService
from stipend_kernel.services.negative_earnings_service import NegativeEarningsService
from stipend_kernel.services.notifications import (
    CommitBoundNotificationSink,
    LoggingNotificationSink,
    NotificationEvent,
    NotificationSink,
    RecordingNotificationSink,
    notify_safely,
)
from stipend_kernel.services.pay_period_service import PayPeriodService
from stipend_kernel.services.practice_service import PracticeService
from stipend_kernel.services.remeasurement_service import RemeasurementService
from stipend_kernel.services.retry import run_with_retry
from stipend_kernel.services.sequence_service import SequenceService
from stipend_kernel.services.stipend_request_service import StipendRequestService

__all__ = [
    "AllocationService",
    "CommitBoundNotificationSink",
    "LedgerService",
    "LoggingNotificationSink",
    "NegativeEarningsService",
    "NotificationEvent",
    "NotificationSink",
    "PayPeriodService",
    "PracticeService",
    "RecordingNotificationSink",
    "RemeasurementService",
    "SequenceService",
    "StipendRequestService",
    "notify_safely",
    "run_with_retry",
]
