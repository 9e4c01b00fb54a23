"""
Tests for notification sinks and ``notify_safely``.

A failing sink must never break the write that triggered it.  The
commit-bound sink runs against its own scratch engine so its commits and
rollbacks stay out of the shared test transaction.
"""

import pytest
from sqlalchemy import create_engine, text
from sqlalchemy.orm import Session, sessionmaker

from stipend_kernel.exceptions import ConcurrencyConflictError
from stipend_kernel.services import (
    CommitBoundNotificationSink,
    LoggingNotificationSink,
    NotificationEvent,
    RecordingNotificationSink,
    notify_safely,
    run_with_retry,
)


class _ExplodingSink:
    def notify(self, event_type, message, payload):
        raise RuntimeError("smtp down")


class TestNotifySafely:

    def test_delivers_to_sink(self):
        sink = RecordingNotificationSink()
        notify_safely(sink, NotificationEvent.PERIOD_PAID, "paid", {"request_id": "r1"})

        assert len(sink.messages) == 1
        assert sink.messages[0].payload == {"request_id": "r1"}
        assert sink.of_type(NotificationEvent.PERIOD_PAID) == sink.messages
        assert sink.of_type(NotificationEvent.PERIOD_CANCELLED) == []

    def test_no_sink_is_a_no_op(self):
        notify_safely(None, NotificationEvent.PERIOD_PAID, "paid")

    def test_missing_payload_defaults_to_empty(self):
        sink = RecordingNotificationSink()
        notify_safely(sink, NotificationEvent.REQUEST_DELETED, "gone")
        assert sink.messages[0].payload == {}

    def test_sink_failure_is_logged_not_raised(self, captured_logs):
        notify_safely(_ExplodingSink(), NotificationEvent.REQUEST_SUBMITTED, "hello")

        [record] = [r for r in captured_logs() if r["message"] == "notification_failed"]
        assert record["level"] == "WARNING"
        assert record["event_type"] == "request_submitted"
        assert record["exc_type"] == "RuntimeError"


class TestLoggingSink:

    def test_emits_structured_line(self, captured_logs):
        LoggingNotificationSink().notify(
            NotificationEvent.ALLOCATION_COMPLETED, "done", {"allocation_id": "a1"}
        )

        [record] = [r for r in captured_logs() if r["message"] == "notification_emitted"]
        assert record["event_type"] == "allocation_completed"
        assert record["notification"] == "done"
        assert record["payload"] == {"allocation_id": "a1"}


@pytest.fixture
def scratch_factory():
    engine = create_engine("sqlite://")
    yield sessionmaker(bind=engine)
    engine.dispose()


class TestCommitBoundSink:

    def test_held_until_commit(self, scratch_factory):
        recording = RecordingNotificationSink()
        with scratch_factory() as session:
            sink = CommitBoundNotificationSink(session, recording)
            session.execute(text("SELECT 1"))
            sink.notify(NotificationEvent.REQUEST_APPROVED, "approved", {"request_id": "r1"})

            assert recording.messages == []
            assert sink.pending == 1

            session.commit()

        assert [m.payload for m in recording.messages] == [{"request_id": "r1"}]
        assert sink.pending == 0

    def test_rollback_drops(self, scratch_factory, captured_logs):
        recording = RecordingNotificationSink()
        with scratch_factory() as session:
            sink = CommitBoundNotificationSink(session, recording)
            session.execute(text("SELECT 1"))
            sink.notify(NotificationEvent.REQUEST_APPROVED, "approved", {})
            session.rollback()

            session.execute(text("SELECT 1"))
            session.commit()

        assert recording.messages == []
        [record] = [r for r in captured_logs() if r["message"] == "notifications_discarded"]
        assert record["discarded"] == 1

    def test_failing_sink_does_not_break_commit(self, scratch_factory, captured_logs):
        with scratch_factory() as session:
            sink = CommitBoundNotificationSink(session, _ExplodingSink())
            session.execute(text("SELECT 1"))
            sink.notify(NotificationEvent.PERIOD_PAID, "paid", {})
            session.commit()

        assert any(r["message"] == "notification_failed" for r in captured_logs())

    def test_retried_unit_of_work_notifies_once(self, scratch_factory):
        recording = RecordingNotificationSink()
        attempts = []

        def approve(session: Session):
            attempts.append(session)
            sink = CommitBoundNotificationSink(session, recording)
            session.execute(text("SELECT 1"))
            sink.notify(NotificationEvent.REQUEST_APPROVED, "approved", {"attempt": len(attempts)})
            if len(attempts) == 1:
                raise ConcurrencyConflictError("approve", "lock not available")
            return "ok"

        assert run_with_retry(approve, scratch_factory, "approve") == "ok"
        assert len(attempts) == 2
        assert [m.payload for m in recording.messages] == [{"attempt": 2}]
