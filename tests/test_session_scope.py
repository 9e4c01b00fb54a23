"""
Tests for the engine accessors and session_scope().

The shared test engine is left alone: session_scope() runs against a
recording session factory patched into the engine module.
"""

import pytest

from stipend_kernel.db import engine as engine_module
from stipend_kernel.db.engine import get_session, get_session_factory, session_scope


class _RecordingSession:

    def __init__(self):
        self.calls = []

    def commit(self):
        self.calls.append("commit")

    def rollback(self):
        self.calls.append("rollback")

    def close(self):
        self.calls.append("close")


class _RecordingFactory:

    def __init__(self):
        self.sessions = []

    def __call__(self):
        session = _RecordingSession()
        self.sessions.append(session)
        return session


@pytest.fixture
def factory(monkeypatch):
    fake = _RecordingFactory()
    monkeypatch.setattr(engine_module, "_SessionFactory", fake)
    return fake


class TestSessionScope:

    def test_commits_and_closes(self, factory):
        with session_scope() as session:
            assert session is factory.sessions[0]
        assert session.calls == ["commit", "close"]

    def test_rolls_back_and_reraises(self, factory, captured_logs):
        with pytest.raises(ValueError, match="boom"):
            with session_scope():
                raise ValueError("boom")

        [session] = factory.sessions
        assert session.calls == ["rollback", "close"]
        [record] = [r for r in captured_logs() if r["message"] == "transaction_rolled_back"]
        assert record["level"] == "WARNING"
        assert record["exc_type"] == "ValueError"

    def test_new_session_per_scope(self, factory):
        with session_scope():
            pass
        with session_scope():
            pass
        assert len(factory.sessions) == 2


class TestUninitialized:

    @pytest.fixture(autouse=True)
    def _no_factory(self, monkeypatch):
        monkeypatch.setattr(engine_module, "_SessionFactory", None)

    def test_get_session_raises(self):
        with pytest.raises(RuntimeError):
            get_session()

    def test_get_session_factory_raises(self):
        with pytest.raises(RuntimeError):
            get_session_factory()
