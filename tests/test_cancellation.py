"""CancelSignal tests."""

from __future__ import annotations

import pytest

from congregation.cancellation import CancelSignal
from congregation.errors import CancellationRequested


class TestCancel:
    """cancel() semantics."""

    def test_initial_state(self):
        cancel = CancelSignal()
        assert not cancel.is_cancelled
        assert not cancel.is_forced
        assert cancel.reason == ""

    def test_cancel_is_idempotent(self):
        cancel = CancelSignal()
        assert cancel.cancel("first") is True
        assert cancel.cancel("second") is False
        assert cancel.is_cancelled
        assert cancel.reason == "first"

    def test_raise_if_cancelled(self):
        cancel = CancelSignal()
        cancel.raise_if_cancelled()

        cancel.cancel("SIGINT received")
        with pytest.raises(CancellationRequested, match="SIGINT received"):
            cancel.raise_if_cancelled()


class TestForce:
    """force() semantics."""

    def test_force_implies_cancel(self):
        cancel = CancelSignal()
        assert cancel.force() is True
        assert cancel.is_cancelled
        assert cancel.is_forced
        assert cancel.reason == "forced"

    def test_force_after_cancel_keeps_reason(self):
        cancel = CancelSignal()
        cancel.cancel("SIGINT received")
        cancel.force()
        assert cancel.reason == "SIGINT received"

    def test_force_is_idempotent(self):
        cancel = CancelSignal()
        assert cancel.force() is True
        assert cancel.force() is False


class TestListeners:
    """subscribe() and subscribe_force()."""

    def test_listener_called_once(self):
        cancel = CancelSignal()
        calls = []
        cancel.subscribe(lambda: calls.append("cancel"))

        cancel.cancel()
        cancel.cancel()
        assert calls == ["cancel"]

    def test_late_subscriber_called_immediately(self):
        cancel = CancelSignal()
        cancel.cancel()
        calls = []
        cancel.subscribe(lambda: calls.append("late"))
        assert calls == ["late"]

    def test_unsubscribe(self):
        cancel = CancelSignal()
        calls = []
        unsubscribe = cancel.subscribe(lambda: calls.append("cancel"))
        unsubscribe()
        unsubscribe()

        cancel.cancel()
        assert calls == []

    def test_force_listeners(self):
        cancel = CancelSignal()
        calls = []
        cancel.subscribe(lambda: calls.append("cancel"))
        cancel.subscribe_force(lambda: calls.append("force"))

        cancel.cancel()
        assert calls == ["cancel"]
        cancel.force()
        assert calls == ["cancel", "force"]

    def test_failing_listener_does_not_block_others(self):
        cancel = CancelSignal()
        calls = []

        def broken() -> None:
            raise RuntimeError("boom")

        cancel.subscribe(broken)
        cancel.subscribe(lambda: calls.append("ok"))
        cancel.cancel()
        assert calls == ["ok"]

    def test_listener_may_unsubscribe_itself(self):
        cancel = CancelSignal()
        calls = []
        unsubscribers = []

        def once() -> None:
            calls.append("once")
            unsubscribers[0]()

        unsubscribers.append(cancel.subscribe(once))
        cancel.subscribe(lambda: calls.append("other"))
        cancel.cancel()
        assert calls == ["once", "other"]
