"""SignalManager tests.

Tests the signal handling policy:
- first signal cancels
- later signals force
- handler installation and removal
"""

from __future__ import annotations

import asyncio
import os
import signal
import sys

import pytest

from congregation.cancellation import CancelSignal
from congregation.signal_manager import SignalManager


class TestSignalManagerInit:
    """SignalManager initialisation."""

    def test_init(self):
        cancel = CancelSignal()
        manager = SignalManager(cancel)

        assert manager.cancel_signal is cancel
        assert manager.signal_count == 0
        assert not manager.is_running


class TestSignalPolicy:
    """Signal handling, calling the handler directly."""

    def test_first_signal_cancels(self):
        cancel = CancelSignal()
        manager = SignalManager(cancel)

        manager._handle_signal(signal.SIGINT)

        assert manager.signal_count == 1
        assert cancel.is_cancelled
        assert not cancel.is_forced
        assert cancel.reason == "SIGINT received"

    def test_second_signal_forces(self):
        cancel = CancelSignal()
        manager = SignalManager(cancel)

        manager._handle_signal(signal.SIGINT)
        manager._handle_signal(signal.SIGINT)

        assert manager.signal_count == 2
        assert cancel.is_forced

    def test_sigterm_then_sigint(self):
        cancel = CancelSignal()
        manager = SignalManager(cancel)

        manager._handle_signal(signal.SIGTERM)
        assert cancel.reason == "SIGTERM received"
        manager._handle_signal(signal.SIGINT)
        assert cancel.is_forced

    def test_further_signals_are_harmless(self):
        cancel = CancelSignal()
        manager = SignalManager(cancel)

        for _ in range(4):
            manager._handle_signal(signal.SIGINT)

        assert manager.signal_count == 4
        assert cancel.is_forced

    def test_already_cancelled_signal_forces(self):
        """A signal during a programmatic cancellation escalates it."""
        cancel = CancelSignal()
        cancel.cancel("test")
        manager = SignalManager(cancel)

        manager._handle_signal(signal.SIGINT)
        assert cancel.is_forced


class TestSignalManagerLifecycle:
    """start()/stop()."""

    @pytest.mark.asyncio
    async def test_start_stop(self):
        manager = SignalManager(CancelSignal())

        await manager.start()
        assert manager.is_running
        await manager.stop()
        assert not manager.is_running

    @pytest.mark.asyncio
    async def test_double_start(self):
        manager = SignalManager(CancelSignal())

        await manager.start()
        await manager.start()
        assert manager.is_running
        await manager.stop()

    @pytest.mark.asyncio
    async def test_stop_without_start(self):
        manager = SignalManager(CancelSignal())
        await manager.stop()
        assert not manager.is_running

    @pytest.mark.asyncio
    @pytest.mark.skipif(sys.platform == "win32", reason="POSIX-specific test")
    async def test_real_signal_is_handled(self):
        cancel = CancelSignal()
        manager = SignalManager(cancel)

        await manager.start()
        try:
            os.kill(os.getpid(), signal.SIGTERM)
            for _ in range(50):
                if cancel.is_cancelled:
                    break
                await asyncio.sleep(0.01)
        finally:
            await manager.stop()

        assert cancel.is_cancelled
        assert manager.signal_count == 1
