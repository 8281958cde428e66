"""OS signal handling.

Translates operator signals into CancelSignal operations instead of letting
them kill the supervisor outright:

- first SIGINT/SIGTERM: cancel the run (tasks get the grace period)
- any further signal: force, skipping the rest of the grace period

Children run in their own process groups, so a terminal Ctrl+C reaches
only the supervisor; it is the supervisor's job to stop them.
"""

from __future__ import annotations

import asyncio
import logging
import signal
import sys
from typing import Optional

from .cancellation import CancelSignal

__all__ = ["SignalManager"]

logger = logging.getLogger(__name__)


class SignalManager:
    """Install SIGINT/SIGTERM handlers that drive a CancelSignal.

    Example:
        ```python
        cancel = CancelSignal()
        signal_manager = SignalManager(cancel)

        async def main():
            await signal_manager.start()
            try:
                await supervisor.run_all(specs)
            finally:
                await signal_manager.stop()
        ```

    Attributes:
        cancel_signal: The signal object to drive
        signal_count: Number of signals received so far
    """

    def __init__(self, cancel_signal: CancelSignal) -> None:
        self.cancel_signal = cancel_signal
        self.signal_count = 0
        self._original_sigint_handler: Optional[signal.Handlers] = None
        self._running = False
        self._loop: Optional[asyncio.AbstractEventLoop] = None

    @property
    def is_running(self) -> bool:
        return self._running

    async def start(self) -> None:
        """Install the handlers. Must be called inside the event loop."""
        if self._running:
            logger.warning("SignalManager already running")
            return

        self._loop = asyncio.get_running_loop()
        self._running = True

        if sys.platform != "win32":
            self._loop.add_signal_handler(signal.SIGINT, self._handle_signal, signal.SIGINT)
            self._loop.add_signal_handler(signal.SIGTERM, self._handle_signal, signal.SIGTERM)
            logger.debug("Signal handlers installed")
        else:
            # Windows: no loop.add_signal_handler, hop back onto the loop thread
            loop = self._loop
            self._original_sigint_handler = signal.signal(
                signal.SIGINT,
                lambda sig, frame: loop.call_soon_threadsafe(self._handle_signal, signal.SIGINT),
            )
            logger.debug("SIGINT handler installed on Windows")

    async def stop(self) -> None:
        """Restore the original handlers."""
        if not self._running:
            return

        self._running = False

        if sys.platform != "win32" and self._loop:
            try:
                self._loop.remove_signal_handler(signal.SIGINT)
                self._loop.remove_signal_handler(signal.SIGTERM)
            except (RuntimeError, ValueError) as e:
                logger.debug(f"Error removing signal handlers: {e}")
        elif sys.platform == "win32" and self._original_sigint_handler is not None:
            try:
                signal.signal(signal.SIGINT, self._original_sigint_handler)
            except (OSError, ValueError) as e:
                logger.debug(f"Error restoring SIGINT handler: {e}")

        logger.debug("Signal handlers removed")

    def _handle_signal(self, signum: int) -> None:
        """Cancel on the first signal, force on every later one."""
        self.signal_count += 1
        name = signal.Signals(signum).name

        if not self.cancel_signal.is_cancelled:
            logger.info(f"{name} received, cancelling all tasks")
            self.cancel_signal.cancel(f"{name} received")
            return

        if self.cancel_signal.force():
            logger.warning(f"{name} received again, force killing remaining tasks")
        else:
            logger.debug(f"{name} ignored, already force killing")
