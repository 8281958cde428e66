"""Shared cancellation signal.

A single CancelSignal is created per run and passed to the Supervisor and
every TaskRunner. It has two levels:

- cancel(): stop spawning, terminate running tasks, wait for the grace period
- force(): requested again while cancelling, cut the grace period short

Both are idempotent. Listeners are plain callables invoked synchronously in
the event loop thread; a listener subscribed after the level was reached is
called immediately.
"""

from __future__ import annotations

import logging
from collections.abc import Callable

from .errors import CancellationRequested

__all__ = ["CancelSignal"]

logger = logging.getLogger(__name__)

Listener = Callable[[], object]


class CancelSignal:
    """Explicit, shareable cancellation flag.

    Example:
        ```python
        cancel = CancelSignal()
        unsubscribe = cancel.subscribe(scope.cancel)
        try:
            await work()
        finally:
            unsubscribe()
        ```
    """

    def __init__(self) -> None:
        self._cancelled = False
        self._forced = False
        self._reason = ""
        self._listeners: list[Listener] = []
        self._force_listeners: list[Listener] = []

    @property
    def is_cancelled(self) -> bool:
        return self._cancelled

    @property
    def is_forced(self) -> bool:
        return self._forced

    @property
    def reason(self) -> str:
        return self._reason

    def cancel(self, reason: str = "cancelled") -> bool:
        """Request cancellation.

        Returns:
            True on the first call, False if already cancelled
        """
        if self._cancelled:
            return False
        self._cancelled = True
        self._reason = reason
        logger.info(f"Cancellation requested: {reason}")
        self._notify(self._listeners)
        return True

    def force(self) -> bool:
        """Escalate an ongoing cancellation (implies cancel()).

        Returns:
            True on the first escalation, False otherwise
        """
        self.cancel("forced")
        if self._forced:
            return False
        self._forced = True
        logger.info("Cancellation escalated, skipping remaining grace period")
        self._notify(self._force_listeners)
        return True

    def raise_if_cancelled(self) -> None:
        """Raise CancellationRequested if cancel() was called."""
        if self._cancelled:
            raise CancellationRequested(self._reason)

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Call ``listener`` on cancellation. Returns an unsubscribe function."""
        return self._add(self._listeners, listener, self._cancelled)

    def subscribe_force(self, listener: Listener) -> Callable[[], None]:
        """Call ``listener`` on escalation. Returns an unsubscribe function."""
        return self._add(self._force_listeners, listener, self._forced)

    def _add(
        self,
        listeners: list[Listener],
        listener: Listener,
        already_fired: bool,
    ) -> Callable[[], None]:
        if already_fired:
            listener()
            return lambda: None

        listeners.append(listener)

        def unsubscribe() -> None:
            if listener in listeners:
                listeners.remove(listener)

        return unsubscribe

    @staticmethod
    def _notify(listeners: list[Listener]) -> None:
        # listeners may unsubscribe themselves while being notified
        for listener in list(listeners):
            try:
                listener()
            except Exception as e:
                logger.warning(f"Error in cancellation listener: {e}")
