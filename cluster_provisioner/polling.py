"""Bounded, cancellable polling."""

import threading
import time
from typing import Callable, TypeVar

T = TypeVar("T")


class Deadline:
    """Point in time after which a wait gives up.

    A deadline also expires early when its cancel event is set. Several
    workers may share one deadline.

    Args:
        timeout: Seconds from now, or None to wait until cancelled
        cancel_event: Optional event that cancels every wait on this deadline
    """

    def __init__(self, timeout: float | None, cancel_event: threading.Event | None = None):
        self.timeout = timeout
        self._expires_at = None if timeout is None else time.monotonic() + timeout
        self._cancel_event = cancel_event if cancel_event is not None else threading.Event()

    @property
    def cancelled(self) -> bool:
        return self._cancel_event.is_set()

    def remaining(self) -> float | None:
        """Seconds left, or None for an open-ended deadline."""
        if self._expires_at is None:
            return None
        return max(self._expires_at - time.monotonic(), 0.0)

    def expired(self) -> bool:
        if self.cancelled:
            return True
        remaining = self.remaining()
        return remaining is not None and remaining <= 0

    def sleep(self, interval: float) -> bool:
        """Sleep for ``interval`` or until the deadline, whichever comes first.

        Returns:
            True if the caller may try again, False once the deadline has passed
        """
        if self.expired():
            return False
        remaining = self.remaining()
        delay = interval if remaining is None else min(interval, remaining)
        self._cancel_event.wait(delay)
        return not self.expired()


def poll(check: Callable[[], T | None], interval: float, deadline: Deadline) -> T | None:
    """Call ``check`` until it returns a value or the deadline passes.

    Exceptions raised by ``check`` propagate to the caller.

    Returns:
        The first non-None value from ``check``, or None on expiry
    """
    while True:
        result = check()
        if result is not None:
            return result
        if not deadline.sleep(interval):
            return None
