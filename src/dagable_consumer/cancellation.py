"""Cooperative cancellation for a single job attempt."""

from __future__ import annotations

import threading
import time

from dagable_consumer.errors import JobCancelledError


class CancellationToken:
    """Deadline plus external stop flag, checked at every suspension point.

    Tokens are shared between the collector thread and pool workers; a token
    never un-cancels once `cancel()` has been called or the deadline passed.
    """

    def __init__(self, *, timeout_seconds: float | None = None) -> None:
        self._event = threading.Event()
        self._reason: str | None = None
        self._deadline = (
            time.monotonic() + timeout_seconds if timeout_seconds and timeout_seconds > 0 else None
        )

    @classmethod
    def none(cls) -> CancellationToken:
        return cls()

    def cancel(self, reason: str = "stop requested") -> None:
        if not self._event.is_set():
            self._reason = reason
            self._event.set()

    @property
    def cancelled(self) -> bool:
        if self._event.is_set():
            return True
        if self._deadline is not None and time.monotonic() >= self._deadline:
            self.cancel("deadline exceeded")
            return True
        return False

    @property
    def reason(self) -> str | None:
        return self._reason

    def remaining(self) -> float | None:
        """Seconds until the deadline, or None when no deadline is set."""

        if self._deadline is None:
            return None
        return max(0.0, self._deadline - time.monotonic())

    def raise_if_cancelled(self) -> None:
        if self.cancelled:
            raise JobCancelledError(f"Job attempt cancelled: {self._reason}")

    def wait(self, seconds: float) -> bool:
        """Sleep up to `seconds`, waking early on cancellation."""

        remaining = self.remaining()
        if remaining is not None:
            seconds = min(seconds, remaining)
        self._event.wait(timeout=max(0.0, seconds))
        return self.cancelled
