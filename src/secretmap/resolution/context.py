"""
Resolution context for secretmap.

A ResolutionContext carries the per-secret deadline shared by every step
of the resolution chain, plus an optional cancellation event for the
whole run.
"""

from __future__ import annotations

import threading
import time
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeoutError
from typing import Any, Callable, TypeVar

from secretmap.secrets.errors import ProviderTimeoutError

T = TypeVar("T")


class ResolutionCancelledError(ProviderTimeoutError):
    """Raised when the run was cancelled before a step could start."""

    pass


class ResolutionContext:
    """
    Deadline and cancellation state for resolving one secret.

    Args:
        timeout: Seconds the whole chain may take; None or <= 0 disables
            the deadline
        cancel_event: Event that, once set, stops further steps
    """

    def __init__(
        self,
        timeout: float | None = None,
        cancel_event: threading.Event | None = None,
    ) -> None:
        self.timeout = timeout if timeout and timeout > 0 else None
        self.cancel_event = cancel_event
        self._deadline = (
            time.monotonic() + self.timeout if self.timeout is not None else None
        )

    @property
    def cancelled(self) -> bool:
        """Check if the run has been cancelled."""
        return self.cancel_event is not None and self.cancel_event.is_set()

    @property
    def expired(self) -> bool:
        """Check if the deadline has passed."""
        return self._deadline is not None and time.monotonic() >= self._deadline

    def remaining(self) -> float | None:
        """Get seconds left before the deadline, or None without a deadline."""
        if self._deadline is None:
            return None
        return max(0.0, self._deadline - time.monotonic())

    def check(self) -> None:
        """
        Raise if no more work should start.

        Raises:
            ResolutionCancelledError: If the run was cancelled
            ProviderTimeoutError: If the deadline has passed
        """
        if self.cancelled:
            raise ResolutionCancelledError("resolution cancelled")
        if self.expired:
            raise ProviderTimeoutError(
                f"resolution deadline of {self.timeout}s exceeded"
            )

    def run(self, func: Callable[..., T], *args: Any, **kwargs: Any) -> T:
        """
        Run a blocking call under the deadline.

        The call runs on a worker thread. When the deadline passes first the
        caller gets ProviderTimeoutError and the worker is abandoned; Python
        threads cannot be interrupted, so its result is discarded.

        Raises:
            ProviderTimeoutError: If the deadline passes before func returns
            Exception: Whatever func raises
        """
        self.check()
        if self._deadline is None:
            return func(*args, **kwargs)

        executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="secretmap-resolve")
        try:
            future = executor.submit(func, *args, **kwargs)
            try:
                return future.result(timeout=self.remaining())
            except FutureTimeoutError:
                future.cancel()
                raise ProviderTimeoutError(
                    f"resolution deadline of {self.timeout}s exceeded"
                ) from None
        finally:
            executor.shutdown(wait=False)
