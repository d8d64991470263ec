"""
Bounded polling of CA-side state.

Both the challenge and the order state machines are polled with the same
convention: at most ``max_attempts`` status fetches, with one sleep between
consecutive fetches and none before the first or after the last.
"""

import time
import logging
import threading
from dataclasses import dataclass
from typing import Callable, Collection, Optional, TypeVar

from .errors import Cancelled, IssuanceError
from .models import Status

logger = logging.getLogger(__name__)

T = TypeVar("T")

MAX_ATTEMPTS = 10
SLEEP_SECONDS = 3.0


@dataclass(frozen=True)
class PollPolicy:
    """How often and how long a resource is polled."""

    max_attempts: int = MAX_ATTEMPTS
    interval: float = SLEEP_SECONDS
    sleep: Callable[[float], None] = time.sleep

    def __post_init__(self):
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        if self.interval < 0:
            raise ValueError("interval must not be negative")


class CancelToken:
    """
    Cooperative cancellation for the polling loops.

    Cancelled explicitly through ``cancel()`` or implicitly once the optional
    deadline (in seconds from now) has passed.
    """

    def __init__(self, deadline: Optional[float] = None):
        self._event = threading.Event()
        self._deadline = time.monotonic() + deadline if deadline is not None else None

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        if self._event.is_set():
            return True
        return self._deadline is not None and time.monotonic() >= self._deadline

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise Cancelled("Issuance was cancelled")
        if self._deadline is not None and time.monotonic() >= self._deadline:
            raise Cancelled("Issuance deadline exceeded")


def poll_until(
    fetch: Callable[[], T],
    targets: Collection[Status],
    policy: PollPolicy,
    on_failed: Callable[[T, int], IssuanceError],
    on_timeout: Callable[[T, int], IssuanceError],
    cancel: Optional[CancelToken] = None,
    label: str = "resource",
) -> T:
    """
    Fetch a snapshot until its status reaches one of ``targets``.

    Args:
        fetch: Returns a fresh snapshot with a ``status`` attribute
        targets: Statuses that end the loop successfully
        policy: Attempt limit and sleep interval
        on_failed: Builds the error raised for a failed status
        on_timeout: Builds the error raised when attempts run out
        cancel: Optional cancellation token checked before every fetch
        label: Name used in log messages

    Returns:
        The first snapshot whose status is in ``targets``
    """
    attempt = 0
    while True:
        if cancel is not None:
            cancel.raise_if_cancelled()
        attempt += 1
        snapshot = fetch()
        status = snapshot.status
        logger.info(f"{label} status: {status.value} (attempt {attempt}/{policy.max_attempts})")

        if status in targets:
            return snapshot
        if status.failed:
            raise on_failed(snapshot, attempt)
        if attempt >= policy.max_attempts:
            raise on_timeout(snapshot, attempt)
        policy.sleep(policy.interval)
