"""Bounded readiness polling and cancellation helpers."""
from __future__ import annotations

import threading
import time
from typing import Callable

from resurev.errors import BackendUnavailable, IngestionCancelled
from resurev.log import get_logger

log = get_logger(__name__)


def wait_until(
    check: Callable[[], bool],
    *,
    interval: float = 0.1,
    timeout: float = 10.0,
    what: str = "backend",
    sleep: Callable[[float], None] = time.sleep,
    clock: Callable[[], float] = time.monotonic,
) -> None:
    """Poll *check* every *interval* seconds until it returns True.

    Raises BackendUnavailable once *timeout* seconds have elapsed. A check that
    raises counts as "not ready yet".
    """
    deadline = clock() + timeout
    attempt = 0
    while True:
        attempt += 1
        try:
            if check():
                if attempt > 1:
                    log.info("%s ready after %d attempt(s)", what, attempt)
                return
        except (BackendUnavailable, OSError) as exc:
            log.debug("%s not ready (attempt %d): %s", what, attempt, exc)
        if clock() >= deadline:
            log.error("%s failed to become ready within %.1fs", what, timeout)
            raise BackendUnavailable(f"{what} failed to become ready within {timeout:.1f} seconds")
        sleep(interval)


class CancelToken:
    """Cooperative cancellation flag checked between ingestion steps."""

    def __init__(self) -> None:
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def raise_if_cancelled(self, step: str = "") -> None:
        if self._event.is_set():
            raise IngestionCancelled(f"cancelled before {step}" if step else "cancelled")
