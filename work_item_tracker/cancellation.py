"""Cooperative cancellation for store and render operations."""

from __future__ import annotations

import threading
import time
from typing import Optional

from .errors import OperationCancelledError, TransactionTimeoutError


class CancellationToken:
    """A flag shared between a caller and a running operation.

    The operation calls :meth:`check` between steps; once :meth:`cancel` has
    been called the next check raises :class:`OperationCancelledError`.
    """

    def __init__(self) -> None:
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def check(self) -> None:
        if self._event.is_set():
            raise OperationCancelledError()


class Deadline:
    """Monotonic deadline for a single transaction."""

    def __init__(self, timeout_seconds: float):
        self.timeout_seconds = timeout_seconds
        self._expires_at = time.monotonic() + timeout_seconds

    @property
    def remaining(self) -> float:
        return max(0.0, self._expires_at - time.monotonic())

    def check(self) -> None:
        if time.monotonic() >= self._expires_at:
            raise TransactionTimeoutError(self.timeout_seconds)


def check_cancelled(cancel: Optional[CancellationToken]) -> None:
    if cancel is not None:
        cancel.check()
