"""
Caller-supplied cancellation and deadlines.
"""

import threading
import time
from typing import Optional

from clarity.errors import OperationCancelled


class CancelToken:
    """Cancellation flag with an optional deadline.

    Shared between the caller and a running operation; the operation checks
    it at safe points (before persisting, between batch items).
    """

    def __init__(self, timeout_seconds: Optional[float] = None):
        self._event = threading.Event()
        self._deadline = time.monotonic() + timeout_seconds if timeout_seconds is not None else None

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        if self._event.is_set():
            return True
        return self._deadline is not None and time.monotonic() >= self._deadline

    def raise_if_cancelled(self, action: str = "operation") -> None:
        """Raise OperationCancelled if cancelled or past the deadline."""
        if self._event.is_set():
            raise OperationCancelled(f"{action} cancelled")
        if self._deadline is not None and time.monotonic() >= self._deadline:
            raise OperationCancelled(f"{action} deadline exceeded")
