"""
Cancellation Token - Single process-wide stop signal for a harvest run.

The token is set at most once. The first fatal error wins; later errors are
logged and dropped. Workers consult it before every dequeue and while
blocked on a full queue.
"""

import logging
import threading
from typing import Optional


class CancellationToken:
    """Set-once cancellation flag carrying the triggering error."""

    def __init__(self):
        self._event = threading.Event()
        self._lock = threading.Lock()
        self._error: Optional[BaseException] = None
        self.logger = logging.getLogger(self.__class__.__name__)

    def cancel(self, error: BaseException) -> bool:
        """
        Request cancellation.

        Args:
            error: The fatal error that triggered the request

        Returns:
            True if this call cancelled the run, False if it was already cancelled
        """
        with self._lock:
            if self._event.is_set():
                self.logger.debug(f"Dropping later fatal error: {error}")
                return False
            self._error = error
            self._event.set()

        self.logger.error(f"Run cancelled: {error}")
        return True

    @property
    def is_cancelled(self) -> bool:
        return self._event.is_set()

    @property
    def error(self) -> Optional[BaseException]:
        with self._lock:
            return self._error

    def wait(self, timeout: Optional[float] = None) -> bool:
        """Block until cancelled or until timeout expires."""
        return self._event.wait(timeout)

    def __repr__(self) -> str:
        return f"<CancellationToken cancelled={self.is_cancelled}>"
