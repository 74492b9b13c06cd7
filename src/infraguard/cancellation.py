import threading
import time
from typing import Optional

from .errors import OperationCancelled


class CancellationToken:
    """
    Cooperative cancellation for blocking calls.

    A token is cancelled when ``cancel()`` has been called or when the optional
    deadline (``timeout`` seconds after construction) has passed. Blocking code
    polls ``cancelled`` or calls ``raise_if_cancelled()`` between steps.
    """

    def __init__(self, timeout: Optional[float] = None):
        self._event = threading.Event()
        self._deadline = time.monotonic() + timeout if timeout is not None else None

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        if self._event.is_set():
            return True
        return self._deadline is not None and time.monotonic() >= self._deadline

    def raise_if_cancelled(self, operation: str = "") -> None:
        if self.cancelled:
            raise OperationCancelled(f"{operation} cancelled" if operation else "operation cancelled")

    def wait(self, seconds: float) -> bool:
        """Sleeps up to ``seconds``, waking early on cancel(). Returns ``cancelled``."""
        if self._deadline is not None:
            seconds = max(0.0, min(seconds, self._deadline - time.monotonic()))
        self._event.wait(seconds)
        return self.cancelled
