"""
One-shot rendezvous between a waiting worker and an asynchronous response.
"""
import logging
import threading
import time
from typing import Any, Optional

from .errors import DiscoveryTimeout

logger = logging.getLogger(__name__)

_PENDING = object()


class ResponseBridge:
    """
    Single-slot, single-use result holder.

    The worker blocks in :meth:`wait` while the transport thread resolves the
    bridge with :meth:`complete` or :meth:`fail`. Only the first resolution
    counts; later ones are logged and dropped.
    """

    def __init__(self, label: str = ''):
        self.label = label
        self._condition = threading.Condition()
        self._value: Any = _PENDING
        self._error: Optional[BaseException] = None

    @property
    def done(self) -> bool:
        with self._condition:
            return self._value is not _PENDING or self._error is not None

    def complete(self, value) -> bool:
        """Resolve with a value. Returns False if already resolved."""
        return self._resolve(value, None)

    def fail(self, error: BaseException) -> bool:
        """Resolve with an error. Returns False if already resolved."""
        if error is None:
            raise TypeError("ResponseBridge.fail() requires an exception")
        return self._resolve(_PENDING, error)

    def _resolve(self, value, error) -> bool:
        with self._condition:
            if self._value is not _PENDING or self._error is not None:
                logger.warning(f"Bridge {self.label} already resolved, dropping late "
                               f"{'error' if error is not None else 'value'}")
                return False
            self._value = value
            self._error = error
            self._condition.notify_all()
            return True

    def wait(self, timeout: Optional[float] = None):
        """
        Block until the bridge is resolved.

        Args:
            timeout: Seconds to wait, None to wait indefinitely

        Returns:
            The value passed to :meth:`complete`

        Raises:
            The error passed to :meth:`fail`, or DiscoveryTimeout when the
            timeout elapses first. A timed out bridge stays failed.
        """
        deadline = None if timeout is None else time.monotonic() + timeout
        with self._condition:
            while self._value is _PENDING and self._error is None:
                if deadline is None:
                    self._condition.wait()
                    continue
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    self._error = DiscoveryTimeout(
                        f"No response for {self.label or 'request'} within {timeout}s")
                    break
                self._condition.wait(remaining)

            if self._error is not None:
                raise self._error
            return self._value

    def __repr__(self) -> str:
        return f"ResponseBridge({self.label!r}, done={self.done})"
