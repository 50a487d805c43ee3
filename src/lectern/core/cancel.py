"""Caller-supplied cancellation and deadlines for blocking provider/store calls."""

import threading
import time
from typing import List, Optional

from .errors import OperationCancelled


class CancelToken:
    """
    Cancellation flag with an optional deadline.

    A child token (``CancelToken(parent=token)``) is cancelled whenever its
    parent is, but cancelling the child leaves the parent untouched. Sleeps
    through :meth:`sleep` wake up as soon as the token is cancelled.
    """

    def __init__(self, timeout: Optional[float] = None,
                 parent: Optional["CancelToken"] = None) -> None:
        self._event = threading.Event()
        self._deadline = time.monotonic() + timeout if timeout is not None else None
        self._parent = parent
        self._children: List["CancelToken"] = []
        self._lock = threading.Lock()
        if parent is not None:
            parent._register(self)

    def _register(self, child: "CancelToken") -> None:
        with self._lock:
            self._children.append(child)
        if self.cancelled:
            child.cancel()

    def detach(self) -> None:
        """Stop following the parent; a detached token is only cancelled directly."""
        parent, self._parent = self._parent, None
        if parent is not None:
            with parent._lock:
                if self in parent._children:
                    parent._children.remove(self)

    def cancel(self) -> None:
        self._event.set()
        with self._lock:
            children = list(self._children)
        for child in children:
            child.cancel()

    @property
    def cancelled(self) -> bool:
        if self._event.is_set():
            return True
        if self._deadline is not None and time.monotonic() >= self._deadline:
            return True
        return self._parent is not None and self._parent.cancelled

    def remaining(self) -> Optional[float]:
        """Seconds left before the nearest deadline, or None without one."""
        candidates = []
        if self._deadline is not None:
            candidates.append(max(0.0, self._deadline - time.monotonic()))
        if self._parent is not None:
            parent_remaining = self._parent.remaining()
            if parent_remaining is not None:
                candidates.append(parent_remaining)
        return min(candidates) if candidates else None

    def raise_if_cancelled(self) -> None:
        if self.cancelled:
            raise OperationCancelled("Operation cancelled before completion")

    def sleep(self, seconds: float) -> None:
        remaining = self.remaining()
        if remaining is not None:
            seconds = min(seconds, remaining)
        if seconds > 0:
            self._event.wait(seconds)
