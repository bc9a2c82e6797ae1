"""Cancellation / deadline context threaded through every network call."""

from __future__ import annotations

import threading
import time
import weakref

from pipeline.errors import OperationCancelled, TaskTimeoutError


class CancelToken:
    """Explicit cancel flag plus an optional wall-clock deadline.

    Child tokens take the tighter of the two deadlines. Cancelling a parent
    cancels all of its children; cancelling a child leaves the parent and its
    siblings running.
    """

    def __init__(self, timeout_seconds: float | None = None, *, parent: CancelToken | None = None):
        self._event = threading.Event()
        self._reason = ""
        self._parent = parent
        self._children: weakref.WeakSet[CancelToken] = weakref.WeakSet()
        self._lock = threading.Lock()
        deadline = None
        if timeout_seconds is not None:
            deadline = time.monotonic() + max(0.0, float(timeout_seconds))
        if parent is not None:
            if parent.deadline is not None:
                deadline = parent.deadline if deadline is None else min(deadline, parent.deadline)
            parent._adopt(self)
        self.deadline = deadline

    def _adopt(self, child: CancelToken) -> None:
        with self._lock:
            self._children.add(child)
            cancelled = self._event.is_set()
        if cancelled:
            child._set()

    def _set(self) -> None:
        self._event.set()
        with self._lock:
            children = list(self._children)
        for child in children:
            child._set()

    def cancel(self, reason: str = "") -> None:
        self._reason = reason or "cancelled by caller"
        self._set()

    @property
    def reason(self) -> str:
        if self._reason:
            return self._reason
        if self._parent is not None:
            return self._parent.reason
        return ""

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    @property
    def expired(self) -> bool:
        return self.deadline is not None and time.monotonic() >= self.deadline

    def remaining(self) -> float | None:
        if self.deadline is None:
            return None
        return max(0.0, self.deadline - time.monotonic())

    def child(self, timeout_seconds: float | None = None) -> CancelToken:
        return CancelToken(timeout_seconds, parent=self)

    def request_timeout(self, default: float) -> float:
        """Per-request HTTP timeout clamped to what is left of the deadline."""
        remaining = self.remaining()
        if remaining is None:
            return default
        return max(0.1, min(default, remaining))

    def raise_if_cancelled(self, stage: str = "") -> None:
        if self.cancelled:
            raise OperationCancelled(self.reason or "cancelled", stage=stage)
        if self.expired:
            raise TaskTimeoutError("deadline exceeded", stage=stage)

    def wait(self, seconds: float) -> bool:
        """Sleep up to `seconds` (bounded by the deadline). True if cancelled meanwhile."""
        remaining = self.remaining()
        if remaining is not None:
            seconds = min(seconds, remaining)
        return self._event.wait(max(0.0, seconds))


def check_cancelled(cancel: CancelToken | None, stage: str = "") -> None:
    if cancel is not None:
        cancel.raise_if_cancelled(stage)


def request_timeout(cancel: CancelToken | None, default: float) -> float:
    if cancel is None:
        return default
    return cancel.request_timeout(default)
