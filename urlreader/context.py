"""Cancellation and deadline context passed to URLReader.open.

A Context is done once it is cancelled or its deadline passes. Children
created with a parent inherit the parent's deadline (whichever is earlier)
and finish together with it, carrying the parent's reason.

    with Context.with_timeout(5.0) as ctx:
        stream = reader.open(ctx)

A child without a deadline stays registered on its parent until one of them
is done; cancel it (or use ``with``) when it is no longer needed.
"""

from __future__ import annotations

import threading
import time
from typing import Callable

from .exceptions import ContextCanceled, DeadlineExceeded

DoneCallback = Callable[[], None]


class Context:
    """Cooperative cancellation signal with an optional monotonic deadline."""

    def __init__(self, deadline: float | None = None, parent: Context | None = None):
        if parent is not None and parent.deadline is not None:
            deadline = parent.deadline if deadline is None else min(deadline, parent.deadline)
        self._deadline = deadline
        self._parent = parent
        self._done = threading.Event()
        self._reason: Exception | None = None
        self._lock = threading.Lock()
        self._callbacks: list[DoneCallback] = []
        self._timer: threading.Timer | None = None
        if parent is not None:
            parent.add_done_callback(self._parent_done)
            with self._lock:
                self._arm()

    @classmethod
    def background(cls) -> Context:
        """A context that is never cancelled and has no deadline."""
        return cls()

    @classmethod
    def with_deadline(cls, deadline: float, parent: Context | None = None) -> Context:
        """Context expiring at *deadline*, a ``time.monotonic()`` timestamp."""
        return cls(deadline=deadline, parent=parent)

    @classmethod
    def with_timeout(cls, seconds: float, parent: Context | None = None) -> Context:
        """Context expiring *seconds* from now."""
        return cls(deadline=time.monotonic() + seconds, parent=parent)

    @property
    def deadline(self) -> float | None:
        return self._deadline

    def remaining(self) -> float | None:
        """Seconds left before the deadline, never negative; None without one."""
        if self._deadline is None:
            return None
        return max(0.0, self._deadline - time.monotonic())

    def cancel(self) -> None:
        """Cancel this context and its children. Safe to call more than once."""
        self._finish(ContextCanceled("context canceled"))

    def err(self) -> Exception | None:
        """Why the context is done, or None while it is still live."""
        if self._reason is not None:
            return self._reason
        if self._past_deadline():
            return DeadlineExceeded("context deadline exceeded")
        return None

    def done(self) -> bool:
        return self.err() is not None

    def wait(self, timeout: float | None = None) -> bool:
        """Block until the context is done or *timeout* elapses; return done()."""
        end = None if timeout is None else time.monotonic() + timeout
        while not self.done():
            limit = self.remaining()
            if end is not None:
                left = end - time.monotonic()
                if left <= 0:
                    return False
                limit = left if limit is None else min(limit, left)
            self._done.wait(limit)
        return True

    def add_done_callback(self, callback: DoneCallback) -> None:
        """Run *callback* once the context is done; immediately if it already is.

        Callbacks run on the thread that cancels the context, or on the
        deadline timer thread.
        """
        with self._lock:
            if not self._done.is_set() and not self._past_deadline():
                self._callbacks.append(callback)
                self._arm()
                return
        self._expire()
        callback()

    def remove_done_callback(self, callback: DoneCallback) -> None:
        with self._lock:
            try:
                self._callbacks.remove(callback)
            except ValueError:
                pass

    def _past_deadline(self) -> bool:
        return self._deadline is not None and time.monotonic() >= self._deadline

    def _arm(self) -> None:
        # Caller holds self._lock.
        if self._deadline is None or self._timer is not None or self._done.is_set():
            return
        self._timer = threading.Timer(self.remaining(), self._expire)
        self._timer.name = "urlreader-deadline"
        self._timer.daemon = True
        self._timer.start()

    def _expire(self) -> None:
        if self._past_deadline():
            self._finish(DeadlineExceeded("context deadline exceeded"))
            return
        # Timer woke early.
        with self._lock:
            self._timer = None
            self._arm()

    def _parent_done(self) -> None:
        self._finish(self._parent.err() or ContextCanceled("context canceled"))

    def _finish(self, reason: Exception) -> None:
        with self._lock:
            if self._done.is_set():
                return
            self._reason = reason
            self._done.set()
            callbacks, self._callbacks = self._callbacks, []
            timer, self._timer = self._timer, None
        if timer is not None:
            timer.cancel()
        if self._parent is not None:
            self._parent.remove_done_callback(self._parent_done)
        for callback in callbacks:
            callback()

    def __enter__(self) -> Context:
        return self

    def __exit__(self, *exc_info) -> None:
        self.cancel()

    def __repr__(self) -> str:
        err = self.err()
        state = "live" if err is None else str(err)
        return f"Context(deadline={self._deadline!r}, state={state!r})"
