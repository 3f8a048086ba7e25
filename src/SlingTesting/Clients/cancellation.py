"""Cooperative cancellation for the blocking waits of the client core.

Retry delays, poll delays and the optional per-request delay are the only
places the clients block outside of network I/O.  Each of them waits on a
:class:`CancellationToken` instead of calling :func:`time.sleep` directly, so
a test harness tearing down a suite can stop a long poll from another
thread and have the waiting call raise :class:`OperationCancelled` at once
rather than finishing its timeout.
"""

from __future__ import annotations

import threading

from .errors import OperationCancelled

__all__ = ["CancellationToken", "CancellationTokenGroup"]


class CancellationToken:
    """Thread-safe cancellation token.

    Examples:
        >>> token = CancellationToken()
        >>> token.sleep(0.01)  # returns normally
        >>> token.cancel()
        >>> token.is_cancelled()
        True
    """

    def __init__(self) -> None:
        self._event = threading.Event()
        self._lock = threading.Lock()

    def cancel(self) -> None:
        """Signal that cancellation has been requested."""
        with self._lock:
            self._event.set()

    def is_cancelled(self) -> bool:
        return self._event.is_set()

    def reset(self) -> None:
        """Return the token to its initial state (tests and controlled reuse only)."""
        with self._lock:
            self._event.clear()

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise OperationCancelled("Operation cancelled")

    def sleep(self, seconds: float) -> None:
        """Block for ``seconds`` unless cancelled first.

        Raises:
            OperationCancelled: If the token is cancelled before or during the wait.
        """
        self.raise_if_cancelled()
        if seconds > 0 and self._event.wait(seconds):
            raise OperationCancelled(f"Operation cancelled during a {seconds:.3f}s wait")


class CancellationTokenGroup:
    """A group of tokens cancelled together, e.g. every client of one test run."""

    def __init__(self) -> None:
        self._tokens: list[CancellationToken] = []
        self._lock = threading.Lock()
        self._cancelled = False

    def add_token(self, token: CancellationToken) -> None:
        with self._lock:
            self._tokens.append(token)
            if self._cancelled:
                token.cancel()

    def create_token(self) -> CancellationToken:
        """Create a new token already registered with this group."""
        token = CancellationToken()
        self.add_token(token)
        return token

    def remove_token(self, token: CancellationToken) -> None:
        with self._lock:
            if token in self._tokens:
                self._tokens.remove(token)

    def cancel_all(self) -> None:
        with self._lock:
            self._cancelled = True
            for token in self._tokens:
                token.cancel()

    def is_any_cancelled(self) -> bool:
        with self._lock:
            return any(token.is_cancelled() for token in self._tokens)

    def __len__(self) -> int:
        with self._lock:
            return len(self._tokens)
