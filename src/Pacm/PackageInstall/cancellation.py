"""Cooperative cancellation primitives shared by the install phases.

An install task runs its download on the event loop and its extraction and
finalization on a worker thread. Neither context is interrupted forcibly;
instead each phase receives the task's :class:`CancellationToken` and polls it
at well-defined checkpoints (before a step, between archive members, between
moved files) so that staging and intermediate directories can be cleaned up
predictably.
"""

from __future__ import annotations

import threading

from .errors import CancelledByUser


class CancellationToken:
    """Thread-safe cancellation token for cooperative task cancellation.

    Examples:
        >>> token = CancellationToken()
        >>> token.is_cancelled()
        False
        >>> token.cancel()
        >>> token.is_cancelled()
        True
    """

    def __init__(self) -> None:
        self._is_cancelled = threading.Event()
        self._lock = threading.Lock()

    def cancel(self) -> None:
        """Signal that cancellation has been requested."""
        with self._lock:
            self._is_cancelled.set()

    def is_cancelled(self) -> bool:
        """Check if cancellation has been requested."""
        return self._is_cancelled.is_set()

    def raise_if_cancelled(self, checkpoint: str = "") -> None:
        """Raise :class:`CancelledByUser` when cancellation has been requested.

        Args:
            checkpoint: Short description of where the check happened, used in
                the exception message.
        """
        if self._is_cancelled.is_set():
            where = f" at {checkpoint}" if checkpoint else ""
            raise CancelledByUser(f"installation cancelled{where}")


__all__ = ["CancellationToken"]
