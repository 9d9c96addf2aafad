"""Progress accounting for install tasks.

The tracker is intentionally lock-free: the owning task serialises access with
its own lock so that a progress update and its notification form one critical
section.
"""

from __future__ import annotations

from typing import Optional

__all__ = ["ProgressTracker", "percent_from_bytes"]


def percent_from_bytes(received: int, total: Optional[int]) -> Optional[int]:
    """Convert a byte count into an integer percentage in ``[0, 100]``.

    Args:
        received: Bytes written so far.
        total: Expected size of the transfer, ``None``/``0`` when unknown.

    Returns:
        ``floor(received * 100 / total)`` clamped to 100, or ``None`` when the
        total is unknown.

    Examples:
        >>> percent_from_bytes(512, 1024)
        50
        >>> percent_from_bytes(10, None) is None
        True
    """

    if not total or total <= 0:
        return None
    if received <= 0:
        return 0
    return min(100, (received * 100) // total)


class ProgressTracker:
    """Monotonic holder of a 0-100 integer progress value."""

    __slots__ = ("_value",)

    def __init__(self) -> None:
        self._value = 0

    @property
    def value(self) -> int:
        return self._value

    def update(self, value: int) -> bool:
        """Advance to ``value`` if it is larger than the current value.

        Returns:
            ``True`` when the stored value changed and observers should be told.
        """

        value = max(0, min(100, int(value)))
        if value <= self._value:
            return False
        self._value = value
        return True

    def reset(self) -> None:
        """Restart the scale at zero when a phase with its own accounting begins."""
        self._value = 0
