"""Typed install events and the subscription registry that delivers them.

Handlers run synchronously on whichever context performed the transition:
download progress arrives on the event-loop thread, extraction and
finalization events on a worker thread, cancellation on the caller's thread.
Handlers must therefore not assume a single delivery thread. A handler that
raises is logged and skipped; it never disturbs the task or other handlers.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable, Generic, List, Optional, TypeVar, Union

from .errors import PackageInstallError
from .state import InstallationState

logger = logging.getLogger(__name__)

__all__ = [
    "CompleteEvent",
    "EventChannel",
    "ProgressEvent",
    "StateChangeEvent",
    "Subscription",
]


def _now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class StateChangeEvent:
    """Fired on every transition, before the new state's phase work begins."""

    package_id: str
    old: InstallationState
    new: InstallationState
    timestamp: datetime = field(default_factory=_now)


@dataclass(frozen=True)
class ProgressEvent:
    """Fired when the percentage of the current phase increases."""

    package_id: str
    state: InstallationState
    progress: int
    timestamp: datetime = field(default_factory=_now)


@dataclass(frozen=True)
class CompleteEvent:
    """Fired exactly once per task when a terminal state is reached."""

    package_id: str
    state: InstallationState
    error: Optional[PackageInstallError] = None
    timestamp: datetime = field(default_factory=_now)

    @property
    def success(self) -> bool:
        return self.state is InstallationState.INSTALLED

    @property
    def cancelled(self) -> bool:
        return self.state is InstallationState.CANCELLED

    @property
    def failed(self) -> bool:
        return self.state is InstallationState.FAILED


Event = Union[StateChangeEvent, ProgressEvent, CompleteEvent]
E = TypeVar("E", StateChangeEvent, ProgressEvent, CompleteEvent)


class Subscription(Generic[E]):
    """Handle returned by ``subscribe_*``; call :meth:`unsubscribe` to detach."""

    def __init__(self, channel: "EventChannel", handlers: List[Callable[[E], None]], handler: Callable[[E], None]) -> None:
        self._channel = channel
        self._handlers = handlers
        self.handler = handler

    def unsubscribe(self) -> None:
        with self._channel.lock:
            try:
                self._handlers.remove(self.handler)
            except ValueError:
                pass


class EventChannel:
    """Subscription registry for one task's state, progress and completion events.

    The channel shares the owning task's lock so that subscription changes and
    deliveries are ordered with respect to state changes. Once the completion
    event has been delivered, further progress and state events are dropped.
    """

    def __init__(self, lock: Optional[threading.RLock] = None) -> None:
        self.lock = lock or threading.RLock()
        self._state_handlers: List[Callable[[StateChangeEvent], None]] = []
        self._progress_handlers: List[Callable[[ProgressEvent], None]] = []
        self._complete_handlers: List[Callable[[CompleteEvent], None]] = []
        self._completed = False

    @property
    def completed(self) -> bool:
        return self._completed

    def subscribe_state(self, handler: Callable[[StateChangeEvent], None]) -> Subscription[StateChangeEvent]:
        return self._subscribe(self._state_handlers, handler)

    def subscribe_progress(self, handler: Callable[[ProgressEvent], None]) -> Subscription[ProgressEvent]:
        return self._subscribe(self._progress_handlers, handler)

    def subscribe_complete(self, handler: Callable[[CompleteEvent], None]) -> Subscription[CompleteEvent]:
        return self._subscribe(self._complete_handlers, handler)

    def _subscribe(self, handlers: list, handler: Callable) -> Subscription:
        with self.lock:
            handlers.append(handler)
        return Subscription(self, handlers, handler)

    def emit_state(self, event: StateChangeEvent) -> bool:
        with self.lock:
            if self._completed:
                return False
            handlers = list(self._state_handlers)
        self._deliver(handlers, event)
        return True

    def emit_progress(self, event: ProgressEvent) -> bool:
        with self.lock:
            if self._completed:
                return False
            handlers = list(self._progress_handlers)
        self._deliver(handlers, event)
        return True

    def emit_complete(self, event: CompleteEvent) -> bool:
        """Deliver ``event`` unless a completion has already been delivered."""
        with self.lock:
            if self._completed:
                return False
            self._completed = True
            handlers = list(self._complete_handlers)
        self._deliver(handlers, event)
        return True

    def _deliver(self, handlers: List[Callable], event: Event) -> None:
        for handler in handlers:
            try:
                handler(event)
            except Exception:  # pylint: disable=broad-except
                logger.exception(
                    "install event handler failed",
                    extra={"stage": "notify", "package_id": event.package_id},
                )
