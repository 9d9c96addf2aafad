"""Aggregate progress and completion across several install tasks."""

from __future__ import annotations

import logging
import threading
from typing import Callable, Dict, List, Optional

from .events import CompleteEvent, ProgressEvent, Subscription
from .state import InstallationState
from .task import InstallTask

logger = logging.getLogger(__name__)

__all__ = ["InstallMonitor"]


class InstallMonitor:
    """Track a group of install tasks as one unit.

    Aggregate progress is the mean of each task's last reported progress,
    where a task that has reached a terminal state counts as 100. Per-task
    values are cached from progress events so that handlers never take another
    task's lock. The all-complete handlers fire once, after every tracked task
    has completed, with the tasks in the order they were added. Adding a task
    that has not completed yet re-arms them, so every firing covers the whole
    tracked set.

    Examples:
        >>> monitor = InstallMonitor()  # doctest: +SKIP
        >>> manager.install_packages(["a", "b"], monitor=monitor)  # doctest: +SKIP
        >>> monitor.wait(timeout=60)  # doctest: +SKIP
        True
    """

    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._tasks: List[InstallTask] = []
        self._subscriptions: Dict[int, List[Subscription]] = {}
        self._completed: Dict[int, bool] = {}
        self._latest: Dict[int, int] = {}
        self._progress_handlers: List[Callable[[int], None]] = []
        self._complete_handlers: List[Callable[[List[InstallTask]], None]] = []
        self._last_progress = 0
        self._fired = False
        self._done = threading.Event()

    def __len__(self) -> int:
        with self._lock:
            return len(self._tasks)

    def add_task(self, task: InstallTask) -> None:
        with self._lock:
            if any(existing is task for existing in self._tasks):
                return
            self._tasks.append(task)
            self._completed[id(task)] = False
            self._latest[id(task)] = 0
        subscriptions = [
            task.subscribe_progress(self._on_task_progress),
            task.subscribe_complete(lambda event, task=task: self._on_task_complete(task, event)),
        ]
        progress, complete = task.progress(), task.complete()
        with self._lock:
            self._subscriptions[id(task)] = subscriptions
            if id(task) in self._latest:
                self._latest[id(task)] = max(self._latest[id(task)], progress)
            if id(task) in self._completed:
                if complete:
                    self._completed[id(task)] = True
                elif not self._completed[id(task)]:
                    self._fired = False
                    self._done.clear()
        self._check_complete()

    def remove_task(self, task: InstallTask) -> None:
        with self._lock:
            self._tasks = [existing for existing in self._tasks if existing is not task]
            self._completed.pop(id(task), None)
            self._latest.pop(id(task), None)
            subscriptions = self._subscriptions.pop(id(task), [])
        for subscription in subscriptions:
            subscription.unsubscribe()
        self._check_complete()

    def tasks(self) -> List[InstallTask]:
        with self._lock:
            return list(self._tasks)

    def start_all(self) -> None:
        """Start every tracked task that has not been started yet."""
        for task in self.tasks():
            if task.state is InstallationState.NONE:
                task.start()

    def cancel_all(self) -> None:
        for task in self.tasks():
            task.cancel()

    def progress(self) -> int:
        with self._lock:
            if not self._tasks:
                return 0
            total = sum(
                100 if self._completed.get(id(task)) else self._latest.get(id(task), 0)
                for task in self._tasks
            )
            return total // len(self._tasks)

    def is_complete(self) -> bool:
        with self._lock:
            return bool(self._tasks) and all(self._completed.get(id(task)) for task in self._tasks)

    def wait(self, timeout: Optional[float] = None) -> bool:
        """Block until every tracked task has completed."""
        return self._done.wait(timeout)

    def subscribe_progress(self, handler: Callable[[int], None]) -> None:
        with self._lock:
            self._progress_handlers.append(handler)

    def subscribe_complete(self, handler: Callable[[List[InstallTask]], None]) -> None:
        with self._lock:
            self._complete_handlers.append(handler)

    def _on_task_progress(self, event: ProgressEvent) -> None:
        with self._lock:
            for task in self._tasks:
                if task.package_id == event.package_id:
                    self._latest[id(task)] = event.progress
        self._publish_progress()

    def _on_task_complete(self, task: InstallTask, event: CompleteEvent) -> None:
        with self._lock:
            if id(task) in self._completed:
                self._completed[id(task)] = True
        logger.debug(
            "monitored task complete",
            extra={"stage": "monitor", "package_id": event.package_id, "state": event.state.value},
        )
        self._publish_progress()
        self._check_complete()

    def _publish_progress(self) -> None:
        value = self.progress()
        with self._lock:
            if value <= self._last_progress:
                return
            self._last_progress = value
            handlers = list(self._progress_handlers)
        for handler in handlers:
            try:
                handler(value)
            except Exception:  # pylint: disable=broad-except
                logger.exception("monitor progress handler failed", extra={"stage": "monitor"})

    def _check_complete(self) -> None:
        with self._lock:
            if self._fired or not self.is_complete():
                return
            self._fired = True
            tasks = list(self._tasks)
            handlers = list(self._complete_handlers)
        for handler in handlers:
            try:
                handler(tasks)
            except Exception:  # pylint: disable=broad-except
                logger.exception("monitor completion handler failed", extra={"stage": "monitor"})
        self._done.set()
