# === NAVMAP v1 ===
# {
#   "module": "tests.package_install.test_monitor",
#   "purpose": "Tests for aggregate progress across several install tasks",
#   "sections": [
#     {"id": "aggregate-progress", "name": "Aggregate Progress", "anchor": "aggregate-progress", "kind": "section"},
#     {"id": "completion", "name": "Completion", "anchor": "completion", "kind": "section"}
#   ]
# }
# === /NAVMAP ===

"""Tests for aggregate progress across several install tasks."""

from __future__ import annotations

from Pacm.PackageInstall.monitor import InstallMonitor
from Pacm.PackageInstall.packages import LocalPackage
from Pacm.PackageInstall.testing import build_remote_package


def _pair(make_task, package_id: str, plugin_zip: bytes):
    remote = build_remote_package(package_id, payload=plugin_zip)
    return make_task(remote=remote, local=LocalPackage.from_remote(remote)), remote


# --- Aggregate Progress ---


def test_aggregate_progress_is_the_mean_of_tasks(make_task, transport, plugin_zip) -> None:
    """Monitor progress is the floor of the mean task progress."""

    monitor = InstallMonitor()
    first, _ = _pair(make_task, "first", plugin_zip)
    second, _ = _pair(make_task, "second", plugin_zip)
    monitor.add_task(first)
    monitor.add_task(second)
    reported = []
    monitor.subscribe_progress(reported.append)

    monitor.start_all()
    transport.transfers[0].progress(50, 100)
    transport.transfers[1].progress(20, 100)

    assert monitor.progress() == 35
    assert reported == [25, 35]
    assert not monitor.is_complete()
    monitor.cancel_all()


def test_empty_monitor_is_not_complete() -> None:
    """A monitor with nothing to track reports no progress and never completes."""

    monitor = InstallMonitor()

    assert monitor.progress() == 0
    assert not monitor.is_complete()
    assert not monitor.wait(0)


# --- Completion ---


def test_all_complete_fires_once_with_every_task(make_task, transport, plugin_zip) -> None:
    """The completion handlers fire once, with the tasks in the order they were added."""

    monitor = InstallMonitor()
    tasks = []
    for package_id in ("first", "second"):
        task, remote = _pair(make_task, package_id, plugin_zip)
        transport.payloads[remote.latest_asset().url] = plugin_zip
        tasks.append(task)
        monitor.add_task(task)
    fired = []
    monitor.subscribe_complete(fired.append)

    monitor.start_all()
    monitor.start_all()

    assert monitor.wait(1)
    assert monitor.is_complete()
    assert monitor.progress() == 100
    assert fired == [tasks]
    assert all(task.success() for task in tasks)


def test_terminal_tasks_count_as_complete(make_task, transport, plugin_zip) -> None:
    """A task that already completed counts as done as soon as it is added."""

    monitor = InstallMonitor()
    task, _ = _pair(make_task, "first", plugin_zip)
    task.cancel()

    monitor.add_task(task)

    assert monitor.is_complete()
    assert monitor.progress() == 100
    assert monitor.wait(0)


def test_adding_a_pending_task_rearms_completion(make_task, plugin_zip) -> None:
    """After a firing, a newly added running task must finish before the next one."""

    monitor = InstallMonitor()
    fired = []
    monitor.subscribe_complete(fired.append)
    done, _ = _pair(make_task, "first", plugin_zip)
    done.cancel()
    monitor.add_task(done)
    assert fired == [[done]]

    pending, _ = _pair(make_task, "second", plugin_zip)
    monitor.add_task(pending)

    assert not monitor.is_complete()
    assert not monitor.wait(0)
    assert len(fired) == 1

    pending.cancel()

    assert fired == [[done], [done, pending]]
    assert monitor.wait(0)


def test_removing_the_last_pending_task_completes_the_rest(make_task, transport, plugin_zip) -> None:
    """Dropping an unfinished task lets the remaining finished ones complete the group."""

    monitor = InstallMonitor()
    finished, _ = _pair(make_task, "first", plugin_zip)
    running, _ = _pair(make_task, "second", plugin_zip)
    monitor.add_task(finished)
    monitor.add_task(running)
    monitor.start_all()
    transport.transfers[0].fail_status(404)
    assert not monitor.wait(0)

    monitor.remove_task(running)

    assert monitor.tasks() == [finished]
    assert monitor.wait(0)
    running.cancel()
