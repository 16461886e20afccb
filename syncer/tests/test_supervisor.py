from __future__ import annotations

import threading
from types import SimpleNamespace
from typing import Any
from unittest.mock import MagicMock

from syncer.src.config import SyncerConfig
from syncer.src.members import NamespaceLister
from syncer.src.reconciler import CREATED, ReconcileResult
from syncer.src.signaler import ProcessSignaler
from syncer.src.store import ConfigMapStore
from syncer.src.supervisor import Supervisor, build_supervisor


class FakeWatcher:
    """Blocks like the real watch loop until asked to stop."""

    def __init__(self, exit_on_its_own: bool = False, crash: bool = False) -> None:
        self.exit_on_its_own = exit_on_its_own
        self.crash = crash
        self.started = threading.Event()
        self.stop_requested = threading.Event()

    def run_forever(self, shutdown_event: threading.Event | None = None) -> None:
        self.started.set()
        if self.crash:
            raise RuntimeError("watch exploded")
        if self.exit_on_its_own:
            return
        assert shutdown_event is not None
        while not shutdown_event.is_set() and not self.stop_requested.is_set():
            shutdown_event.wait(timeout=0.01)

    def request_stop(self) -> None:
        self.stop_requested.set()


def _reconciler() -> MagicMock:
    reconciler = MagicMock()
    reconciler.reconcile.return_value = ReconcileResult(outcome=CREATED, value="")
    return reconciler


def test_run_reconciles_before_starting_watch() -> None:
    order: list[str] = []
    reconciler = MagicMock()
    reconciler.reconcile.side_effect = lambda: order.append("reconcile") or ReconcileResult(
        outcome=CREATED, value=""
    )

    class OrderedWatcher(FakeWatcher):
        def run_forever(self, shutdown_event: threading.Event | None = None) -> None:
            order.append("watch")
            super().run_forever(shutdown_event)

    watcher = OrderedWatcher()
    supervisor = Supervisor(reconciler=reconciler, watcher=watcher, shutdown_timeout_seconds=2)
    shutdown_event = threading.Event()

    runner = threading.Thread(target=supervisor.run, args=(shutdown_event,))
    runner.start()
    assert watcher.started.wait(timeout=2)
    assert supervisor.ready.is_set()
    shutdown_event.set()
    runner.join(timeout=5)

    assert not runner.is_alive()
    assert order == ["reconcile", "watch"]
    assert not supervisor.ready.is_set()


def test_run_returns_true_on_requested_shutdown() -> None:
    watcher = FakeWatcher()
    supervisor = Supervisor(reconciler=_reconciler(), watcher=watcher, shutdown_timeout_seconds=2)
    shutdown_event = threading.Event()
    result: dict[str, Any] = {}

    def _run() -> None:
        result["requested"] = supervisor.run(shutdown_event)

    runner = threading.Thread(target=_run)
    runner.start()
    assert watcher.started.wait(timeout=2)
    shutdown_event.set()
    runner.join(timeout=5)

    assert result["requested"] is True
    assert watcher.stop_requested.is_set()


def test_run_returns_false_when_watch_exits_on_its_own() -> None:
    supervisor = Supervisor(
        reconciler=_reconciler(),
        watcher=FakeWatcher(exit_on_its_own=True),
        shutdown_timeout_seconds=2,
    )

    assert supervisor.run(threading.Event()) is False


def test_run_returns_false_when_watch_crashes() -> None:
    supervisor = Supervisor(
        reconciler=_reconciler(),
        watcher=FakeWatcher(crash=True),
        shutdown_timeout_seconds=2,
    )

    assert supervisor.run(threading.Event()) is False


def test_stop_without_running_watch_is_noop() -> None:
    watcher = FakeWatcher()
    supervisor = Supervisor(reconciler=_reconciler(), watcher=watcher)

    supervisor.stop()

    assert watcher.stop_requested.is_set()


def test_status_before_any_reconciliation() -> None:
    reconciler = SimpleNamespace(last_result=None, last_reconciled_at=None)
    supervisor = Supervisor(reconciler=reconciler, watcher=FakeWatcher())  # type: ignore[arg-type]

    assert supervisor.status() == {
        "ready": False,
        "last_outcome": None,
        "last_reconciled_at": None,
        "namespaces": None,
        "signaled": False,
    }


def test_status_reports_last_reconciliation() -> None:
    reconciler = SimpleNamespace(
        last_result=ReconcileResult(outcome="updated", value="team-a,team-b", signaled=True),
        last_reconciled_at=1700000000.0,
    )
    supervisor = Supervisor(reconciler=reconciler, watcher=FakeWatcher())  # type: ignore[arg-type]
    supervisor.ready.set()

    snapshot = supervisor.status()

    assert snapshot["ready"] is True
    assert snapshot["last_outcome"] == "updated"
    assert snapshot["namespaces"] == ["team-a", "team-b"]
    assert snapshot["signaled"] is True
    assert snapshot["last_reconciled_at"] == 1700000000.0


def test_status_reports_empty_member_list() -> None:
    reconciler = SimpleNamespace(
        last_result=ReconcileResult(outcome=CREATED, value=""), last_reconciled_at=1.0
    )
    supervisor = Supervisor(reconciler=reconciler, watcher=FakeWatcher())  # type: ignore[arg-type]

    assert supervisor.status()["namespaces"] == []


def test_build_supervisor_wires_configuration() -> None:
    config = SyncerConfig(
        configmap_name="ns-list",
        configmap_namespace="ops",
        label_selector="team=platform",
        watch_key="NAMESPACES",
        main_container="vault server",
        request_timeout_seconds=4,
        resync_seconds=90,
        shutdown_timeout_seconds=12,
    )
    core_api = SimpleNamespace()

    supervisor = build_supervisor(config, core_api)  # type: ignore[arg-type]

    reconciler = supervisor.reconciler
    assert isinstance(reconciler.lister, NamespaceLister)
    assert reconciler.lister.label_selector == "team=platform"
    assert reconciler.lister.request_timeout_seconds == 4
    assert isinstance(reconciler.store, ConfigMapStore)
    assert (reconciler.store.namespace, reconciler.store.name, reconciler.store.key) == (
        "ops",
        "ns-list",
        "NAMESPACES",
    )
    assert isinstance(reconciler.signaler, ProcessSignaler)
    assert reconciler.signaler.pattern == "vault server"
    assert reconciler.watch_key == "NAMESPACES"
    assert supervisor.watcher.resync_seconds == 90
    assert supervisor.watcher.reconciler is reconciler
    assert supervisor.shutdown_timeout_seconds == 12
