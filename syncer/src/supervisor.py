from __future__ import annotations

import logging
import threading
from typing import Any

from kubernetes.client import CoreV1Api

from syncer.src.config import SyncerConfig
from syncer.src.members import NamespaceLister
from syncer.src.reconciler import Reconciler
from syncer.src.signaler import ProcessSignaler
from syncer.src.store import ConfigMapStore
from syncer.src.watcher import NamespaceWatcher


class Supervisor:
    """Owns the reconcile/watch lifecycle for one syncer process.

    ``run`` performs a synchronous reconciliation before the watch starts, so
    the ConfigMap is correct even if no namespace event ever fires, then
    blocks until ``shutdown_event`` is set.  Shutdown is cooperative: the
    watch is asked to stop and the thread is joined for up to
    ``shutdown_timeout_seconds`` so an in-flight pass can finish its write.
    """

    def __init__(
        self,
        reconciler: Reconciler,
        watcher: NamespaceWatcher,
        shutdown_timeout_seconds: int = 30,
        logger: logging.Logger | None = None,
    ) -> None:
        self.reconciler = reconciler
        self.watcher = watcher
        self.shutdown_timeout_seconds = shutdown_timeout_seconds
        self.logger = logger or logging.getLogger(__name__)
        self.ready = threading.Event()
        self._watch_thread: threading.Thread | None = None

    def _run_watch(self, shutdown_event: threading.Event, watch_stopped: threading.Event) -> None:
        try:
            self.watcher.run_forever(shutdown_event=shutdown_event)
            if not shutdown_event.is_set():
                self.logger.error("Namespace watch exited without a stop signal; shutting down")
        except Exception:
            self.logger.exception("Namespace watch thread crashed")
        finally:
            # An unexpected watch exit also ends the supervisor's wait.
            watch_stopped.set()

    def run(self, shutdown_event: threading.Event) -> bool:
        """Run until ``shutdown_event`` is set.

        Returns ``True`` when shutdown was requested externally and ``False``
        when the watch loop ended on its own (e.g. RBAC denial).
        """
        result = self.reconciler.reconcile()
        self.logger.info("Initial reconciliation finished (outcome=%s)", result.outcome)
        self.ready.set()

        watch_stopped = threading.Event()
        self._watch_thread = threading.Thread(
            target=self._run_watch,
            args=(shutdown_event, watch_stopped),
            name="namespace-watch",
            daemon=True,
        )
        self._watch_thread.start()

        while not shutdown_event.is_set() and not watch_stopped.is_set():
            shutdown_event.wait(timeout=1)

        requested = shutdown_event.is_set()
        self.ready.clear()
        self.stop()
        return requested

    def status(self) -> dict[str, Any]:
        """Snapshot of readiness and the most recent reconciliation, for ``/status``."""
        snapshot: dict[str, Any] = {
            "ready": self.ready.is_set(),
            "last_outcome": None,
            "last_reconciled_at": self.reconciler.last_reconciled_at,
            "namespaces": None,
            "signaled": False,
        }
        result = self.reconciler.last_result
        if result is not None:
            snapshot["last_outcome"] = result.outcome
            snapshot["signaled"] = result.signaled
            if result.value is not None:
                snapshot["namespaces"] = result.value.split(",") if result.value else []
        return snapshot

    def stop(self) -> None:
        self.watcher.request_stop()
        thread = self._watch_thread
        if thread is None:
            return
        thread.join(timeout=self.shutdown_timeout_seconds)
        if thread.is_alive():
            self.logger.error(
                "Namespace watch did not stop within %ss; exiting anyway",
                self.shutdown_timeout_seconds,
            )
        self._watch_thread = None


def build_supervisor(config: SyncerConfig, core_api: CoreV1Api) -> Supervisor:
    """Wire the lister, store, signaler, reconciler and watcher for ``config``."""
    lister = NamespaceLister(
        core_api=core_api,
        label_selector=config.label_selector,
        request_timeout_seconds=config.request_timeout_seconds,
    )
    store = ConfigMapStore(
        core_api=core_api,
        namespace=config.configmap_namespace,
        name=config.configmap_name,
        key=config.watch_key,
        request_timeout_seconds=config.request_timeout_seconds,
    )
    signaler = ProcessSignaler(pattern=config.main_container, sig=config.restart_signal)
    reconciler = Reconciler(
        lister=lister,
        store=store,
        signaler=signaler,
        watch_key=config.watch_key,
    )
    watcher = NamespaceWatcher(
        core_api=core_api,
        reconciler=reconciler,
        label_selector=config.label_selector,
        resync_seconds=config.resync_seconds,
        request_timeout_seconds=config.request_timeout_seconds,
    )
    return Supervisor(
        reconciler=reconciler,
        watcher=watcher,
        shutdown_timeout_seconds=config.shutdown_timeout_seconds,
    )
