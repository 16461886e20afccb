from __future__ import annotations

import logging
import random
import threading

from kubernetes import watch
from kubernetes.client import ApiException, CoreV1Api

from syncer.src.metrics import METRICS
from syncer.src.reconciler import Reconciler

WATCHED_EVENT_TYPES = frozenset({"ADDED", "MODIFIED", "DELETED"})


class NamespaceWatcher:
    """Streams namespace events for a label selector and reconciles on each one.

    Event payloads are not inspected: any add, update or delete of a matching
    namespace triggers a full :meth:`Reconciler.reconcile` pass.  The stream's
    server-side timeout doubles as a periodic resync, so a pass also runs
    every ``resync_seconds`` even when no events arrive.

    Error handling in the watch loop:

    - ``410 Gone``: the resourceVersion was compacted; re-list and reconcile.
    - ``401``/``403``: RBAC or credential problem; stop the loop.
    - anything else: reconnect with jittered exponential backoff (30 s cap).
    """

    def __init__(
        self,
        core_api: CoreV1Api,
        reconciler: Reconciler,
        label_selector: str,
        resync_seconds: int = 60,
        request_timeout_seconds: int = 10,
        logger: logging.Logger | None = None,
    ) -> None:
        self.core_api = core_api
        self.reconciler = reconciler
        self.label_selector = label_selector
        self.resync_seconds = resync_seconds
        self.request_timeout_seconds = request_timeout_seconds
        self.logger = logger or logging.getLogger(__name__)

        self._external_stop = threading.Event()
        self._active_watcher: watch.Watch | None = None
        self._watcher_lock = threading.Lock()

    def request_stop(self) -> None:
        """Request a cooperative stop and immediately interrupt any open watch stream."""
        self._external_stop.set()
        with self._watcher_lock:
            active_watcher = self._active_watcher
        if active_watcher is not None:
            active_watcher.stop()

    def _should_stop(self, stop_event: threading.Event) -> bool:
        return stop_event.is_set() or self._external_stop.is_set()

    def _trigger(self, reason: str) -> None:
        self.logger.debug("Reconciling after %s", reason)
        try:
            self.reconciler.reconcile()
        except Exception:
            self.logger.exception("Unexpected error during reconciliation (%s)", reason)

    def _list_resource_version(self) -> str | None:
        namespaces = self.core_api.list_namespace(
            label_selector=self.label_selector,
            _request_timeout=self.request_timeout_seconds,
        )
        return getattr(getattr(namespaces, "metadata", None), "resource_version", None)

    def run_forever(self, shutdown_event: threading.Event | None = None) -> None:
        """List-then-watch namespaces until shutdown.

        The initial list only establishes the resourceVersion to watch from;
        a reconcile follows it so changes made between the caller's startup
        pass and the watch opening are not missed.
        """
        stop = shutdown_event or threading.Event()
        self._external_stop.clear()

        resource_version: str | None = None
        startup_backoff_seconds = 1
        while not self._should_stop(stop):
            try:
                resource_version = self._list_resource_version()
                self.logger.info("Starting namespace watch from resourceVersion %s", resource_version)
                break
            except ApiException as exc:
                if exc.status in {401, 403}:
                    self.logger.error(
                        "Kubernetes API access denied during initial namespace list (status=%s). "
                        "Check the service account can list and watch namespaces.",
                        exc.status,
                    )
                    return
                self.logger.exception("Initial namespace list failed")
                METRICS.watch_errors_total.inc()
            except Exception:
                self.logger.exception("Unexpected error during initial namespace list")
                METRICS.watch_errors_total.inc()

            jittered = startup_backoff_seconds * (0.5 + random.random())  # noqa: S311
            stop.wait(timeout=jittered)
            startup_backoff_seconds = min(startup_backoff_seconds * 2, 30)

        if self._should_stop(stop):
            return
        self._trigger("initial list")

        backoff_seconds = 1
        watch_stream_count = 0

        while not self._should_stop(stop):
            watcher = watch.Watch()
            with self._watcher_lock:
                self._active_watcher = watcher
            try:
                if watch_stream_count > 0:
                    METRICS.watch_reconnects_total.inc()
                watch_stream_count += 1
                stream = watcher.stream(
                    self.core_api.list_namespace,
                    label_selector=self.label_selector,
                    resource_version=resource_version,
                    timeout_seconds=self.resync_seconds,
                    _request_timeout=self.resync_seconds + self.request_timeout_seconds,
                )

                for event in stream:
                    if self._should_stop(stop):
                        break

                    obj = event.get("object")
                    metadata = getattr(obj, "metadata", None)
                    if metadata is not None and getattr(metadata, "resource_version", None):
                        resource_version = metadata.resource_version

                    event_type = str(event.get("type", ""))
                    if event_type not in WATCHED_EVENT_TYPES:
                        continue
                    name = getattr(metadata, "name", None) or "<unknown>"
                    self._trigger(f"{event_type} namespace {name}")

                backoff_seconds = 1
                if not self._should_stop(stop):
                    self._trigger("periodic resync")
            except ApiException as exc:
                if exc.status == 410:
                    self.logger.warning("Watch resource version expired, re-listing")
                    try:
                        resource_version = self._list_resource_version()
                    except ApiException as relist_exc:
                        if relist_exc.status in {401, 403}:
                            self.logger.error(
                                "Kubernetes API access denied during 410 re-list (status=%s). "
                                "Check the service account can list and watch namespaces.",
                                relist_exc.status,
                            )
                            return
                        self.logger.exception("Failed to re-list after 410")
                        METRICS.watch_errors_total.inc()
                        resource_version = None
                        continue
                    except Exception:
                        self.logger.exception("Unexpected error re-listing after 410")
                        METRICS.watch_errors_total.inc()
                        resource_version = None
                        continue
                    self._trigger("re-list after 410")
                    continue

                if exc.status in {401, 403}:
                    self.logger.error(
                        "Kubernetes API watch denied (status=%s). "
                        "Check the service account can list and watch namespaces.",
                        exc.status,
                    )
                    METRICS.watch_errors_total.inc()
                    return

                self.logger.exception("Kubernetes API watch error")
                METRICS.watch_errors_total.inc()
                jittered = backoff_seconds * (0.5 + random.random())  # noqa: S311
                stop.wait(timeout=jittered)
                backoff_seconds = min(backoff_seconds * 2, 30)
            except Exception:
                self.logger.exception("Unexpected watch error")
                METRICS.watch_errors_total.inc()
                jittered = backoff_seconds * (0.5 + random.random())  # noqa: S311
                stop.wait(timeout=jittered)
                backoff_seconds = min(backoff_seconds * 2, 30)
            finally:
                watcher.stop()
                with self._watcher_lock:
                    if self._active_watcher is watcher:
                        self._active_watcher = None

        self.logger.info("Namespace watch stopped")
