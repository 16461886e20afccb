from __future__ import annotations

import logging
import threading
import time
from collections.abc import Iterable
from dataclasses import dataclass

from syncer.src.errors import (
    AlreadyExistsError,
    ConflictError,
    ProcessNotFoundError,
    SignalDeliveryError,
    TransientQueryError,
    TransientStoreError,
)
from syncer.src.members import NamespaceLister
from syncer.src.metrics import METRICS
from syncer.src.signaler import ProcessSignaler
from syncer.src.store import ConfigMapStore

CREATED = "created"
UPDATED = "updated"
UNCHANGED = "unchanged"
FAILED = "failed"


@dataclass(frozen=True)
class ReconcileResult:
    """Outcome of one reconciliation pass.

    ``value`` is the canonical member list computed by the pass, or ``None``
    when listing failed.  ``signaled`` is only ever true for ``updated``.
    """

    outcome: str
    value: str | None = None
    signaled: bool = False

    @property
    def succeeded(self) -> bool:
        return self.outcome != FAILED


def canonicalize(names: Iterable[str]) -> str:
    """Return the sorted, comma-joined form of a name set (``""`` when empty).

    Sorting makes the value independent of API listing order, so a pass over
    an unchanged set never produces a spurious write.
    """
    return ",".join(sorted(set(names)))


class Reconciler:
    """Keeps the ConfigMap key equal to the canonical list of matching namespaces.

    Every call to :meth:`reconcile` runs a full list → compare → write pass
    under a single lock, so concurrent triggers (initial pass, watch events,
    resync) are serialized rather than coalesced.  The unchanged check makes
    queued no-op passes cheap.

    The companion process is signaled only after a successful *update*.
    Creating the ConfigMap does not signal: the companion has never loaded a
    previous value, so there is nothing to reload.
    """

    def __init__(
        self,
        lister: NamespaceLister,
        store: ConfigMapStore,
        signaler: ProcessSignaler,
        watch_key: str,
        logger: logging.Logger | None = None,
    ) -> None:
        self.lister = lister
        self.store = store
        self.signaler = signaler
        self.watch_key = watch_key
        self.logger = logger or logging.getLogger(__name__)
        self._lock = threading.Lock()
        self.last_result: ReconcileResult | None = None
        self.last_reconciled_at: float | None = None

    def reconcile(self) -> ReconcileResult:
        started = time.monotonic()
        with self._lock:
            result = self._reconcile_locked()
            self.last_result = result
            self.last_reconciled_at = time.time()
        METRICS.reconcile_duration_seconds.observe(time.monotonic() - started)
        METRICS.reconcile_total.labels(outcome=result.outcome).inc()
        return result

    def _context(self, outcome: str, **fields: object) -> dict[str, object]:
        return {"key": self.watch_key, "outcome": outcome, **fields}

    def _reconcile_locked(self) -> ReconcileResult:
        try:
            members = self.lister.list_members()
        except TransientQueryError:
            self.logger.exception(
                "Failed to list namespaces; skipping this pass", extra=self._context(FAILED)
            )
            return ReconcileResult(outcome=FAILED)

        METRICS.members.set(len(members))
        value = canonicalize(members)

        try:
            entry = self.store.get()
        except TransientStoreError:
            self.logger.exception(
                "Failed to read ConfigMap; skipping this pass", extra=self._context(FAILED)
            )
            return ReconcileResult(outcome=FAILED, value=value)

        if entry is None:
            try:
                self.store.create(value)
            except AlreadyExistsError:
                self.logger.warning(
                    "ConfigMap was created by another writer; the next event will reconcile it",
                    extra=self._context(FAILED),
                )
                return ReconcileResult(outcome=FAILED, value=value)
            except TransientStoreError:
                self.logger.exception("Failed to create ConfigMap", extra=self._context(FAILED))
                return ReconcileResult(outcome=FAILED, value=value)
            self.logger.info(
                "Initialized %s with %d namespace(s)",
                self.watch_key,
                len(members),
                extra=self._context(CREATED, members=len(members)),
            )
            return ReconcileResult(outcome=CREATED, value=value)

        if entry.value(self.watch_key) == value:
            self.logger.debug(
                "Namespace list unchanged; nothing to do",
                extra=self._context(UNCHANGED, members=len(members)),
            )
            return ReconcileResult(outcome=UNCHANGED, value=value)

        try:
            self.store.update(entry, value)
        except ConflictError:
            self.logger.warning(
                "ConfigMap changed since it was read (resourceVersion %s); abandoning this pass",
                entry.resource_version,
                extra=self._context(FAILED, resource_version=entry.resource_version),
            )
            return ReconcileResult(outcome=FAILED, value=value)
        except TransientStoreError:
            self.logger.exception("Failed to update ConfigMap", extra=self._context(FAILED))
            return ReconcileResult(outcome=FAILED, value=value)

        self.logger.info(
            "Updated %s to %r; restarting main container",
            self.watch_key,
            value,
            extra=self._context(UPDATED, members=len(members)),
        )
        return ReconcileResult(outcome=UPDATED, value=value, signaled=self._signal_companion())

    def _signal_companion(self) -> bool:
        # The ConfigMap write is already committed; a failed signal never undoes it.
        try:
            self.signaler.restart()
        except ProcessNotFoundError as exc:
            METRICS.signals_total.labels(result="not_found").inc()
            self.logger.error("Main container process not found: %s", exc)
            return False
        except SignalDeliveryError as exc:
            METRICS.signals_total.labels(result="failed").inc()
            self.logger.error("Failed to signal main container: %s", exc)
            return False
        METRICS.signals_total.labels(result="sent").inc()
        return True
