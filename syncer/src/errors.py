from __future__ import annotations


class SyncerError(Exception):
    """Base class for every error raised by the namespace syncer."""


class ConfigError(SyncerError):
    """Raised when the syncer configuration is invalid."""


class BootstrapError(SyncerError):
    """Raised when Kubernetes credentials or API clients cannot be constructed."""


class TransientQueryError(SyncerError):
    """Listing the watched namespaces failed; the pass is abandoned."""


class TransientStoreError(SyncerError):
    """Reading or writing the ConfigMap failed for a reason other than not-found."""


class ConflictError(TransientStoreError):
    """The ConfigMap changed since it was read, so the conditional update was rejected."""


class AlreadyExistsError(TransientStoreError):
    """Another writer created the ConfigMap between our read and our create."""


class ProcessNotFoundError(SyncerError):
    """No process in the shared PID namespace matched the companion pattern."""


class SignalDeliveryError(SyncerError):
    """The companion process was found but could not be signaled."""
