from __future__ import annotations

from dataclasses import dataclass, field

from prometheus_client import Counter, Gauge, Histogram, Info


@dataclass(frozen=True)
class SyncerMetrics:
    """Prometheus metrics exported by the syncer on ``/metrics``."""

    reconcile_total: Counter = field(
        default_factory=lambda: Counter(
            "namespace_sync_reconcile_total",
            "Total reconciliation passes by outcome",
            ["outcome"],
        )
    )
    reconcile_duration_seconds: Histogram = field(
        default_factory=lambda: Histogram(
            "namespace_sync_reconcile_duration_seconds",
            "Seconds spent in a reconciliation pass, including lock wait",
            buckets=(0.05, 0.1, 0.25, 0.5, 1, 2.5, 5, 10, 30, float("inf")),
        )
    )
    members: Gauge = field(
        default_factory=lambda: Gauge(
            "namespace_sync_members",
            "Number of namespaces matching the selector at the last successful list",
        )
    )
    signals_total: Counter = field(
        default_factory=lambda: Counter(
            "namespace_sync_signals_total",
            "Companion process signal attempts by result",
            ["result"],
        )
    )
    watch_errors_total: Counter = field(
        default_factory=lambda: Counter(
            "namespace_sync_watch_errors_total",
            "Total Kubernetes namespace watch errors",
        )
    )
    watch_reconnects_total: Counter = field(
        default_factory=lambda: Counter(
            "namespace_sync_watch_reconnects_total",
            "Total watch stream reconnects after the initial connection",
        )
    )
    build_info: Info = field(
        default_factory=lambda: Info(
            "namespace_sync",
            "Build information for the syncer",
        )
    )


METRICS = SyncerMetrics()
