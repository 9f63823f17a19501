"""Prometheus metrics for KubePolaris."""

from __future__ import annotations

from prometheus_client import Counter, Gauge, Histogram

# Informer (per cluster, per kind) metrics
informer_events_total = Counter(
    "kubepolaris_informer_events_total",
    "Watch events applied to an informer store",
    ["kind", "event_type"],
)

informer_errors_total = Counter(
    "kubepolaris_informer_errors_total",
    "List/watch failures inside informer loops",
    ["kind", "reason"],
)

informer_relists_total = Counter(
    "kubepolaris_informer_relists_total",
    "Full list calls performed by informers",
    ["kind"],
)

informer_backoff_seconds = Histogram(
    "kubepolaris_informer_backoff_seconds",
    "Back-off delays applied after informer failures",
    ["kind"],
    buckets=(1.0, 2.0, 4.0, 8.0, 16.0, 32.0, 60.0, 120.0),
)

informer_store_objects = Gauge(
    "kubepolaris_informer_store_objects",
    "Objects held in an informer store",
    ["cluster_id", "kind"],
)

kind_unavailable_total = Counter(
    "kubepolaris_kind_unavailable_total",
    "Kinds skipped because the cluster does not serve them",
    ["kind"],
)

# Cluster cache metrics
cluster_caches = Gauge(
    "kubepolaris_cluster_caches",
    "Registered cluster caches",
)

cluster_cache_status = Gauge(
    "kubepolaris_cluster_cache_status",
    "Cluster cache status (1 for the current status)",
    ["cluster_id", "status"],
)

cache_not_ready_total = Counter(
    "kubepolaris_cache_not_ready_total",
    "wait_ready calls that timed out before sync completed",
)

cache_sync_duration_seconds = Histogram(
    "kubepolaris_cache_sync_duration_seconds",
    "Time from cache start until all required kinds synced",
    buckets=(0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 60.0),
)

# Manager metrics
ensure_duration_seconds = Histogram(
    "kubepolaris_ensure_duration_seconds",
    "ensure_and_wait latency",
    ["outcome"],
    buckets=(0.005, 0.01, 0.05, 0.1, 0.5, 1.0, 2.5, 5.0, 10.0),
)

connection_failures_total = Counter(
    "kubepolaris_connection_failures_total",
    "Failures building a client for a cluster",
)

sweep_evictions_total = Counter(
    "kubepolaris_sweep_evictions_total",
    "Caches stopped by the reconciliation sweep",
)
