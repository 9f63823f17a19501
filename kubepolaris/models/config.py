"""Typed configuration for KubePolaris, populated by :func:`kubepolaris.config.load_config`."""

from __future__ import annotations

from dataclasses import dataclass, field

from kubepolaris.models.cluster import DEFAULT_REQUIRED_KINDS, ResourceKind


@dataclass(frozen=True)
class LogConfig:
    level: str = "info"


@dataclass(frozen=True)
class ApiConfig:
    host: str = "0.0.0.0"
    port: int = 8080


@dataclass(frozen=True)
class InformerConfig:
    """Timing and tracking knobs for the per-cluster informer caches.

    Attributes:
        sync_timeout_seconds:    Default ``ensure_and_wait`` bound.
        overview_wait_seconds:   Wait applied before building an overview snapshot.
        backoff_min_seconds:     First retry delay after a watch failure.
        backoff_max_seconds:     Retry delay ceiling.
        failure_threshold:       Consecutive failures before a kind is marked failed.
        watch_timeout_seconds:   Server-side timeout of one watch request.
        required_kinds:          Kinds that must be synced for a cache to be ready.
        rollouts_enabled:        Whether to probe for the Argo Rollouts CRD.
    """

    sync_timeout_seconds: float = 5.0
    overview_wait_seconds: float = 2.0
    backoff_min_seconds: float = 1.0
    backoff_max_seconds: float = 60.0
    failure_threshold: int = 3
    watch_timeout_seconds: int = 300
    required_kinds: tuple[ResourceKind, ...] = DEFAULT_REQUIRED_KINDS
    rollouts_enabled: bool = True


@dataclass(frozen=True)
class SweepConfig:
    """Reconciliation sweep; ``interval_seconds == 0`` disables it."""

    interval_seconds: int = 0


@dataclass(frozen=True)
class PolarisConfig:
    log: LogConfig = field(default_factory=LogConfig)
    api: ApiConfig = field(default_factory=ApiConfig)
    informer: InformerConfig = field(default_factory=InformerConfig)
    sweep: SweepConfig = field(default_factory=SweepConfig)
    clusters_file: str = ""
