"""Per-cluster informer caches and the registry that owns them."""

from kubepolaris.informer.cluster_cache import ClusterCache
from kubepolaris.errors import (
    ClusterConnectionError,
    ClusterNotFoundError,
    InformerError,
    KindUnavailableError,
    NotReadyError,
    WatchError,
)
from kubepolaris.informer.manager import ClusterInformerManager
from kubepolaris.informer.snapshot import SnapshotAggregator
from kubepolaris.informer.store import UNAVAILABLE, IndexedStore, Lister

__all__ = [
    "UNAVAILABLE",
    "ClusterCache",
    "ClusterConnectionError",
    "ClusterInformerManager",
    "ClusterNotFoundError",
    "IndexedStore",
    "InformerError",
    "KindUnavailableError",
    "Lister",
    "NotReadyError",
    "SnapshotAggregator",
    "WatchError",
]
