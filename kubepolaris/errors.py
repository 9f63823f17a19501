"""Error taxonomy for the informer cache.

Only :class:`ClusterConnectionError`, :class:`NotReadyError` and
:class:`ClusterNotFoundError` ever reach callers of the manager.
:class:`WatchError` and :class:`KindUnavailableError` are contained inside a
``ClusterCache`` and are observable through logs and metrics only.
"""

from __future__ import annotations


class InformerError(Exception):
    """Base class for all informer cache errors."""


class ClusterNotFoundError(InformerError):
    """Raised when a cluster ID is unknown to the directory or the registry."""

    def __init__(self, cluster_id: str) -> None:
        super().__init__(f"cluster {cluster_id!r} not found")
        self.cluster_id = cluster_id


class ClusterConnectionError(InformerError):
    """Raised when an authenticated client cannot be built for a cluster.

    Fatal for the ``ensure_for_cluster`` call that triggered it; never
    retried internally.
    """

    def __init__(self, cluster_id: str, reason: str) -> None:
        super().__init__(f"cannot connect to cluster {cluster_id!r}: {reason}")
        self.cluster_id = cluster_id
        self.reason = reason


class NotReadyError(InformerError):
    """Raised when the initial sync did not finish within the requested timeout."""

    def __init__(self, cluster_id: str, pending_kinds: list[str] | None = None) -> None:
        pending = ", ".join(pending_kinds or [])
        message = f"informer cache for cluster {cluster_id!r} is not ready"
        if pending:
            message += f" (waiting on: {pending})"
        super().__init__(message)
        self.cluster_id = cluster_id
        self.pending_kinds = list(pending_kinds or [])


class KindUnavailableError(InformerError):
    """A resource kind (typically a CRD) is not served by the cluster."""

    def __init__(self, cluster_id: str, kind: str) -> None:
        super().__init__(f"kind {kind} is not available on cluster {cluster_id!r}")
        self.cluster_id = cluster_id
        self.kind = kind


class WatchError(InformerError):
    """Transient failure inside one informer's list/watch loop."""

    def __init__(self, kind: str, reason: str, status: int | None = None) -> None:
        super().__init__(f"{kind} watch failed: {reason}")
        self.kind = kind
        self.reason = reason
        self.status = status
