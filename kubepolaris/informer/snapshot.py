"""Cluster overview built purely from already-cached listers.

The aggregator never talks to the API server.  A section whose lister is
:data:`UNAVAILABLE` is left out of the snapshot instead of failing it.
"""

from __future__ import annotations

from collections import Counter
from collections.abc import Mapping
from datetime import UTC, datetime
from typing import Any

from kubepolaris.informer.cluster_cache import ClusterCache
from kubepolaris.informer.store import UNAVAILABLE, Lister
from kubepolaris.models.cluster import ResourceKind
from kubepolaris.models.snapshot import ClusterHealth, OverviewSnapshot, WorkloadSummary

_WORKLOAD_KINDS: tuple[ResourceKind, ...] = (
    ResourceKind.DEPLOYMENT,
    ResourceKind.STATEFUL_SET,
    ResourceKind.DAEMON_SET,
    ResourceKind.JOB,
    ResourceKind.ROLLOUT,
)

_SNAPSHOT_KINDS: tuple[ResourceKind, ...] = (
    ResourceKind.NODE,
    ResourceKind.POD,
    ResourceKind.NAMESPACE,
    *_WORKLOAD_KINDS,
)


class SnapshotAggregator:
    """Compute :class:`OverviewSnapshot` objects from listers.

    Example::

        snapshot = SnapshotAggregator().from_cache(cache)
        snapshot.ready_nodes, snapshot.health
    """

    def from_cache(self, cache: ClusterCache) -> OverviewSnapshot:
        """Build a snapshot from every lister the cache can currently serve."""
        return self.build(cache.cluster_id, {kind: cache.lister(kind) for kind in _SNAPSHOT_KINDS})

    def build(self, cluster_id: str, listers: Mapping[ResourceKind, Lister]) -> OverviewSnapshot:
        """Build a snapshot from an explicit kind -> lister mapping.

        Kinds missing from *listers* are treated as unavailable.
        """

        def available(kind: ResourceKind) -> Lister | None:
            lister = listers.get(kind, UNAVAILABLE)
            return lister if lister.available else None

        node_count = ready_nodes = None
        if (nodes := available(ResourceKind.NODE)) is not None:
            items = nodes.list()
            node_count = len(items)
            ready_nodes = sum(1 for n in items if _condition_true(n, "Ready"))

        pod_count = ready_pods = None
        pod_phases: dict[str, int] | None = None
        if (pods := available(ResourceKind.POD)) is not None:
            items = pods.list()
            pod_count = len(items)
            ready_pods = sum(1 for p in items if _condition_true(p, "Ready"))
            pod_phases = dict(Counter(str(_status(p).get("phase") or "Unknown") for p in items))

        namespace_count = None
        if (namespaces := available(ResourceKind.NAMESPACE)) is not None:
            namespace_count = len(namespaces.list())

        workloads: dict[str, WorkloadSummary] = {}
        for kind in _WORKLOAD_KINDS:
            lister = available(kind)
            if lister is not None:
                workloads[kind.value] = _summarize_workloads(kind, lister.list())

        return OverviewSnapshot(
            cluster_id=cluster_id,
            generated_at=datetime.now(tz=UTC),
            node_count=node_count,
            ready_nodes=ready_nodes,
            pod_count=pod_count,
            ready_pods=ready_pods,
            pod_phases=pod_phases,
            namespace_count=namespace_count,
            workloads=workloads,
            health=_rollup(node_count, ready_nodes, workloads),
        )


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _status(obj: Mapping[str, Any]) -> Mapping[str, Any]:
    status = obj.get("status")
    return status if isinstance(status, Mapping) else {}


def _spec(obj: Mapping[str, Any]) -> Mapping[str, Any]:
    spec = obj.get("spec")
    return spec if isinstance(spec, Mapping) else {}


def _int(value: Any, default: int = 0) -> int:
    return value if isinstance(value, int) else default


def _condition_true(obj: Mapping[str, Any], condition_type: str) -> bool:
    for cond in _status(obj).get("conditions") or []:
        if isinstance(cond, Mapping) and cond.get("type") == condition_type:
            return str(cond.get("status")) == "True"
    return False


def _workload_ready(kind: ResourceKind, obj: Mapping[str, Any]) -> bool:
    status = _status(obj)
    if kind == ResourceKind.DAEMON_SET:
        return _int(status.get("numberReady")) >= _int(status.get("desiredNumberScheduled"))
    if kind == ResourceKind.JOB:
        if _condition_true(obj, "Complete"):
            return True
        completions = _int(_spec(obj).get("completions"), 1)
        return _int(status.get("succeeded")) >= completions
    # Deployment, StatefulSet, Rollout
    desired = _int(_spec(obj).get("replicas"), 1)
    return _int(status.get("readyReplicas")) >= desired


def _summarize_workloads(kind: ResourceKind, items: list[dict[str, Any]]) -> WorkloadSummary:
    ready = sum(1 for obj in items if _workload_ready(kind, obj))
    active = failed = 0
    if kind == ResourceKind.JOB:
        active = sum(1 for obj in items if _int(_status(obj).get("active")) > 0)
        failed = sum(1 for obj in items if _condition_true(obj, "Failed"))
    return WorkloadSummary(count=len(items), ready=ready, active=active, failed=failed)


def _rollup(
    node_count: int | None,
    ready_nodes: int | None,
    workloads: Mapping[str, WorkloadSummary],
) -> ClusterHealth:
    """Coarse health: node readiness first, then long-running workload readiness."""
    if not node_count or ready_nodes is None:
        return ClusterHealth.UNKNOWN
    if ready_nodes == 0:
        return ClusterHealth.CRITICAL
    if ready_nodes < node_count:
        return ClusterHealth.DEGRADED
    for kind, summary in workloads.items():
        if kind == ResourceKind.JOB.value:
            continue
        if summary.ready < summary.count:
            return ClusterHealth.DEGRADED
    return ClusterHealth.HEALTHY
