"""Overview snapshot computed on demand from cached listers."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import StrEnum


class ClusterHealth(StrEnum):
    """Coarse health rollup of a cluster overview."""

    HEALTHY = "healthy"
    DEGRADED = "degraded"
    CRITICAL = "critical"
    UNKNOWN = "unknown"


@dataclass(frozen=True)
class WorkloadSummary:
    """Counts for one workload kind.

    For Jobs ``ready`` counts completed jobs; for every other kind it counts
    workloads whose ready replicas meet the desired count.
    """

    count: int = 0
    ready: int = 0
    active: int = 0
    failed: int = 0


@dataclass(frozen=True)
class OverviewSnapshot:
    """Point-in-time overview of one cluster.

    Sections whose lister is unavailable are ``None`` (or absent from
    ``workloads``) rather than zero.
    """

    cluster_id: str
    generated_at: datetime
    node_count: int | None = None
    ready_nodes: int | None = None
    pod_count: int | None = None
    ready_pods: int | None = None
    pod_phases: dict[str, int] | None = None
    namespace_count: int | None = None
    workloads: dict[str, WorkloadSummary] = field(default_factory=dict)
    health: ClusterHealth = ClusterHealth.UNKNOWN

    @property
    def node_ready_ratio(self) -> float | None:
        if not self.node_count or self.ready_nodes is None:
            return None
        return self.ready_nodes / self.node_count

    @property
    def pod_ready_ratio(self) -> float | None:
        if not self.pod_count or self.ready_pods is None:
            return None
        return self.ready_pods / self.pod_count
