"""Pydantic response models for the KubePolaris REST API.

All models use Pydantic v2 syntax.  Field descriptions are also used
by FastAPI to generate the OpenAPI spec.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field

from kubepolaris.models.snapshot import OverviewSnapshot

# ---------------------------------------------------------------------------
# Generic responses
# ---------------------------------------------------------------------------


class HealthStatus(BaseModel):
    """Response body for ``GET /api/v1/health``."""

    status: str = Field(
        ...,
        description="Always ``ok`` while the process is running.",
        examples=["ok"],
    )
    version: str = Field(..., description="KubePolaris version string.", examples=["0.1.0"])
    clusters: int = Field(..., description="Number of registered cluster caches.")


class ErrorResponse(BaseModel):
    """Standard error envelope returned for all 4xx and 5xx responses."""

    error: str = Field(
        ...,
        description="Machine-readable error code.",
        examples=[
            "CLUSTER_NOT_FOUND",
            "UNKNOWN_KIND",
            "CACHE_WARMING_UP",
            "CLUSTER_CONNECTION_FAILED",
        ],
    )
    detail: str = Field(..., description="Human-readable description of the error.")
    pending_kinds: list[str] | None = Field(
        default=None,
        description="Kinds still syncing; only set for ``CACHE_WARMING_UP``.",
    )


# ---------------------------------------------------------------------------
# Cluster responses
# ---------------------------------------------------------------------------


class ClusterStatusResponse(BaseModel):
    """Response body for ``GET /api/v1/clusters/{id}/status``."""

    cluster_id: str
    status: str = Field(..., examples=["pending", "syncing", "ready", "failed", "stopped"])
    ready: bool
    kinds: dict[str, str] = Field(
        default_factory=dict,
        description="Per-kind sync state, e.g. ``{\"Pod\": \"synced\", \"Rollout\": \"unavailable\"}``.",
    )


class WorkloadSummaryResponse(BaseModel):
    count: int
    ready: int
    active: int = 0
    failed: int = 0


class OverviewResponse(BaseModel):
    """Response body for ``GET /api/v1/clusters/{id}/overview``."""

    cluster_id: str
    generated_at: datetime
    health: str
    node_count: int | None = None
    ready_nodes: int | None = None
    pod_count: int | None = None
    ready_pods: int | None = None
    pod_phases: dict[str, int] | None = None
    namespace_count: int | None = None
    workloads: dict[str, WorkloadSummaryResponse] = Field(default_factory=dict)

    @classmethod
    def from_snapshot(cls, snapshot: OverviewSnapshot) -> OverviewResponse:
        return cls(
            cluster_id=snapshot.cluster_id,
            generated_at=snapshot.generated_at,
            health=snapshot.health.value,
            node_count=snapshot.node_count,
            ready_nodes=snapshot.ready_nodes,
            pod_count=snapshot.pod_count,
            ready_pods=snapshot.ready_pods,
            pod_phases=snapshot.pod_phases,
            namespace_count=snapshot.namespace_count,
            workloads={
                kind: WorkloadSummaryResponse(
                    count=summary.count,
                    ready=summary.ready,
                    active=summary.active,
                    failed=summary.failed,
                )
                for kind, summary in snapshot.workloads.items()
            },
        )


class ResourceListResponse(BaseModel):
    """Response body for ``GET /api/v1/clusters/{id}/resources/{kind}``."""

    cluster_id: str
    kind: str
    namespace: str | None = None
    available: bool = Field(
        ...,
        description="False when the kind is not served by the cluster or has not synced.",
    )
    count: int
    items: list[dict[str, Any]] = Field(default_factory=list)
