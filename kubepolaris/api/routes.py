"""FastAPI route handlers for the KubePolaris REST API.

All routes are registered on a single APIRouter that ``app.py`` mounts
under the ``/api/v1`` prefix.  Informer errors raised by the manager are
turned into responses by the exception handlers installed in ``app.py``.

Error code conventions:
    404 CLUSTER_NOT_FOUND          -- cluster ID unknown to the directory
    404 UNKNOWN_KIND               -- resource kind is not tracked
    503 CACHE_WARMING_UP           -- initial sync did not finish in time
    500 CLUSTER_CONNECTION_FAILED  -- no client could be built for the cluster
"""

from __future__ import annotations

import structlog
from fastapi import APIRouter, Request, Response
from fastapi.responses import JSONResponse

from kubepolaris.api.schemas import (
    ClusterStatusResponse,
    ErrorResponse,
    HealthStatus,
    OverviewResponse,
    ResourceListResponse,
)
from kubepolaris.connection.directory import ClusterDirectory
from kubepolaris.informer.manager import ClusterInformerManager
from kubepolaris.models.cluster import ResourceKind

_log = structlog.get_logger(component="api.routes")

router = APIRouter()

_ERROR_RESPONSES: dict[int | str, dict[str, object]] = {
    404: {"model": ErrorResponse},
    500: {"model": ErrorResponse},
    503: {"model": ErrorResponse},
}


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _manager(request: Request) -> ClusterInformerManager:
    return request.app.state.manager  # type: ignore[no-any-return]


def _directory(request: Request) -> ClusterDirectory:
    return request.app.state.directory  # type: ignore[no-any-return]


def _parse_labels(selector: str | None) -> dict[str, str] | None:
    """Parse an equality-only label selector (``app=web,tier=front``)."""
    if not selector:
        return None
    labels: dict[str, str] = {}
    for part in selector.split(","):
        key, sep, value = part.partition("=")
        if sep and key.strip():
            labels[key.strip()] = value.strip()
    return labels or None


# ---------------------------------------------------------------------------
# Routes
# ---------------------------------------------------------------------------


@router.get(
    "/health",
    response_model=HealthStatus,
    summary="Health check",
    description="Lightweight liveness probe.  Always returns 200 if the process is up.",
)
async def get_health(request: Request) -> HealthStatus:
    """``GET /api/v1/health``"""
    from kubepolaris import __version__

    return HealthStatus(status="ok", version=__version__, clusters=len(_manager(request).cluster_ids()))


@router.get(
    "/clusters/{cluster_id}/status",
    response_model=ClusterStatusResponse,
    summary="Get cache status for a cluster",
    description="Creates the cluster's cache on first use; never waits for the sync.",
    responses=_ERROR_RESPONSES,
)
async def get_cluster_status(request: Request, cluster_id: str) -> ClusterStatusResponse:
    """``GET /api/v1/clusters/{cluster_id}/status``"""
    record = await _directory(request).get(cluster_id)
    cache = await _manager(request).ensure_for_cluster(record)
    return ClusterStatusResponse(
        cluster_id=cluster_id,
        status=cache.status.value,
        ready=cache.is_ready(),
        kinds={kind.value: state.value for kind, state in sorted(cache.kind_states().items())},
    )


@router.get(
    "/clusters/{cluster_id}/overview",
    response_model=OverviewResponse,
    summary="Get a cluster overview",
    description="Node, pod and workload counts computed from the informer cache.",
    responses=_ERROR_RESPONSES,
)
async def get_overview(request: Request, cluster_id: str) -> OverviewResponse:
    """``GET /api/v1/clusters/{cluster_id}/overview``"""
    manager = _manager(request)
    record = await _directory(request).get(cluster_id)
    await manager.ensure_for_cluster(record)
    snapshot = await manager.overview_snapshot(cluster_id)
    return OverviewResponse.from_snapshot(snapshot)


@router.get(
    "/clusters/{cluster_id}/resources/{kind}",
    response_model=ResourceListResponse,
    summary="List cached resources of one kind",
    description=(
        "Serves objects straight from the informer cache.  ``kind`` accepts the "
        "kind name or its plural (``Pod``, ``pods``).  Kinds the cluster does not "
        "serve return ``available: false`` with no items."
    ),
    responses=_ERROR_RESPONSES,
)
async def list_resources(
    request: Request,
    cluster_id: str,
    kind: str,
    namespace: str | None = None,
    label_selector: str | None = None,
) -> ResourceListResponse:
    """``GET /api/v1/clusters/{cluster_id}/resources/{kind}?namespace={ns}``"""
    try:
        resource_kind = ResourceKind.parse(kind)
    except ValueError as exc:
        return JSONResponse(  # type: ignore[return-value]
            status_code=404,
            content=ErrorResponse(error="UNKNOWN_KIND", detail=str(exc)).model_dump(exclude_none=True),
        )

    manager = _manager(request)
    record = await _directory(request).get(cluster_id)
    await manager.ensure_and_wait(record, kinds=[resource_kind])

    lister = manager.lister(cluster_id, resource_kind)
    items = lister.list(namespace=namespace, labels=_parse_labels(label_selector))
    return ResourceListResponse(
        cluster_id=cluster_id,
        kind=resource_kind.value,
        namespace=namespace,
        available=lister.available,
        count=len(items),
        items=items,
    )


@router.delete(
    "/clusters/{cluster_id}/cache",
    status_code=204,
    summary="Evict a cluster cache",
    description=(
        "Stops the cluster's informers and drops its cache.  Call after the "
        "cluster is deleted or its credentials change.  Unknown IDs are a no-op."
    ),
)
async def delete_cluster_cache(request: Request, cluster_id: str) -> Response:
    """``DELETE /api/v1/clusters/{cluster_id}/cache``"""
    await _manager(request).stop_for_cluster(cluster_id)
    _log.info("cluster_cache_evicted", cluster_id=cluster_id)
    return Response(status_code=204)
