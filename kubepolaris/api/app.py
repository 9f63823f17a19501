"""FastAPI application factory for the KubePolaris REST API."""

from __future__ import annotations

import structlog
from fastapi import FastAPI, Request, Response
from fastapi.responses import JSONResponse
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest

from kubepolaris.api.routes import router
from kubepolaris.api.schemas import ErrorResponse
from kubepolaris.connection.directory import ClusterDirectory
from kubepolaris.errors import ClusterConnectionError, ClusterNotFoundError, NotReadyError
from kubepolaris.informer.manager import ClusterInformerManager

_log = structlog.get_logger(component="api.app")


def _error(status_code: int, error: str, detail: str, pending_kinds: list[str] | None = None) -> JSONResponse:
    body = ErrorResponse(error=error, detail=detail, pending_kinds=pending_kinds)
    return JSONResponse(status_code=status_code, content=body.model_dump(exclude_none=True))


async def _not_found_handler(request: Request, exc: Exception) -> JSONResponse:
    assert isinstance(exc, ClusterNotFoundError)
    return _error(404, "CLUSTER_NOT_FOUND", str(exc))


async def _not_ready_handler(request: Request, exc: Exception) -> JSONResponse:
    assert isinstance(exc, NotReadyError)
    _log.info("cache_warming_up", cluster_id=exc.cluster_id, pending_kinds=exc.pending_kinds)
    response = _error(503, "CACHE_WARMING_UP", str(exc), pending_kinds=exc.pending_kinds)
    response.headers["Retry-After"] = "1"
    return response


async def _connection_error_handler(request: Request, exc: Exception) -> JSONResponse:
    assert isinstance(exc, ClusterConnectionError)
    _log.error("cluster_connection_failed", cluster_id=exc.cluster_id, error=exc.reason)
    return _error(500, "CLUSTER_CONNECTION_FAILED", str(exc))


def create_app(manager: ClusterInformerManager, directory: ClusterDirectory) -> FastAPI:
    """Build the FastAPI app serving cluster caches owned by *manager*.

    The manager and directory are stored on ``app.state`` for the route
    handlers; their lifecycle stays with the caller.
    """
    from kubepolaris import __version__

    app = FastAPI(
        title="KubePolaris API",
        description="Read-only views of managed Kubernetes clusters served from informer caches.",
        version=__version__,
    )
    app.state.manager = manager
    app.state.directory = directory

    app.add_exception_handler(ClusterNotFoundError, _not_found_handler)
    app.add_exception_handler(NotReadyError, _not_ready_handler)
    app.add_exception_handler(ClusterConnectionError, _connection_error_handler)

    app.include_router(router, prefix="/api/v1")

    @app.get("/metrics", include_in_schema=False)
    async def metrics() -> Response:
        """Prometheus exposition of the process-wide registry."""
        return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)

    return app
