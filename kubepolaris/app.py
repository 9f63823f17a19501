"""Application bootstrap for KubePolaris.

Startup order: config → logging → cluster directory → informer manager
              → sweeper → REST

Shutdown runs in reverse order.  Every cluster cache is stopped before the
process exits so no watch connection outlives it.
"""

from __future__ import annotations

import asyncio
import signal
from typing import TYPE_CHECKING

from kubepolaris.config import load_config
from kubepolaris.models.config import PolarisConfig
from kubepolaris.observability.logging import get_logger, setup_logging

if TYPE_CHECKING:
    from structlog.typing import FilteringBoundLogger

    from kubepolaris.connection.directory import ClusterDirectory
    from kubepolaris.informer.manager import ClusterInformerManager

_SHUTDOWN_GRACE_SECONDS = 15


class _ComponentError(Exception):
    """Raised when a mandatory component fails to start."""

    def __init__(self, component: str, cause: Exception) -> None:
        super().__init__(f"Component '{component}' failed to start: {cause}")
        self.component = component
        self.cause = cause


class PolarisApp:
    """Application root.  Owns the manager, the directory and the REST server.

    ``stop()`` is safe on an app that was never started or already stopped.
    """

    def __init__(self, config: PolarisConfig | None = None) -> None:
        self.config: PolarisConfig | None = config

        self._directory: ClusterDirectory | None = None
        self._manager: ClusterInformerManager | None = None
        self._rest_server: object | None = None

        self._background_tasks: list[asyncio.Task[None]] = []

        self._running = False
        self._log: FilteringBoundLogger | None = None

    @property
    def running(self) -> bool:
        return self._running

    # ------------------------------------------------------------------
    # Startup
    # ------------------------------------------------------------------

    async def start(self, serve_rest: bool = True) -> None:
        """Start all components in dependency order.

        Raises _ComponentError if a mandatory component cannot start.
        """
        # --- 1. Configuration -------------------------------------------
        if self.config is None:
            self.config = load_config()

        # --- 2. Logging -------------------------------------------------
        setup_logging(self.config.log.level)
        self._log = get_logger("app")
        self._log.info("kubepolaris_starting", version=_polaris_version())

        # --- 3. Cluster directory ----------------------------------------
        self._start_directory()

        # --- 4. Informer manager -----------------------------------------
        self._start_manager()

        # --- 5. Reconciliation sweep (optional) --------------------------
        self._start_sweeper()

        # --- 6. REST API -------------------------------------------------
        if serve_rest:
            self._start_rest()

        self._running = True
        self._log.info("kubepolaris_started", port=self.config.api.port)

    def _start_directory(self) -> None:
        assert self._log is not None
        assert self.config is not None
        from kubepolaris.connection.directory import FileClusterDirectory, StaticClusterDirectory

        if self.config.clusters_file:
            self._directory = FileClusterDirectory(self.config.clusters_file)
            self._log.info("cluster_directory_file", path=self.config.clusters_file)
        else:
            self._directory = StaticClusterDirectory()
            self._log.warning("cluster_directory_empty", hint="set KUBEPOLARIS_CLUSTERS_FILE")

    def _start_manager(self) -> None:
        assert self._log is not None
        assert self.config is not None
        try:
            from kubepolaris.connection.factory import ClusterConnectionFactory
            from kubepolaris.informer.manager import ClusterInformerManager

            self._manager = ClusterInformerManager(ClusterConnectionFactory(), self.config.informer)
        except Exception as exc:
            raise _ComponentError("informer_manager", exc) from exc
        self._log.info(
            "informer_manager_started",
            required_kinds=[k.value for k in self.config.informer.required_kinds],
            rollouts_enabled=self.config.informer.rollouts_enabled,
        )

    def _start_sweeper(self) -> None:
        assert self._log is not None
        assert self.config is not None
        interval = self.config.sweep.interval_seconds
        if interval <= 0 or self._manager is None or self._directory is None:
            return
        task = asyncio.create_task(self._manager.run_sweeper(self._directory, interval), name="cache-sweeper")
        self._background_tasks.append(task)
        self._log.info("cache_sweeper_started", interval_s=interval)

    def _start_rest(self) -> None:
        """Start the uvicorn REST server."""
        assert self._log is not None
        assert self.config is not None
        assert self._manager is not None
        assert self._directory is not None
        try:
            import uvicorn

            from kubepolaris.api import create_app

            fastapi_app = create_app(self._manager, self._directory)
            uv_config = uvicorn.Config(
                app=fastapi_app,
                host=self.config.api.host,
                port=self.config.api.port,
                log_config=None,
                access_log=False,
            )
            server = uvicorn.Server(uv_config)
            task = asyncio.create_task(server.serve(), name="rest-server")
            self._background_tasks.append(task)
            self._rest_server = server
            self._log.info("rest_api_started", host=self.config.api.host, port=self.config.api.port)
        except Exception as exc:
            raise _ComponentError("rest", exc) from exc

    # ------------------------------------------------------------------
    # Shutdown
    # ------------------------------------------------------------------

    async def stop(self) -> None:
        """Stop components in reverse startup order; each failure is logged independently."""
        if not self._running and self._log is None:
            return

        log = self._log or get_logger("app")
        log.info("kubepolaris_shutting_down")
        self._running = False

        server = self._rest_server
        if server is not None:
            # Let uvicorn finish in-flight requests before its task is cancelled.
            server.should_exit = True  # type: ignore[attr-defined]

        for task in reversed(self._background_tasks):
            if not task.done():
                task.cancel()
        if self._background_tasks:
            await asyncio.gather(*self._background_tasks, return_exceptions=True)
        self._background_tasks.clear()
        self._rest_server = None

        if self._manager is not None:
            try:
                await asyncio.wait_for(self._manager.stop(), timeout=_SHUTDOWN_GRACE_SECONDS)
            except TimeoutError:
                log.warning("component_stop_timed_out", component="informer_manager", timeout=_SHUTDOWN_GRACE_SECONDS)
            except Exception as exc:
                log.error("component_stop_failed", component="informer_manager", error=str(exc))

        log.info("kubepolaris_stopped")


def _polaris_version() -> str:
    from kubepolaris import __version__

    return __version__


# ---------------------------------------------------------------------------
# Async entrypoint
# ---------------------------------------------------------------------------


async def main() -> None:
    """Create the app, register OS signals, run until shutdown is requested."""
    app = PolarisApp()
    loop = asyncio.get_running_loop()
    shutdown = asyncio.Event()

    for sig in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(sig, shutdown.set)

    try:
        await app.start()
        await shutdown.wait()
    except _ComponentError as exc:
        get_logger("app").critical("fatal_startup_error", component=exc.component, error=str(exc.cause))
        raise SystemExit(1) from exc
    finally:
        await app.stop()
