"""Registry of per-cluster informer caches.

The :class:`ClusterInformerManager` is the single owner of every
:class:`ClusterCache`.  Construct one per process, hand it to the request
handlers, and call :meth:`ClusterInformerManager.stop` on shutdown.

Concurrency
-----------
The registry dict is the only state shared across request handlers.  Cache
creation for one cluster ID runs as a single background task that every
concurrent ``ensure_for_cluster`` caller awaits, so the cluster is connected
once and one set of informers is started, while other IDs proceed in
parallel.  Callers wait on that task through :func:`asyncio.shield`: a caller
that times out or is cancelled leaves the creation running for the others.
Creation and teardown of one ID are serialised by a per-ID ``asyncio.Lock``.
Lister accessors are plain dict lookups and never suspend.
"""

from __future__ import annotations

import asyncio
import functools
import time
from collections.abc import Iterable

from kubepolaris.connection.directory import ClusterDirectory
from kubepolaris.connection.factory import ClusterConnectionFactory
from kubepolaris.errors import ClusterConnectionError, ClusterNotFoundError, NotReadyError
from kubepolaris.informer.cluster_cache import ClusterCache
from kubepolaris.informer.snapshot import SnapshotAggregator
from kubepolaris.informer.store import UNAVAILABLE, Lister
from kubepolaris.models.cluster import CacheStatus, ClusterRecord, ResourceKind
from kubepolaris.models.config import InformerConfig
from kubepolaris.models.snapshot import OverviewSnapshot
from kubepolaris.observability.logging import get_logger
from kubepolaris.observability.metrics import (
    cluster_caches,
    ensure_duration_seconds,
    sweep_evictions_total,
)


class ClusterInformerManager:
    """ClusterID -> :class:`ClusterCache` registry with single-flight creation.

    Usage::

        manager = ClusterInformerManager(ClusterConnectionFactory(), config.informer)
        cache = await manager.ensure_and_wait(record, timeout=5)
        pods = manager.pods_lister(record.id).list(namespace="default")
        ...
        await manager.stop_for_cluster(record.id)   # cluster deleted / credentials rotated
    """

    def __init__(
        self,
        factory: ClusterConnectionFactory | None = None,
        config: InformerConfig | None = None,
        aggregator: SnapshotAggregator | None = None,
    ) -> None:
        self._factory = factory or ClusterConnectionFactory()
        self._config = config or InformerConfig()
        self._aggregator = aggregator or SnapshotAggregator()
        self._caches: dict[str, ClusterCache] = {}
        self._creating: dict[str, asyncio.Task[ClusterCache]] = {}
        # One lock per ID that has ever been created, kept for the life of the
        # manager: dropping one while a caller still waits on it would let a
        # second creator in.
        self._locks: dict[str, asyncio.Lock] = {}
        self._log = get_logger("informer.manager")

    # ------------------------------------------------------------------
    # Creation and readiness
    # ------------------------------------------------------------------

    async def ensure_for_cluster(self, record: ClusterRecord) -> ClusterCache:
        """Return the cache for *record*, creating and starting it if needed.

        Returns an already-registered cache whatever its status.  Concurrent
        callers for the same ID share one creation.

        Raises:
            ClusterConnectionError: No client could be built for the cluster.
        """
        cache = self._live(record.id)
        if cache is not None:
            return cache

        task = self._creating.get(record.id)
        if task is None:
            task = asyncio.create_task(self._create(record), name=f"create-cache-{record.id}")
            self._creating[record.id] = task
            task.add_done_callback(functools.partial(self._creation_done, record.id))
        return await asyncio.shield(task)

    async def ensure_and_wait(
        self,
        record: ClusterRecord,
        timeout: float | None = None,
        kinds: Iterable[ResourceKind] | None = None,
    ) -> ClusterCache:
        """Ensure the cache exists, then wait until the needed kinds are synced.

        One timeout bounds both steps: a cluster whose connection or discovery
        hangs yields :class:`NotReadyError` on time while its creation carries
        on in the background.

        Args:
            record:  The cluster to serve.
            timeout: Upper bound on the wait in seconds; defaults to the
                     configured sync timeout.
            kinds:   Kinds the caller is about to read; defaults to the
                     required kinds.

        Raises:
            ClusterConnectionError: No client could be built.
            NotReadyError: The sync did not complete in time.
        """
        started = time.monotonic()
        wait = self._config.sync_timeout_seconds if timeout is None else timeout
        wanted = tuple(self._config.required_kinds if kinds is None else kinds)
        outcome = "ok"
        try:
            try:
                async with asyncio.timeout(max(wait, 0)):
                    cache = await self.ensure_for_cluster(record)
            except TimeoutError:
                raise NotReadyError(record.id, sorted(k.value for k in wanted)) from None
            await cache.wait_ready(wait - (time.monotonic() - started), kinds=wanted)
            return cache
        except NotReadyError:
            outcome = "not_ready"
            raise
        except ClusterConnectionError:
            outcome = "connection_error"
            raise
        except asyncio.CancelledError:
            outcome = "cancelled"
            raise
        except BaseException:
            outcome = "error"
            raise
        finally:
            ensure_duration_seconds.labels(outcome=outcome).observe(time.monotonic() - started)

    async def _create(self, record: ClusterRecord) -> ClusterCache:
        async with self._lock(record.id):
            cache = self._live(record.id)
            if cache is not None:
                return cache

            connection = await self._factory.connect(record)
            cache = ClusterCache(record.id, connection, self._config)
            try:
                await cache.start()
            except BaseException as exc:
                await cache.stop()
                if isinstance(exc, Exception):
                    raise ClusterConnectionError(record.id, str(exc)) from exc
                raise

            self._caches[record.id] = cache
            cluster_caches.set(len(self._caches))
            self._log.info("cluster_cache_registered", cluster_id=record.id, clusters=len(self._caches))
            return cache

    def _creation_done(self, cluster_id: str, task: asyncio.Task[ClusterCache]) -> None:
        if self._creating.get(cluster_id) is task:
            del self._creating[cluster_id]
        if not task.cancelled() and task.exception() is not None:
            self._log.warning("cluster_cache_create_failed", cluster_id=cluster_id, error=str(task.exception()))

    # ------------------------------------------------------------------
    # Teardown
    # ------------------------------------------------------------------

    async def stop_for_cluster(self, cluster_id: str) -> None:
        """Stop the cluster's cache and drop it from the registry.

        Call whenever a cluster is deleted or its credentials rotate.  A no-op
        for IDs that are neither registered nor being created.  Waits for an
        in-flight creation of the same ID so it cannot register after the
        delete.  Stop failures are logged and the entry is removed regardless.
        """
        creating = self._creating.get(cluster_id)
        if creating is not None:
            await asyncio.wait([creating])
        if cluster_id not in self._caches:
            return

        async with self._lock(cluster_id):
            cache = self._caches.get(cluster_id)
            if cache is None:
                return
            try:
                await cache.stop()
            except Exception as exc:
                self._log.error("cluster_cache_stop_failed", cluster_id=cluster_id, error=str(exc))
            finally:
                self._caches.pop(cluster_id, None)
                cluster_caches.set(len(self._caches))
        self._log.info("cluster_cache_removed", cluster_id=cluster_id)

    async def stop(self) -> None:
        """Stop every registered or in-flight cache (application shutdown)."""
        cluster_ids = sorted(set(self._caches) | set(self._creating))
        if cluster_ids:
            await asyncio.gather(*(self.stop_for_cluster(cid) for cid in cluster_ids))
        self._log.info("informer_manager_stopped", clusters=len(cluster_ids))

    async def sweep(self, directory: ClusterDirectory) -> list[str]:
        """Stop caches for clusters the directory no longer knows about.

        Returns the evicted cluster IDs.  The explicit delete path remains the
        primary trigger; this catches deletions that bypassed it.
        """
        known = await directory.list_ids()
        stale = [cid for cid in list(self._caches) if cid not in known]
        for cluster_id in stale:
            await self.stop_for_cluster(cluster_id)
            sweep_evictions_total.inc()
        if stale:
            self._log.info("sweep_evicted", cluster_ids=stale)
        return stale

    async def run_sweeper(self, directory: ClusterDirectory, interval: float) -> None:
        """Run :meth:`sweep` every *interval* seconds until cancelled."""
        while True:
            await asyncio.sleep(interval)
            try:
                await self.sweep(directory)
            except Exception as exc:
                self._log.warning("sweep_failed", error=str(exc))

    # ------------------------------------------------------------------
    # Read access
    # ------------------------------------------------------------------

    def get(self, cluster_id: str) -> ClusterCache | None:
        return self._caches.get(cluster_id)

    def cluster_ids(self) -> list[str]:
        return sorted(self._caches)

    def status(self, cluster_id: str) -> CacheStatus | None:
        """Readiness signal for *cluster_id*, or None if nothing is registered."""
        cache = self._caches.get(cluster_id)
        return cache.status if cache is not None else None

    def lister(self, cluster_id: str, kind: ResourceKind) -> Lister:
        """Delegate to the cluster's cache; :data:`UNAVAILABLE` when none is registered.

        Readiness is not re-checked here; call :meth:`ensure_and_wait` first.
        """
        cache = self._caches.get(cluster_id)
        if cache is None:
            return UNAVAILABLE
        return cache.lister(kind)

    def nodes_lister(self, cluster_id: str) -> Lister:
        return self.lister(cluster_id, ResourceKind.NODE)

    def pods_lister(self, cluster_id: str) -> Lister:
        return self.lister(cluster_id, ResourceKind.POD)

    def namespaces_lister(self, cluster_id: str) -> Lister:
        return self.lister(cluster_id, ResourceKind.NAMESPACE)

    def services_lister(self, cluster_id: str) -> Lister:
        return self.lister(cluster_id, ResourceKind.SERVICE)

    def config_maps_lister(self, cluster_id: str) -> Lister:
        return self.lister(cluster_id, ResourceKind.CONFIG_MAP)

    def secrets_lister(self, cluster_id: str) -> Lister:
        return self.lister(cluster_id, ResourceKind.SECRET)

    def deployments_lister(self, cluster_id: str) -> Lister:
        return self.lister(cluster_id, ResourceKind.DEPLOYMENT)

    def stateful_sets_lister(self, cluster_id: str) -> Lister:
        return self.lister(cluster_id, ResourceKind.STATEFUL_SET)

    def daemon_sets_lister(self, cluster_id: str) -> Lister:
        return self.lister(cluster_id, ResourceKind.DAEMON_SET)

    def jobs_lister(self, cluster_id: str) -> Lister:
        return self.lister(cluster_id, ResourceKind.JOB)

    def rollouts_lister(self, cluster_id: str) -> Lister:
        return self.lister(cluster_id, ResourceKind.ROLLOUT)

    async def overview_snapshot(self, cluster_id: str, wait: float | None = None) -> OverviewSnapshot:
        """Wait briefly for the cache, then aggregate an overview from it.

        Raises:
            ClusterNotFoundError: No cache is registered for *cluster_id*.
            NotReadyError: The required kinds did not sync within *wait*.
        """
        cache = self._caches.get(cluster_id)
        if cache is None:
            raise ClusterNotFoundError(cluster_id)
        await cache.wait_ready(self._config.overview_wait_seconds if wait is None else wait)
        return self._aggregator.from_cache(cache)

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _lock(self, cluster_id: str) -> asyncio.Lock:
        lock = self._locks.get(cluster_id)
        if lock is None:
            lock = self._locks[cluster_id] = asyncio.Lock()
        return lock

    def _live(self, cluster_id: str) -> ClusterCache | None:
        cache = self._caches.get(cluster_id)
        if cache is None or cache.status == CacheStatus.STOPPED:
            return None
        return cache
