"""Informer cache for a single cluster.

A :class:`ClusterCache` owns one :class:`Informer` per tracked kind, all
sharing the cluster's :class:`ClusterConnection`.

Status
------
PENDING: created, :meth:`ClusterCache.start` not called yet.
SYNCING: informers running, some required kind has not listed yet.
READY: every required kind has completed its initial list.
FAILED: a required kind keeps erroring before its first sync.  Sibling
    kinds keep syncing and serving data; the cache returns to
    SYNCING/READY as soon as the failing kind recovers.
STOPPED: :meth:`ClusterCache.stop` was called.  Terminal.

The optional Rollout kind is tracked only when the Argo Rollouts CRD is
served.  When it is absent the kind is recorded as unavailable once and its
lister stays :data:`UNAVAILABLE` for the lifetime of the cache.
"""

from __future__ import annotations

import asyncio
import contextlib
import time
from collections.abc import Iterable

from kubepolaris.connection.factory import ClusterConnection
from kubepolaris.errors import KindUnavailableError, NotReadyError
from kubepolaris.informer.informer import Informer
from kubepolaris.informer.store import UNAVAILABLE, Lister
from kubepolaris.models.cluster import BUILTIN_KINDS, CacheStatus, KindState, ResourceKind
from kubepolaris.models.config import InformerConfig
from kubepolaris.observability.logging import get_logger
from kubepolaris.observability.metrics import (
    cache_not_ready_total,
    cache_sync_duration_seconds,
    cluster_cache_status,
    kind_unavailable_total,
)


class ClusterCache:
    """Watch-backed, read-only cache of one cluster's resources.

    Example::

        cache = ClusterCache("prod", connection)
        await cache.start()
        await cache.wait_ready(timeout=5)
        nodes = cache.lister(ResourceKind.NODE).list()
        await cache.stop()
    """

    def __init__(
        self,
        cluster_id: str,
        connection: ClusterConnection,
        config: InformerConfig | None = None,
        kinds: Iterable[ResourceKind] = BUILTIN_KINDS,
    ) -> None:
        self.cluster_id = cluster_id
        self._connection = connection
        self._config = config or InformerConfig()
        self._kinds: tuple[ResourceKind, ...] = tuple(kinds)
        self._required: frozenset[ResourceKind] = frozenset(self._config.required_kinds)
        self._log = get_logger("cluster_cache", cluster_id=cluster_id)

        self._informers: dict[ResourceKind, Informer] = {}
        self._unavailable: set[ResourceKind] = set()
        self._changed = asyncio.Condition()
        self._start_lock = asyncio.Lock()
        self._started = False
        self._stopped = False
        self._started_at: float | None = None
        self._ready_observed = False
        self._status = CacheStatus.PENDING
        self._emit_status_metric()

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self) -> None:
        """Register and start one informer per tracked kind.  Idempotent."""
        async with self._start_lock:
            if self._started or self._stopped:
                return
            self._started = True
            self._started_at = time.monotonic()

            kinds = [k for k in self._kinds if k != ResourceKind.ROLLOUT]
            rollout_version = await self._detect_rollouts()
            if rollout_version:
                kinds.append(ResourceKind.ROLLOUT)

            if self._stopped:
                return

            for kind in kinds:
                call = self._connection.list_call(kind, rollout_version=rollout_version or "")
                if call is None:
                    self._mark_unavailable(kind)
                    continue
                list_func, list_args = call
                self._informers[kind] = Informer(
                    kind,
                    list_func,
                    list_args,
                    cluster_id=self.cluster_id,
                    serialize=self._connection.serialize,
                    on_state_change=self._on_kind_state,
                    backoff_min_s=self._config.backoff_min_seconds,
                    backoff_max_s=self._config.backoff_max_seconds,
                    failure_threshold=self._config.failure_threshold,
                    watch_timeout_s=self._config.watch_timeout_seconds,
                )

            for informer in self._informers.values():
                informer.start()

            self._recompute_status()
            async with self._changed:
                self._changed.notify_all()
            self._log.info(
                "cluster_cache_started",
                kinds=[k.value for k in self._informers],
                unavailable=sorted(k.value for k in self._unavailable),
            )

    async def stop(self) -> None:
        """Stop every informer and close the connection.  Idempotent.

        Safe to call before :meth:`start`, while it is running, or after a
        partial start.  Connection close failures are logged, not raised.
        """
        if self._stopped:
            return
        self._stopped = True
        self._status = CacheStatus.STOPPED

        informers = list(self._informers.values())
        if informers:
            await asyncio.gather(*(i.stop() for i in informers), return_exceptions=True)

        try:
            await self._connection.close()
        except Exception as exc:
            self._log.warning("cluster_connection_close_failed", error=str(exc))

        async with self._changed:
            self._changed.notify_all()
        for status in CacheStatus:
            with contextlib.suppress(KeyError):
                cluster_cache_status.remove(self.cluster_id, status.value)
        self._log.info("cluster_cache_stopped")

    async def wait_ready(self, timeout: float, kinds: Iterable[ResourceKind] | None = None) -> None:
        """Block the caller until *kinds* (default: the required kinds) are synced.

        Never blocks the informer loops.  Cancellation of the calling task
        propagates immediately.

        Raises:
            NotReadyError: The timeout expired first (immediately for a zero or
                negative timeout), or the cache was stopped.
        """
        requested = None if kinds is None else frozenset(kinds)
        wanted = self._wanted(requested)
        if self._stopped:
            raise NotReadyError(self.cluster_id, self._pending(wanted))
        if self._synced(wanted):
            return
        if timeout <= 0:
            cache_not_ready_total.inc()
            raise NotReadyError(self.cluster_id, self._pending(wanted))

        try:
            async with asyncio.timeout(timeout):
                async with self._changed:
                    await self._changed.wait_for(lambda: self._stopped or self._synced(self._wanted(requested)))
        except TimeoutError:
            cache_not_ready_total.inc()
            raise NotReadyError(self.cluster_id, self._pending(self._wanted(requested))) from None

        if self._stopped:
            raise NotReadyError(self.cluster_id, self._pending(wanted))

    # ------------------------------------------------------------------
    # Read interface
    # ------------------------------------------------------------------

    @property
    def status(self) -> CacheStatus:
        return self._status

    def is_ready(self, kinds: Iterable[ResourceKind] | None = None) -> bool:
        """Readiness signal used by handlers to choose between data and 503."""
        return not self._stopped and self._synced(self._wanted(kinds))

    def lister(self, kind: ResourceKind) -> Lister:
        """Return the read-only lister for *kind*, or :data:`UNAVAILABLE`.

        Kinds that are untracked, absent on this cluster, not yet synced, or
        belong to a stopped cache all yield :data:`UNAVAILABLE`.
        """
        if self._stopped:
            return UNAVAILABLE
        informer = self._informers.get(kind)
        if informer is None or not informer.has_synced:
            return UNAVAILABLE
        return Lister(informer.store)

    def kind_states(self) -> dict[ResourceKind, KindState]:
        """Per-kind sync state, including kinds recorded as unavailable."""
        states: dict[ResourceKind, KindState] = {k: KindState.UNAVAILABLE for k in self._unavailable}
        for kind, informer in self._informers.items():
            states[kind] = KindState.STOPPED if self._stopped else informer.state
        return states

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    async def _detect_rollouts(self) -> str | None:
        """Probe for the Argo Rollouts CRD; absence is feature detection, not failure."""
        if not self._config.rollouts_enabled:
            self._mark_unavailable(ResourceKind.ROLLOUT)
            return None
        try:
            version = await self._connection.discover_rollouts()
        except Exception as exc:
            self._log.warning("rollouts_discovery_failed", error=str(exc))
            version = None
        if version is None:
            self._mark_unavailable(ResourceKind.ROLLOUT)
        return version

    def _mark_unavailable(self, kind: ResourceKind) -> None:
        if kind in self._unavailable:
            return
        self._unavailable.add(kind)
        kind_unavailable_total.labels(kind=kind.value).inc()
        error = KindUnavailableError(self.cluster_id, kind.value)
        self._log.info("kind_unavailable", kind=kind.value, reason=str(error))

    async def _on_kind_state(self, kind: ResourceKind, state: KindState) -> None:
        self._log.debug("kind_state_changed", kind=kind.value, state=state.value)
        self._recompute_status()
        async with self._changed:
            self._changed.notify_all()

    def _wanted(self, kinds: Iterable[ResourceKind] | None) -> frozenset[ResourceKind]:
        wanted = self._required if kinds is None else frozenset(kinds)
        # Unavailable kinds can never sync; they must not gate readiness.
        return wanted - self._unavailable

    def _synced(self, wanted: frozenset[ResourceKind]) -> bool:
        if not self._started:
            return False
        for kind in wanted:
            informer = self._informers.get(kind)
            if informer is None or not informer.has_synced:
                return False
        return True

    def _pending(self, wanted: frozenset[ResourceKind]) -> list[str]:
        return sorted(
            k.value for k in wanted if (i := self._informers.get(k)) is None or not i.has_synced
        )

    def _recompute_status(self) -> None:
        if self._stopped:
            status = CacheStatus.STOPPED
        elif not self._started:
            status = CacheStatus.PENDING
        elif self._synced(self._wanted(None)):
            status = CacheStatus.READY
        elif any(
            (i := self._informers.get(k)) is not None and i.state == KindState.FAILED for k in self._required
        ):
            status = CacheStatus.FAILED
        else:
            status = CacheStatus.SYNCING

        if status != self._status:
            self._log.info("cluster_cache_status", previous=self._status.value, status=status.value)
            self._status = status
            self._emit_status_metric()

        if status == CacheStatus.READY and not self._ready_observed and self._started_at is not None:
            self._ready_observed = True
            cache_sync_duration_seconds.observe(time.monotonic() - self._started_at)

    def _emit_status_metric(self) -> None:
        for status in CacheStatus:
            cluster_cache_status.labels(cluster_id=self.cluster_id, status=status.value).set(
                1 if self._status == status else 0
            )
