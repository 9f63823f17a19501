"""Unit tests for kubepolaris.informer.cluster_cache: one cluster's informers."""

from __future__ import annotations

import asyncio
from unittest.mock import AsyncMock

import pytest
from fakes import FakeConnection, make_deployment, make_node, make_pod

from kubepolaris.errors import NotReadyError
from kubepolaris.informer.cluster_cache import ClusterCache
from kubepolaris.informer.store import UNAVAILABLE
from kubepolaris.models.cluster import BUILTIN_KINDS, CacheStatus, KindState, ResourceKind
from kubepolaris.models.config import InformerConfig

_OBJECTS = {
    ResourceKind.NODE: [make_node("n1"), make_node("n2")],
    ResourceKind.POD: [make_pod("web-1"), make_pod("db-0", "data")],
    ResourceKind.DEPLOYMENT: [make_deployment("web")],
}


# ---------------------------------------------------------------------------
# Start / wait_ready
# ---------------------------------------------------------------------------


class TestStartAndWait:
    async def test_new_cache_is_pending(self, fast_config: InformerConfig) -> None:
        cache = ClusterCache("c1", FakeConnection(), fast_config)
        assert cache.status == CacheStatus.PENDING
        assert cache.is_ready() is False
        await cache.stop()

    async def test_wait_ready_after_sync(self, fast_config: InformerConfig) -> None:
        cache = ClusterCache("c1", FakeConnection(_OBJECTS), fast_config)
        await cache.start()
        await cache.wait_ready(timeout=2)

        assert cache.status == CacheStatus.READY
        assert cache.is_ready()
        assert len(cache.lister(ResourceKind.NODE).list()) == 2
        assert len(cache.lister(ResourceKind.POD).namespaced("data")) == 1
        await cache.stop()

    async def test_is_ready_per_kind_and_after_stop(self, fast_config: InformerConfig) -> None:
        cache = ClusterCache("c1", FakeConnection(_OBJECTS, failing_kinds=(ResourceKind.JOB,)), fast_config)
        await cache.start()
        await cache.wait_ready(timeout=2)

        assert cache.is_ready(kinds=[ResourceKind.NODE]) is True
        assert cache.is_ready(kinds=[ResourceKind.JOB]) is False
        # an absent CRD never gates readiness
        assert cache.is_ready(kinds=[ResourceKind.ROLLOUT]) is True

        await cache.stop()
        assert cache.is_ready() is False

    async def test_zero_timeout_on_fresh_cache_is_not_ready(self, fast_config: InformerConfig) -> None:
        cache = ClusterCache("c1", FakeConnection(_OBJECTS, list_delay=0.2), fast_config)
        await cache.start()

        with pytest.raises(NotReadyError) as exc_info:
            await cache.wait_ready(timeout=0)

        assert set(exc_info.value.pending_kinds) == {"Node", "Pod", "Deployment"}
        await cache.wait_ready(timeout=2)
        await cache.stop()

    async def test_timeout_while_syncing(self, fast_config: InformerConfig) -> None:
        cache = ClusterCache("c1", FakeConnection(list_delay=5), fast_config)
        await cache.start()
        with pytest.raises(NotReadyError):
            await cache.wait_ready(timeout=0.05)
        assert cache.status == CacheStatus.SYNCING
        await cache.stop()

    async def test_wait_ready_before_start_waits_for_start(self, fast_config: InformerConfig) -> None:
        cache = ClusterCache("c1", FakeConnection(), fast_config)
        waiter = asyncio.create_task(cache.wait_ready(timeout=2))
        await asyncio.sleep(0.01)
        assert not waiter.done()

        await cache.start()
        await waiter
        await cache.stop()

    async def test_concurrent_waiters_share_one_start(self, fast_config: InformerConfig) -> None:
        connection = FakeConnection(_OBJECTS, list_delay=0.05)
        cache = ClusterCache("c1", connection, fast_config)
        await asyncio.gather(cache.start(), cache.start())
        await asyncio.gather(*(cache.wait_ready(timeout=2) for _ in range(5)))

        assert connection.list_calls[ResourceKind.POD] == 1
        await cache.stop()

    async def test_wait_for_explicit_kinds(self, fast_config: InformerConfig) -> None:
        connection = FakeConnection(_OBJECTS, failing_kinds=(ResourceKind.NODE,))
        cache = ClusterCache("c1", connection, fast_config)
        await cache.start()

        await cache.wait_ready(timeout=2, kinds=[ResourceKind.POD])
        with pytest.raises(NotReadyError) as exc_info:
            await cache.wait_ready(timeout=0.1)
        assert exc_info.value.pending_kinds == ["Node"]
        await cache.stop()

    async def test_cancelled_caller_does_not_stop_cache(self, fast_config: InformerConfig) -> None:
        cache = ClusterCache("c1", FakeConnection(list_delay=0.2), fast_config)
        await cache.start()
        waiter = asyncio.create_task(cache.wait_ready(timeout=5))
        await asyncio.sleep(0.01)
        waiter.cancel()
        with pytest.raises(asyncio.CancelledError):
            await waiter

        await cache.wait_ready(timeout=2)
        await cache.stop()


# ---------------------------------------------------------------------------
# Failure isolation
# ---------------------------------------------------------------------------


class TestFailureIsolation:
    async def test_failing_optional_kind_does_not_block_ready(self, fast_config: InformerConfig) -> None:
        connection = FakeConnection(_OBJECTS, failing_kinds=(ResourceKind.SECRET,))
        cache = ClusterCache("c1", connection, fast_config)
        await cache.start()
        await cache.wait_ready(timeout=2)

        assert cache.status == CacheStatus.READY
        assert cache.lister(ResourceKind.SECRET) is UNAVAILABLE
        await cache.stop()

    async def test_failing_required_kind_marks_cache_failed(self, fast_config: InformerConfig) -> None:
        connection = FakeConnection(_OBJECTS, failing_kinds=(ResourceKind.NODE,))
        cache = ClusterCache("c1", connection, fast_config)
        await cache.start()

        async with asyncio.timeout(2):
            while cache.status != CacheStatus.FAILED:
                await asyncio.sleep(0.01)

        # Siblings keep serving data.
        await cache.wait_ready(timeout=2, kinds=[ResourceKind.POD, ResourceKind.DEPLOYMENT])
        assert len(cache.lister(ResourceKind.POD).list()) == 2
        assert cache.kind_states()[ResourceKind.NODE] == KindState.FAILED
        await cache.stop()


# ---------------------------------------------------------------------------
# Rollout feature detection
# ---------------------------------------------------------------------------


class TestRollouts:
    async def test_absent_crd_is_unavailable_and_never_blocks(self, fast_config: InformerConfig) -> None:
        cache = ClusterCache("c1", FakeConnection(_OBJECTS, rollouts=None), fast_config)
        await cache.start()
        await cache.wait_ready(timeout=2)
        await cache.wait_ready(timeout=0, kinds=[ResourceKind.ROLLOUT, ResourceKind.POD])

        assert cache.lister(ResourceKind.ROLLOUT) is UNAVAILABLE
        assert cache.kind_states()[ResourceKind.ROLLOUT] == KindState.UNAVAILABLE
        await cache.stop()

    async def test_served_crd_is_tracked(self, fast_config: InformerConfig) -> None:
        rollout = make_deployment("canary")
        connection = FakeConnection({**_OBJECTS, ResourceKind.ROLLOUT: [rollout]}, rollouts="v1alpha1")
        cache = ClusterCache("c1", connection, fast_config)
        await cache.start()
        await cache.wait_ready(timeout=2, kinds=[ResourceKind.ROLLOUT])

        assert len(cache.lister(ResourceKind.ROLLOUT).list()) == 1
        await cache.stop()

    async def test_discovery_error_treated_as_absent(self, fast_config: InformerConfig) -> None:
        connection = FakeConnection(_OBJECTS)
        connection.discover_rollouts = AsyncMock(side_effect=RuntimeError("discovery forbidden"))  # type: ignore[method-assign]
        cache = ClusterCache("c1", connection, fast_config)
        await cache.start()
        await cache.wait_ready(timeout=2)

        assert cache.kind_states()[ResourceKind.ROLLOUT] == KindState.UNAVAILABLE
        await cache.stop()

    async def test_disabled_rollouts_skip_discovery(self) -> None:
        config = InformerConfig(rollouts_enabled=False, backoff_min_seconds=0.01)
        connection = FakeConnection(_OBJECTS, rollouts="v1alpha1")
        connection.discover_rollouts = AsyncMock(return_value="v1alpha1")  # type: ignore[method-assign]
        cache = ClusterCache("c1", connection, config)
        await cache.start()

        connection.discover_rollouts.assert_not_awaited()
        assert cache.lister(ResourceKind.ROLLOUT) is UNAVAILABLE
        await cache.stop()


# ---------------------------------------------------------------------------
# Stop
# ---------------------------------------------------------------------------


class TestStop:
    async def test_stop_is_idempotent_and_closes_connection(self, fast_config: InformerConfig) -> None:
        connection = FakeConnection(_OBJECTS)
        cache = ClusterCache("c1", connection, fast_config)
        await cache.start()
        await cache.wait_ready(timeout=2)

        await cache.stop()
        await cache.stop()

        assert connection.closed is True
        assert cache.status == CacheStatus.STOPPED

    async def test_listers_after_stop_are_unavailable(self, fast_config: InformerConfig) -> None:
        cache = ClusterCache("c1", FakeConnection(_OBJECTS), fast_config)
        await cache.start()
        await cache.wait_ready(timeout=2)
        await cache.stop()

        for kind in BUILTIN_KINDS:
            lister = cache.lister(kind)
            assert lister is UNAVAILABLE
            assert lister.list() == []
        assert all(state == KindState.STOPPED for kind, state in cache.kind_states().items() if kind in BUILTIN_KINDS)

    async def test_stop_before_start(self, fast_config: InformerConfig) -> None:
        connection = FakeConnection()
        cache = ClusterCache("c1", connection, fast_config)
        await cache.stop()
        await cache.start()

        assert cache.status == CacheStatus.STOPPED
        assert connection.closed is True
        with pytest.raises(NotReadyError):
            await cache.wait_ready(timeout=1)

    async def test_stop_wakes_waiters(self, fast_config: InformerConfig) -> None:
        cache = ClusterCache("c1", FakeConnection(list_delay=5), fast_config)
        await cache.start()
        waiter = asyncio.create_task(cache.wait_ready(timeout=5))
        await asyncio.sleep(0.01)

        await cache.stop()

        with pytest.raises(NotReadyError):
            await waiter

    async def test_connection_close_failure_is_not_raised(self, fast_config: InformerConfig) -> None:
        connection = FakeConnection()
        connection.close = AsyncMock(side_effect=OSError("already closed"))  # type: ignore[method-assign]
        cache = ClusterCache("c1", connection, fast_config)
        await cache.start()
        await cache.stop()
        assert cache.status == CacheStatus.STOPPED
