"""Unit tests for kubepolaris.informer.informer: the list/watch loop of one kind."""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator, Callable
from types import SimpleNamespace
from typing import Any
from unittest.mock import AsyncMock, patch

import pytest
from fakes import make_pod
from kubernetes_asyncio.client.exceptions import ApiException

from kubepolaris.errors import WatchError
from kubepolaris.informer.informer import Informer, _split_list_result
from kubepolaris.models.cluster import KindState, ResourceKind

_WATCH = "kubepolaris.informer.informer.watch.Watch"

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _list_result(*pods: dict[str, Any], rv: str = "100") -> dict[str, Any]:
    return {"metadata": {"resourceVersion": rv}, "items": list(pods)}


def _event(event_type: str, obj: dict[str, Any]) -> dict[str, Any]:
    return {"type": event_type, "object": obj, "raw_object": obj}


def _scripted_watch(*scripts: Any, calls: list[dict[str, Any]] | None = None) -> type:
    """Build a Watch double; each ``stream()`` call plays the next script.

    A script is either a list of events (the stream ends after them) or an
    exception instance (raised when iteration starts).  Once the scripts run
    out the stream stays open until cancelled.
    """
    pending = list(scripts)
    seen = calls if calls is not None else []

    class _Watch:
        def stream(self, func: Any, *args: Any, **kwargs: Any) -> AsyncIterator[dict[str, Any]]:
            seen.append(kwargs)
            return self._play(pending.pop(0) if pending else None)

        async def _play(self, script: Any) -> AsyncIterator[dict[str, Any]]:
            if isinstance(script, BaseException):
                raise script
            if script is None:
                await asyncio.Event().wait()
            for event in script or []:
                yield event

        async def close(self) -> None:
            return None

    return _Watch


async def _eventually(predicate: Callable[[], bool], timeout: float = 2.0) -> None:
    async with asyncio.timeout(timeout):
        while not predicate():
            await asyncio.sleep(0.005)


def _make_informer(list_func: Any, **kwargs: Any) -> Informer:
    kwargs.setdefault("backoff_min_s", 0.01)
    kwargs.setdefault("backoff_max_s", 0.05)
    return Informer(ResourceKind.POD, list_func, cluster_id="test", **kwargs)


# ---------------------------------------------------------------------------
# Initial list
# ---------------------------------------------------------------------------


class TestInitialList:
    async def test_list_populates_store_and_marks_synced(self) -> None:
        list_func = AsyncMock(return_value=_list_result(make_pod("a"), make_pod("b")))
        informer = _make_informer(list_func)
        assert informer.has_synced is False

        informer.start()
        await _eventually(lambda: informer.has_synced)

        assert informer.state == KindState.SYNCED
        assert len(informer.store) == 2
        assert informer.store.resource_version == "100"
        await informer.stop()

    async def test_start_is_idempotent(self) -> None:
        list_func = AsyncMock(return_value=_list_result())
        informer = _make_informer(list_func)
        informer.start()
        informer.start()
        await _eventually(lambda: informer.has_synced)
        assert list_func.await_count == 1
        await informer.stop()

    async def test_stop_clears_store_and_sync_flag(self) -> None:
        informer = _make_informer(AsyncMock(return_value=_list_result(make_pod("a"))))
        informer.start()
        await _eventually(lambda: informer.has_synced)

        await informer.stop()

        assert informer.has_synced is False
        assert informer.state == KindState.STOPPED
        assert len(informer.store) == 0

    async def test_stop_before_start_is_safe(self) -> None:
        informer = _make_informer(AsyncMock())
        await informer.stop()
        await informer.stop()
        assert informer.state == KindState.STOPPED

    async def test_list_args_are_forwarded(self) -> None:
        list_func = AsyncMock(return_value=_list_result())
        informer = Informer(
            ResourceKind.ROLLOUT,
            list_func,
            ("argoproj.io", "v1alpha1", "rollouts"),
            cluster_id="test",
        )
        informer.start()
        await _eventually(lambda: informer.has_synced)
        list_func.assert_awaited_once_with("argoproj.io", "v1alpha1", "rollouts")
        await informer.stop()


# ---------------------------------------------------------------------------
# Watch events
# ---------------------------------------------------------------------------


class TestWatchEvents:
    async def test_events_update_store_and_resource_version(self) -> None:
        modified = make_pod("a", phase="Failed")
        modified["metadata"]["resourceVersion"] = "102"
        deleted = make_pod("b")
        deleted["metadata"]["resourceVersion"] = "103"
        added = make_pod("c")
        added["metadata"]["resourceVersion"] = "101"
        calls: list[dict[str, Any]] = []
        watch_cls = _scripted_watch(
            [_event("ADDED", added), _event("MODIFIED", modified), _event("DELETED", deleted)],
            calls=calls,
        )

        with patch(_WATCH, watch_cls):
            informer = _make_informer(AsyncMock(return_value=_list_result(make_pod("a"), make_pod("b"))))
            informer.start()
            await _eventually(lambda: len(calls) == 2)

            names = sorted(p["metadata"]["name"] for p in informer.store.values())
            assert names == ["a", "c"]
            assert informer.store.get("default", "a")["status"]["phase"] == "Failed"
            assert informer.store.resource_version == "103"
            # the second stream resumes from the last event
            assert calls[0]["resource_version"] == "100"
            assert calls[1]["resource_version"] == "103"
            assert calls[0]["allow_watch_bookmarks"] is True
            await informer.stop()

    async def test_bookmark_advances_resource_version_only(self) -> None:
        bookmark = {"metadata": {"resourceVersion": "250"}}
        calls: list[dict[str, Any]] = []
        with patch(_WATCH, _scripted_watch([_event("BOOKMARK", bookmark)], calls=calls)):
            informer = _make_informer(AsyncMock(return_value=_list_result(make_pod("a"))))
            informer.start()
            await _eventually(lambda: len(calls) == 2)

            assert informer.store.resource_version == "250"
            assert len(informer.store) == 1
            await informer.stop()


# ---------------------------------------------------------------------------
# Failure handling
# ---------------------------------------------------------------------------


class TestFailureHandling:
    async def test_gone_triggers_relist(self) -> None:
        list_func = AsyncMock(return_value=_list_result(make_pod("a")))
        with patch(_WATCH, _scripted_watch(ApiException(status=410, reason="Gone"))):
            informer = _make_informer(list_func)
            informer.start()
            await _eventually(lambda: list_func.await_count == 2)

            assert informer.has_synced is True
            assert informer.store.resource_version == "100"
            await informer.stop()

    async def test_error_event_with_gone_code_triggers_relist(self) -> None:
        error = {"type": "ERROR", "raw_object": {"code": 410, "message": "too old resource version"}}
        list_func = AsyncMock(return_value=_list_result())
        with patch(_WATCH, _scripted_watch([error])):
            informer = _make_informer(list_func)
            informer.start()
            await _eventually(lambda: list_func.await_count == 2)
            await informer.stop()

    async def test_other_watch_errors_resume_without_relist(self) -> None:
        list_func = AsyncMock(return_value=_list_result())
        calls: list[dict[str, Any]] = []
        with patch(_WATCH, _scripted_watch(ApiException(status=500, reason="boom"), calls=calls)):
            informer = _make_informer(list_func)
            informer.start()
            await _eventually(lambda: len(calls) == 2)

            assert list_func.await_count == 1
            assert calls[1]["resource_version"] == "100"
            await informer.stop()

    async def test_repeated_list_failures_mark_failed_then_recover(self) -> None:
        states: list[KindState] = []

        async def on_state(kind: ResourceKind, state: KindState) -> None:
            states.append(state)

        list_func = AsyncMock(
            side_effect=[RuntimeError("forbidden"), RuntimeError("forbidden"), _list_result(make_pod("a"))]
        )
        informer = _make_informer(list_func, failure_threshold=2, on_state_change=on_state)
        informer.start()
        await _eventually(lambda: informer.has_synced)

        assert states == [KindState.FAILED, KindState.SYNCED]
        assert len(informer.store) == 1
        await informer.stop()

    async def test_failing_list_never_syncs(self) -> None:
        list_func = AsyncMock(side_effect=RuntimeError("forbidden"))
        informer = _make_informer(list_func, failure_threshold=1)
        informer.start()
        await _eventually(lambda: list_func.await_count >= 3)

        assert informer.has_synced is False
        assert informer.state == KindState.FAILED
        await informer.stop()
        assert informer.state == KindState.STOPPED

    def test_watch_error_carries_status(self) -> None:
        exc = WatchError("Pod", "expired", status=410)
        assert exc.status == 410
        assert "Pod watch failed" in str(exc)


# ---------------------------------------------------------------------------
# List result parsing
# ---------------------------------------------------------------------------


class TestSplitListResult:
    def test_dict_result(self) -> None:
        items, rv = _split_list_result(_list_result(make_pod("a"), rv="7"))
        assert len(items) == 1
        assert rv == "7"

    def test_typed_result(self) -> None:
        result = SimpleNamespace(items=["x", "y"], metadata=SimpleNamespace(resource_version="9"))
        assert _split_list_result(result) == (["x", "y"], "9")

    @pytest.mark.parametrize("result", [{}, {"items": None, "metadata": None}, SimpleNamespace()])
    def test_missing_fields(self, result: Any) -> None:
        assert _split_list_result(result) == ([], "")
