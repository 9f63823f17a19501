"""List+watch informer keeping one :class:`IndexedStore` in sync with a cluster.

Wraps kubernetes_asyncio's Watch to provide:
- An initial full list that marks the kind synced
- Resumable watches via resourceVersion and watch bookmarks
- Immediate relist when the server answers 410 Gone
- Exponential back-off (1 s - 60 s by default) on any other failure,
  retried forever until :meth:`Informer.stop`
- A ``failed`` state after repeated failures before the first sync; the
  informer keeps retrying and recovers on the next success

Each informer is the sole writer of its store and runs on its own task, so a
kind that cannot be listed (RBAC, network) never delays its siblings.
"""

from __future__ import annotations

import asyncio
import contextlib
from collections.abc import Awaitable, Callable, Coroutine
from typing import Any

from kubernetes_asyncio import watch
from kubernetes_asyncio.client.exceptions import ApiException

from kubepolaris.errors import WatchError
from kubepolaris.informer.store import IndexedStore
from kubepolaris.models.cluster import KindState, ResourceKind
from kubepolaris.observability.logging import get_logger
from kubepolaris.observability.metrics import (
    informer_backoff_seconds,
    informer_errors_total,
    informer_events_total,
    informer_relists_total,
    informer_store_objects,
)

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

_BACKOFF_MIN_S: float = 1.0
_BACKOFF_MAX_S: float = 60.0
_BACKOFF_MULTIPLIER: float = 2.0
_FAILURE_THRESHOLD: int = 3
_WATCH_TIMEOUT_S: int = 300
_GONE: int = 410

ListFunc = Callable[..., Coroutine[Any, Any, Any]]
StateCallback = Callable[[ResourceKind, KindState], Awaitable[None]]
Serializer = Callable[[Any], dict[str, Any]]


def _as_dict(obj: Any) -> dict[str, Any]:
    if isinstance(obj, dict):
        return obj
    return obj.to_dict()  # type: ignore[no-any-return]


class Informer:
    """Keeps the store for one kind of one cluster up to date.

    Lifecycle::

        informer = Informer(ResourceKind.POD, core_v1.list_pod_for_all_namespaces, cluster_id="prod")
        informer.start()
        ...
        lister = Lister(informer.store)   # once informer.has_synced
        await informer.stop()
    """

    def __init__(
        self,
        kind: ResourceKind,
        list_func: ListFunc,
        list_args: tuple[Any, ...] = (),
        *,
        cluster_id: str = "",
        serialize: Serializer | None = None,
        on_state_change: StateCallback | None = None,
        backoff_min_s: float = _BACKOFF_MIN_S,
        backoff_max_s: float = _BACKOFF_MAX_S,
        failure_threshold: int = _FAILURE_THRESHOLD,
        watch_timeout_s: int = _WATCH_TIMEOUT_S,
    ) -> None:
        self.kind = kind
        self.store = IndexedStore(kind)
        self._list_func = list_func
        self._list_args = list_args
        self._cluster_id = cluster_id
        self._serialize = serialize or _as_dict
        self._on_state_change = on_state_change
        self._log = get_logger(f"informer.{kind.value.lower()}", cluster_id=cluster_id, kind=kind.value)

        self._backoff_min_s = backoff_min_s
        self._backoff_max_s = max(backoff_min_s, backoff_max_s)
        self._backoff_s = backoff_min_s
        self._failure_threshold = failure_threshold
        self._watch_timeout_s = watch_timeout_s

        self._state = KindState.PENDING
        self._synced = False
        self._running = False
        self._consecutive_failures = 0
        self._task: asyncio.Task[None] | None = None

    # ------------------------------------------------------------------
    # Public interface
    # ------------------------------------------------------------------

    @property
    def state(self) -> KindState:
        return self._state

    @property
    def has_synced(self) -> bool:
        """True once the initial list completed.  Stays True across relists."""
        return self._synced and self._running

    def start(self) -> None:
        """Start the list/watch loop as a background task."""
        if self._task is not None:
            return
        self._running = True
        self._state = KindState.SYNCING
        self._task = asyncio.create_task(
            self._run_loop(),
            name=f"informer-{self._cluster_id}-{self.kind.value}",
        )
        self._log.debug("informer_started")

    async def stop(self) -> None:
        """Cancel the loop, wait for it to release its watch, and drop the store."""
        self._running = False
        if self._task is not None and not self._task.done():
            self._task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._task
        self._task = None
        self._synced = False
        self._state = KindState.STOPPED
        self.store.clear()
        with contextlib.suppress(KeyError):
            informer_store_objects.remove(self._cluster_id, self.kind.value)
        self._log.debug("informer_stopped")

    # ------------------------------------------------------------------
    # Internal loop
    # ------------------------------------------------------------------

    async def _run_loop(self) -> None:
        """Main loop; runs until :attr:`_running` is False or the task is cancelled."""
        while self._running:
            try:
                if not self.store.resource_version:
                    await self._list()
                if await self._watch() == 0:
                    # Empty stream: pace reconnects instead of spinning.
                    await asyncio.sleep(self._backoff_min_s)
            except asyncio.CancelledError:
                return
            except ApiException as exc:
                if not self._running:
                    return
                await self._handle_failure(WatchError(self.kind.value, str(exc.reason), status=exc.status))
            except WatchError as exc:
                if not self._running:
                    return
                await self._handle_failure(exc)
            except Exception as exc:
                if not self._running:
                    return
                await self._handle_failure(WatchError(self.kind.value, str(exc)), exc_info=True)

    async def _list(self) -> None:
        """Full list: replace the store contents and record the list resourceVersion."""
        informer_relists_total.labels(kind=self.kind.value).inc()
        result = await self._list_func(*self._list_args)
        items, rv = _split_list_result(result)
        self.store.replace((self._serialize(item) for item in items), resource_version=rv or "0")
        informer_store_objects.labels(cluster_id=self._cluster_id, kind=self.kind.value).set(len(self.store))
        self._log.debug("informer_listed", count=len(self.store), resource_version=rv)

        self._reset_backoff()
        if not self._synced:
            self._synced = True
            self._log.info("informer_synced", count=len(self.store))
        await self._set_state(KindState.SYNCED)

    async def _watch(self) -> int:
        """Open one watch stream from the stored resourceVersion and apply events.

        Returns the number of events received before the stream ended.
        """
        received = 0
        w = watch.Watch()
        try:
            async for event in w.stream(
                self._list_func,
                *self._list_args,
                resource_version=self.store.resource_version,
                allow_watch_bookmarks=True,
                timeout_seconds=self._watch_timeout_s,
            ):
                if not self._running:
                    return received
                received += 1
                self._apply_event(event)
        finally:
            await w.close()
        # Server-side timeout: resume from the last resourceVersion.
        self._log.debug("watch_stream_ended", events=received, resource_version=self.store.resource_version)
        return received

    def _apply_event(self, event: dict[str, Any]) -> None:
        event_type = str(event.get("type", ""))
        raw = event.get("raw_object")

        if event_type == "ERROR":
            status = raw.get("code") if isinstance(raw, dict) else None
            reason = raw.get("message", "watch error") if isinstance(raw, dict) else "watch error"
            raise WatchError(self.kind.value, str(reason), status=status if isinstance(status, int) else None)

        obj = raw if isinstance(raw, dict) else self._serialize(event.get("object"))
        rv = _resource_version(obj)

        if event_type == "BOOKMARK":
            if rv:
                self.store.resource_version = rv
            return

        if event_type in ("ADDED", "MODIFIED"):
            self.store.upsert(obj)
        elif event_type == "DELETED":
            self.store.delete(obj)
        else:
            self._log.debug("watch_event_ignored", event_type=event_type)
            return

        if rv:
            self.store.resource_version = rv
        self._consecutive_failures = 0
        informer_events_total.labels(kind=self.kind.value, event_type=event_type).inc()
        informer_store_objects.labels(cluster_id=self._cluster_id, kind=self.kind.value).set(len(self.store))

    # ------------------------------------------------------------------
    # Failure handling
    # ------------------------------------------------------------------

    async def _handle_failure(self, exc: WatchError, exc_info: bool = False) -> None:
        if exc.status == _GONE:
            # resourceVersion too old: relist on the next iteration, no back-off
            informer_errors_total.labels(kind=self.kind.value, reason="410").inc()
            self._log.info("watch_gone_relisting")
            self.store.resource_version = ""
            return

        self._consecutive_failures += 1
        reason = str(exc.status) if exc.status is not None else "error"
        informer_errors_total.labels(kind=self.kind.value, reason=reason).inc()
        self._log.warning(
            "informer_error",
            error=exc.reason,
            status=exc.status,
            consecutive_failures=self._consecutive_failures,
            exc_info=exc_info,
        )

        if not self._synced and self._consecutive_failures >= self._failure_threshold:
            if self._state != KindState.FAILED:
                self._log.error("informer_failed", consecutive_failures=self._consecutive_failures)
            await self._set_state(KindState.FAILED)

        await self._backoff()

    async def _backoff(self) -> None:
        """Sleep for the current back-off duration, then increase it."""
        delay = min(self._backoff_s, self._backoff_max_s)
        informer_backoff_seconds.labels(kind=self.kind.value).observe(delay)
        self._log.debug("informer_backoff", delay_s=delay)
        await asyncio.sleep(delay)
        self._backoff_s = min(self._backoff_s * _BACKOFF_MULTIPLIER, self._backoff_max_s)

    def _reset_backoff(self) -> None:
        self._backoff_s = self._backoff_min_s
        self._consecutive_failures = 0

    async def _set_state(self, state: KindState) -> None:
        if state == self._state:
            return
        self._state = state
        if self._on_state_change is not None:
            await self._on_state_change(self.kind, state)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _split_list_result(result: Any) -> tuple[list[Any], str]:
    """Return ``(items, resourceVersion)`` from a typed list model or a raw dict."""
    if isinstance(result, dict):
        metadata = result.get("metadata")
        rv = metadata.get("resourceVersion", "") if isinstance(metadata, dict) else ""
        return list(result.get("items") or []), str(rv or "")

    items = list(getattr(result, "items", None) or [])
    metadata = getattr(result, "metadata", None)
    rv = getattr(metadata, "resource_version", "") if metadata is not None else ""
    return items, str(rv or "")


def _resource_version(obj: dict[str, Any]) -> str:
    metadata = obj.get("metadata")
    if not isinstance(metadata, dict):
        return ""
    return str(metadata.get("resourceVersion") or "")
