"""Indexed object store and the read-only lister facade over it.

An :class:`IndexedStore` holds the latest known revision of every object of
one kind in one cluster, keyed by ``(namespace, name)``.  Cluster-scoped
objects use the empty namespace.  Only the owning informer task writes to it.

A :class:`Lister` is what the rest of the backend sees: synchronous reads that
never suspend and always return a fresh list, so callers can iterate it as
often as they like without observing later additions or deletions.  The
objects in that list are shared with the store and are read-only: the
informer replaces an entry on every update instead of mutating it, so an
object a caller holds never changes underneath it.

:data:`UNAVAILABLE` stands in for any lister that cannot be served (kind not
tracked, CRD absent, not yet synced, or cache stopped).  It answers every read
with an empty result instead of raising.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from typing import Any

from kubepolaris.models.cluster import ResourceKind

Object = dict[str, Any]
_Key = tuple[str, str]


def object_key(obj: Mapping[str, Any]) -> _Key | None:
    """Return ``(namespace, name)`` for a raw object dict, or None if it has no name."""
    metadata = obj.get("metadata")
    if not isinstance(metadata, Mapping):
        return None
    name = metadata.get("name")
    if not name:
        return None
    return str(metadata.get("namespace") or ""), str(name)


def _labels_match(obj: Mapping[str, Any], selector: Mapping[str, str]) -> bool:
    metadata = obj.get("metadata")
    labels = metadata.get("labels") if isinstance(metadata, Mapping) else None
    if not isinstance(labels, Mapping):
        return not selector
    return all(labels.get(k) == v for k, v in selector.items())


class IndexedStore:
    """Mapping of ``(namespace, name)`` to the latest object dict for one kind."""

    def __init__(self, kind: ResourceKind) -> None:
        self.kind = kind
        self._items: dict[_Key, Object] = {}
        self.resource_version: str = ""

    def __len__(self) -> int:
        return len(self._items)

    def replace(self, objects: Iterable[Object], resource_version: str = "") -> None:
        """Swap the store contents for a fresh list result."""
        items: dict[_Key, Object] = {}
        for obj in objects:
            key = object_key(obj)
            if key is not None:
                items[key] = obj
        self._items = items
        self.resource_version = resource_version

    def upsert(self, obj: Object) -> None:
        key = object_key(obj)
        if key is not None:
            self._items[key] = obj

    def delete(self, obj: Object) -> None:
        key = object_key(obj)
        if key is not None:
            self._items.pop(key, None)

    def clear(self) -> None:
        self._items = {}
        self.resource_version = ""

    def get(self, namespace: str, name: str) -> Object | None:
        return self._items.get((namespace, name))

    def values(self, namespace: str | None = None) -> list[Object]:
        """Return a snapshot list of stored objects, optionally for one namespace."""
        if namespace is None:
            return list(self._items.values())
        return [obj for (ns, _), obj in self._items.items() if ns == namespace]


class Lister:
    """Read-only query facade over one :class:`IndexedStore`.

    Example::

        pods = manager.pods_lister(cluster_id)
        for pod in pods.list(namespace="default", labels={"app": "web"}):
            ...
    """

    available: bool = True

    def __init__(self, store: IndexedStore, namespace: str | None = None) -> None:
        self._store = store
        self._namespace = namespace

    @property
    def kind(self) -> ResourceKind:
        return self._store.kind

    def list(self, namespace: str | None = None, labels: Mapping[str, str] | None = None) -> list[Object]:
        """Return the cached objects, filtered by namespace and label equality.

        Args:
            namespace: Restrict to one namespace.  Ignored for namespace-scoped
                       listers, which are already bound to theirs.
            labels:    Label key/value pairs that must all be present.
        """
        ns = self._namespace if self._namespace is not None else namespace
        objects = self._store.values(ns)
        if labels:
            objects = [obj for obj in objects if _labels_match(obj, labels)]
        return objects

    def get(self, name: str, namespace: str = "") -> Object | None:
        ns = self._namespace if self._namespace is not None else namespace
        return self._store.get(ns, name)

    def namespaced(self, namespace: str) -> Lister:
        """Return a lister scoped to a single namespace."""
        return Lister(self._store, namespace=namespace)

    def __len__(self) -> int:
        if self._namespace is None:
            return len(self._store)
        return len(self._store.values(self._namespace))


class _UnavailableLister(Lister):
    """Lister returned whenever a kind cannot be served.  Every read is empty."""

    available = False

    def __init__(self) -> None:
        pass

    @property
    def kind(self) -> ResourceKind | None:  # type: ignore[override]
        return None

    def list(self, namespace: str | None = None, labels: Mapping[str, str] | None = None) -> list[Object]:
        return []

    def get(self, name: str, namespace: str = "") -> Object | None:
        return None

    def namespaced(self, namespace: str) -> Lister:
        return self

    def __len__(self) -> int:
        return 0

    def __repr__(self) -> str:
        return "UNAVAILABLE"


UNAVAILABLE: Lister = _UnavailableLister()
