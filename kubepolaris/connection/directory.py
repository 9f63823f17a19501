"""Cluster directory: where cluster records and credentials come from.

The informer cache only consults the directory when it creates a cache or
runs a reconciliation sweep; it never keeps records around.
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Protocol, runtime_checkable

from kubepolaris.errors import ClusterNotFoundError
from kubepolaris.models.cluster import ClusterRecord
from kubepolaris.observability.logging import get_logger


@runtime_checkable
class ClusterDirectory(Protocol):
    """Source of :class:`ClusterRecord` objects."""

    async def get(self, cluster_id: str) -> ClusterRecord:
        """Return the record for *cluster_id* or raise :class:`ClusterNotFoundError`."""
        ...

    async def list_ids(self) -> set[str]:
        """Return the IDs of all clusters currently under management."""
        ...


class FileClusterDirectory:
    """Directory backed by a JSON file, re-read on every query.

    Expected format::

        {"clusters": [
            {"id": "prod", "name": "Production", "kubeconfig": "..."},
            {"id": "edge", "api_server": "10.0.0.1:6443", "token": "...", "ca_data": "..."}
        ]}

    A bare top-level list of cluster objects is accepted as well.
    """

    def __init__(self, path: str | Path) -> None:
        self._path = Path(path)
        self._log = get_logger("directory.file")

    def _load(self) -> dict[str, ClusterRecord]:
        raw: Any = json.loads(self._path.read_text(encoding="utf-8"))
        entries = raw.get("clusters", []) if isinstance(raw, dict) else raw
        if not isinstance(entries, list):
            raise ValueError(f"{self._path}: expected a list of clusters")

        records: dict[str, ClusterRecord] = {}
        for entry in entries:
            if not isinstance(entry, dict) or not entry.get("id"):
                self._log.warning("directory_entry_skipped", path=str(self._path))
                continue
            record = ClusterRecord(
                id=str(entry["id"]),
                name=str(entry.get("name", "")),
                api_server=str(entry.get("api_server", "")),
                kubeconfig=str(entry.get("kubeconfig", "")),
                token=str(entry.get("token", "")),
                ca_data=str(entry.get("ca_data", "")),
            )
            records[record.id] = record
        return records

    async def get(self, cluster_id: str) -> ClusterRecord:
        record = self._load().get(cluster_id)
        if record is None:
            raise ClusterNotFoundError(cluster_id)
        return record

    async def list_ids(self) -> set[str]:
        return set(self._load())


class StaticClusterDirectory:
    """In-memory directory, mainly for embedding and tests."""

    def __init__(self, records: list[ClusterRecord] | None = None) -> None:
        self._records: dict[str, ClusterRecord] = {r.id: r for r in records or []}

    def put(self, record: ClusterRecord) -> None:
        self._records[record.id] = record

    def remove(self, cluster_id: str) -> None:
        self._records.pop(cluster_id, None)

    async def get(self, cluster_id: str) -> ClusterRecord:
        try:
            return self._records[cluster_id]
        except KeyError:
            raise ClusterNotFoundError(cluster_id) from None

    async def list_ids(self) -> set[str]:
        return set(self._records)
