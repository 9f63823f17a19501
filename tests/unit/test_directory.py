"""Unit tests for kubepolaris.connection.directory."""

from __future__ import annotations

import json
from pathlib import Path

import pytest

from kubepolaris.connection.directory import ClusterDirectory, FileClusterDirectory, StaticClusterDirectory
from kubepolaris.errors import ClusterNotFoundError
from kubepolaris.models.cluster import ClusterRecord


class TestFileClusterDirectory:
    async def test_reads_clusters_object(self, tmp_path: Path) -> None:
        path = tmp_path / "clusters.json"
        path.write_text(
            json.dumps(
                {
                    "clusters": [
                        {"id": "prod", "name": "Production", "kubeconfig": "apiVersion: v1"},
                        {"id": "edge", "api_server": "10.0.0.1:6443", "token": "tok", "ca_data": "Y2E="},
                    ]
                }
            )
        )
        directory = FileClusterDirectory(path)

        assert await directory.list_ids() == {"prod", "edge"}
        edge = await directory.get("edge")
        assert edge.api_server == "10.0.0.1:6443"
        assert edge.token == "tok"
        assert "tok" not in repr(edge)

    async def test_reads_bare_list_and_skips_invalid_entries(self, tmp_path: Path) -> None:
        path = tmp_path / "clusters.json"
        path.write_text(json.dumps([{"id": "prod"}, {"name": "no id"}, "garbage"]))
        assert await FileClusterDirectory(path).list_ids() == {"prod"}

    async def test_file_is_reread_on_every_query(self, tmp_path: Path) -> None:
        path = tmp_path / "clusters.json"
        path.write_text(json.dumps([{"id": "prod"}]))
        directory = FileClusterDirectory(path)
        assert await directory.list_ids() == {"prod"}

        path.write_text(json.dumps([]))
        assert await directory.list_ids() == set()

    async def test_unknown_id_raises(self, tmp_path: Path) -> None:
        path = tmp_path / "clusters.json"
        path.write_text(json.dumps([{"id": "prod"}]))
        with pytest.raises(ClusterNotFoundError):
            await FileClusterDirectory(path).get("staging")

    async def test_wrong_shape_raises(self, tmp_path: Path) -> None:
        path = tmp_path / "clusters.json"
        path.write_text(json.dumps({"clusters": "prod"}))
        with pytest.raises(ValueError, match="expected a list"):
            await FileClusterDirectory(path).list_ids()


class TestStaticClusterDirectory:
    async def test_put_get_remove(self) -> None:
        directory = StaticClusterDirectory([ClusterRecord(id="prod")])
        directory.put(ClusterRecord(id="edge"))
        assert await directory.list_ids() == {"prod", "edge"}

        directory.remove("prod")
        directory.remove("prod")
        with pytest.raises(ClusterNotFoundError):
            await directory.get("prod")
        assert (await directory.get("edge")).id == "edge"

    def test_satisfies_protocol(self, tmp_path: Path) -> None:
        assert isinstance(StaticClusterDirectory(), ClusterDirectory)
        assert isinstance(FileClusterDirectory(tmp_path / "x.json"), ClusterDirectory)
