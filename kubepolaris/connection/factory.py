"""Build authenticated kubernetes_asyncio clients from cluster records.

The factory is consulted once per cluster cache creation; it does not keep
clients around.  Each :class:`ClusterConnection` owns its own ``ApiClient``
(and therefore its own connection pool) so credentials never leak between
clusters.
"""

from __future__ import annotations

import base64
import binascii
import contextlib
import os
import tempfile
from collections.abc import Callable, Coroutine
from typing import Any

import yaml
from kubernetes_asyncio import client as k8s_client
from kubernetes_asyncio import config as k8s_config

from kubepolaris.errors import ClusterConnectionError
from kubepolaris.models.cluster import ClusterRecord, ResourceKind
from kubepolaris.observability.logging import get_logger
from kubepolaris.observability.metrics import connection_failures_total

ROLLOUTS_GROUP = "argoproj.io"
ROLLOUTS_PLURAL = "rollouts"

# Per-request bound on discovery calls; the client default is unbounded.
DISCOVERY_TIMEOUT_SECONDS = 10

ListFunc = Callable[..., Coroutine[Any, Any, Any]]

# kind -> (API group attribute on ClusterConnection, list method name)
_LIST_METHODS: dict[ResourceKind, tuple[str, str]] = {
    ResourceKind.NODE: ("core_v1", "list_node"),
    ResourceKind.POD: ("core_v1", "list_pod_for_all_namespaces"),
    ResourceKind.NAMESPACE: ("core_v1", "list_namespace"),
    ResourceKind.SERVICE: ("core_v1", "list_service_for_all_namespaces"),
    ResourceKind.CONFIG_MAP: ("core_v1", "list_config_map_for_all_namespaces"),
    ResourceKind.SECRET: ("core_v1", "list_secret_for_all_namespaces"),
    ResourceKind.DEPLOYMENT: ("apps_v1", "list_deployment_for_all_namespaces"),
    ResourceKind.STATEFUL_SET: ("apps_v1", "list_stateful_set_for_all_namespaces"),
    ResourceKind.DAEMON_SET: ("apps_v1", "list_daemon_set_for_all_namespaces"),
    ResourceKind.JOB: ("batch_v1", "list_job_for_all_namespaces"),
}


class ClusterConnection:
    """An authenticated client for one cluster plus its typed API groups."""

    def __init__(self, cluster_id: str, api_client: Any, ca_file: str | None = None) -> None:
        self.cluster_id = cluster_id
        self.api_client = api_client
        self.core_v1 = k8s_client.CoreV1Api(api_client)
        self.apps_v1 = k8s_client.AppsV1Api(api_client)
        self.batch_v1 = k8s_client.BatchV1Api(api_client)
        self.custom = k8s_client.CustomObjectsApi(api_client)
        self.apis = k8s_client.ApisApi(api_client)
        self._ca_file = ca_file
        self._closed = False
        self._log = get_logger("connection", cluster_id=cluster_id)

    def list_call(self, kind: ResourceKind, rollout_version: str = "") -> tuple[ListFunc, tuple[Any, ...]] | None:
        """Return the cluster-wide list function and positional args for *kind*.

        Rollouts go through the custom objects API and need the served
        version found by :meth:`discover_rollouts`.
        """
        if kind == ResourceKind.ROLLOUT:
            if not rollout_version:
                return None
            return self.custom.list_cluster_custom_object, (ROLLOUTS_GROUP, rollout_version, ROLLOUTS_PLURAL)
        entry = _LIST_METHODS.get(kind)
        if entry is None:
            return None
        group, method = entry
        return getattr(getattr(self, group), method), ()

    async def discover_rollouts(self) -> str | None:
        """Return the served ``argoproj.io`` version that exposes ``rollouts``, or None."""
        group_list = await self.apis.get_api_versions(_request_timeout=DISCOVERY_TIMEOUT_SECONDS)
        for group in getattr(group_list, "groups", None) or []:
            if group.name != ROLLOUTS_GROUP:
                continue
            versions = [v.version for v in group.versions or []]
            preferred = getattr(group.preferred_version, "version", None)
            if preferred in versions:
                versions.remove(preferred)
                versions.insert(0, preferred)
            for version in versions:
                resources = await self.custom.get_api_resources(
                    ROLLOUTS_GROUP, version, _request_timeout=DISCOVERY_TIMEOUT_SECONDS
                )
                names = {r.name for r in getattr(resources, "resources", None) or []}
                if ROLLOUTS_PLURAL in names:
                    return str(version)
        return None

    def serialize(self, obj: Any) -> dict[str, Any]:
        """Convert a typed model (e.g. ``V1Pod``) into its camelCase wire dict."""
        if isinstance(obj, dict):
            return obj
        return self.api_client.sanitize_for_serialization(obj)  # type: ignore[no-any-return]

    async def close(self) -> None:
        """Close the underlying connection pool.  Safe to call more than once."""
        if self._closed:
            return
        self._closed = True
        try:
            await self.api_client.close()
        finally:
            if self._ca_file:
                with contextlib.suppress(OSError):
                    os.unlink(self._ca_file)
        self._log.debug("connection_closed")


class ClusterConnectionFactory:
    """Create :class:`ClusterConnection` objects from :class:`ClusterRecord` credentials.

    Kubeconfig records take precedence; otherwise ``api_server`` and
    ``token`` are required.
    """

    def __init__(self) -> None:
        self._log = get_logger("connection.factory")

    async def connect(self, record: ClusterRecord) -> ClusterConnection:
        """Build an authenticated connection.

        Raises:
            ClusterConnectionError: Credentials are missing or the client could
                not be constructed.
        """
        try:
            if record.kubeconfig:
                connection = await self._from_kubeconfig(record)
            elif record.api_server and record.token:
                connection = self._from_token(record)
            else:
                raise ClusterConnectionError(record.id, "no kubeconfig or api server token configured")
        except ClusterConnectionError:
            connection_failures_total.inc()
            raise
        except Exception as exc:
            connection_failures_total.inc()
            self._log.warning("cluster_client_failed", cluster_id=record.id, error=str(exc))
            raise ClusterConnectionError(record.id, str(exc)) from exc

        self._log.info("cluster_client_created", cluster_id=record.id, name=record.name)
        return connection

    async def _from_kubeconfig(self, record: ClusterRecord) -> ClusterConnection:
        try:
            config_dict = yaml.safe_load(record.kubeconfig)
        except yaml.YAMLError as exc:
            raise ClusterConnectionError(record.id, f"invalid kubeconfig: {exc}") from exc
        if not isinstance(config_dict, dict):
            raise ClusterConnectionError(record.id, "invalid kubeconfig: not a mapping")
        api_client = await k8s_config.new_client_from_config_dict(config_dict=config_dict)
        return ClusterConnection(record.id, api_client)

    def _from_token(self, record: ClusterRecord) -> ClusterConnection:
        host = record.api_server
        if not host.startswith(("http://", "https://")):
            host = "https://" + host

        configuration = k8s_client.Configuration()
        configuration.host = host
        configuration.api_key = {"authorization": record.token}
        configuration.api_key_prefix = {"authorization": "Bearer"}

        ca_file: str | None = None
        if record.ca_data:
            ca_file = _write_ca_file(_decode_ca(record.ca_data))
            configuration.ssl_ca_cert = ca_file
            configuration.verify_ssl = True
        else:
            # No CA supplied: the cluster was registered without one.
            configuration.verify_ssl = False

        try:
            api_client = k8s_client.ApiClient(configuration)
        except Exception:
            if ca_file:
                with contextlib.suppress(OSError):
                    os.unlink(ca_file)
            raise
        return ClusterConnection(record.id, api_client, ca_file=ca_file)


def _decode_ca(ca_data: str) -> bytes:
    """Accept base64-encoded or raw PEM CA data."""
    try:
        return base64.b64decode(ca_data, validate=True)
    except (binascii.Error, ValueError):
        return ca_data.encode()


def _write_ca_file(data: bytes) -> str:
    fd, path = tempfile.mkstemp(prefix="kubepolaris-ca-", suffix=".crt")
    with os.fdopen(fd, "wb") as fh:
        fh.write(data)
    return path
