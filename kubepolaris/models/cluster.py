"""Cluster identity, tracked resource kinds and cache state enums."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import StrEnum


class ResourceKind(StrEnum):
    """Resource kinds an informer cache can track."""

    NODE = "Node"
    POD = "Pod"
    NAMESPACE = "Namespace"
    SERVICE = "Service"
    CONFIG_MAP = "ConfigMap"
    SECRET = "Secret"
    DEPLOYMENT = "Deployment"
    STATEFUL_SET = "StatefulSet"
    DAEMON_SET = "DaemonSet"
    JOB = "Job"
    ROLLOUT = "Rollout"

    @classmethod
    def parse(cls, value: str) -> ResourceKind:
        """Resolve a kind from its name, case-insensitively.

        Accepts the singular kind (``"Pod"``) or the lower-case plural
        resource name (``"pods"``, ``"statefulsets"``).

        Raises:
            ValueError: If *value* does not name a tracked kind.
        """
        needle = value.strip().lower()
        for kind in cls:
            if needle in (kind.value.lower(), kind.plural):
                return kind
        raise ValueError(f"Unknown resource kind: {value!r}")

    @property
    def plural(self) -> str:
        """Lower-case plural resource name as used in API paths."""
        return _PLURALS[self]

    @property
    def namespaced(self) -> bool:
        """False for cluster-scoped kinds."""
        return self not in (ResourceKind.NODE, ResourceKind.NAMESPACE)


_PLURALS: dict[ResourceKind, str] = {
    ResourceKind.NODE: "nodes",
    ResourceKind.POD: "pods",
    ResourceKind.NAMESPACE: "namespaces",
    ResourceKind.SERVICE: "services",
    ResourceKind.CONFIG_MAP: "configmaps",
    ResourceKind.SECRET: "secrets",
    ResourceKind.DEPLOYMENT: "deployments",
    ResourceKind.STATEFUL_SET: "statefulsets",
    ResourceKind.DAEMON_SET: "daemonsets",
    ResourceKind.JOB: "jobs",
    ResourceKind.ROLLOUT: "rollouts",
}

# Kinds every cluster cache tracks. Rollout is added only when its CRD is served.
BUILTIN_KINDS: tuple[ResourceKind, ...] = (
    ResourceKind.NODE,
    ResourceKind.POD,
    ResourceKind.NAMESPACE,
    ResourceKind.SERVICE,
    ResourceKind.CONFIG_MAP,
    ResourceKind.SECRET,
    ResourceKind.DEPLOYMENT,
    ResourceKind.STATEFUL_SET,
    ResourceKind.DAEMON_SET,
    ResourceKind.JOB,
)

DEFAULT_REQUIRED_KINDS: tuple[ResourceKind, ...] = (
    ResourceKind.NODE,
    ResourceKind.POD,
    ResourceKind.DEPLOYMENT,
)


class CacheStatus(StrEnum):
    """Lifecycle state of one cluster's informer cache."""

    PENDING = "pending"
    SYNCING = "syncing"
    READY = "ready"
    FAILED = "failed"
    STOPPED = "stopped"


class KindState(StrEnum):
    """Sync state of a single kind inside a cluster cache."""

    PENDING = "pending"
    SYNCING = "syncing"
    SYNCED = "synced"
    FAILED = "failed"
    UNAVAILABLE = "unavailable"
    STOPPED = "stopped"


@dataclass(frozen=True)
class ClusterRecord:
    """A managed cluster and the credentials used to reach it.

    Either ``kubeconfig`` or ``api_server`` + ``token`` must be set.
    ``ca_data`` may be base64-encoded or raw PEM.
    """

    id: str
    name: str = ""
    api_server: str = ""
    kubeconfig: str = field(default="", repr=False)
    token: str = field(default="", repr=False)
    ca_data: str = field(default="", repr=False)
