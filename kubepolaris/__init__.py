"""KubePolaris - multi-cluster Kubernetes informer cache."""

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("kubepolaris")
except PackageNotFoundError:
    __version__ = "0.0.0-dev"
