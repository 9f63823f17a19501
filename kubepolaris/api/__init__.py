"""REST surface over the informer cache registry."""

from kubepolaris.api.app import create_app

__all__ = ["create_app"]
