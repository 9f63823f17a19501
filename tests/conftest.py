"""Shared fixtures: informers run against an idle watch stream in every test."""

from __future__ import annotations

from collections.abc import Iterator
from unittest.mock import patch

import pytest
from fakes import IdleWatch

from kubepolaris.models.config import InformerConfig


@pytest.fixture(autouse=True)
def idle_watch() -> Iterator[None]:
    with patch("kubepolaris.informer.informer.watch.Watch", IdleWatch):
        yield


@pytest.fixture
def fast_config() -> InformerConfig:
    return InformerConfig(
        sync_timeout_seconds=2.0,
        overview_wait_seconds=1.0,
        backoff_min_seconds=0.01,
        backoff_max_seconds=0.05,
        failure_threshold=2,
    )
