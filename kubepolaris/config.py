"""Load KubePolaris configuration from ``KUBEPOLARIS_*`` environment variables.

Numeric values are clamped to their allowed range; enumerated values
(log level, resource kinds) raise ``ValueError`` when invalid.
"""

from __future__ import annotations

import os

from kubepolaris.models.cluster import ResourceKind
from kubepolaris.models.config import (
    ApiConfig,
    InformerConfig,
    LogConfig,
    PolarisConfig,
    SweepConfig,
)

_PREFIX = "KUBEPOLARIS_"
_LOG_LEVELS: frozenset[str] = frozenset({"debug", "info", "warning", "error"})
_TRUTHY: frozenset[str] = frozenset({"1", "true", "yes", "on"})


def _env(name: str) -> str | None:
    value = os.environ.get(_PREFIX + name)
    if value is None or value.strip() == "":
        return None
    return value.strip()


def _parse_bool(name: str, default: bool) -> bool:
    raw = _env(name)
    if raw is None:
        return default
    return raw.lower() in _TRUTHY


def _clamp_int(name: str, default: int, lo: int, hi: int) -> int:
    raw = _env(name)
    if raw is None:
        return default
    try:
        value = int(raw)
    except ValueError as exc:
        raise ValueError(f"Invalid integer for {_PREFIX}{name}: {raw!r}") from exc
    return max(lo, min(hi, value))


def _clamp_float(name: str, default: float, lo: float, hi: float) -> float:
    raw = _env(name)
    if raw is None:
        return default
    try:
        value = float(raw)
    except ValueError as exc:
        raise ValueError(f"Invalid number for {_PREFIX}{name}: {raw!r}") from exc
    return max(lo, min(hi, value))


def _parse_log_level() -> str:
    raw = _env("LOG_LEVEL")
    if raw is None:
        return "info"
    level = raw.lower()
    if level not in _LOG_LEVELS:
        raise ValueError(f"Invalid log level: {raw!r} (expected one of {sorted(_LOG_LEVELS)})")
    return level


def _parse_kinds(name: str, default: tuple[ResourceKind, ...]) -> tuple[ResourceKind, ...]:
    raw = _env(name)
    if raw is None:
        return default
    kinds: list[ResourceKind] = []
    for part in raw.split(","):
        if not part.strip():
            continue
        kind = ResourceKind.parse(part)
        if kind not in kinds:
            kinds.append(kind)
    if not kinds:
        raise ValueError(f"{_PREFIX}{name} must name at least one resource kind")
    return tuple(kinds)


def load_config() -> PolarisConfig:
    """Build a :class:`PolarisConfig` from the current environment."""
    defaults = InformerConfig()

    backoff_min = _clamp_float("BACKOFF_MIN", defaults.backoff_min_seconds, 0.1, 30.0)
    backoff_max = _clamp_float("BACKOFF_MAX", defaults.backoff_max_seconds, 1.0, 600.0)

    informer = InformerConfig(
        sync_timeout_seconds=_clamp_float("SYNC_TIMEOUT", defaults.sync_timeout_seconds, 0.5, 60.0),
        overview_wait_seconds=_clamp_float("OVERVIEW_WAIT", defaults.overview_wait_seconds, 0.1, 30.0),
        backoff_min_seconds=backoff_min,
        backoff_max_seconds=max(backoff_min, backoff_max),
        failure_threshold=_clamp_int("FAILURE_THRESHOLD", defaults.failure_threshold, 1, 20),
        watch_timeout_seconds=_clamp_int("WATCH_TIMEOUT", defaults.watch_timeout_seconds, 30, 3600),
        required_kinds=_parse_kinds("REQUIRED_KINDS", defaults.required_kinds),
        rollouts_enabled=_parse_bool("ROLLOUTS_ENABLED", defaults.rollouts_enabled),
    )

    return PolarisConfig(
        log=LogConfig(level=_parse_log_level()),
        api=ApiConfig(
            host=_env("API_HOST") or "0.0.0.0",
            port=_clamp_int("API_PORT", 8080, 1024, 65535),
        ),
        informer=informer,
        sweep=SweepConfig(interval_seconds=_clamp_int("SWEEP_INTERVAL", 0, 0, 86_400)),
        clusters_file=_env("CLUSTERS_FILE") or "",
    )
