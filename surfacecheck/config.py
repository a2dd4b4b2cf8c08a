from __future__ import annotations

import os
from collections.abc import Mapping
from dataclasses import dataclass, field, fields, replace
from typing import Any

from .constants import (
    DEFAULT_ARTIFACTS_DIR,
    DEFAULT_NAVIGATION_TIMEOUT_MS,
    DEFAULT_POLL_INTERVAL_MS,
    DEFAULT_TIMEOUT_MS,
    DEFAULT_VIEWPORT,
    ENV_PREFIX,
)


@dataclass(frozen=True)
class RetryOptions:
    """
    Defaults for the retry-assertion loop. Individual assertions may override timeout_ms.
    """

    timeout_ms: int = DEFAULT_TIMEOUT_MS
    poll_interval_ms: int = DEFAULT_POLL_INTERVAL_MS

    def __post_init__(self) -> None:
        if self.timeout_ms < 0:
            raise ValueError("timeout_ms must be >= 0")
        if self.poll_interval_ms <= 0:
            raise ValueError("poll_interval_ms must be > 0")

    def with_timeout(self, timeout_ms: int | None) -> RetryOptions:
        if timeout_ms is None:
            return self
        return replace(self, timeout_ms=int(timeout_ms))


@dataclass(frozen=True)
class EngineConfig:
    """
    Engine-level configuration.

    Resolution order (lowest to highest): dataclass defaults, SURFACECHECK_* env vars,
    script-level keys, explicit keyword overrides (CLI flags).
    """

    base_url: str | None = None
    viewport: str = DEFAULT_VIEWPORT
    retry: RetryOptions = field(default_factory=RetryOptions)
    navigation_timeout_ms: int = DEFAULT_NAVIGATION_TIMEOUT_MS
    max_concurrency: int = 1
    headless: bool = True
    artifacts_dir: str = DEFAULT_ARTIFACTS_DIR
    persist_artifacts: bool = False
    trace_path: str | None = None

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> EngineConfig:
        env = os.environ if environ is None else environ

        def _get(name: str) -> str | None:
            value = env.get(ENV_PREFIX + name)
            return value if value not in (None, "") else None

        overrides: dict[str, Any] = {}
        if (v := _get("BASE_URL")) is not None:
            overrides["base_url"] = v
        if (v := _get("VIEWPORT")) is not None:
            overrides["viewport"] = v
        if (v := _get("TIMEOUT_MS")) is not None:
            overrides["timeout_ms"] = int(v)
        if (v := _get("POLL_INTERVAL_MS")) is not None:
            overrides["poll_interval_ms"] = int(v)
        if (v := _get("NAVIGATION_TIMEOUT_MS")) is not None:
            overrides["navigation_timeout_ms"] = int(v)
        if (v := _get("MAX_CONCURRENCY")) is not None:
            overrides["max_concurrency"] = int(v)
        if (v := _get("HEADLESS")) is not None:
            overrides["headless"] = v.strip().lower() not in {"0", "false", "no", "off"}
        if (v := _get("ARTIFACTS_DIR")) is not None:
            overrides["artifacts_dir"] = v
        if (v := _get("TRACE_PATH")) is not None:
            overrides["trace_path"] = v
        return cls().merged(**overrides)

    def merged(self, **overrides: Any) -> EngineConfig:
        """
        Return a copy with non-None overrides applied.

        ``timeout_ms`` / ``poll_interval_ms`` are folded into ``retry``.
        """
        retry = self.retry
        timeout_ms = overrides.pop("timeout_ms", None)
        poll_ms = overrides.pop("poll_interval_ms", None)
        if timeout_ms is not None or poll_ms is not None:
            retry = RetryOptions(
                timeout_ms=int(timeout_ms) if timeout_ms is not None else retry.timeout_ms,
                poll_interval_ms=int(poll_ms) if poll_ms is not None else retry.poll_interval_ms,
            )
        known = {f.name for f in fields(self)}
        unknown = set(overrides) - known
        if unknown:
            raise TypeError(f"Unknown config keys: {sorted(unknown)}")
        clean = {k: v for k, v in overrides.items() if v is not None}
        return replace(self, retry=retry, **clean)
