from __future__ import annotations

import json
import logging
import re
import time
from collections.abc import Callable
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Literal

from .constants import DEFAULT_ARTIFACTS_DIR

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class FailureArtifactsOptions:
    persist_mode: Literal["onFail", "always"] = "onFail"
    output_dir: str = DEFAULT_ARTIFACTS_DIR
    capture_screenshot: bool = True
    max_steps: int = 200
    """Oldest steps are dropped beyond this many."""
    redact_locators: tuple[str, ...] = ("password", "secret", "seed", "mnemonic")
    """Typed text is redacted when the locator mentions any of these words."""


def _slug(name: str) -> str:
    return re.sub(r"[^a-zA-Z0-9_.-]+", "-", name).strip("-")[:80] or "scenario"


class FailureArtifactBuffer:
    """
    Bounded log of the commands a scenario ran, persisted as a bundle on failure.
    """

    def __init__(
        self,
        *,
        run_id: str,
        scenario: str,
        options: FailureArtifactsOptions,
        time_fn: Callable[[], float] = time.time,
    ) -> None:
        self.run_id = run_id
        self.scenario = scenario
        self.options = options
        self._time_fn = time_fn
        self._steps: list[dict[str, Any]] = []
        self._persisted = False

    @property
    def steps(self) -> list[dict[str, Any]]:
        return list(self._steps)

    def record_step(
        self,
        *,
        index: int,
        kind: str,
        description: str,
        status: Literal["ok", "failed"],
        url: str | None = None,
        locator: str | None = None,
        payload: Any = None,
        elapsed_ms: int | None = None,
    ) -> None:
        if kind == "type" and locator and self._is_sensitive(locator):
            payload = "***"
            description = f"type {locator} ***"
        self._steps.append(
            {
                "ts": self._time_fn(),
                "index": index,
                "kind": kind,
                "description": description,
                "status": status,
                "url": url,
                "locator": locator,
                "payload": payload,
                "elapsed_ms": elapsed_ms,
            }
        )
        overflow = len(self._steps) - max(1, self.options.max_steps)
        if overflow > 0:
            del self._steps[:overflow]

    def _is_sensitive(self, locator: str) -> bool:
        low = locator.lower()
        return any(word in low for word in self.options.redact_locators)

    def should_persist(self, *, failed: bool) -> bool:
        return failed or self.options.persist_mode == "always"

    def _write_json_atomic(self, path: Path, data: Any) -> None:
        tmp_path = path.with_suffix(path.suffix + ".tmp")
        tmp_path.write_text(json.dumps(data, indent=2, default=str))
        tmp_path.replace(path)

    def persist(
        self,
        *,
        reason: str | None,
        status: Literal["failure", "success"],
        failure: dict[str, Any] | None = None,
        screenshot: bytes | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> Path | None:
        if self._persisted:
            return None

        ts = int(self._time_fn() * 1000)
        run_dir = Path(self.options.output_dir) / f"{self.run_id}-{_slug(self.scenario)}-{ts}"
        run_dir.mkdir(parents=True, exist_ok=True)

        if screenshot:
            (run_dir / "screenshot.png").write_bytes(screenshot)

        self._write_json_atomic(run_dir / "steps.json", self._steps)
        manifest = {
            "run_id": self.run_id,
            "scenario": self.scenario,
            "created_at_ms": ts,
            "status": status,
            "reason": reason,
            "failure": failure,
            "step_count": len(self._steps),
            "screenshot": "screenshot.png" if screenshot else None,
            "metadata": metadata or {},
        }
        self._write_json_atomic(run_dir / "manifest.json", manifest)
        self._persisted = True
        logger.info("artifacts for %s written to %s", self.scenario, run_dir)
        return run_dir
