"""
Trace events for runs: scenario boundaries, commands and verification results.

    tracer = Tracer(run_id="nightly", sink=JsonlTraceSink("trace.jsonl"))
    runner = ScenarioRunner(..., tracer=tracer)
"""

from __future__ import annotations

import json
import logging
import time
import uuid
from pathlib import Path
from typing import Any, Protocol

logger = logging.getLogger(__name__)


class TraceSink(Protocol):
    def write(self, event: dict[str, Any]) -> None:
        ...

    def close(self) -> None:
        ...


class JsonlTraceSink:
    """Append one JSON object per line."""

    def __init__(self, path: str | Path) -> None:
        self.path = Path(path)
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self._fh = open(self.path, "a", encoding="utf-8")

    def write(self, event: dict[str, Any]) -> None:
        self._fh.write(json.dumps(event, default=str) + "\n")
        self._fh.flush()

    def close(self) -> None:
        if not self._fh.closed:
            self._fh.close()


class MemoryTraceSink:
    def __init__(self) -> None:
        self.events: list[dict[str, Any]] = []

    def write(self, event: dict[str, Any]) -> None:
        self.events.append(event)

    def close(self) -> None:
        return None


class Tracer:
    def __init__(self, run_id: str | None = None, sink: TraceSink | None = None) -> None:
        self.run_id = run_id or uuid.uuid4().hex[:12]
        self.sink = sink or MemoryTraceSink()
        self._seq = 0

    def emit(self, event_type: str, data: dict[str, Any], step_id: str | None = None) -> None:
        self._seq += 1
        event = {
            "v": 1,
            "type": event_type,
            "ts": time.time(),
            "seq": self._seq,
            "run_id": self.run_id,
            "step_id": step_id,
            "data": data,
        }
        try:
            self.sink.write(event)
        except Exception as e:
            # Tracing must be non-fatal
            logger.warning("trace sink write failed: %s", e)

    def close(self) -> None:
        self.sink.close()
