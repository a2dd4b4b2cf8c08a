"""
Pydantic models for surfacecheck - commands, viewports and run output.
"""

from __future__ import annotations

import re
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, model_validator

from .constants import VIEWPORT_PRESETS

CommandKind = Literal[
    "navigate",
    "reload",
    "find",
    "click",
    "type",
    "trigger",
    "scroll",
    "swipe",
    "assert",
    "viewport",
    "mock",
    "wait",
]

AssertionName = Literal[
    "exists",
    "not_exists",
    "visible",
    "not_visible",
    "text",
    "value",
    "css",
    "count",
    "count_gt",
    "url_includes",
]

# Kinds that act on an element and therefore need a locator
ELEMENT_KINDS = frozenset({"find", "click", "type", "trigger", "swipe"})
VALUE_ASSERTIONS = frozenset({"text", "value", "css", "count", "count_gt", "url_includes"})

_SIZE_RE = re.compile(r"^\s*(\d+)\s*[xX×]\s*(\d+)\s*$")


class Viewport(BaseModel):
    """Viewport dimensions"""

    model_config = ConfigDict(frozen=True)

    width: int = Field(gt=0)
    height: int = Field(gt=0)
    label: str | None = None

    @classmethod
    def parse(cls, spec: Viewport | str | dict[str, Any] | tuple[int, int]) -> Viewport:
        """
        Accept a preset name ("mobile-reference"), "WIDTHxHEIGHT", a mapping or a tuple.
        """
        if isinstance(spec, Viewport):
            return spec
        if isinstance(spec, tuple):
            return cls(width=spec[0], height=spec[1])
        if isinstance(spec, dict):
            return cls(**spec)
        name = str(spec).strip().lower()
        if name in VIEWPORT_PRESETS:
            width, height = VIEWPORT_PRESETS[name]
            return cls(width=width, height=height, label=name)
        m = _SIZE_RE.match(name)
        if m:
            return cls(width=int(m.group(1)), height=int(m.group(2)))
        raise ValueError(f"Unknown viewport {spec!r}; use a preset or WIDTHxHEIGHT")


class Command(BaseModel):
    """
    One unit of interaction or query. Commands are immutable once built.

    ``payload`` depends on the kind: the URL for navigate, the text for type,
    ``{"type": ..., "detail": {...}}`` for trigger, "top"/"bottom"/{x, y} for scroll,
    ``{"from": [x, y], "to": [x, y]}`` for swipe, ``{"ms": n}`` for wait,
    ``{"capability": name, "behaviors": {...}}`` for mock, a viewport spec for viewport.
    """

    model_config = ConfigDict(frozen=True)

    kind: CommandKind
    locator: str | None = None
    text: str | None = None
    index: int | None = None
    payload: Any = None
    assertion: AssertionName | None = None
    property: str | None = None
    expected: Any = None
    timeout_ms: int | None = Field(default=None, gt=0)

    @model_validator(mode="after")
    def _check_shape(self) -> Command:
        if self.kind in ELEMENT_KINDS and not self.locator:
            raise ValueError(f"{self.kind} command requires a locator")
        if self.kind == "navigate" and not isinstance(self.payload, str):
            raise ValueError("navigate command requires a URL payload")
        if self.kind == "type" and not isinstance(self.payload, str):
            raise ValueError("type command requires a text payload")
        if self.kind == "assert":
            if self.assertion is None:
                raise ValueError("assert command requires an assertion name")
            if self.assertion != "url_includes" and not self.locator:
                raise ValueError(f"{self.assertion} assertion requires a locator")
            if self.assertion == "css" and not self.property:
                raise ValueError("css assertion requires a property")
            if self.assertion in VALUE_ASSERTIONS and self.expected is None:
                raise ValueError(f"{self.assertion} assertion requires an expected value")
            if self.assertion in {"count", "count_gt"} and (
                isinstance(self.expected, bool) or not isinstance(self.expected, int)
            ):
                raise ValueError(f"{self.assertion} assertion expects an integer, got {self.expected!r}")
        if self.kind == "mock":
            if not isinstance(self.payload, dict) or "capability" not in self.payload:
                raise ValueError("mock command requires {'capability': ..., 'behaviors': {...}}")
        return self

    def describe(self) -> str:
        parts = [self.kind]
        if self.assertion:
            parts.append(self.assertion)
        if self.locator:
            parts.append(self.locator)
        if self.text:
            parts.append(f"text~{self.text!r}")
        if self.index is not None:
            parts.append(f"[{self.index}]")
        if self.kind in {"navigate", "type"}:
            parts.append(repr(self.payload))
        return " ".join(parts)


class FailureDetail(BaseModel):
    """Diagnostics for the first failing command of a scenario"""

    command_index: int
    kind: str
    reason_code: str
    reason: str
    locator: str | None = None
    expected: Any = None
    actual: Any = None
    elapsed_ms: int | None = None


class ScenarioResult(BaseModel):
    """Per-scenario run record"""

    name: str
    outcome: Literal["passed", "failed"]
    duration_ms: int
    commands_run: int = 0
    failure_detail: FailureDetail | None = None
    artifacts_dir: str | None = None

    @property
    def passed(self) -> bool:
        return self.outcome == "passed"


class RunSummary(BaseModel):
    """Aggregated run output"""

    results: list[ScenarioResult] = Field(default_factory=list)
    duration_ms: int = 0

    @property
    def passed(self) -> int:
        return sum(1 for r in self.results if r.passed)

    @property
    def failed(self) -> int:
        return sum(1 for r in self.results if not r.passed)

    @property
    def exit_code(self) -> int:
        return 1 if self.failed else 0

    def format_text(self) -> str:
        lines = []
        for r in self.results:
            mark = "PASS" if r.passed else "FAIL"
            lines.append(f"{mark}  {r.name} ({r.duration_ms}ms)")
            d = r.failure_detail
            if d is not None:
                where = f" {d.locator}" if d.locator else ""
                lines.append(f"      at command #{d.command_index} {d.kind}{where}: {d.reason}")
                if d.expected is not None or d.actual is not None:
                    lines.append(f"      expected={d.expected!r} actual={d.actual!r}")
                if d.elapsed_ms is not None:
                    lines.append(f"      waited {d.elapsed_ms}ms")
        lines.append(
            f"{len(self.results)} scenario(s): {self.passed} passed, {self.failed} failed"
            f" in {self.duration_ms}ms"
        )
        return "\n".join(lines)
