"""
Portable scenario script format (JSON).

    {
      "base_url": "http://localhost:3000",
      "viewport": "mobile-reference",
      "timeout_ms": 4000,
      "mocks": {"phantom.solana": {"connect": {"resolves_with": {"publicKey": "..."}}}},
      "before_each": [{"kind": "navigate", "payload": "/"}],
      "scenarios": [
        {"name": "purchase", "commands": [
          {"kind": "click", "locator": "button", "text": "Buy Now"},
          {"kind": "assert", "assertion": "visible", "locator": "div",
           "text": "Purchase successful!", "timeout_ms": 10000}
        ]}
      ]
    }

Everything is validated at load time, including mock tables, so a bad script
fails before any scenario runs.
"""

from __future__ import annotations

import json
from collections.abc import Mapping
from pathlib import Path
from typing import Any

from pydantic import BaseModel, Field, ValidationError, field_validator

from .config import EngineConfig
from .exceptions import MockConfigurationError, ScriptError
from .mocks import CapabilitySchema, MockInjectionLayer, behaviors_from_table
from .models import Command, Viewport
from .runner import Scenario


class ScenarioSpec(BaseModel):
    name: str = Field(min_length=1)
    commands: list[Command] = Field(default_factory=list)
    mocks: dict[str, dict[str, Any]] = Field(default_factory=dict)
    baseline: bool = True
    viewport: str | None = None


class ScenarioScript(BaseModel):
    base_url: str | None = None
    viewport: str | None = None
    timeout_ms: int | None = Field(default=None, ge=0)
    poll_interval_ms: int | None = Field(default=None, gt=0)
    navigation_timeout_ms: int | None = Field(default=None, gt=0)
    mocks: dict[str, dict[str, Any]] = Field(default_factory=dict)
    before_each: list[Command] = Field(default_factory=list)
    scenarios: list[ScenarioSpec] = Field(min_length=1)

    @field_validator("viewport")
    @classmethod
    def _known_viewport(cls, v: str | None) -> str | None:
        if v is not None:
            Viewport.parse(v)
        return v

    @field_validator("scenarios")
    @classmethod
    def _unique_names(cls, v: list[ScenarioSpec]) -> list[ScenarioSpec]:
        seen: set[str] = set()
        for spec in v:
            if spec.name in seen:
                raise ValueError(f"duplicate scenario name {spec.name!r}")
            seen.add(spec.name)
        return v

    def engine_config(self, base: EngineConfig | None = None) -> EngineConfig:
        return (base or EngineConfig()).merged(
            base_url=self.base_url,
            viewport=self.viewport,
            timeout_ms=self.timeout_ms,
            poll_interval_ms=self.poll_interval_ms,
            navigation_timeout_ms=self.navigation_timeout_ms,
        )

    def to_scenarios(self) -> list[Scenario]:
        return [
            Scenario(
                name=s.name,
                commands=list(s.commands),
                mocks={k: dict(v) for k, v in s.mocks.items()},
                baseline=s.baseline,
                viewport=s.viewport,
            )
            for s in self.scenarios
        ]


def _check_mocks(script: ScenarioScript, registry: Mapping[str, CapabilitySchema] | None) -> None:
    layer = MockInjectionLayer(None, registry=registry)
    for name, table in behaviors_from_table(script.mocks).items():
        layer.validate(name, table)
    for spec in script.scenarios:
        for name, table in behaviors_from_table(spec.mocks).items():
            layer.validate(name, table)
        for command in [*script.before_each, *spec.commands]:
            if command.kind == "mock":
                layer.validate(command.payload["capability"], command.payload.get("behaviors") or {})


def parse_script(
    data: Mapping[str, Any], *, registry: Mapping[str, CapabilitySchema] | None = None
) -> ScenarioScript:
    try:
        script = ScenarioScript.model_validate(data)
    except ValidationError as e:
        raise ScriptError(f"Invalid scenario script: {e}") from e
    try:
        _check_mocks(script, registry)
    except MockConfigurationError as e:
        raise ScriptError(f"Invalid mock table: {e}", reason_code=e.reason_code) from e
    return script


def load_script(
    path: str | Path, *, registry: Mapping[str, CapabilitySchema] | None = None
) -> ScenarioScript:
    p = Path(path)
    try:
        data = json.loads(p.read_text(encoding="utf-8"))
    except OSError as e:
        raise ScriptError(f"Cannot read {p}: {e}") from e
    except json.JSONDecodeError as e:
        raise ScriptError(f"{p} is not valid JSON: {e}") from e
    if not isinstance(data, Mapping):
        raise ScriptError(f"{p} must contain a JSON object")
    return parse_script(data, registry=registry)
