"""
Scenario runner.

Each scenario starts from a freshly reset TargetHandle (viewport, navigation,
injected capabilities) and a fresh MockInjectionLayer. Runner-level default
mocks are installed, then the scenario's own, then the baseline precondition
commands run (unless the scenario opts out), then the scenario's commands.

A failing scenario is recorded and the next one still runs. Mocks are restored
and the handle torn down even when the scenario body fails.

    runner = ScenarioRunner(
        handle_factory=make_handle,
        config=EngineConfig(base_url="http://localhost:3000"),
        default_mocks={"phantom.solana": {}},
        before_each=[Command(kind="navigate", payload="/")],
    )
    summary = await runner.run(scenarios)
    sys.exit(summary.exit_code)
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable, Mapping, Sequence
from dataclasses import dataclass, field
from typing import Any

from .command_queue import CommandQueue, FailedAt
from .config import EngineConfig
from .exceptions import SurfaceCheckError
from .failure_artifacts import FailureArtifactBuffer, FailureArtifactsOptions
from .mocks import CapabilitySchema, MockInjectionLayer
from .models import Command, FailureDetail, RunSummary, ScenarioResult
from .retry import RetryEngine
from .target import TargetHandle
from .tracing import Tracer

logger = logging.getLogger(__name__)

HandleFactory = Callable[[], Awaitable[TargetHandle]]


@dataclass
class Scenario:
    name: str
    commands: list[Command] = field(default_factory=list)
    mocks: dict[str, dict[str, Any]] = field(default_factory=dict)
    baseline: bool = True
    """Run the runner's before_each precondition first."""
    viewport: str | None = None


def _merge_tables(
    defaults: Mapping[str, Mapping[str, Any]], overrides: Mapping[str, Mapping[str, Any]]
) -> dict[str, dict[str, Any]]:
    merged: dict[str, dict[str, Any]] = {name: dict(t) for name, t in defaults.items()}
    for name, table in overrides.items():
        merged.setdefault(name, {}).update(table)
    return merged


class ScenarioRunner:
    """
    Runs an ordered list of scenarios in isolation.

    Pass either a shared ``target`` (scenarios run one after another and the
    handle is reset between them) or a ``handle_factory`` producing an
    independent handle per scenario, which also allows ``max_concurrency > 1``.
    """

    def __init__(
        self,
        *,
        target: TargetHandle | None = None,
        handle_factory: HandleFactory | None = None,
        config: EngineConfig | None = None,
        default_mocks: Mapping[str, Mapping[str, Any]] | None = None,
        before_each: Sequence[Command | Mapping[str, Any]] = (),
        registry: Mapping[str, CapabilitySchema] | None = None,
        tracer: Tracer | None = None,
        artifacts: FailureArtifactsOptions | None = None,
    ) -> None:
        if (target is None) == (handle_factory is None):
            raise ValueError("Provide exactly one of target or handle_factory")
        self.config = config or EngineConfig()
        if self.config.max_concurrency > 1 and handle_factory is None:
            raise ValueError("max_concurrency > 1 requires a handle_factory (one handle per scenario)")
        self.target = target
        self.handle_factory = handle_factory
        self.default_mocks = {k: dict(v) for k, v in (default_mocks or {}).items()}
        self.before_each = [
            c if isinstance(c, Command) else Command.model_validate(c) for c in before_each
        ]
        self.registry = registry
        self.tracer = tracer
        if artifacts is None and self.config.persist_artifacts:
            artifacts = FailureArtifactsOptions(output_dir=self.config.artifacts_dir)
        self.artifacts = artifacts

    async def run(self, scenarios: Sequence[Scenario]) -> RunSummary:
        start = time.monotonic()
        self._emit("run_start", {"scenarios": [s.name for s in scenarios]})
        limit = max(1, int(self.config.max_concurrency))

        if limit == 1:
            results = [await self.run_one(s) for s in scenarios]
        else:
            semaphore = asyncio.Semaphore(limit)

            async def _bounded(s: Scenario) -> ScenarioResult:
                async with semaphore:
                    return await self.run_one(s)

            results = list(await asyncio.gather(*(_bounded(s) for s in scenarios)))

        summary = RunSummary(results=results, duration_ms=int((time.monotonic() - start) * 1000))
        self._emit("run_end", {"passed": summary.passed, "failed": summary.failed})
        logger.info("run finished: %d passed, %d failed", summary.passed, summary.failed)
        return summary

    async def run_one(self, scenario: Scenario) -> ScenarioResult:
        logger.info("scenario start: %s", scenario.name)
        self._emit("scenario_start", {"name": scenario.name}, step_id=scenario.name)
        start = time.monotonic()

        buffer = None
        if self.artifacts is not None:
            buffer = FailureArtifactBuffer(
                run_id=self.tracer.run_id if self.tracer else "run",
                scenario=scenario.name,
                options=self.artifacts,
            )

        handle: TargetHandle | None = None
        mocks: MockInjectionLayer | None = None
        failure: FailureDetail | None = None
        commands_run = 0
        artifacts_dir: str | None = None
        try:
            try:
                if self.target is not None:
                    handle = self.target
                else:
                    handle = await self.handle_factory()  # type: ignore[misc]
                mocks = MockInjectionLayer(handle, registry=self.registry)
                await handle.reset(scenario.viewport or self.config.viewport)
                for name, table in _merge_tables(self.default_mocks, scenario.mocks).items():
                    await mocks.install(name, table)
            except Exception as e:
                failure = _setup_failure(e)
            else:
                queue = CommandQueue(
                    handle,
                    engine=RetryEngine(self.config.retry, tracer=self.tracer),
                    mocks=mocks,
                    tracer=self.tracer,
                    artifacts=buffer,
                    step_id=scenario.name,
                )
                if scenario.baseline:
                    queue.extend(self.before_each)
                queue.extend(scenario.commands)
                outcome = await queue.run()
                commands_run = outcome.commands_run
                if isinstance(outcome, FailedAt):
                    failure = outcome.detail

            if buffer is not None and buffer.should_persist(failed=failure is not None):
                artifacts_dir = await self._persist(buffer, handle, failure)
        finally:
            # no handle means the factory itself failed; nothing to tear down
            if handle is not None:
                await self._teardown(handle, mocks)

        result = ScenarioResult(
            name=scenario.name,
            outcome="failed" if failure else "passed",
            duration_ms=int((time.monotonic() - start) * 1000),
            commands_run=commands_run,
            failure_detail=failure,
            artifacts_dir=artifacts_dir,
        )
        if failure:
            logger.warning("scenario failed: %s (%s)", scenario.name, failure.reason)
        else:
            logger.info("scenario passed: %s", scenario.name)
        self._emit("scenario_end", result.model_dump(), step_id=scenario.name)
        return result

    async def _persist(
        self, buffer: FailureArtifactBuffer, handle: TargetHandle | None, failure: FailureDetail | None
    ) -> str | None:
        try:
            screenshot = None
            if failure is not None and handle is not None and buffer.options.capture_screenshot:
                screenshot = await handle.screenshot()
            path = buffer.persist(
                reason=failure.reason if failure else None,
                status="failure" if failure else "success",
                failure=failure.model_dump() if failure else None,
                screenshot=screenshot,
                metadata={
                    "url": handle.location if handle else None,
                    "viewport": handle.viewport.model_dump() if handle else None,
                },
            )
            return str(path) if path else None
        except Exception as e:
            logger.warning("could not persist artifacts for %s: %s", buffer.scenario, e)
            return None

    async def _teardown(self, handle: TargetHandle, mocks: MockInjectionLayer | None) -> None:
        if mocks is not None:
            try:
                await mocks.restore_all()
            except Exception as e:
                logger.warning("mock restore failed: %s", e)
        if self.handle_factory is not None:
            try:
                await handle.close()
            except Exception as e:
                logger.warning("handle close failed: %s", e)

    def _emit(self, event_type: str, data: dict[str, Any], step_id: str | None = None) -> None:
        if self.tracer is not None:
            self.tracer.emit(event_type, data=data, step_id=step_id)


def _setup_failure(error: Exception) -> FailureDetail:
    if isinstance(error, SurfaceCheckError):
        reason_code = error.reason_code
    else:
        reason_code = "unexpected_error"
        logger.error("scenario setup failed", exc_info=error)
    return FailureDetail(
        command_index=-1,
        kind="setup",
        reason_code=reason_code,
        reason=str(error) or type(error).__name__,
    )
