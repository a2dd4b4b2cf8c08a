from __future__ import annotations

import json
from pathlib import Path

import pytest
from marketplace_app import BASE_URL, make_surface

from surfacecheck.config import EngineConfig, RetryOptions
from surfacecheck.failure_artifacts import FailureArtifactsOptions
from surfacecheck.models import Command
from surfacecheck.runner import Scenario, ScenarioRunner
from surfacecheck.target import TargetHandle
from surfacecheck.tracing import MemoryTraceSink, Tracer

CONFIG = EngineConfig(base_url=BASE_URL, retry=RetryOptions(timeout_ms=1000, poll_interval_ms=10))

BASELINE = [
    Command(kind="navigate", payload="/"),
    Command(kind="click", locator="button", text="Connect Wallet"),
    Command(kind="assert", assertion="visible", locator="span", text="mockWa"),
]

WALLET_REJECTED = Scenario(
    name="wallet rejected",
    baseline=False,
    mocks={"phantom.solana": {"connect": {"rejects_with": "Wallet connection failed"}}},
    commands=[
        Command(kind="navigate", payload="/"),
        Command(kind="click", locator="button", text="Connect Wallet"),
        Command(
            kind="assert",
            assertion="visible",
            locator="div",
            text="Wallet connection failed. Please try again.",
        ),
    ],
)

CONNECTED = Scenario(
    name="connected",
    commands=[Command(kind="assert", assertion="text", locator="h1", expected="Fabeon AI")],
)

BROKEN = Scenario(
    name="broken",
    commands=[
        Command(kind="assert", assertion="visible", locator="h2", text="Nope", timeout_ms=100),
        Command(kind="click", locator="button.mobile-menu-toggle"),
    ],
)


def _runner(target: TargetHandle | None = None, **kwargs) -> ScenarioRunner:
    if target is None and "handle_factory" not in kwargs:
        target = TargetHandle(make_surface(), base_url=BASE_URL)
    return ScenarioRunner(
        target=target,
        config=kwargs.pop("config", CONFIG),
        default_mocks={"phantom.solana": {}},
        before_each=BASELINE,
        **kwargs,
    )


@pytest.mark.asyncio
async def test_mocks_do_not_leak_between_scenarios() -> None:
    summary = await _runner().run([WALLET_REJECTED, CONNECTED])

    assert [r.outcome for r in summary.results] == ["passed", "passed"]
    assert summary.exit_code == 0


@pytest.mark.asyncio
async def test_failed_scenario_does_not_stop_the_run() -> None:
    summary = await _runner().run([BROKEN, CONNECTED])

    broken, connected = summary.results
    assert broken.outcome == "failed"
    assert connected.outcome == "passed"
    assert summary.passed == 1
    assert summary.failed == 1
    assert summary.exit_code == 1

    detail = broken.failure_detail
    assert detail is not None
    # baseline commands occupy indices 0..2
    assert detail.command_index == 3
    assert detail.reason_code == "assertion_timeout"
    assert broken.commands_run == 3
    assert "FAIL  broken" in summary.format_text()


@pytest.mark.asyncio
async def test_capabilities_are_restored_after_each_scenario() -> None:
    surface = make_surface()
    target = TargetHandle(surface, base_url=BASE_URL)

    await _runner(target).run([CONNECTED])

    assert surface.capability("phantom.solana") is None
    assert target.capabilities == {}


@pytest.mark.asyncio
async def test_baseline_can_be_skipped() -> None:
    scenario = Scenario(
        name="no baseline",
        baseline=False,
        commands=[
            Command(kind="navigate", payload="/"),
            Command(kind="assert", assertion="visible", locator="button", text="Connect Wallet"),
        ],
    )

    (result,) = (await _runner().run([scenario])).results

    assert result.passed
    assert result.commands_run == 2


@pytest.mark.asyncio
async def test_invalid_mock_table_fails_scenario_during_setup() -> None:
    scenario = Scenario(name="bad mocks", mocks={"metamask": {"connect": {"resolves_with": 1}}})

    summary = await _runner().run([scenario, CONNECTED])

    bad, good = summary.results
    assert bad.outcome == "failed"
    assert bad.failure_detail.command_index == -1
    assert bad.failure_detail.kind == "setup"
    assert bad.failure_detail.reason_code == "mock_configuration"
    assert good.passed


@pytest.mark.asyncio
async def test_scenario_viewport_overrides_run_default() -> None:
    scenario = Scenario(
        name="desktop",
        viewport="desktop",
        baseline=False,
        commands=[
            Command(kind="navigate", payload="/"),
            Command(kind="assert", assertion="not_visible", locator=".mobile-menu-toggle"),
            Command(kind="assert", assertion="css", locator=".hero-section", property="flex-direction", expected="row"),
        ],
    )

    (result,) = (await _runner().run([scenario])).results

    assert result.passed, result.failure_detail


@pytest.mark.asyncio
async def test_concurrent_run_uses_one_handle_per_scenario() -> None:
    created: list[TargetHandle] = []

    async def factory() -> TargetHandle:
        handle = TargetHandle(make_surface(), base_url=BASE_URL)
        created.append(handle)
        return handle

    scenarios = [
        Scenario(name=f"s{i}", commands=list(CONNECTED.commands)) for i in range(4)
    ] + [WALLET_REJECTED]
    runner = _runner(handle_factory=factory, config=CONFIG.merged(max_concurrency=3))

    summary = await runner.run(scenarios)

    assert [r.name for r in summary.results] == ["s0", "s1", "s2", "s3", "wallet rejected"]
    assert summary.failed == 0
    assert len(created) == 5
    assert all(h.capabilities == {} for h in created)


@pytest.mark.asyncio
@pytest.mark.parametrize("concurrency", [1, 2])
async def test_handle_factory_failure_is_recorded_and_run_continues(concurrency: int) -> None:
    calls = 0
    created: list[TargetHandle] = []

    async def factory() -> TargetHandle:
        nonlocal calls
        calls += 1
        if calls == 1:
            raise RuntimeError("browser context could not be created")
        handle = TargetHandle(make_surface(), base_url=BASE_URL)
        created.append(handle)
        return handle

    scenarios = [
        Scenario(name="a", commands=list(CONNECTED.commands)),
        Scenario(name="b", commands=list(CONNECTED.commands)),
    ]
    runner = _runner(handle_factory=factory, config=CONFIG.merged(max_concurrency=concurrency))

    summary = await runner.run(scenarios)

    assert [r.outcome for r in summary.results] == ["failed", "passed"]
    detail = summary.results[0].failure_detail
    assert detail.command_index == -1
    assert detail.kind == "setup"
    assert detail.reason_code == "unexpected_error"
    assert "browser context could not be created" in detail.reason
    assert summary.results[0].commands_run == 0
    assert len(created) == 1
    assert summary.exit_code == 1


def test_runner_arguments_are_validated() -> None:
    target = TargetHandle(make_surface())

    async def factory() -> TargetHandle:
        return target

    with pytest.raises(ValueError):
        ScenarioRunner()
    with pytest.raises(ValueError):
        ScenarioRunner(target=target, handle_factory=factory)
    with pytest.raises(ValueError):
        ScenarioRunner(target=target, config=EngineConfig(max_concurrency=2))


@pytest.mark.asyncio
async def test_failure_artifacts_are_persisted_for_failed_scenarios(tmp_path) -> None:
    runner = _runner(artifacts=FailureArtifactsOptions(output_dir=str(tmp_path)))

    summary = await runner.run([BROKEN, CONNECTED])
    broken, connected = summary.results

    assert connected.artifacts_dir is None
    assert broken.artifacts_dir is not None
    run_dir = Path(broken.artifacts_dir)
    manifest = json.loads((run_dir / "manifest.json").read_text())
    steps = json.loads((run_dir / "steps.json").read_text())
    assert manifest["status"] == "failure"
    assert manifest["scenario"] == "broken"
    assert manifest["failure"]["reason_code"] == "assertion_timeout"
    assert manifest["metadata"]["viewport"]["width"] == 375
    assert [s["status"] for s in steps] == ["ok", "ok", "ok", "failed"]
    assert not (run_dir / "screenshot.png").exists()


@pytest.mark.asyncio
async def test_run_is_traced() -> None:
    sink = MemoryTraceSink()
    tracer = Tracer(run_id="r1", sink=sink)

    await _runner(tracer=tracer).run([CONNECTED])

    types = [e["type"] for e in sink.events]
    assert types[0] == "run_start"
    assert types[1] == "scenario_start"
    assert types[-2] == "scenario_end"
    assert types[-1] == "run_end"
    assert "command" in types
    assert "verification" in types
    assert all(e["run_id"] == "r1" for e in sink.events)
    assert [e["seq"] for e in sink.events] == list(range(1, len(sink.events) + 1))
