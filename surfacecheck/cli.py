"""
Command line entry point.

    surfacecheck run scenarios.json --base-url http://localhost:3000 --trace trace.jsonl
    surfacecheck validate scenarios.json
    surfacecheck devices
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from pathlib import Path

from .config import EngineConfig
from .constants import VIEWPORT_PRESETS
from .exceptions import ScriptError
from .failure_artifacts import FailureArtifactsOptions
from .models import RunSummary
from .runner import HandleFactory, ScenarioRunner
from .script import ScenarioScript, load_script
from .target import TargetHandle
from .tracing import JsonlTraceSink, Tracer

logger = logging.getLogger("surfacecheck")


@asynccontextmanager
async def playwright_factory(config: EngineConfig, browser_name: str = "chromium") -> AsyncIterator[HandleFactory]:
    """Launch one browser; every scenario gets its own context and page."""
    from playwright.async_api import async_playwright

    from .backends.playwright_backend import PlaywrightBackend

    async with async_playwright() as pw:
        browser = await getattr(pw, browser_name).launch(headless=config.headless)
        try:

            async def factory() -> TargetHandle:
                backend = await PlaywrightBackend.create(browser)
                return TargetHandle(
                    backend,
                    viewport=config.viewport,
                    base_url=config.base_url,
                    navigation_timeout_ms=config.navigation_timeout_ms,
                )

            yield factory
        finally:
            await browser.close()


async def run_script(
    script: ScenarioScript,
    config: EngineConfig,
    *,
    browser_name: str = "chromium",
    tracer: Tracer | None = None,
) -> RunSummary:
    artifacts = FailureArtifactsOptions(output_dir=config.artifacts_dir) if config.persist_artifacts else None
    async with playwright_factory(config, browser_name) as factory:
        runner = ScenarioRunner(
            handle_factory=factory,
            config=config,
            default_mocks=script.mocks,
            before_each=script.before_each,
            tracer=tracer,
            artifacts=artifacts,
        )
        return await runner.run(script.to_scenarios())


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="surfacecheck", description="Run UI scenario scripts")
    parser.add_argument("--log-level", default="WARNING", help="logging level (default: WARNING)")
    sub = parser.add_subparsers(dest="command", required=True)

    run = sub.add_parser("run", help="run a scenario script")
    run.add_argument("script", type=Path)
    run.add_argument("--base-url")
    run.add_argument("--viewport", help="device preset or WIDTHxHEIGHT")
    run.add_argument("--timeout-ms", type=int)
    run.add_argument("--poll-interval-ms", type=int)
    run.add_argument("--navigation-timeout-ms", type=int)
    run.add_argument("--concurrency", type=int, dest="max_concurrency")
    run.add_argument("--browser", default="chromium", choices=["chromium", "firefox", "webkit"])
    run.add_argument("--headed", action="store_true")
    run.add_argument("--trace", dest="trace_path")
    run.add_argument("--artifacts", dest="artifacts_dir", help="persist failure artifacts here")
    run.add_argument("--json", dest="json_out", type=Path, help="write the run summary as JSON")

    validate = sub.add_parser("validate", help="validate a scenario script without running it")
    validate.add_argument("script", type=Path)

    sub.add_parser("devices", help="list viewport presets")
    return parser


def _cmd_run(args: argparse.Namespace) -> int:
    script = load_script(args.script)
    config = script.engine_config(EngineConfig.from_env()).merged(
        base_url=args.base_url,
        viewport=args.viewport,
        timeout_ms=args.timeout_ms,
        poll_interval_ms=args.poll_interval_ms,
        navigation_timeout_ms=args.navigation_timeout_ms,
        max_concurrency=args.max_concurrency,
        headless=False if args.headed else None,
        trace_path=args.trace_path,
        artifacts_dir=args.artifacts_dir,
        persist_artifacts=True if args.artifacts_dir else None,
    )

    tracer = None
    if config.trace_path:
        tracer = Tracer(sink=JsonlTraceSink(config.trace_path))
    try:
        summary = asyncio.run(run_script(script, config, browser_name=args.browser, tracer=tracer))
    finally:
        if tracer is not None:
            tracer.close()

    print(summary.format_text())
    if args.json_out:
        args.json_out.write_text(summary.model_dump_json(indent=2))
    return summary.exit_code


def _cmd_validate(args: argparse.Namespace) -> int:
    script = load_script(args.script)
    n = sum(len(s.commands) for s in script.scenarios)
    print(f"{args.script}: {len(script.scenarios)} scenario(s), {n} command(s) OK")
    return 0


def _cmd_devices(_args: argparse.Namespace) -> int:
    for name, (width, height) in VIEWPORT_PRESETS.items():
        print(f"{name:<18} {width}x{height}")
    return 0


def main(argv: list[str] | None = None) -> int:
    parser = _build_parser()
    args = parser.parse_args(argv)
    logging.basicConfig(
        level=getattr(logging, str(args.log_level).upper(), logging.WARNING),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    handlers = {"run": _cmd_run, "validate": _cmd_validate, "devices": _cmd_devices}
    try:
        return handlers[args.command](args)
    except ScriptError as e:
        print(f"error: {e}", file=sys.stderr)
        return 2


if __name__ == "__main__":
    sys.exit(main())
