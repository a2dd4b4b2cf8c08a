"""
Example: run the mobile marketplace scenarios against a live dev server.

Starts Chromium through Playwright, gives each scenario its own browser context
and writes a JSONL trace plus failure artifacts.

Usage:
  npm run dev   # marketplace on http://localhost:3000
  python examples/run_marketplace.py
"""

import asyncio
import logging
import sys
from pathlib import Path

from playwright.async_api import async_playwright

from surfacecheck import EngineConfig, ScenarioRunner, TargetHandle, load_script
from surfacecheck.backends import PlaywrightBackend
from surfacecheck.failure_artifacts import FailureArtifactsOptions
from surfacecheck.tracing import JsonlTraceSink, Tracer

SCRIPT = Path(__file__).with_name("mobile_marketplace.json")


async def main() -> int:
    script = load_script(SCRIPT)
    config = script.engine_config(EngineConfig.from_env()).merged(max_concurrency=2)

    run_id = "mobile-marketplace"
    tracer = Tracer(run_id=run_id, sink=JsonlTraceSink(f"traces/{run_id}.jsonl"))

    async with async_playwright() as pw:
        browser = await pw.chromium.launch(headless=config.headless)

        async def make_handle() -> TargetHandle:
            backend = await PlaywrightBackend.create(browser)
            return TargetHandle(
                backend,
                viewport=config.viewport,
                base_url=config.base_url,
                navigation_timeout_ms=config.navigation_timeout_ms,
            )

        runner = ScenarioRunner(
            handle_factory=make_handle,
            config=config,
            default_mocks=script.mocks,
            before_each=script.before_each,
            tracer=tracer,
            artifacts=FailureArtifactsOptions(output_dir="artifacts"),
        )
        try:
            summary = await runner.run(script.to_scenarios())
        finally:
            tracer.close()
            await browser.close()

    print(summary.format_text())
    return summary.exit_code


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO)
    sys.exit(asyncio.run(main()))
