from __future__ import annotations

import pytest

from surfacecheck.config import EngineConfig, RetryOptions
from surfacecheck.constants import DEFAULT_POLL_INTERVAL_MS, DEFAULT_TIMEOUT_MS
from surfacecheck.models import RunSummary, ScenarioResult, Viewport


def test_defaults() -> None:
    config = EngineConfig()

    assert config.retry.timeout_ms == DEFAULT_TIMEOUT_MS == 4000
    assert config.retry.poll_interval_ms == DEFAULT_POLL_INTERVAL_MS
    assert config.max_concurrency == 1
    assert Viewport.parse(config.viewport) == Viewport(width=375, height=812, label="mobile-reference")


def test_from_env_reads_prefixed_variables() -> None:
    config = EngineConfig.from_env(
        {
            "SURFACECHECK_BASE_URL": "http://localhost:3000",
            "SURFACECHECK_TIMEOUT_MS": "1500",
            "SURFACECHECK_MAX_CONCURRENCY": "4",
            "SURFACECHECK_HEADLESS": "false",
            "SURFACECHECK_VIEWPORT": "",
            "UNRELATED": "x",
        }
    )

    assert config.base_url == "http://localhost:3000"
    assert config.retry.timeout_ms == 1500
    assert config.retry.poll_interval_ms == DEFAULT_POLL_INTERVAL_MS
    assert config.max_concurrency == 4
    assert config.headless is False
    assert config.viewport == EngineConfig().viewport


def test_merged_skips_none_and_rejects_unknown_keys() -> None:
    base = EngineConfig(base_url="http://a.test")

    assert base.merged(base_url=None).base_url == "http://a.test"
    assert base.merged(poll_interval_ms=20).retry == RetryOptions(timeout_ms=4000, poll_interval_ms=20)
    with pytest.raises(TypeError):
        base.merged(colour="blue")


def test_retry_options_validation() -> None:
    with pytest.raises(ValueError):
        RetryOptions(poll_interval_ms=0)
    with pytest.raises(ValueError):
        RetryOptions(timeout_ms=-1)
    assert RetryOptions().with_timeout(10000).timeout_ms == 10000
    assert RetryOptions().with_timeout(None) == RetryOptions()


@pytest.mark.parametrize(
    "spec, expected",
    [
        ("iphone-x", (375, 812)),
        ("IPHONE-SE", (375, 667)),
        ("390x844", (390, 844)),
        ((320, 568), (320, 568)),
        ({"width": 800, "height": 600}, (800, 600)),
    ],
)
def test_viewport_parse(spec, expected) -> None:
    vp = Viewport.parse(spec)
    assert (vp.width, vp.height) == expected


def test_viewport_parse_rejects_unknown_names() -> None:
    with pytest.raises(ValueError):
        Viewport.parse("galaxy-fold-9")


def test_run_summary_exit_code_and_text() -> None:
    summary = RunSummary(
        results=[
            ScenarioResult(name="a", outcome="passed", duration_ms=5),
            ScenarioResult(name="b", outcome="failed", duration_ms=7),
        ],
        duration_ms=12,
    )

    assert (summary.passed, summary.failed, summary.exit_code) == (1, 1, 1)
    assert summary.format_text().splitlines()[-1] == "2 scenario(s): 1 passed, 1 failed in 12ms"
    assert RunSummary().exit_code == 0
