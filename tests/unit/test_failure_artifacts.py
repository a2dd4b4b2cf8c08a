from __future__ import annotations

import json

from surfacecheck.failure_artifacts import FailureArtifactBuffer, FailureArtifactsOptions


def _buffer(tmp_path, **options) -> FailureArtifactBuffer:
    now = {"t": 10.0}

    def time_fn() -> float:
        return now["t"]

    opts = FailureArtifactsOptions(output_dir=str(tmp_path), **options)
    return FailureArtifactBuffer(run_id="run-1", scenario="purchase flow", options=opts, time_fn=time_fn)


def test_persist_writes_manifest_steps_and_screenshot(tmp_path) -> None:
    buf = _buffer(tmp_path)
    buf.record_step(index=0, kind="navigate", description="navigate '/'", status="ok", url="http://app.test/")
    buf.record_step(
        index=1,
        kind="assert",
        description="assert visible div",
        status="failed",
        locator="div",
        elapsed_ms=4000,
    )

    run_dir = buf.persist(
        reason="Timed out",
        status="failure",
        failure={"reason_code": "assertion_timeout"},
        screenshot=b"png-bytes",
        metadata={"url": "http://app.test/"},
    )

    assert run_dir is not None
    assert run_dir.parent == tmp_path
    assert run_dir.name == "run-1-purchase-flow-10000"
    manifest = json.loads((run_dir / "manifest.json").read_text())
    steps = json.loads((run_dir / "steps.json").read_text())
    assert manifest["status"] == "failure"
    assert manifest["reason"] == "Timed out"
    assert manifest["step_count"] == 2
    assert manifest["screenshot"] == "screenshot.png"
    assert manifest["metadata"] == {"url": "http://app.test/"}
    assert (run_dir / "screenshot.png").read_bytes() == b"png-bytes"
    assert [s["kind"] for s in steps] == ["navigate", "assert"]
    assert not list(run_dir.glob("*.tmp"))


def test_persist_is_one_shot(tmp_path) -> None:
    buf = _buffer(tmp_path)

    assert buf.persist(reason=None, status="success") is not None
    assert buf.persist(reason=None, status="success") is None


def test_sensitive_typed_text_is_redacted(tmp_path) -> None:
    buf = _buffer(tmp_path)
    buf.record_step(
        index=0,
        kind="type",
        description="type input#seed-phrase 'word word'",
        status="ok",
        locator="input#seed-phrase",
        payload="word word",
    )
    buf.record_step(index=1, kind="type", description="type input#name 'x'", status="ok", locator="input#name", payload="x")

    secret, plain = buf.steps
    assert secret["payload"] == "***"
    assert "word" not in secret["description"]
    assert plain["payload"] == "x"


def test_steps_are_bounded(tmp_path) -> None:
    buf = _buffer(tmp_path, max_steps=3)
    for i in range(5):
        buf.record_step(index=i, kind="click", description=f"click {i}", status="ok")

    assert [s["index"] for s in buf.steps] == [2, 3, 4]


def test_should_persist_respects_mode(tmp_path) -> None:
    on_fail = _buffer(tmp_path)
    always = _buffer(tmp_path, persist_mode="always")

    assert on_fail.should_persist(failed=True)
    assert not on_fail.should_persist(failed=False)
    assert always.should_persist(failed=False)
