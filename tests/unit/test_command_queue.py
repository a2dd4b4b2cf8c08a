from __future__ import annotations

import asyncio

import pytest
from pydantic import ValidationError

from surfacecheck.backends.memory import MemorySurface, h
from surfacecheck.command_queue import CommandQueue, Completed, FailedAt
from surfacecheck.config import RetryOptions
from surfacecheck.mocks import MockInjectionLayer
from surfacecheck.models import Command
from surfacecheck.retry import RetryEngine
from surfacecheck.target import TargetHandle


class MockTracer:
    def __init__(self) -> None:
        self.events: list[dict] = []

    def emit(self, event_type: str, data: dict, step_id: str | None = None) -> None:
        self.events.append({"type": event_type, "data": data, "step_id": step_id})


class FormApp:
    def __init__(self) -> None:
        self.log: list[str] = []
        self.name = ""
        self.saved = False
        self.late_button = False

    async def load(self, surface, url) -> None:
        if url.endswith("/down"):
            raise RuntimeError("HTTP 503")
        surface.spawn(self._reveal(), delay_s=0.05)

    async def _reveal(self) -> None:
        self.late_button = True

    def render(self, surface):
        return h(
            "body",
            h("button#a", text="A"),
            h("button#b", text="B"),
            h("button#late", text="Late") if self.late_button else None,
            h("input#name", value=self.name),
            h("button#submit", text="Submit"),
            h("div.toast", text="Saved") if self.saved else None,
        )

    async def handle(self, surface, event) -> None:
        target = event.target
        if event.type == "click":
            self.log.append(target.id)
            if target.id == "submit":
                surface.spawn(self._save(), delay_s=0.05)
        elif event.type == "input":
            self.name = event.detail["value"]
            self.log.append(f"input:{self.name}")
        elif target is not None:
            self.log.append(f"{event.type}:{target.id}")

    async def _save(self) -> None:
        self.saved = True


def _queue(**kwargs) -> tuple[CommandQueue, MemorySurface]:
    surface = MemorySurface(FormApp)
    target = TargetHandle(surface, base_url="http://app.test")
    engine = RetryEngine(RetryOptions(timeout_ms=1000, poll_interval_ms=10))
    return CommandQueue(target, engine=engine, **kwargs), surface


@pytest.mark.asyncio
async def test_commands_run_in_insertion_order() -> None:
    queue, surface = _queue()
    queue.enqueue({"kind": "navigate", "payload": "/"})
    queue.enqueue({"kind": "click", "locator": "button#b"})
    queue.enqueue({"kind": "click", "locator": "button#a"})
    queue.enqueue({"kind": "type", "locator": "input#name", "payload": "agent"})

    result = await queue.run()

    assert isinstance(result, Completed)
    assert result.ok
    assert result.commands_run == 4
    assert surface.app.log == ["b", "a", "input:agent"]
    assert len(queue) == 0


@pytest.mark.asyncio
async def test_assertion_waits_for_effect_of_previous_mutation() -> None:
    queue, surface = _queue()
    queue.extend(
        [
            Command(kind="navigate", payload="/"),
            Command(kind="click", locator="button#submit"),
            Command(kind="assert", assertion="visible", locator="div", text="Saved"),
        ]
    )

    result = await queue.run()

    assert result.ok
    assert surface.app.saved is True


@pytest.mark.asyncio
async def test_element_command_waits_for_its_locator() -> None:
    queue, surface = _queue()
    queue.extend(
        [
            Command(kind="navigate", payload="/"),
            Command(kind="click", locator="button#late"),
        ]
    )

    result = await queue.run()

    assert result.ok
    assert surface.app.log == ["late"]


@pytest.mark.asyncio
async def test_first_failure_abandons_remaining_commands() -> None:
    queue, surface = _queue()
    queue.extend(
        [
            Command(kind="navigate", payload="/"),
            Command(kind="assert", assertion="visible", locator="div.toast", timeout_ms=100),
            Command(kind="click", locator="button#a"),
        ]
    )

    result = await queue.run()

    assert isinstance(result, FailedAt)
    assert not result.ok
    assert result.index == 1
    assert result.commands_run == 1
    assert result.detail.reason_code == "assertion_timeout"
    assert result.detail.kind == "assert"
    assert result.detail.locator == "div.toast"
    assert result.detail.expected == "visible"
    assert result.detail.actual == "missing"
    assert result.detail.elapsed_ms >= 100
    assert surface.app.log == []
    assert queue.pending == ()


@pytest.mark.asyncio
async def test_missing_click_target_fails_at_that_command() -> None:
    queue, _ = _queue()
    queue.extend(
        [
            Command(kind="navigate", payload="/"),
            Command(kind="click", locator="button", text="Checkout", timeout_ms=50),
        ]
    )

    result = await queue.run()

    assert isinstance(result, FailedAt)
    assert result.index == 1
    assert result.detail.kind == "click"
    assert result.detail.locator == "button text~'Checkout'"


@pytest.mark.asyncio
async def test_navigation_failure_is_reported_with_url() -> None:
    queue, _ = _queue()
    queue.enqueue(Command(kind="navigate", payload="/down"))

    result = await queue.run()

    assert isinstance(result, FailedAt)
    assert result.detail.reason_code == "navigation_failed"
    assert result.detail.expected == "http://app.test/down"


@pytest.mark.asyncio
async def test_unexpected_error_is_captured_not_raised() -> None:
    queue, _ = _queue()
    queue.extend(
        [
            Command(kind="navigate", payload="/"),
            Command(kind="trigger", locator="button#a", payload=42),
        ]
    )

    result = await queue.run()

    assert isinstance(result, FailedAt)
    assert result.detail.reason_code == "unexpected_error"
    assert isinstance(result.error, ValueError)


@pytest.mark.asyncio
async def test_trigger_accepts_event_name_or_mapping() -> None:
    queue, surface = _queue()
    queue.extend(
        [
            Command(kind="navigate", payload="/"),
            Command(kind="trigger", locator="button#a", payload="focus"),
            Command(kind="trigger", locator="button#b", payload={"type": "blur", "detail": {"x": 1}}),
        ]
    )

    result = await queue.run()

    assert result.ok
    assert surface.app.log == ["focus:a", "blur:b"]


@pytest.mark.asyncio
async def test_swipe_is_a_single_command() -> None:
    queue, surface = _queue()
    queue.extend([Command(kind="navigate", payload="/"), Command(kind="swipe", locator="body")])

    result = await queue.run()

    assert result.ok
    assert result.commands_run == 2
    assert [e.type for e in surface.events] == ["touchstart", "touchmove", "touchend"]


@pytest.mark.asyncio
async def test_mock_command_requires_layer() -> None:
    queue, _ = _queue()
    queue.enqueue(Command(kind="mock", payload={"capability": "phantom.solana", "behaviors": {}}))

    result = await queue.run()

    assert isinstance(result, FailedAt)
    assert result.detail.reason_code == "mock_configuration"


@pytest.mark.asyncio
async def test_mock_command_installs_on_target() -> None:
    surface = MemorySurface(FormApp)
    target = TargetHandle(surface, base_url="http://app.test")
    layer = MockInjectionLayer(target)
    queue = CommandQueue(target, mocks=layer)
    queue.enqueue(
        Command(
            kind="mock",
            payload={"capability": "phantom.solana", "behaviors": {"connect": {"rejects_with": "no"}}},
        )
    )

    result = await queue.run()

    assert result.ok
    assert surface.capability("phantom.solana") is layer.get("phantom.solana")


@pytest.mark.asyncio
async def test_viewport_and_wait_commands() -> None:
    queue, surface = _queue()
    queue.extend(
        [
            Command(kind="viewport", payload="375x667"),
            Command(kind="wait", payload={"ms": 10}),
        ]
    )

    result = await queue.run()

    assert result.ok
    assert (surface.viewport.width, surface.viewport.height) == (375, 667)


@pytest.mark.asyncio
async def test_run_cannot_be_reentered() -> None:
    queue, _ = _queue()
    queue.enqueue(Command(kind="wait", payload={"ms": 50}))

    task = asyncio.create_task(queue.run())
    await asyncio.sleep(0)
    with pytest.raises(RuntimeError):
        await queue.run()

    assert (await task).ok


@pytest.mark.asyncio
async def test_command_events_are_traced() -> None:
    tracer = MockTracer()
    queue, _ = _queue(tracer=tracer, step_id="s1")
    queue.extend([Command(kind="navigate", payload="/"), Command(kind="click", locator="button#a")])

    await queue.run()

    commands = [e for e in tracer.events if e["type"] == "command"]
    assert [e["data"]["kind"] for e in commands] == ["navigate", "click"]
    assert all(e["step_id"] == "s1" for e in commands)
    assert all(e["data"]["status"] == "ok" for e in commands)


def test_commands_are_immutable_and_validated() -> None:
    cmd = Command(kind="click", locator="button#a")
    with pytest.raises(ValidationError):
        cmd.locator = "button#b"

    with pytest.raises(ValidationError):
        Command(kind="click")
    with pytest.raises(ValidationError):
        Command(kind="assert", assertion="css", locator=".x", expected="1fr")
    with pytest.raises(ValidationError):
        Command(kind="navigate")
    with pytest.raises(ValidationError):
        Command(kind="assert", assertion="visible", locator=".x", timeout_ms=0)


@pytest.mark.parametrize(
    "fields",
    [
        {"assertion": "text", "locator": "button"},
        {"assertion": "value", "locator": "input#q"},
        {"assertion": "css", "locator": ".x", "property": "display"},
        {"assertion": "count", "locator": "li"},
        {"assertion": "count_gt", "locator": "li"},
        {"assertion": "url_includes"},
        {"assertion": "count", "locator": "li", "expected": "3"},
        {"assertion": "count_gt", "locator": "li", "expected": True},
    ],
)
def test_value_assertions_require_an_expected_value(fields) -> None:
    with pytest.raises(ValidationError):
        Command(kind="assert", **fields)


def test_value_assertions_accept_matching_expected_types() -> None:
    assert Command(kind="assert", assertion="count", locator="li", expected=0).expected == 0
    assert Command(kind="assert", assertion="url_includes", expected="/orders").locator is None
