"""
Serial command queue.

Commands run strictly in insertion order, one at a time, against a single
TargetHandle. Command n+1 never starts before command n has fully resolved,
including any retry loop it embeds. The first failure abandons the rest of
the queue and is reported as FailedAt.

Element-targeting commands (find/click/type/trigger/swipe) first wait for
their locator to match, then act on the first match. Mutations report success
as soon as the simulated event is dispatched; later assertion commands carry
the burden of waiting for its effects.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections import deque
from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from .exceptions import (
    AssertionTimeout,
    MockConfigurationError,
    NavigationError,
    SurfaceCheckError,
    TargetUnavailable,
)
from .models import Command, FailureDetail
from .retry import RetryEngine
from .target import ElementRef, Locator
from .verification import build_predicate, exists

if TYPE_CHECKING:
    from .failure_artifacts import FailureArtifactBuffer
    from .mocks import MockInjectionLayer
    from .target import TargetHandle
    from .tracing import Tracer

logger = logging.getLogger(__name__)

DEFAULT_SWIPE = {"from": [300, 200], "to": [100, 200]}


@dataclass(frozen=True)
class Completed:
    commands_run: int

    @property
    def ok(self) -> bool:
        return True


@dataclass(frozen=True)
class FailedAt:
    index: int
    reason: str
    detail: FailureDetail
    error: BaseException | None = None
    commands_run: int = 0

    @property
    def ok(self) -> bool:
        return False


QueueResult = Completed | FailedAt


class CommandQueue:
    def __init__(
        self,
        target: TargetHandle,
        *,
        engine: RetryEngine | None = None,
        mocks: MockInjectionLayer | None = None,
        tracer: Tracer | None = None,
        artifacts: FailureArtifactBuffer | None = None,
        step_id: str | None = None,
    ) -> None:
        self.target = target
        self.engine = engine or RetryEngine()
        self.mocks = mocks
        self.tracer = tracer
        self.artifacts = artifacts
        self.step_id = step_id
        self._pending: deque[tuple[int, Command]] = deque()
        self._next_index = 0
        self._running = False

    def __len__(self) -> int:
        return len(self._pending)

    @property
    def pending(self) -> tuple[Command, ...]:
        return tuple(cmd for _, cmd in self._pending)

    def enqueue(self, command: Command | Mapping[str, Any]) -> CommandQueue:
        if not isinstance(command, Command):
            command = Command.model_validate(command)
        self._pending.append((self._next_index, command))
        self._next_index += 1
        return self

    def extend(self, commands: Iterable[Command | Mapping[str, Any]]) -> CommandQueue:
        for command in commands:
            self.enqueue(command)
        return self

    async def run(self) -> QueueResult:
        """Drain pending commands in FIFO order until done or the first failure."""
        if self._running:
            raise RuntimeError("CommandQueue is already running")
        self._running = True
        ran = 0
        try:
            while self._pending:
                index, command = self._pending.popleft()
                start = time.monotonic()
                try:
                    await self._execute(command)
                except Exception as e:
                    elapsed = int((time.monotonic() - start) * 1000)
                    abandoned = len(self._pending)
                    self._pending.clear()
                    failed = self._failure(index, command, e, elapsed, ran)
                    self._record(index, command, "failed", elapsed, failed.reason)
                    logger.warning(
                        "command #%d %s failed after %dms: %s (%d abandoned)",
                        index,
                        command.describe(),
                        elapsed,
                        failed.reason,
                        abandoned,
                    )
                    return failed
                elapsed = int((time.monotonic() - start) * 1000)
                ran += 1
                self._record(index, command, "ok", elapsed, None)
            return Completed(commands_run=ran)
        finally:
            self._running = False

    async def _execute(self, command: Command) -> None:
        kind = command.kind
        logger.debug("run %s", command.describe())
        if kind == "navigate":
            await self.target.navigate(command.payload, timeout_ms=command.timeout_ms)
        elif kind == "reload":
            await self.target.reload(timeout_ms=command.timeout_ms)
        elif kind == "find":
            await self._resolve(command)
        elif kind == "click":
            ref = await self._resolve(command)
            await self.target.mutate(ref, "click", command.payload)
        elif kind == "type":
            ref = await self._resolve(command)
            await self.target.mutate(ref, "type", command.payload)
        elif kind == "trigger":
            ref = await self._resolve(command)
            payload = command.payload
            if isinstance(payload, str):
                payload = {"type": payload}
            if not isinstance(payload, Mapping) or "type" not in payload:
                raise ValueError("trigger command requires an event type payload")
            await self.target.mutate(ref, "trigger", dict(payload))
        elif kind == "swipe":
            ref = await self._resolve(command)
            await self.target.mutate(ref, "swipe", dict(command.payload or DEFAULT_SWIPE))
        elif kind == "scroll":
            await self.target.scroll(command.payload or "bottom")
        elif kind == "assert":
            predicate = build_predicate(command)
            result = await self.engine.wait_for(predicate, self.target, timeout_ms=command.timeout_ms)
            if not result.satisfied:
                raise AssertionTimeout(predicate.label, result)
        elif kind == "viewport":
            await self.target.set_viewport(command.payload)
        elif kind == "mock":
            if self.mocks is None:
                raise MockConfigurationError("mock command needs a MockInjectionLayer")
            await self.mocks.install(command.payload["capability"], command.payload.get("behaviors") or {})
        elif kind == "wait":
            payload = command.payload
            ms = payload.get("ms", 0) if isinstance(payload, Mapping) else payload
            await asyncio.sleep(max(0.0, float(ms or 0)) / 1000.0)
        else:  # pragma: no cover - guarded by the Command model
            raise ValueError(f"Unsupported command kind {kind!r}")

    async def _resolve(self, command: Command) -> ElementRef:
        loc = Locator(selector=command.locator or "", text=command.text, index=command.index)
        predicate = exists(loc)
        result = await self.engine.wait_for(predicate, self.target, timeout_ms=command.timeout_ms)
        if not result.satisfied:
            raise AssertionTimeout(predicate.label, result)
        refs = await self.target.query(loc)
        if not refs:
            raise TargetUnavailable(loc)
        return refs[0]

    def _failure(
        self, index: int, command: Command, error: Exception, elapsed_ms: int, ran: int
    ) -> FailedAt:
        locator = str(Locator(command.locator, command.text, command.index)) if command.locator else None
        expected = command.expected
        actual = None
        if isinstance(error, AssertionTimeout):
            last = error.result.last
            if last is not None:
                expected, actual = last.expected, last.actual
            elapsed_ms = error.result.elapsed_ms
        elif isinstance(error, TargetUnavailable):
            locator = str(error.locator)
        elif isinstance(error, NavigationError):
            expected = error.url
            if error.elapsed_ms is not None:
                elapsed_ms = error.elapsed_ms

        if isinstance(error, SurfaceCheckError):
            reason_code = error.reason_code
        else:
            reason_code = "unexpected_error"
            logger.error("unexpected error in %s", command.describe(), exc_info=error)

        reason = str(error) or type(error).__name__
        detail = FailureDetail(
            command_index=index,
            kind=command.kind,
            reason_code=reason_code,
            reason=reason,
            locator=locator,
            expected=expected,
            actual=actual,
            elapsed_ms=elapsed_ms,
        )
        return FailedAt(index=index, reason=reason, detail=detail, error=error, commands_run=ran)

    def _record(
        self, index: int, command: Command, status: str, elapsed_ms: int, reason: str | None
    ) -> None:
        if self.artifacts is not None:
            self.artifacts.record_step(
                index=index,
                kind=command.kind,
                description=command.describe(),
                status="ok" if status == "ok" else "failed",
                url=self.target.location,
                locator=command.locator,
                payload=command.payload,
                elapsed_ms=elapsed_ms,
            )
        if self.tracer is not None:
            self.tracer.emit(
                "command",
                data={
                    "index": index,
                    "kind": command.kind,
                    "description": command.describe(),
                    "status": status,
                    "elapsed_ms": elapsed_ms,
                    "reason": reason,
                },
                step_id=self.step_id,
            )
