"""
Retry-assertion engine.

``wait_for`` evaluates a predicate immediately and then every poll interval until
it holds or the timeout elapses. The sleep before the last attempt is clamped to
the time remaining, so the final evaluation always lands at or after the
deadline: a predicate that becomes true exactly at the deadline is satisfied.

Between polls control yields to the event loop so the surface keeps rendering.
A timeout cancels only the wait; late transitions of the predicate are ignored.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING

from .config import RetryOptions
from .exceptions import TargetUnavailable
from .verification import AssertOutcome, Predicate

if TYPE_CHECKING:
    from .target import TargetHandle
    from .tracing import Tracer

logger = logging.getLogger(__name__)

Clock = Callable[[], float]
Sleep = Callable[[float], Awaitable[None]]


class AssertionState(str, Enum):
    PENDING = "pending"
    SATISFIED = "satisfied"
    TIMED_OUT = "timed_out"


@dataclass
class WaitResult:
    state: AssertionState
    label: str
    attempts: int
    elapsed_ms: int
    timeout_ms: int
    last: AssertOutcome | None = None

    @property
    def satisfied(self) -> bool:
        return self.state is AssertionState.SATISFIED


class RetryEngine:
    """
    Bounded polling of predicates against one TargetHandle.

    ``clock`` (seconds, monotonic) and ``sleep`` are injectable so timing
    properties can be tested without wall-clock waits.
    """

    def __init__(
        self,
        options: RetryOptions | None = None,
        *,
        clock: Clock = time.monotonic,
        sleep: Sleep = asyncio.sleep,
        tracer: Tracer | None = None,
    ) -> None:
        self.options = options or RetryOptions()
        self._clock = clock
        self._sleep = sleep
        self.tracer = tracer

    async def wait_for(
        self,
        predicate: Predicate,
        target: TargetHandle,
        *,
        timeout_ms: int | None = None,
        poll_interval_ms: int | None = None,
    ) -> WaitResult:
        timeout = self.options.with_timeout(timeout_ms).timeout_ms
        poll = self.options.poll_interval_ms if poll_interval_ms is None else int(poll_interval_ms)
        if poll <= 0:
            raise ValueError("poll_interval_ms must be > 0")

        start = self._clock()
        deadline = start + timeout / 1000.0
        attempt = 0
        last: AssertOutcome | None = None

        while True:
            attempt += 1
            try:
                last = await predicate(target)
            except TargetUnavailable as e:
                # Element detached between query and read; re-query next attempt.
                last = AssertOutcome(
                    passed=False,
                    reason=str(e),
                    expected=last.expected if last else None,
                    actual="detached",
                    details={"reason_code": e.reason_code},
                )
            now = self._clock()
            logger.debug("%s attempt %d passed=%s", predicate.label, attempt, last.passed)

            if last.passed:
                return self._finish(AssertionState.SATISFIED, predicate, attempt, start, now, timeout, last)
            if now >= deadline:
                return self._finish(AssertionState.TIMED_OUT, predicate, attempt, start, now, timeout, last)

            await self._sleep(min(poll / 1000.0, deadline - now))

    def _finish(
        self,
        state: AssertionState,
        predicate: Predicate,
        attempts: int,
        start: float,
        now: float,
        timeout_ms: int,
        last: AssertOutcome,
    ) -> WaitResult:
        result = WaitResult(
            state=state,
            label=predicate.label,
            attempts=attempts,
            elapsed_ms=int(round((now - start) * 1000)),
            timeout_ms=timeout_ms,
            last=last,
        )
        if state is AssertionState.TIMED_OUT:
            logger.info(
                "%s timed out after %dms (%d attempts): expected=%r actual=%r",
                predicate.label,
                result.elapsed_ms,
                attempts,
                last.expected,
                last.actual,
            )
        if self.tracer is not None:
            self.tracer.emit(
                "verification",
                data={
                    "label": predicate.label,
                    "state": state.value,
                    "passed": state is AssertionState.SATISFIED,
                    "attempts": attempts,
                    "elapsed_ms": result.elapsed_ms,
                    "timeout_ms": timeout_ms,
                    "expected": last.expected,
                    "actual": last.actual,
                    "reason": last.reason,
                },
            )
        return result


async def wait_for(
    predicate: Predicate,
    target: TargetHandle,
    *,
    timeout_ms: int | None = None,
    poll_interval_ms: int | None = None,
) -> WaitResult:
    """Module-level convenience using default RetryOptions."""
    return await RetryEngine().wait_for(
        predicate, target, timeout_ms=timeout_ms, poll_interval_ms=poll_interval_ms
    )
