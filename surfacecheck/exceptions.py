"""
Error taxonomy for surfacecheck.

Every error carries a stable ``reason_code`` so run output and traces can be
filtered without parsing messages.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from .retry import WaitResult


class SurfaceCheckError(RuntimeError):
    reason_code = "surfacecheck_error"

    def __init__(self, message: str, *, reason_code: str | None = None) -> None:
        super().__init__(message)
        if reason_code is not None:
            self.reason_code = reason_code


class NavigationError(SurfaceCheckError):
    """The surface did not reach a loaded state within the navigation bound."""

    reason_code = "navigation_failed"

    def __init__(self, url: str, message: str, *, elapsed_ms: int | None = None) -> None:
        super().__init__(message)
        self.url = url
        self.elapsed_ms = elapsed_ms


class TargetUnavailable(SurfaceCheckError):
    """An element reference went stale (removed from the live surface)."""

    reason_code = "target_unavailable"

    def __init__(self, locator: Any, message: str | None = None) -> None:
        super().__init__(message or f"Element is no longer attached: {locator}")
        self.locator = locator


class AssertionTimeout(SurfaceCheckError):
    """A predicate never held within its timeout."""

    reason_code = "assertion_timeout"

    def __init__(self, label: str, result: WaitResult) -> None:
        last = result.last
        detail = f" (expected {last.expected!r}, actual {last.actual!r})" if last else ""
        super().__init__(f"Timed out after {result.elapsed_ms}ms waiting for {label}{detail}")
        self.label = label
        self.result = result


class MockConfigurationError(SurfaceCheckError):
    """A behavior table references an unknown capability/method or is malformed."""

    reason_code = "mock_configuration"


class ScriptError(SurfaceCheckError):
    """A scenario script could not be parsed or validated."""

    reason_code = "invalid_script"
