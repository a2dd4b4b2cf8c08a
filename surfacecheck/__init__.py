"""
surfacecheck - command queue and retry-assertion engine for asynchronously
rendering UI surfaces.
"""

from .command_queue import CommandQueue, Completed, FailedAt
from .config import EngineConfig, RetryOptions
from .exceptions import (
    AssertionTimeout,
    MockConfigurationError,
    NavigationError,
    ScriptError,
    SurfaceCheckError,
    TargetUnavailable,
)
from .mocks import (
    CapabilitySchema,
    DelegatesTo,
    MockCapability,
    MockInjectionLayer,
    MockRejection,
    RejectsWith,
    ResolvesWith,
)
from .models import Command, FailureDetail, RunSummary, ScenarioResult, Viewport
from .retry import AssertionState, RetryEngine, WaitResult, wait_for
from .runner import Scenario, ScenarioRunner
from .script import ScenarioScript, load_script, parse_script
from .target import ElementRef, Locator, TargetHandle
from .tracing import JsonlTraceSink, Tracer

__version__ = "0.1.0"

__all__ = [
    "AssertionState",
    "AssertionTimeout",
    "CapabilitySchema",
    "Command",
    "CommandQueue",
    "Completed",
    "DelegatesTo",
    "ElementRef",
    "EngineConfig",
    "FailedAt",
    "FailureDetail",
    "JsonlTraceSink",
    "Locator",
    "MockCapability",
    "MockConfigurationError",
    "MockInjectionLayer",
    "MockRejection",
    "NavigationError",
    "RejectsWith",
    "ResolvesWith",
    "RetryEngine",
    "RetryOptions",
    "RunSummary",
    "Scenario",
    "ScenarioResult",
    "ScenarioRunner",
    "ScenarioScript",
    "ScriptError",
    "SurfaceCheckError",
    "TargetHandle",
    "TargetUnavailable",
    "Tracer",
    "Viewport",
    "WaitResult",
    "load_script",
    "parse_script",
    "wait_for",
]
