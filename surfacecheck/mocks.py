"""
Scenario-scoped mock injection.

A MockInjectionLayer replaces named external capabilities (e.g. the wallet
provider ``phantom.solana``) on a TargetHandle with scriptable stand-ins.
Behaviors are looked up at call time, so re-installing a table mid-scenario
changes every later call, including calls made through references the page
already holds.

    layer = MockInjectionLayer(target)
    await layer.install("phantom.solana", {"connect": RejectsWith("Wallet connection failed")})
    ...
    await layer.restore_all()
"""

from __future__ import annotations

import inspect
import logging
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from .exceptions import MockConfigurationError

if TYPE_CHECKING:
    from .target import TargetHandle

logger = logging.getLogger(__name__)

DEFAULT_WALLET_ADDRESS = "mockWalletAddress123"


@dataclass(frozen=True)
class ResolvesWith:
    value: Any = None


@dataclass(frozen=True)
class RejectsWith:
    message: str


@dataclass(frozen=True)
class DelegatesTo:
    fn: Callable[..., Any]


Behavior = ResolvesWith | RejectsWith | DelegatesTo


class MockRejection(Exception):
    """Raised to the caller of a mocked method configured with RejectsWith."""


@dataclass(frozen=True)
class CapabilitySchema:
    """Known methods of a capability plus the behavior each has when not overridden."""

    name: str
    methods: frozenset[str]
    defaults: Mapping[str, Behavior] = field(default_factory=dict)
    attributes: Mapping[str, Any] = field(default_factory=dict)


WALLET_PROVIDER = CapabilitySchema(
    name="phantom.solana",
    methods=frozenset({"connect", "disconnect", "signTransaction", "signMessage"}),
    defaults={
        "connect": ResolvesWith({"publicKey": DEFAULT_WALLET_ADDRESS}),
        "disconnect": ResolvesWith(None),
        "signTransaction": ResolvesWith({"signature": "mockSignature"}),
        "signMessage": ResolvesWith({"signature": "mockSignature"}),
    },
    attributes={"isPhantom": True},
)

DEFAULT_REGISTRY: dict[str, CapabilitySchema] = {WALLET_PROVIDER.name: WALLET_PROVIDER}


@dataclass
class MockCall:
    method: str
    args: tuple[Any, ...]
    outcome: str  # "resolved" | "rejected"
    value: Any = None


def parse_behavior(raw: Any) -> Behavior:
    """
    Accept a Behavior or its table form: {"resolves_with": v} | {"rejects_with": "msg"}.
    """
    if isinstance(raw, (ResolvesWith, RejectsWith, DelegatesTo)):
        return raw
    if isinstance(raw, Mapping) and len(raw) == 1:
        ((key, value),) = raw.items()
        key = str(key).replace("-", "_").lower()
        if key in {"resolves_with", "resolveswith", "resolves"}:
            return ResolvesWith(value)
        if key in {"rejects_with", "rejectswith", "rejects"}:
            if not isinstance(value, str):
                raise MockConfigurationError("rejects_with takes an error message string")
            return RejectsWith(value)
    raise MockConfigurationError(f"Unrecognized behavior descriptor: {raw!r}")


def behaviors_from_table(table: Mapping[str, Any]) -> dict[str, dict[str, Behavior]]:
    """Parse ``{capability: {method: descriptor}}``."""
    if not isinstance(table, Mapping):
        raise MockConfigurationError("Mock table must be a mapping of capability -> methods")
    out: dict[str, dict[str, Behavior]] = {}
    for capability, methods in table.items():
        if not isinstance(methods, Mapping):
            raise MockConfigurationError(f"Behaviors for {capability!r} must be a mapping")
        out[str(capability)] = {str(m): parse_behavior(b) for m, b in methods.items()}
    return out


class MockCapability:
    """
    Stand-in object injected on the surface. ``await mock.connect()`` resolves or
    raises per the layer's current behavior table.
    """

    def __init__(self, layer: MockInjectionLayer, schema: CapabilitySchema) -> None:
        self._layer = layer
        self._schema = schema
        self.calls: list[MockCall] = []

    @property
    def name(self) -> str:
        return self._schema.name

    @property
    def methods(self) -> frozenset[str]:
        return self._schema.methods

    @property
    def attributes(self) -> dict[str, Any]:
        return dict(self._schema.attributes)

    def __getattr__(self, item: str) -> Any:
        schema = self.__dict__.get("_schema")
        if schema is None:
            raise AttributeError(item)
        if item in schema.methods:

            async def _bound(*args: Any) -> Any:
                return await self.call(item, *args)

            return _bound
        if item in schema.attributes:
            return schema.attributes[item]
        raise AttributeError(f"{schema.name} has no member {item!r}")

    async def call(self, method: str, *args: Any) -> Any:
        if method not in self._schema.methods:
            raise AttributeError(f"{self.name} has no method {method!r}")
        behavior = self._layer.behavior_for(self.name, method)
        if isinstance(behavior, RejectsWith):
            self.calls.append(MockCall(method, args, "rejected", behavior.message))
            logger.debug("%s.%s rejects: %s", self.name, method, behavior.message)
            raise MockRejection(behavior.message)
        if isinstance(behavior, DelegatesTo):
            value = behavior.fn(*args)
            if inspect.isawaitable(value):
                value = await value
        else:
            value = behavior.value
        self.calls.append(MockCall(method, args, "resolved", value))
        return value

    def calls_to(self, method: str) -> list[MockCall]:
        return [c for c in self.calls if c.method == method]


class MockInjectionLayer:
    """
    Owns the installed mocks of one scenario. Never shared across scenarios.
    """

    def __init__(
        self,
        target: TargetHandle | None = None,
        registry: Mapping[str, CapabilitySchema] | None = None,
    ) -> None:
        self.target = target
        self.registry = dict(DEFAULT_REGISTRY if registry is None else registry)
        self._tables: dict[str, dict[str, Behavior]] = {}
        self._mocks: dict[str, MockCapability] = {}

    @property
    def installed(self) -> list[str]:
        return list(self._mocks)

    def get(self, name: str) -> MockCapability | None:
        return self._mocks.get(name)

    def validate(self, name: str, behaviors: Mapping[str, Any]) -> dict[str, Behavior]:
        schema = self.registry.get(name)
        if schema is None:
            raise MockConfigurationError(
                f"Unknown capability {name!r}; known: {sorted(self.registry)}"
            )
        if not isinstance(behaviors, Mapping):
            raise MockConfigurationError(f"Behaviors for {name!r} must be a mapping")
        table: dict[str, Behavior] = {}
        for method, raw in behaviors.items():
            if method not in schema.methods:
                raise MockConfigurationError(
                    f"Unknown method {name}.{method}; known: {sorted(schema.methods)}"
                )
            table[method] = parse_behavior(raw)
        return table

    async def install(self, name: str, behaviors: Mapping[str, Any] | None = None) -> MockCapability:
        """
        Install (or re-install) ``name``. Re-installing replaces the behavior table
        but keeps the injected object, so holders of the old reference see the change.
        """
        table = self.validate(name, behaviors or {})
        self._tables[name] = table
        mock = self._mocks.get(name)
        if mock is None:
            mock = MockCapability(self, self.registry[name])
            self._mocks[name] = mock
            if self.target is not None:
                await self.target.install_capability(name, mock)
            logger.debug("installed mock %s (%s)", name, ", ".join(sorted(table)) or "defaults")
        else:
            logger.debug("re-installed mock %s (%s)", name, ", ".join(sorted(table)) or "defaults")
        return mock

    async def restore(self, name: str) -> None:
        self._tables.pop(name, None)
        if self._mocks.pop(name, None) is not None and self.target is not None:
            await self.target.remove_capability(name)

    async def restore_all(self) -> None:
        for name in list(self._mocks):
            await self.restore(name)

    def behavior_for(self, name: str, method: str) -> Behavior:
        table = self._tables.get(name)
        if table is None:
            raise MockRejection(f"{name} is not installed")
        behavior = table.get(method)
        if behavior is None:
            behavior = self.registry[name].defaults.get(method, ResolvesWith(None))
        return behavior
