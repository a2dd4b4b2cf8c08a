"""
Target handle: the engine's stateful reference to one live UI surface.

Queries never wait for rendering to settle; waiting is the retry engine's job.
Mutations are fire-and-forget once the simulated event has been dispatched.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field, replace
from typing import TYPE_CHECKING, Any
from urllib.parse import urljoin

from .constants import DEFAULT_NAVIGATION_TIMEOUT_MS, DEFAULT_VIEWPORT
from .exceptions import NavigationError, TargetUnavailable
from .models import Viewport

if TYPE_CHECKING:
    from .backends.protocol import MutationAction, ScrollPosition, SurfaceBackend

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Locator:
    """Selector expression plus optional text filter and positional pick."""

    selector: str
    text: str | None = None
    index: int | None = None

    @classmethod
    def parse(cls, value: Locator | str, *, text: str | None = None, index: int | None = None) -> Locator:
        if isinstance(value, Locator):
            return value
        return cls(selector=value, text=text, index=index)

    def __str__(self) -> str:
        out = self.selector
        if self.text is not None:
            out += f" text~{self.text!r}"
        if self.index is not None:
            out += f" [{self.index}]"
        return out


@dataclass(frozen=True)
class ElementRef:
    """
    Opaque reference to one element, with a point-in-time view of its state.

    ``key`` identifies the element within the backend; a ref whose key is no
    longer attached is stale.
    """

    key: str
    tag: str
    text: str = ""
    visible: bool = True
    value: str | None = None
    attrs: dict[str, str] = field(default_factory=dict)
    style: dict[str, str] = field(default_factory=dict)
    locator: Locator | None = None
    handle: Any = field(default=None, compare=False, repr=False)


class TargetHandle:
    """
    Reference to one live surface: location, viewport and injected capabilities.

    A handle belongs to a single scenario at a time; reset() returns it to a
    clean state between scenarios.
    """

    def __init__(
        self,
        backend: SurfaceBackend,
        *,
        viewport: Viewport | str = DEFAULT_VIEWPORT,
        base_url: str | None = None,
        navigation_timeout_ms: int = DEFAULT_NAVIGATION_TIMEOUT_MS,
    ) -> None:
        self.backend = backend
        self.base_url = base_url
        self.navigation_timeout_ms = navigation_timeout_ms
        self._default_viewport = Viewport.parse(viewport)
        self._viewport = self._default_viewport
        self._location: str | None = None
        self._capabilities: dict[str, Any] = {}

    @property
    def location(self) -> str | None:
        """Last known location (refreshed on navigate/current_url)."""
        return self._location

    @property
    def viewport(self) -> Viewport:
        return self._viewport

    @property
    def capabilities(self) -> dict[str, Any]:
        return dict(self._capabilities)

    def resolve_url(self, url: str) -> str:
        if self.base_url and "://" not in url:
            return urljoin(self.base_url.rstrip("/") + "/", url.lstrip("/"))
        return url

    async def navigate(self, url: str, timeout_ms: int | None = None) -> str:
        target = self.resolve_url(url)
        bound = int(timeout_ms or self.navigation_timeout_ms)
        start = time.monotonic()
        logger.debug("navigate %s (bound %dms)", target, bound)
        try:
            await asyncio.wait_for(self.backend.navigate(target, bound), timeout=bound / 1000.0)
        except NavigationError:
            raise
        except asyncio.TimeoutError as e:
            elapsed = int((time.monotonic() - start) * 1000)
            raise NavigationError(
                target, f"Surface did not load {target} within {bound}ms", elapsed_ms=elapsed
            ) from e
        self._location = await self.backend.current_url()
        return self._location

    async def reload(self, timeout_ms: int | None = None) -> str:
        current = await self.current_url()
        if not current or current == "about:blank":
            raise NavigationError("", "Cannot reload: nothing has been loaded yet")
        return await self.navigate(current, timeout_ms=timeout_ms)

    async def current_url(self) -> str:
        self._location = await self.backend.current_url()
        return self._location

    async def query(self, locator: Locator | str) -> list[ElementRef]:
        loc = Locator.parse(locator)
        refs = await self.backend.query(loc.selector, loc.text)
        refs = [_with_locator(r, loc) for r in refs]
        if loc.index is None:
            return refs
        try:
            return [refs[loc.index]]
        except IndexError:
            return []

    async def mutate(self, ref: ElementRef, action: MutationAction, payload: Any = None) -> None:
        if not await self.backend.is_attached(ref):
            raise TargetUnavailable(ref.locator or ref.key)
        logger.debug("%s on %s", action, ref.locator or ref.key)
        await self.backend.dispatch(ref, action, payload)

    async def scroll(self, position: ScrollPosition) -> None:
        await self.backend.scroll(position)

    async def set_viewport(self, viewport: Viewport | str) -> Viewport:
        vp = Viewport.parse(viewport)
        await self.backend.set_viewport(vp)
        self._viewport = vp
        return vp

    async def install_capability(self, name: str, capability: Any) -> None:
        self._capabilities[name] = capability
        await self.backend.inject_capability(name, capability)

    async def remove_capability(self, name: str) -> None:
        if self._capabilities.pop(name, None) is not None:
            await self.backend.remove_capability(name)

    async def reset(self, viewport: Viewport | str | None = None) -> None:
        """Reset navigation, capabilities and viewport."""
        await self.backend.reset()
        self._capabilities.clear()
        self._location = None
        await self.set_viewport(viewport if viewport is not None else self._default_viewport)

    async def screenshot(self) -> bytes | None:
        try:
            return await self.backend.screenshot_png()
        except Exception as e:  # pragma: no cover - backend specific
            logger.warning("screenshot failed: %s", e)
            return None

    async def close(self) -> None:
        self._capabilities.clear()
        await self.backend.close()


def _with_locator(ref: ElementRef, locator: Locator) -> ElementRef:
    if ref.locator == locator:
        return ref
    return replace(ref, locator=locator)
