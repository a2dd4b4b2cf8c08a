"""
Surface backend protocol.

A backend is the only layer that talks to a concrete rendering surface. The
TargetHandle builds navigation bounds, staleness checks and capability
bookkeeping on top of it.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Literal, Protocol, runtime_checkable

if TYPE_CHECKING:
    from ..models import Viewport
    from ..target import ElementRef

MutationAction = Literal["click", "type", "trigger", "swipe"]
ScrollPosition = str | dict[str, float]


@runtime_checkable
class SurfaceBackend(Protocol):
    async def navigate(self, url: str, timeout_ms: int) -> None:
        """Load ``url`` and return once the surface reports a loaded state."""
        ...

    async def current_url(self) -> str:
        ...

    async def query(self, selector: str, text: str | None = None) -> list[ElementRef]:
        """
        Return whatever currently matches. With ``text``, only the deepest matching
        elements whose text content contains it.
        """
        ...

    async def is_attached(self, ref: ElementRef) -> bool:
        ...

    async def dispatch(self, ref: ElementRef, action: MutationAction, payload: Any) -> None:
        """Fire a simulated user action. Must not wait for re-rendering."""
        ...

    async def scroll(self, position: ScrollPosition) -> None:
        ...

    async def set_viewport(self, viewport: Viewport) -> None:
        ...

    async def inject_capability(self, name: str, capability: Any) -> None:
        ...

    async def remove_capability(self, name: str) -> None:
        ...

    async def reset(self) -> None:
        """Drop navigation state, injected capabilities and background work."""
        ...

    async def screenshot_png(self) -> bytes | None:
        ...

    async def close(self) -> None:
        ...
