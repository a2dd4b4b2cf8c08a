"""
In-memory simulated surface.

MemorySurface hosts a small application object that renders a tree of Nodes
and reacts to DOM-like events. It is not a browser: there is no layout, and
computed style is whatever the app puts on each node. What it does model is
what the engine cares about:

- asynchronous re-rendering (apps ``spawn`` background work that changes state later)
- element staleness (refs whose structural key left the tree are detached)
- injected capabilities (``surface.capability("phantom.solana")``)

    class Counter:
        def __init__(self):
            self.n = 0

        async def load(self, surface, url):
            self.n = 0

        def render(self, surface):
            return h("body", h("button#inc", text="+"), h("span.count", text=str(self.n)))

        async def handle(self, surface, event):
            if event.type == "click" and event.target.id == "inc":
                surface.spawn(self._bump(), delay_s=0.05)

        async def _bump(self):
            self.n += 1

    target = TargetHandle(MemorySurface(Counter))
"""

from __future__ import annotations

import asyncio
import inspect
import logging
import re
from collections.abc import Awaitable, Callable, Iterator
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Protocol

from ..exceptions import NavigationError, TargetUnavailable
from ..target import ElementRef

if TYPE_CHECKING:
    from ..models import Viewport
    from .protocol import MutationAction, ScrollPosition

logger = logging.getLogger(__name__)

_WS_RE = re.compile(r"\s+")


@dataclass(eq=False)
class Node:
    tag: str
    id: str | None = None
    classes: tuple[str, ...] = ()
    text: str = ""
    attrs: dict[str, str] = field(default_factory=dict)
    style: dict[str, str] = field(default_factory=dict)
    hidden: bool = False
    value: str | None = None
    children: list[Node] = field(default_factory=list)
    key: str = ""

    def text_content(self) -> str:
        parts = [self.text] + [c.text_content() for c in self.children]
        return _WS_RE.sub(" ", " ".join(p for p in parts if p)).strip()

    @property
    def displayed(self) -> bool:
        if self.hidden:
            return False
        if self.style.get("display") == "none":
            return False
        return self.style.get("visibility") not in {"hidden", "collapse"}


def h(spec: str, *children: Node | None, text: str = "", **kwargs: Any) -> Node:
    """
    Build a Node from a compact spec: ``h("input#name.field", value="")``.
    ``None`` children are skipped so conditional rendering reads naturally.
    """
    tag, node_id, classes, _ = _parse_compound(spec)
    return Node(
        tag=tag or "div",
        id=node_id,
        classes=tuple(classes),
        text=text,
        children=[c for c in children if c is not None],
        **kwargs,
    )


@dataclass
class DomEvent:
    type: str
    target: Node | None = None
    detail: dict[str, Any] = field(default_factory=dict)


class MemoryApp(Protocol):
    async def load(self, surface: MemorySurface, url: str) -> None:
        ...

    def render(self, surface: MemorySurface) -> Node:
        ...

    async def handle(self, surface: MemorySurface, event: DomEvent) -> None:
        ...


# ---------------------------------------------------------------------------
# selectors: compound "tag#id.class[attr=value]", descendant " " and child ">"
# ---------------------------------------------------------------------------

_COMPOUND_RE = re.compile(r"([#.][\w-]+|\[[^\]]+\])")


def _parse_compound(spec: str) -> tuple[str | None, str | None, list[str], list[tuple[str, str | None]]]:
    spec = spec.strip()
    m = re.match(r"^([a-zA-Z][\w-]*|\*)?", spec)
    tag = m.group(1) if m and m.group(1) and m.group(1) != "*" else None
    rest = spec[m.end() if m else 0 :]
    node_id: str | None = None
    classes: list[str] = []
    attrs: list[tuple[str, str | None]] = []
    pos = 0
    for part in _COMPOUND_RE.finditer(rest):
        if part.start() != pos:
            raise ValueError(f"Unsupported selector {spec!r}")
        pos = part.end()
        token = part.group(1)
        if token[0] == "#":
            node_id = token[1:]
        elif token[0] == ".":
            classes.append(token[1:])
        else:
            body = token[1:-1]
            if "=" in body:
                name, value = body.split("=", 1)
                attrs.append((name.strip(), value.strip().strip("\"'")))
            else:
                attrs.append((body.strip(), None))
    if pos != len(rest):
        raise ValueError(f"Unsupported selector {spec!r}")
    return tag, node_id, classes, attrs


@dataclass(frozen=True)
class _Compound:
    tag: str | None
    id: str | None
    classes: tuple[str, ...]
    attrs: tuple[tuple[str, str | None], ...]
    combinator: str  # relation to the compound on the left: " " or ">"

    def matches(self, node: Node) -> bool:
        if self.tag and node.tag != self.tag:
            return False
        if self.id and node.id != self.id:
            return False
        if any(c not in node.classes for c in self.classes):
            return False
        for name, value in self.attrs:
            if name not in node.attrs:
                return False
            if value is not None and node.attrs[name] != value:
                return False
        return True


def compile_selector(selector: str) -> list[list[_Compound]]:
    groups: list[list[_Compound]] = []
    for group in selector.split(","):
        tokens = group.replace(">", " > ").split()
        if not tokens:
            raise ValueError(f"Empty selector in {selector!r}")
        parts: list[_Compound] = []
        combinator = " "
        for token in tokens:
            if token == ">":
                combinator = ">"
                continue
            tag, node_id, classes, attrs = _parse_compound(token)
            parts.append(_Compound(tag, node_id, tuple(classes), tuple(attrs), combinator))
            combinator = " "
        groups.append(parts)
    return groups


def _match(parts: list[_Compound], node: Node, ancestors: list[Node]) -> bool:
    last = parts[-1]
    if not last.matches(node):
        return False
    if len(parts) == 1:
        return True
    rest = parts[:-1]
    if last.combinator == ">":
        return bool(ancestors) and _match(rest, ancestors[-1], ancestors[:-1])
    for i in range(len(ancestors) - 1, -1, -1):
        if _match(rest, ancestors[i], ancestors[:i]):
            return True
    return False


def _walk(node: Node, ancestors: list[Node], visible: bool) -> Iterator[tuple[Node, list[Node], bool]]:
    shown = visible and node.displayed
    yield node, ancestors, shown
    for child in node.children:
        yield from _walk(child, ancestors + [node], shown)


def _assign_keys(node: Node, key: str) -> None:
    node.key = key
    counts: dict[str, int] = {}
    for child in node.children:
        ident = child.tag + (f"#{child.id}" if child.id else "")
        n = counts.get(ident, 0)
        counts[ident] = n + 1
        _assign_keys(child, f"{key}/{ident}[{n}]")


class MemorySurface:
    """
    SurfaceBackend over an in-process application.

    ``app`` may be an app instance or a zero-argument factory; with a factory every
    reset() starts from a brand-new application state.
    """

    def __init__(self, app: MemoryApp | Callable[[], MemoryApp], *, load_delay_s: float = 0.0) -> None:
        is_factory = isinstance(app, type) or (callable(app) and not hasattr(app, "render"))
        self._app_factory: Callable[[], MemoryApp] | None = app if is_factory else None  # type: ignore[assignment]
        self.app: MemoryApp = self._app_factory() if self._app_factory else app  # type: ignore[assignment]
        self.load_delay_s = load_delay_s
        self.url = "about:blank"
        self.viewport: Viewport | None = None
        self.scroll_y = 0.0
        self._capabilities: dict[str, Any] = {}
        self._tasks: dict[asyncio.Task, Awaitable[Any]] = {}
        self.events: list[DomEvent] = []

    # -- helpers for apps -------------------------------------------------

    def capability(self, name: str) -> Any | None:
        return self._capabilities.get(name)

    def set_location(self, url: str) -> None:
        """Client-side route change (no load)."""
        self.url = url

    def spawn(self, coro: Awaitable[Any], *, delay_s: float = 0.0) -> asyncio.Task:
        """Run background work on the surface, e.g. a simulated network round-trip."""

        async def _run() -> Any:
            if delay_s > 0:
                await asyncio.sleep(delay_s)
            return await coro

        task = asyncio.get_running_loop().create_task(_run())
        self._tasks[task] = coro
        task.add_done_callback(self._task_done)
        return task

    def _task_done(self, task: asyncio.Task) -> None:
        coro = self._tasks.pop(task, None)
        # cancelled before `await coro` was reached
        if task.cancelled() and inspect.iscoroutine(coro):
            coro.close()
        if not task.cancelled() and task.exception() is not None:
            logger.warning("surface background task failed: %r", task.exception())

    @property
    def pending_tasks(self) -> int:
        return len(self._tasks)

    def render(self) -> Node:
        root = self.app.render(self)
        _assign_keys(root, root.tag)
        return root

    def _find(self, key: str) -> Node | None:
        for node, _, _ in _walk(self.render(), [], True):
            if node.key == key:
                return node
        return None

    # -- SurfaceBackend ---------------------------------------------------

    async def navigate(self, url: str, timeout_ms: int) -> None:
        self.url = url
        self.scroll_y = 0.0
        if self.load_delay_s:
            await asyncio.sleep(self.load_delay_s)
        try:
            await self.app.load(self, url)
        except NavigationError:
            raise
        except Exception as e:
            raise NavigationError(url, f"Failed to load {url}: {e}") from e

    async def current_url(self) -> str:
        return self.url

    async def query(self, selector: str, text: str | None = None) -> list[ElementRef]:
        groups = compile_selector(selector)
        matched: list[tuple[Node, bool]] = []
        for node, ancestors, shown in _walk(self.render(), [], True):
            if any(_match(parts, node, ancestors) for parts in groups):
                matched.append((node, shown))
        if text is not None:
            needle = _WS_RE.sub(" ", text).strip()
            matched = [(n, s) for n, s in matched if needle in n.text_content()]
            keys = [n.key for n, _ in matched]
            # keep the deepest elements only
            matched = [
                (n, s) for n, s in matched if not any(k.startswith(n.key + "/") for k in keys)
            ]
        return [self._ref(n, s) for n, s in matched]

    def _ref(self, node: Node, shown: bool) -> ElementRef:
        attrs = dict(node.attrs)
        if node.id:
            attrs.setdefault("id", node.id)
        if node.classes:
            attrs.setdefault("class", " ".join(node.classes))
        return ElementRef(
            key=node.key,
            tag=node.tag,
            text=node.text_content(),
            visible=shown,
            value=node.value,
            attrs=attrs,
            style=dict(node.style),
        )

    async def is_attached(self, ref: ElementRef) -> bool:
        return self._find(ref.key) is not None

    async def dispatch(self, ref: ElementRef, action: MutationAction, payload: Any) -> None:
        node = self._find(ref.key)
        if node is None:
            # Checked by the handle just before; gone means a render removed it.
            raise TargetUnavailable(ref.locator or ref.key)
        if action == "click":
            await self._fire(DomEvent("click", node, dict(payload or {})))
        elif action == "type":
            node.value = (node.value or "") + str(payload)
            await self._fire(DomEvent("input", node, {"data": str(payload), "value": node.value}))
        elif action == "trigger":
            await self._fire(DomEvent(str(payload["type"]), node, dict(payload.get("detail") or {})))
        elif action == "swipe":
            start, end = payload.get("from", [300, 200]), payload.get("to", [100, 200])
            await self._fire(DomEvent("touchstart", node, {"touches": [{"clientX": start[0], "clientY": start[1]}]}))
            await self._fire(DomEvent("touchmove", node, {"touches": [{"clientX": end[0], "clientY": end[1]}]}))
            await self._fire(DomEvent("touchend", node, {"touches": []}))
        else:
            raise ValueError(f"Unsupported action {action!r}")

    async def _fire(self, event: DomEvent) -> None:
        self.events.append(event)
        await self.app.handle(self, event)

    async def scroll(self, position: ScrollPosition) -> None:
        if position == "top":
            self.scroll_y = 0.0
        elif position == "bottom":
            self.scroll_y = float("inf")
        elif isinstance(position, dict):
            self.scroll_y = float(position.get("y", 0))
        else:
            raise ValueError(f"Unsupported scroll position {position!r}")
        await self._fire(DomEvent("scroll", None, {"position": position}))

    async def set_viewport(self, viewport: Viewport) -> None:
        self.viewport = viewport

    async def inject_capability(self, name: str, capability: Any) -> None:
        self._capabilities[name] = capability

    async def remove_capability(self, name: str) -> None:
        self._capabilities.pop(name, None)

    async def reset(self) -> None:
        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        self._tasks.clear()
        self._capabilities.clear()
        self.events.clear()
        self.url = "about:blank"
        self.scroll_y = 0.0
        if self._app_factory is not None:
            self.app = self._app_factory()

    async def screenshot_png(self) -> bytes | None:
        return None

    async def close(self) -> None:
        await self.reset()
