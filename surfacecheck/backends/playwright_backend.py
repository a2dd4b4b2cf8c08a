"""
Playwright surface backend.

Each backend owns one browser context and page. reset() throws the context
away and opens a new one, so no cookies, storage or injected capabilities
survive between scenarios.

Injected capabilities are mirrored into the page as objects whose methods call
back into Python through an exposed binding, e.g. ``window.phantom.solana.connect()``
resolves or rejects according to the installed MockCapability.

    async with async_playwright() as pw:
        browser = await pw.chromium.launch(headless=True)
        backend = await PlaywrightBackend.create(browser)
        target = TargetHandle(backend, base_url="http://localhost:3000")
"""

from __future__ import annotations

import json
import logging
import uuid
from typing import TYPE_CHECKING, Any

from playwright.async_api import Browser, BrowserContext, ElementHandle, Page
from playwright.async_api import Error as PlaywrightError
from playwright.async_api import TimeoutError as PlaywrightTimeoutError

from ..exceptions import NavigationError, TargetUnavailable
from ..target import ElementRef

if TYPE_CHECKING:
    from ..models import Viewport
    from .protocol import MutationAction, ScrollPosition

logger = logging.getLogger(__name__)

BINDING_NAME = "__surfacecheckCall"

# Oldest element handles are released beyond this many.
MAX_HANDLES = 512

# Computed style properties captured with every element ref.
STYLE_PROPS = (
    "display",
    "visibility",
    "flex-direction",
    "grid-template-columns",
    "width",
    "height",
    "font-size",
    "opacity",
)

# Messages Playwright uses when the document under an evaluation goes away.
_CONTEXT_GONE = (
    "execution context was destroyed",
    "cannot find context with specified id",
    "frame was detached",
)


_QUERY_JS = """
([selector, text, props]) => {
  const norm = (s) => (s || '').replace(/\\s+/g, ' ').trim();
  let els = Array.from(document.querySelectorAll(selector));
  if (text !== null) {
    const needle = norm(text);
    els = els.filter((el) => norm(el.textContent).includes(needle));
    els = els.filter((el) => !els.some((other) => other !== el && el.contains(other)));
  }
  return els;
}
"""

_DESCRIBE_JS = """
(el, props) => {
  const cs = window.getComputedStyle(el);
  const rect = el.getBoundingClientRect();
  const style = {};
  for (const p of props) style[p] = cs.getPropertyValue(p);
  const attrs = {};
  for (const a of el.attributes) attrs[a.name] = a.value;
  const visible = rect.width > 0 && rect.height > 0 &&
    cs.visibility !== 'hidden' && cs.display !== 'none' && cs.opacity !== '0';
  return {
    tag: el.tagName.toLowerCase(),
    text: (el.textContent || '').replace(/\\s+/g, ' ').trim(),
    value: ('value' in el) ? String(el.value) : null,
    visible,
    attrs,
    style,
  };
}
"""

_TOUCH_JS = """
(el, [type, x, y]) => {
  const touches = type === 'touchend' ? [] :
    [new Touch({identifier: 1, target: el, clientX: x, clientY: y})];
  el.dispatchEvent(new TouchEvent(type, {
    bubbles: true, cancelable: true, touches, targetTouches: touches,
    changedTouches: [new Touch({identifier: 1, target: el, clientX: x, clientY: y})],
  }));
}
"""


def _capability_script(name: str, methods: list[str], attributes: dict[str, Any]) -> str:
    """Init script defining ``window.<name>`` with methods routed to Python."""
    path = json.dumps(name.split("."))
    return f"""
(() => {{
  const path = {path};
  let obj = window;
  for (const part of path.slice(0, -1)) {{ obj[part] = obj[part] || {{}}; obj = obj[part]; }}
  const stub = Object.assign({{}}, {json.dumps(attributes)});
  for (const m of {json.dumps(methods)}) {{
    stub[m] = async (...args) => {{
      const res = await window.{BINDING_NAME}({json.dumps(name)}, m, args);
      if (res && res.rejected) throw new Error(res.message);
      return res ? res.value : undefined;
    }};
  }}
  obj[path[path.length - 1]] = stub;
}})();
"""


def _context_gone(error: PlaywrightError) -> bool:
    message = (error.message or str(error)).lower()
    return any(marker in message for marker in _CONTEXT_GONE)


class PlaywrightBackend:
    def __init__(self, browser: Browser, *, context_options: dict[str, Any] | None = None) -> None:
        self.browser = browser
        self.context_options = dict(context_options or {})
        self.context: BrowserContext | None = None
        self.page: Page | None = None
        self._capabilities: dict[str, Any] = {}
        self._handles: dict[str, ElementHandle] = {}
        self._viewport: Viewport | None = None

    @classmethod
    async def create(cls, browser: Browser, **kwargs: Any) -> PlaywrightBackend:
        backend = cls(browser, **kwargs)
        await backend._open()
        return backend

    async def _open(self) -> None:
        options = dict(self.context_options)
        if self._viewport is not None:
            options["viewport"] = {"width": self._viewport.width, "height": self._viewport.height}
            options.setdefault("has_touch", True)
            options.setdefault("is_mobile", self._viewport.width < 768)
        self.context = await self.browser.new_context(**options)
        await self.context.expose_binding(BINDING_NAME, self._on_capability_call)
        self.page = await self.context.new_page()

    def _require_page(self) -> Page:
        if self.page is None:
            raise RuntimeError("PlaywrightBackend is closed")
        return self.page

    async def _on_capability_call(self, _source: Any, name: str, method: str, args: list[Any]) -> Any:
        capability = self._capabilities.get(name)
        if capability is None:
            return {"rejected": True, "message": f"{name} is not installed"}
        try:
            value = await capability.call(method, *args)
        except Exception as e:
            return {"rejected": True, "message": str(e)}
        return {"rejected": False, "value": value}

    async def navigate(self, url: str, timeout_ms: int) -> None:
        page = self._require_page()
        self._handles.clear()
        try:
            response = await page.goto(url, timeout=timeout_ms, wait_until="load")
        except PlaywrightTimeoutError as e:
            raise NavigationError(url, f"Timed out loading {url}", elapsed_ms=timeout_ms) from e
        except PlaywrightError as e:
            raise NavigationError(url, f"Failed to load {url}: {e.message}") from e
        if response is not None and response.status >= 400:
            raise NavigationError(url, f"{url} answered HTTP {response.status}")

    async def current_url(self) -> str:
        return self._require_page().url

    async def query(self, selector: str, text: str | None = None) -> list[ElementRef]:
        page = self._require_page()
        try:
            result = await page.evaluate_handle(_QUERY_JS, [selector, text, list(STYLE_PROPS)])
        except PlaywrightError as e:
            if _context_gone(e):
                # page is navigating; nothing matches until the new document loads
                logger.debug("query %s during navigation: %s", selector, e.message)
                return []
            raise
        refs: list[ElementRef] = []
        try:
            try:
                props = await result.get_properties()
            except PlaywrightError as e:
                if _context_gone(e):
                    return []
                raise
            for handle in props.values():
                element = handle.as_element()
                if element is None:
                    continue
                try:
                    info = await element.evaluate(_DESCRIBE_JS, list(STYLE_PROPS))
                except PlaywrightError as e:
                    logger.debug("skipping element detached mid-read: %s", e.message)
                    continue
                key = uuid.uuid4().hex
                await self._remember(key, element)
                refs.append(
                    ElementRef(
                        key=key,
                        tag=info["tag"],
                        text=info["text"],
                        visible=bool(info["visible"]),
                        value=info["value"],
                        attrs=info["attrs"],
                        style=info["style"],
                        handle=element,
                    )
                )
        finally:
            try:
                await result.dispose()
            except PlaywrightError:
                pass
        return refs

    async def _remember(self, key: str, element: ElementHandle) -> None:
        self._handles[key] = element
        while len(self._handles) > MAX_HANDLES:
            oldest = next(iter(self._handles))
            stale = self._handles.pop(oldest)
            try:
                await stale.dispose()
            except PlaywrightError:
                pass

    async def is_attached(self, ref: ElementRef) -> bool:
        element = self._handles.get(ref.key)
        if element is None:
            return False
        try:
            return bool(await element.evaluate("el => el.isConnected"))
        except PlaywrightError:
            return False

    async def dispatch(self, ref: ElementRef, action: MutationAction, payload: Any) -> None:
        element = self._handles.get(ref.key)
        if element is None:
            raise TargetUnavailable(ref.locator or ref.key)
        try:
            if action == "click":
                await element.click()
            elif action == "type":
                await element.type(str(payload))
            elif action == "trigger":
                await element.dispatch_event(payload["type"], payload.get("detail") or {})
            elif action == "swipe":
                start, end = payload.get("from", [300, 200]), payload.get("to", [100, 200])
                await element.evaluate(_TOUCH_JS, ["touchstart", start[0], start[1]])
                await element.evaluate(_TOUCH_JS, ["touchmove", end[0], end[1]])
                await element.evaluate(_TOUCH_JS, ["touchend", end[0], end[1]])
            else:
                raise ValueError(f"Unsupported action {action!r}")
        except PlaywrightError as e:
            if "not attached" in (e.message or "").lower():
                raise TargetUnavailable(ref.locator or ref.key, e.message) from e
            raise

    async def scroll(self, position: ScrollPosition) -> None:
        page = self._require_page()
        if position == "bottom":
            await page.evaluate("window.scrollTo(0, document.body.scrollHeight)")
        elif position == "top":
            await page.evaluate("window.scrollTo(0, 0)")
        elif isinstance(position, dict):
            await page.evaluate(
                "([x, y]) => window.scrollTo(x, y)", [position.get("x", 0), position.get("y", 0)]
            )
        else:
            raise ValueError(f"Unsupported scroll position {position!r}")

    async def set_viewport(self, viewport: Viewport) -> None:
        self._viewport = viewport
        await self._require_page().set_viewport_size(
            {"width": viewport.width, "height": viewport.height}
        )

    async def inject_capability(self, name: str, capability: Any) -> None:
        self._capabilities[name] = capability
        methods = sorted(getattr(capability, "methods", ()))
        attributes = dict(getattr(capability, "attributes", None) or {})
        script = _capability_script(name, methods, attributes)
        if self.context is not None:
            await self.context.add_init_script(script)
        page = self._require_page()
        if page.url and page.url != "about:blank":
            await page.evaluate(script)

    async def remove_capability(self, name: str) -> None:
        # Init scripts cannot be withdrawn; calls now reject through the binding.
        self._capabilities.pop(name, None)

    async def reset(self) -> None:
        self._capabilities.clear()
        self._handles.clear()
        if self.context is not None:
            await self.context.close()
        await self._open()

    async def screenshot_png(self) -> bytes | None:
        if self.page is None:
            return None
        return await self.page.screenshot(type="png", full_page=True)

    async def close(self) -> None:
        self._handles.clear()
        self._capabilities.clear()
        if self.context is not None:
            await self.context.close()
        self.context = None
        self.page = None
