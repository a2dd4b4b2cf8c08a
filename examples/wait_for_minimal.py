"""
Example: the retry-assertion engine on its own.

A click starts background work; the assertion polls until the banner renders.
No browser needed: the surface is an in-memory app.

Usage:
  python examples/wait_for_minimal.py
"""

import asyncio

from surfacecheck import TargetHandle, wait_for
from surfacecheck.backends import MemorySurface, h
from surfacecheck.verification import is_visible, url_includes


class SaveButton:
    def __init__(self):
        self.saved = False

    async def load(self, surface, url):
        self.saved = False

    def render(self, surface):
        return h(
            "body",
            h("button#save", text="Save"),
            h("div.toast", text="Saved!") if self.saved else None,
        )

    async def handle(self, surface, event):
        if event.type == "click" and event.target.id == "save":
            # simulated network round-trip
            surface.spawn(self._finish(surface), delay_s=0.3)

    async def _finish(self, surface):
        self.saved = True
        surface.set_location(surface.url + "done")


async def main() -> None:
    target = TargetHandle(MemorySurface(SaveButton), base_url="http://example.test")
    await target.navigate("/")

    (button,) = await target.query("button#save")
    await target.mutate(button, "click")

    result = await wait_for(is_visible("div", text="Saved!"), target, timeout_ms=2000)
    print(f"{result.label}: {result.state.value} after {result.attempts} attempts, {result.elapsed_ms}ms")

    result = await wait_for(url_includes("/done"), target)
    print(f"{result.label}: {result.state.value}")


if __name__ == "__main__":
    asyncio.run(main())
