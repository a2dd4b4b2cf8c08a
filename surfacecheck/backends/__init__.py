"""
Surface backends for surfacecheck.

- MemorySurface: in-process simulated surface for offline runs and tests
- PlaywrightBackend: a real browser page driven through Playwright
"""

from .memory import DomEvent, MemoryApp, MemorySurface, Node, h
from .playwright_backend import PlaywrightBackend
from .protocol import MutationAction, ScrollPosition, SurfaceBackend

__all__ = [
    # Protocol
    "SurfaceBackend",
    "MutationAction",
    "ScrollPosition",
    # Simulated surface
    "MemorySurface",
    "MemoryApp",
    "DomEvent",
    "Node",
    "h",
    # Playwright
    "PlaywrightBackend",
]
