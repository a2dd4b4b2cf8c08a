"""surfacecheck constants."""

# Retry-assertion defaults (milliseconds).
DEFAULT_TIMEOUT_MS = 4000
DEFAULT_POLL_INTERVAL_MS = 50

# Bound for a surface to reach a loaded state after navigate().
DEFAULT_NAVIGATION_TIMEOUT_MS = 30000

DEFAULT_VIEWPORT = "mobile-reference"

# Named device presets: label -> (width, height)
VIEWPORT_PRESETS: dict[str, tuple[int, int]] = {
    "mobile-reference": (375, 812),
    "iphone-x": (375, 812),
    "iphone-se": (375, 667),
    "pixel-5": (393, 851),
    "ipad-mini": (768, 1024),
    "desktop": (1280, 720),
}

# Env var prefix for EngineConfig.from_env()
ENV_PREFIX = "SURFACECHECK_"

DEFAULT_ARTIFACTS_DIR = ".surfacecheck/artifacts"
