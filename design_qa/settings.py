"""Runtime settings — tunable parameters for import and generation.

All values read from environment variables with defaults tuned to stay
under the Figma API abuse thresholds. Import from here instead of
hardcoding.

Credentials and endpoints stay in design_qa/config.py.
"""

from __future__ import annotations

import os


def _int(key: str, default: int) -> int:
    return int(os.getenv(key, str(default)))


def _float(key: str, default: float) -> float:
    return float(os.getenv(key, str(default)))


def _str(key: str, default: str) -> str:
    return os.getenv(key, default)


# =====================================================================
# Relay fetch layer
# =====================================================================

# Per-request HTTP timeout (seconds)
FIGMA_HTTP_TIMEOUT = _float("FIGMA_HTTP_TIMEOUT", 60.0)

# Pause before trying the next relay after a 429 / network error (seconds)
RELAY_ROTATE_DELAY = _float("RELAY_ROTATE_DELAY", 0.5)

# Append a _t=<timestamp> query parameter so failed attempts are never cached
RELAY_CACHE_BUST = _str("RELAY_CACHE_BUST", "true").lower() in ("true", "1", "yes")

# Retry budget for one Figma API call
FIGMA_FETCH_RETRIES = _int("FIGMA_FETCH_RETRIES", 3)

# Backoff when a 429 carries no Retry-After header (seconds)
FIGMA_BACKOFF_BASE = _float("FIGMA_BACKOFF_BASE", 3.0)
FIGMA_BACKOFF_FLOOR = _float("FIGMA_BACKOFF_FLOOR", 3.0)
FIGMA_BACKOFF_MULTIPLIER = _float("FIGMA_BACKOFF_MULTIPLIER", 1.5)

# Extra wait added on top of Retry-After (seconds)
FIGMA_RETRY_AFTER_BUFFER = _float("FIGMA_RETRY_AFTER_BUFFER", 0.5)

# Retry-After above this is a token ban, not a transient limit (seconds)
FIGMA_BAN_THRESHOLD = _float("FIGMA_BAN_THRESHOLD", 60.0)

# Wait before retrying after a network failure (seconds)
FIGMA_NETWORK_RETRY_DELAY = _float("FIGMA_NETWORK_RETRY_DELAY", 2.0)


# =====================================================================
# Figma importer
# =====================================================================

# Text extraction is cheap: larger batches, shorter cooldown
FIGMA_TEXT_BATCH_SIZE = _int("FIGMA_TEXT_BATCH_SIZE", 10)
FIGMA_TEXT_COOLDOWN_MIN = _float("FIGMA_TEXT_COOLDOWN_MIN", 2.0)
FIGMA_TEXT_COOLDOWN_MAX = _float("FIGMA_TEXT_COOLDOWN_MAX", 4.0)

# Image rendering triggers abuse detection: small batches, long cooldown
FIGMA_IMAGE_BATCH_SIZE = _int("FIGMA_IMAGE_BATCH_SIZE", 2)
FIGMA_IMAGE_COOLDOWN_MIN = _float("FIGMA_IMAGE_COOLDOWN_MIN", 4.0)
FIGMA_IMAGE_COOLDOWN_MAX = _float("FIGMA_IMAGE_COOLDOWN_MAX", 6.0)

FIGMA_IMAGE_FORMAT = _str("FIGMA_IMAGE_FORMAT", "jpg")
FIGMA_IMAGE_SCALE = _float("FIGMA_IMAGE_SCALE", 0.5)
FIGMA_IMAGE_FALLBACK_SCALE = _float("FIGMA_IMAGE_FALLBACK_SCALE", 0.1)

# Rendered image download (through the image relays)
FIGMA_IMAGE_DOWNLOAD_RETRIES = _int("FIGMA_IMAGE_DOWNLOAD_RETRIES", 2)
FIGMA_IMAGE_DOWNLOAD_RETRY_DELAY = _float("FIGMA_IMAGE_DOWNLOAD_RETRY_DELAY", 1.0)

# Node depth requested for deep text fetch (0 = whole subtree), and recursion
# cap for the walk
FIGMA_TEXT_FETCH_DEPTH = _int("FIGMA_TEXT_FETCH_DEPTH", 0) or None
FIGMA_TEXT_WALK_MAX_DEPTH = _int("FIGMA_TEXT_WALK_MAX_DEPTH", 64)


# =====================================================================
# Gemini generation
# =====================================================================

MODEL_MAX_OUTPUT_TOKENS = _int("MODEL_MAX_OUTPUT_TOKENS", 65536)
MODEL_TEMPERATURE = _float("MODEL_TEMPERATURE", 0.3)

# Attempts per model call, and wait between attempts (seconds)
MODEL_MAX_ATTEMPTS = _int("MODEL_MAX_ATTEMPTS", 3)
MODEL_RETRY_DELAY = _float("MODEL_RETRY_DELAY", 3.0)

# Upper bound on "generate more" rounds in an expansion phase
EXPANSION_PAGE_CAP = _int("EXPANSION_PAGE_CAP", 3)
