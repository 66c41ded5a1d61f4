"""Configuration constants — single source of truth for credentials and endpoints."""

import os

# Gemini
GEMINI_API_KEY = os.getenv("GEMINI_API_KEY") or os.getenv("API_KEY", "")
GEMINI_MODEL = os.getenv("GEMINI_MODEL", "gemini-3-flash-preview")

# Figma REST API: Personal Access Token for design file access
FIGMA_TOKEN = os.getenv("FIGMA_TOKEN", "")
FIGMA_API_BASE = os.getenv("FIGMA_API_BASE", "https://api.figma.com/v1").rstrip("/")

# Optional self-hosted relay (e.g. a Cloudflare Worker taking ?url=...),
# tried after the public API relay
FIGMA_PRIVATE_RELAY_URL = os.getenv("FIGMA_PRIVATE_RELAY_URL", "").rstrip("/")

# Log directory
LOG_DIR = os.getenv("LOG_DIR", "logs")
