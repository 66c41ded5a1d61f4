"""Figma REST API client routed through the relay fetch layer.

Fetches canvases, node trees and rendered-image URLs, and downloads
rendered images through the image relays, using Personal Access Token (PAT) auth.

Environment:
    FIGMA_TOKEN — Figma Personal Access Token (used when token= is omitted)

Usage:
    client = FigmaClient(token="figd_...")
    pages = await client.get_file_pages("6kGd851qaAX4TiL44vpIrO")
    nodes = await client.get_file_nodes("6kGd851qaAX4TiL44vpIrO", ["0:1"], depth=1)
    images = await client.get_node_images("6kGd851qaAX4TiL44vpIrO", ["16650:539"])
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional
from urllib.parse import urlencode

import httpx

from .. import settings
from ..cancellation import CancelToken, OperationCancelled, delay
from ..config import FIGMA_API_BASE, FIGMA_TOKEN
from .relay_fetch import (
    ContentClass,
    FetchError,
    RelayConfig,
    fetch_through_relay,
    fetch_with_backoff,
)

logger = logging.getLogger(__name__)


class FigmaClientError(Exception):
    """Raised when a Figma API call fails or returns unusable data."""


class FigmaClient:
    """Async Figma REST API client.

    Args:
        token: Figma PAT. Falls back to FIGMA_TOKEN env var.
        relay: Relay lists and retry tunables.
        cancel_token: Cancellation token applied to every request.
    """

    def __init__(
        self,
        token: Optional[str] = None,
        relay: Optional[RelayConfig] = None,
        cancel_token: Optional[CancelToken] = None,
        api_base: str = FIGMA_API_BASE,
    ):
        self._token = token or FIGMA_TOKEN
        if not self._token:
            raise FigmaClientError(
                "Figma token not configured. Set FIGMA_TOKEN environment variable "
                "or pass token= to FigmaClient()."
            )
        self._relay = relay or RelayConfig()
        self._cancel_token = cancel_token
        self._api_base = api_base.rstrip("/")

    @property
    def headers(self) -> Dict[str, str]:
        return {"X-Figma-Token": self._token}

    def _url(self, path: str, params: Optional[Dict[str, Any]] = None) -> str:
        url = f"{self._api_base}{path}"
        if params:
            url = f"{url}?{urlencode(params, safe=':,')}"
        return url

    async def _get(self, path: str, params: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        """Make a GET request to the Figma API through the relays."""
        resp = await fetch_with_backoff(
            self._url(path, params),
            self.headers,
            cancel_token=self._cancel_token,
            config=self._relay,
        )

        if resp.status_code == 403:
            raise FigmaClientError(
                "Figma API returned 403 Forbidden. Check that the access token is valid "
                "and has file_content:read scope."
            )
        if resp.status_code == 404:
            raise FigmaClientError(f"Figma resource not found: {path}")
        if resp.status_code != 200:
            raise FigmaClientError(
                f"Figma API error {resp.status_code}: {resp.text[:200]}"
            )

        try:
            return resp.json()
        except ValueError as e:
            raise FigmaClientError(f"Figma API returned invalid JSON for {path}") from e

    # ------------------------------------------------------------------
    # Core API methods
    # ------------------------------------------------------------------

    async def get_file_pages(self, file_key: str) -> List[Dict[str, str]]:
        """List the file's canvases.

        GET /v1/files/:key?depth=1
        """
        data = await self._get(f"/files/{file_key}", params={"depth": "1"})
        children = (data.get("document") or {}).get("children", []) or []
        pages = [
            {"id": child.get("id", ""), "name": child.get("name", "")}
            for child in children
            if child.get("type") == "CANVAS"
        ]
        logger.info(f"get_file_pages: file={file_key}, pages={len(pages)}")
        return pages

    async def get_file_nodes(
        self,
        file_key: str,
        node_ids: List[str],
        depth: Optional[int] = None,
    ) -> Dict[str, Any]:
        """Fetch specific nodes from a Figma file.

        GET /v1/files/:key/nodes?ids=...&depth=...
        """
        params: Dict[str, str] = {"ids": ",".join(node_ids)}
        if depth is not None:
            params["depth"] = str(depth)
        data = await self._get(f"/files/{file_key}/nodes", params=params)
        logger.info(
            f"get_file_nodes: file={file_key}, requested={len(node_ids)}, "
            f"returned={len(data.get('nodes') or {})}"
        )
        return data

    async def get_node_images(
        self,
        file_key: str,
        node_ids: List[str],
        fmt: str = settings.FIGMA_IMAGE_FORMAT,
        scale: float = settings.FIGMA_IMAGE_SCALE,
    ) -> Dict[str, Optional[str]]:
        """Request rendered-image URLs for nodes.

        GET /v1/images/:key?ids=...&format=jpg&scale=0.5
        """
        params = {
            "ids": ",".join(node_ids),
            "format": fmt,
            "scale": f"{scale:g}",
        }
        data = await self._get(f"/images/{file_key}", params=params)

        if data.get("err"):
            raise FigmaClientError(f"Figma image render error: {data['err']}")

        images = data.get("images") or {}
        logger.info(
            f"get_node_images: file={file_key}, scale={scale:g}, requested={len(node_ids)}, "
            f"rendered={sum(1 for v in images.values() if v)}"
        )
        return images

    # ------------------------------------------------------------------
    # Rendered image download
    # ------------------------------------------------------------------

    async def download_image(
        self,
        url: str,
        retries: int = settings.FIGMA_IMAGE_DOWNLOAD_RETRIES,
        retry_delay: float = settings.FIGMA_IMAGE_DOWNLOAD_RETRY_DELAY,
    ) -> Optional[bytes]:
        """Download a rendered image through the image relays.

        Returns the raw bytes, or None when every attempt failed. No auth
        header is sent: render URLs are pre-signed CDN links.
        """
        attempts = 1 + max(0, retries)
        for attempt in range(attempts):
            if attempt > 0:
                await delay(retry_delay, self._cancel_token)
            try:
                resp = await fetch_through_relay(
                    url, {}, self._cancel_token, ContentClass.IMAGE, self._relay,
                )
                if resp.status_code != 200:
                    raise FigmaClientError(f"Image fetch failed: HTTP {resp.status_code}")
                if not resp.content:
                    raise FigmaClientError("Image fetch returned an empty body")
                return resp.content
            except OperationCancelled:
                raise
            except (FigmaClientError, FetchError, httpx.HTTPError) as e:
                logger.warning(
                    f"download_image: attempt {attempt + 1}/{attempts} failed: {e}"
                )
        return None
