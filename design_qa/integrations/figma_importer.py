"""Figma page importer — turns a page's top-level frames into ContentItems.

Pipeline for ``import_page``:
  1. List the page's immediate children, keep container/text kinds,
     optionally intersect with the caller's node-id allow-list.
  2. Deep-fetch text in batches (cheap; short jittered cooldown).
  3. Request rendered-image URLs for container nodes in small batches
     (rate-limit sensitive; long jittered cooldown), retrying misses once
     at a much lower scale.
  4. Download each image through the image relays; emit an image item plus
     a companion text item, or a text-only note when the visual is missing.

Per-target failures degrade to text notes. Only a missing target set or an
empty result is fatal.
"""

from __future__ import annotations

import logging
import random
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional, Sequence

from .. import settings
from ..bundle import ContentItem
from ..cancellation import CancelToken, OperationCancelled, delay
from .figma_client import FigmaClient, FigmaClientError
from .figma_text import (
    CONTAINER_TYPES,
    IMPORTABLE_TYPES,
    chunk,
    extract_file_key,
    extract_text,
    filter_children,
)
from .relay_fetch import AccessBlockedError, FetchError, RelayConfig

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[str], None]

NO_TEXT_MARKER = "(no text)"
IMAGE_FAILURE_NOTE = "Image download failed (access permission or network error)"


@dataclass
class ImporterConfig:
    """Batch sizes, cooldowns and render scales for one import."""

    relay: RelayConfig = field(default_factory=RelayConfig)
    text_batch_size: int = settings.FIGMA_TEXT_BATCH_SIZE
    text_cooldown: tuple = (settings.FIGMA_TEXT_COOLDOWN_MIN, settings.FIGMA_TEXT_COOLDOWN_MAX)
    text_fetch_depth: Optional[int] = settings.FIGMA_TEXT_FETCH_DEPTH
    text_walk_max_depth: int = settings.FIGMA_TEXT_WALK_MAX_DEPTH
    image_batch_size: int = settings.FIGMA_IMAGE_BATCH_SIZE
    image_cooldown: tuple = (settings.FIGMA_IMAGE_COOLDOWN_MIN, settings.FIGMA_IMAGE_COOLDOWN_MAX)
    image_format: str = settings.FIGMA_IMAGE_FORMAT
    image_scale: float = settings.FIGMA_IMAGE_SCALE
    image_fallback_scale: float = settings.FIGMA_IMAGE_FALLBACK_SCALE
    image_download_retries: int = settings.FIGMA_IMAGE_DOWNLOAD_RETRIES
    image_download_retry_delay: float = settings.FIGMA_IMAGE_DOWNLOAD_RETRY_DELAY


@dataclass(frozen=True)
class ImportTarget:
    """A design-document node selected for conversion."""

    id: str
    name: str
    type: str

    @property
    def renderable(self) -> bool:
        return self.type in CONTAINER_TYPES


def _require_file_key(document_ref: str) -> str:
    file_key = extract_file_key(document_ref)
    if not file_key:
        raise FigmaClientError(f"Invalid Figma file URL: {document_ref!r}")
    return file_key


def _notify(on_progress: Optional[ProgressCallback], message: str) -> None:
    logger.info(message)
    if on_progress is not None:
        on_progress(message)


def _check(cancel_token: Optional[CancelToken]) -> None:
    if cancel_token is not None:
        cancel_token.raise_if_cancelled()


async def _cooldown(bounds: tuple, cancel_token: Optional[CancelToken]) -> None:
    low, high = bounds
    await delay(random.uniform(low, max(low, high)), cancel_token)


async def _page_children(
    client: FigmaClient,
    file_key: str,
    page_id: str,
) -> List[dict]:
    data = await client.get_file_nodes(file_key, [page_id], depth=1)
    page_node = ((data.get("nodes") or {}).get(page_id) or {}).get("document")
    if not page_node:
        raise FigmaClientError(f"Page node not found: {page_id}")
    return page_node.get("children", []) or []


# ---------------------------------------------------------------------------
# Listing
# ---------------------------------------------------------------------------


async def list_pages(
    document_ref: str,
    credential: str,
    config: Optional[ImporterConfig] = None,
    cancel_token: Optional[CancelToken] = None,
) -> List[Dict[str, str]]:
    """List the document's top-level canvases as ``{"id", "name"}`` dicts."""
    config = config or ImporterConfig()
    file_key = _require_file_key(document_ref)
    client = FigmaClient(credential, relay=config.relay, cancel_token=cancel_token)
    pages = await client.get_file_pages(file_key)
    if not pages:
        raise FigmaClientError(f"Figma file {file_key} has no pages")
    return pages


async def list_frames(
    document_ref: str,
    credential: str,
    page_id: str,
    config: Optional[ImporterConfig] = None,
    cancel_token: Optional[CancelToken] = None,
) -> List[ImportTarget]:
    """List a page's immediate container-like children (frame/section/component/instance/group)."""
    config = config or ImporterConfig()
    file_key = _require_file_key(document_ref)
    client = FigmaClient(credential, relay=config.relay, cancel_token=cancel_token)
    children = await _page_children(client, file_key, page_id)
    return [
        ImportTarget(id=c.get("id", ""), name=c.get("name", ""), type=c.get("type", ""))
        for c in filter_children({"children": children}, CONTAINER_TYPES)
    ]


# ---------------------------------------------------------------------------
# Import
# ---------------------------------------------------------------------------


async def _fetch_texts(
    client: FigmaClient,
    file_key: str,
    targets: Sequence[ImportTarget],
    config: ImporterConfig,
    on_progress: Optional[ProgressCallback],
    cancel_token: Optional[CancelToken],
) -> Dict[str, str]:
    text_map: Dict[str, str] = {}
    batches = chunk(targets, config.text_batch_size)

    for i, batch in enumerate(batches):
        _check(cancel_token)
        _notify(on_progress, f"Fetching text content... ({i + 1}/{len(batches)})")
        try:
            data = await client.get_file_nodes(
                file_key, [t.id for t in batch], depth=config.text_fetch_depth,
            )
            for entry in (data.get("nodes") or {}).values():
                document = (entry or {}).get("document")
                if document:
                    text_map[document.get("id", "")] = extract_text(
                        document, max_depth=config.text_walk_max_depth,
                    )
        except (OperationCancelled, AccessBlockedError):
            raise
        except (FigmaClientError, FetchError) as e:
            logger.warning(f"_fetch_texts: batch {i + 1} failed: {e}")

        if i < len(batches) - 1:
            await _cooldown(config.text_cooldown, cancel_token)

    return text_map


async def _fetch_image_urls(
    client: FigmaClient,
    file_key: str,
    targets: Sequence[ImportTarget],
    config: ImporterConfig,
    on_progress: Optional[ProgressCallback],
    cancel_token: Optional[CancelToken],
) -> Dict[str, str]:
    url_map: Dict[str, str] = {}
    renderable = [t for t in targets if t.renderable]
    batches = chunk(renderable, config.image_batch_size) if renderable else []

    for i, batch in enumerate(batches):
        _check(cancel_token)
        ids = [t.id for t in batch]
        _notify(on_progress, f"Requesting image URLs... ({i + 1}/{len(batches)})")

        images: Dict[str, Optional[str]] = {}
        try:
            images = await client.get_node_images(
                file_key, ids, fmt=config.image_format, scale=config.image_scale,
            )
        except (OperationCancelled, AccessBlockedError):
            raise
        except (FigmaClientError, FetchError) as e:
            logger.warning(f"_fetch_image_urls: batch {i + 1} failed: {e}")

        failed = [node_id for node_id in ids if not images.get(node_id)]
        if failed:
            _notify(
                on_progress,
                f"Retrying {len(failed)} image(s) at low resolution...",
            )
            try:
                retry_images = await client.get_node_images(
                    file_key, failed, fmt=config.image_format,
                    scale=config.image_fallback_scale,
                )
                images = {**images, **{k: v for k, v in retry_images.items() if v}}
            except (OperationCancelled, AccessBlockedError):
                raise
            except (FigmaClientError, FetchError) as e:
                logger.warning(f"_fetch_image_urls: low-res retry failed: {e}")

        url_map.update({k: v for k, v in images.items() if v})

        if i < len(batches) - 1:
            await _cooldown(config.image_cooldown, cancel_token)

    return url_map


def _text_note(target: ImportTarget, text: Optional[str]) -> ContentItem:
    clean = (text or "").strip()
    return ContentItem.text(
        f"[Figma_Note] {target.name}.txt",
        f"\n# Screen: {target.name}\n## Status\n⚠️ {IMAGE_FAILURE_NOTE}\n"
        f"## Text Content\n{clean or NO_TEXT_MARKER}",
    )


async def import_page(
    document_ref: str,
    credential: str,
    page_id: str,
    on_progress: Optional[ProgressCallback] = None,
    cancel_token: Optional[CancelToken] = None,
    node_ids: Optional[Sequence[str]] = None,
    config: Optional[ImporterConfig] = None,
) -> List[ContentItem]:
    """Import a Figma page as image + text ContentItems.

    Args:
        document_ref: Figma file URL or bare file key.
        credential: Figma Personal Access Token.
        page_id: Canvas node id to import.
        on_progress: Called with a human-readable message at every stage.
        cancel_token: Aborts the import at the next await point.
        node_ids: Optional allow-list of top-level node ids.
        config: Batch/cooldown/relay tunables.

    Raises:
        FigmaClientError: invalid reference, empty target set, or nothing produced.
        OperationCancelled: the token fired.
    """
    config = config or ImporterConfig()
    file_key = _require_file_key(document_ref)
    client = FigmaClient(credential, relay=config.relay, cancel_token=cancel_token)

    _notify(on_progress, "Analyzing page structure...")
    children = await _page_children(client, file_key, page_id)
    targets = [
        ImportTarget(id=c.get("id", ""), name=c.get("name", ""), type=c.get("type", ""))
        for c in filter_children({"children": children}, IMPORTABLE_TYPES)
    ]
    if node_ids:
        allowed = set(node_ids)
        targets = [t for t in targets if t.id in allowed]
    if not targets:
        raise FigmaClientError("No frames selected, or the selected frames are not importable")
    logger.info(f"import_page: file={file_key}, page={page_id}, targets={len(targets)}")

    text_map = await _fetch_texts(client, file_key, targets, config, on_progress, cancel_token)
    url_map = await _fetch_image_urls(client, file_key, targets, config, on_progress, cancel_token)

    items: List[ContentItem] = []
    for n, target in enumerate(targets, start=1):
        _check(cancel_token)
        _notify(on_progress, f"Assembling content... ({n}/{len(targets)})")

        text = text_map.get(target.id)
        image_url = url_map.get(target.id)
        image_data: Optional[bytes] = None
        if image_url:
            image_data = await client.download_image(
                image_url,
                retries=config.image_download_retries,
                retry_delay=config.image_download_retry_delay,
            )
            if image_data is None:
                logger.warning(
                    f"import_page: image download failed for {target.name}, "
                    "falling back to text only"
                )

        if image_data is not None:
            fmt = config.image_format.lower()
            mime = "image/jpeg" if fmt in ("jpg", "jpeg") else f"image/{fmt}"
            items.append(ContentItem.image(f"[Figma] {target.name}.{fmt}", image_data, mime))
            if text:
                items.append(ContentItem.text(
                    f"[Figma_Text] {target.name}.txt",
                    f"\n# Screen: {target.name}\n## Text Content\n{text}",
                ))
        else:
            items.append(_text_note(target, text))

    if not items:
        raise FigmaClientError("Import produced no content")
    logger.info(
        f"import_page: {len(items)} items "
        f"({sum(1 for i in items if i.is_image)} images) from {len(targets)} targets"
    )
    return items
