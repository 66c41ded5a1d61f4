"""Figma node helpers — file-key parsing, node filtering, text extraction.

Pure data-processing functions. No HTTP calls — these operate on
already-fetched Figma API response dicts.
"""

from __future__ import annotations

import logging
import re
from typing import Any, Dict, List, Optional, Sequence, TypeVar

from .. import settings

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Node kinds that can be rendered to an image
CONTAINER_TYPES = frozenset({"FRAME", "SECTION", "COMPONENT", "INSTANCE", "GROUP"})
# Node kinds accepted as import targets
IMPORTABLE_TYPES = CONTAINER_TYPES | {"TEXT"}

_FILE_KEY_RE = re.compile(r"(?:file|design|board)/([a-zA-Z0-9]+)")
_BARE_KEY_RE = re.compile(r"^[a-zA-Z0-9]{10,}$")


def extract_file_key(document_ref: str) -> Optional[str]:
    """Get the file key from a Figma URL, or accept a bare key.

    'https://www.figma.com/design/6kGd851qaAX4TiL44vpIrO/Name?node-id=1-2'
        → '6kGd851qaAX4TiL44vpIrO'
    """
    ref = (document_ref or "").strip()
    match = _FILE_KEY_RE.search(ref)
    if match:
        return match.group(1)
    if _BARE_KEY_RE.match(ref):
        return ref
    return None


def chunk(items: Sequence[T], size: int) -> List[List[T]]:
    size = max(1, size)
    return [list(items[i:i + size]) for i in range(0, len(items), size)]


def filter_children(
    node: Dict[str, Any],
    allowed_types: frozenset,
) -> List[Dict[str, Any]]:
    """Immediate children of ``node`` whose type is in ``allowed_types``."""
    return [
        child for child in node.get("children", []) or []
        if child.get("type") in allowed_types
    ]


def extract_text_lines(
    node: Dict[str, Any],
    max_depth: int = settings.FIGMA_TEXT_WALK_MAX_DEPTH,
) -> List[str]:
    """Collect every TEXT node's characters under ``node``, depth-first.

    Each line is prefixed with ``- ``. Subtrees below ``max_depth`` are skipped.
    """
    lines: List[str] = []

    def walk(current: Dict[str, Any], depth: int) -> None:
        if depth > max_depth:
            logger.warning(
                "extract_text_lines: depth cap %d reached at node %s",
                max_depth, current.get("id", "?"),
            )
            return
        if current.get("type") == "TEXT":
            chars = (current.get("characters") or "").strip()
            if chars:
                lines.append(f"- {chars}")
        for child in current.get("children", []) or []:
            walk(child, depth + 1)

    walk(node, 0)
    return lines


def extract_text(node: Dict[str, Any], max_depth: int = settings.FIGMA_TEXT_WALK_MAX_DEPTH) -> str:
    """Concatenated text block for a node (one ``- text`` line each), or ''."""
    lines = extract_text_lines(node, max_depth=max_depth)
    return "".join(f"{line}\n" for line in lines)
