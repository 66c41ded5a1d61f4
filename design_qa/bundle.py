"""Content bundle — the inputs handed to the model.

A ContentItem is either an inline image (base64 data URL + MIME type) or a
labeled text block. Local files are classified by MIME type; the Figma
importer builds items directly.
"""

from __future__ import annotations

import base64
import mimetypes
import uuid
from pathlib import Path
from typing import Iterable, List, Literal

from pydantic import BaseModel, ConfigDict, Field


class ContentItem(BaseModel):
    """One unit of model input. Immutable once constructed."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    name: str
    kind: Literal["image", "text"]
    mime_type: str
    content: str  # data URL / base64 for images, plain text otherwise

    @classmethod
    def image(cls, name: str, data: bytes, mime_type: str = "image/jpeg") -> "ContentItem":
        encoded = base64.b64encode(data).decode("ascii")
        return cls(
            name=name,
            kind="image",
            mime_type=mime_type,
            content=f"data:{mime_type};base64,{encoded}",
        )

    @classmethod
    def text(cls, name: str, text: str) -> "ContentItem":
        return cls(name=name, kind="text", mime_type="text/plain", content=text)

    @property
    def is_image(self) -> bool:
        return self.kind == "image"

    def image_bytes(self) -> bytes:
        """Decode the inline image, accepting both data URLs and bare base64."""
        payload = self.content.split(",", 1)[1] if "," in self.content else self.content
        return base64.b64decode(payload)

    def to_prompt_text(self) -> str:
        return f"[File: {self.name}]\n{self.content}"


def _guess_mime(path: Path) -> str:
    mime, _ = mimetypes.guess_type(path.name)
    return mime or "text/plain"


def content_item_from_path(path: str | Path) -> ContentItem:
    """Classify a local file: ``image/*`` becomes inline binary, anything else text."""
    path = Path(path)
    mime = _guess_mime(path)
    if mime.startswith("image/"):
        return ContentItem.image(path.name, path.read_bytes(), mime_type=mime)
    return ContentItem.text(path.name, path.read_text(encoding="utf-8", errors="replace"))


def load_content_items(paths: Iterable[str | Path]) -> List[ContentItem]:
    return [content_item_from_path(p) for p in paths]
