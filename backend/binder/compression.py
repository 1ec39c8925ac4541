"""Image recompression for packed items."""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from io import BytesIO
from pathlib import Path
from typing import Dict, Optional, Tuple

from PIL import Image, UnidentifiedImageError

from .packing.collaborators import CompressionError, ProcessedItem
from .packing.types import CompressionLevel, Item, ItemKind

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class JpegProfile:
    quality: int
    max_width: int


JPEG_PROFILES: Dict[CompressionLevel, JpegProfile] = {
    CompressionLevel.LOW: JpegProfile(quality=90, max_width=2500),
    CompressionLevel.MEDIUM: JpegProfile(quality=70, max_width=1600),
    CompressionLevel.HIGH: JpegProfile(quality=50, max_width=1024),
}


def load_source(item: Item) -> bytes:
    """Read the bytes behind an item, or its text when it has no file."""
    if item.source:
        path = Path(item.source)
        try:
            return path.read_bytes()
        except OSError as exc:
            raise CompressionError(f"Could not read {item.name}: {exc}") from exc
    if item.kind == ItemKind.TEXT:
        return "\n\n".join(part for part in (item.header_text, item.description) if part).encode("utf-8")
    raise CompressionError(f"Item {item.name} has no source")


def recompress_image(data: bytes, level: CompressionLevel) -> bytes:
    profile = JPEG_PROFILES[level]
    try:
        with Image.open(BytesIO(data)) as image:
            image.load()
            if image.mode not in ("RGB", "L"):
                image = image.convert("RGB")
            if image.width > profile.max_width:
                height = max(1, round(image.height * profile.max_width / image.width))
                image = image.resize((profile.max_width, height), Image.LANCZOS)
            buffer = BytesIO()
            image.save(buffer, format="JPEG", quality=profile.quality, optimize=True)
    except (UnidentifiedImageError, OSError, ValueError) as exc:
        raise CompressionError(f"Could not recompress image: {exc}") from exc
    return buffer.getvalue()


class ImageCompressor:
    """Compressor that re-encodes images as JPEG and passes other kinds through.

    Results are cached per item source revision and level so repeated
    packing passes and the assembler share one encode.
    """

    def __init__(self) -> None:
        self._cache: Dict[Tuple[str, str, int, Optional[str], CompressionLevel], bytes] = {}

    async def process(self, item: Item, level: CompressionLevel) -> ProcessedItem:
        data = await self.load(item, level)
        return ProcessedItem(data=data, size=len(data))

    async def load(self, item: Item, level: CompressionLevel) -> bytes:
        key = (item.item_id, item.revision, item.raw_size, item.source, level)
        cached = self._cache.get(key)
        if cached is not None:
            return cached
        data = await asyncio.to_thread(self._encode, item, level)
        self._cache[key] = data
        return data

    @staticmethod
    def _encode(item: Item, level: CompressionLevel) -> bytes:
        raw = load_source(item)
        if item.kind != ItemKind.IMAGE:
            return raw
        data = recompress_image(raw, level)
        logger.debug("Compressed %s: %s -> %s bytes (%s)", item.name, len(raw), len(data), level.value)
        return data
