"""PDF assembly for packed volumes."""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from io import BytesIO
from typing import List, Optional, Sequence

from PIL import Image, UnidentifiedImageError
from pypdf import PdfReader, PdfWriter
from pypdf.annotations import FreeText
from pypdf.errors import PdfReadError

from .compression import ImageCompressor
from .packing.collaborators import AssemblyError, CompressionError
from .packing.types import CompressionLevel, Item, ItemKind

logger = logging.getLogger(__name__)

A4_WIDTH = 595.28
A4_HEIGHT = A4_WIDTH * 1.414
MARGIN = 50.0


@dataclass(frozen=True)
class _LoadedItem:
    item: Item
    data: Optional[bytes]
    error: Optional[str] = None


def _image_pages(data: bytes) -> PdfReader:
    with Image.open(BytesIO(data)) as image:
        if image.mode not in ("RGB", "L"):
            image = image.convert("RGB")
        buffer = BytesIO()
        image.save(buffer, format="PDF", resolution=72.0)
    buffer.seek(0)
    return PdfReader(buffer)


def _annotate(writer: PdfWriter, page_index: int, text: str, top: float, height: float = 60.0) -> None:
    page = writer.pages[page_index]
    width = float(page.mediabox.width)
    rect = (MARGIN, max(0.0, top - height), max(MARGIN + 1, width - MARGIN), top)
    writer.add_annotation(page_number=page_index, annotation=FreeText(text=text, rect=rect, font_size="12pt"))


def _append_pages(writer: PdfWriter, reader: PdfReader) -> int:
    """Append every page scaled to A4 width; returns the index of the first."""
    first = len(writer.pages)
    for source in reader.pages:
        page = writer.add_page(source)
        width = float(page.mediabox.width)
        if width > 0 and abs(width - A4_WIDTH) > 0.01:
            page.scale_by(A4_WIDTH / width)
    return first


def build_pdf(loaded: Sequence[_LoadedItem], title: str) -> bytes:
    """Assemble a volume from pre-loaded item bytes.

    An item whose bytes cannot be read is replaced by a placeholder page
    naming it so one bad file never sinks the whole volume.
    """
    writer = PdfWriter()
    for entry in loaded:
        item = entry.item
        first: Optional[int] = None
        error = entry.error
        if entry.data is not None:
            try:
                if item.kind == ItemKind.IMAGE:
                    first = _append_pages(writer, _image_pages(entry.data))
                elif item.kind in (ItemKind.PDF, ItemKind.DOCUMENT):
                    first = _append_pages(writer, PdfReader(BytesIO(entry.data)))
                else:
                    writer.add_blank_page(width=A4_WIDTH, height=A4_HEIGHT)
                    first = len(writer.pages) - 1
                    text = entry.data.decode("utf-8", errors="replace")
                    _annotate(writer, first, text, A4_HEIGHT - MARGIN, A4_HEIGHT - 2 * MARGIN)
            except (PdfReadError, UnidentifiedImageError, OSError, ValueError) as exc:
                error = str(exc)
                first = None

        if first is None:
            logger.warning("Adding placeholder page for %s: %s", item.name, error)
            writer.add_blank_page(width=A4_WIDTH, height=A4_HEIGHT)
            _annotate(writer, len(writer.pages) - 1, f"Could not include {item.name}", A4_HEIGHT - MARGIN)
            continue

        top = float(writer.pages[first].mediabox.height) - MARGIN / 2
        if item.header_text and item.kind != ItemKind.TEXT:
            _annotate(writer, first, item.header_text, top)
        if item.description and item.kind != ItemKind.TEXT:
            _annotate(writer, first, item.description, MARGIN + 60.0)
        for key, note in item.page_meta.items():
            try:
                offset = int(key)
            except (TypeError, ValueError):
                continue
            if note and 0 <= offset < len(writer.pages) - first:
                _annotate(writer, first + offset, str(note), MARGIN + 130.0)

    if not writer.pages:
        writer.add_blank_page(width=A4_WIDTH, height=A4_HEIGHT)
    writer.add_metadata({"/Title": title})
    buffer = BytesIO()
    writer.write(buffer)
    return buffer.getvalue()


class PdfAssembler:
    """DocumentAssembler producing one PDF per chunk."""

    def __init__(self, compressor: ImageCompressor) -> None:
        self.compressor = compressor

    async def assemble(self, items: Sequence[Item], title: str, level: CompressionLevel) -> bytes:
        loaded: List[_LoadedItem] = []
        for item in items:
            try:
                data = await self.compressor.load(item, level)
            except CompressionError as exc:
                loaded.append(_LoadedItem(item=item, data=None, error=str(exc)))
                continue
            loaded.append(_LoadedItem(item=item, data=data))
        try:
            return await asyncio.to_thread(build_pdf, loaded, title)
        except Exception as exc:  # noqa: BLE001
            raise AssemblyError(f"Could not assemble {title}: {exc}") from exc
