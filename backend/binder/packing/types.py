"""Type definitions for the volume packing engine."""
from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional

MIB = 1024 * 1024


class CompressionLevel(str, Enum):
    """Compression applied to image items before assembly."""
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class ItemKind(str, Enum):
    IMAGE = "image"
    PDF = "pdf"
    TEXT = "text"
    DOCUMENT = "document"   # exported office document, assembled as PDF


class ChunkState(str, Enum):
    """Lifecycle of a chunk, from packing to a persisted artifact."""
    PENDING_OPTIMIZATION = "pending_optimization"
    OPTIMIZED = "optimized"
    UPLOADING = "uploading"
    SYNCED = "synced"
    DIRTY = "dirty"


class Boundary(str, Enum):
    """Why the partitioner closed a chunk where it did."""
    CEILING = "ceiling"             # next item would not fit
    END_OF_INPUT = "end_of_input"   # sequence exhausted
    OVERSIZE = "oversize"           # single item at or over the ceiling
    FALLBACK = "fallback"           # assembler failed, last known-good or estimated size kept


@dataclass(frozen=True)
class Item:
    """One source document as seen by the packer.

    Items are value objects: the packer never edits one, it swaps in an
    updated copy (see ``dataclasses.replace``) once compression finishes.
    """
    item_id: str
    name: str
    kind: ItemKind = ItemKind.IMAGE
    raw_size: int = 0
    revision: str = ""
    source: Optional[str] = None
    header_text: str = ""
    description: str = ""
    page_meta: Dict[str, Any] = field(default_factory=dict, hash=False, compare=False)
    processed_size: Optional[int] = None
    compression_level_used: Optional[CompressionLevel] = None

    def is_processed_at(self, level: CompressionLevel) -> bool:
        return self.processed_size is not None and self.compression_level_used == level


@dataclass(frozen=True)
class PackingParameters:
    ceiling_mb: float = 15.0
    safety_margin_percent: float = 1.0
    compression_level: CompressionLevel = CompressionLevel.LOW

    def __post_init__(self) -> None:
        if self.ceiling_mb <= 0:
            raise ValueError("ceiling_mb must be positive")
        if not 0 <= self.safety_margin_percent <= 100:
            raise ValueError("safety_margin_percent must be between 0 and 100")

    @property
    def ceiling_bytes(self) -> int:
        return int(self.ceiling_mb * MIB)


@dataclass
class Chunk:
    """A contiguous, size-bounded run of items destined for one volume."""
    ordinal: int                                # 1-based output position
    items: List[Item]
    size_bytes: int
    title: str
    content_hash: str
    state: ChunkState = ChunkState.OPTIMIZED
    is_optimized: bool = True                   # every item sized from a real compression
    boundary: Boundary = Boundary.END_OF_INPUT
    oversized: bool = False
    last_synced_hash: Optional[str] = None
    last_synced_title: Optional[str] = None
    failed_uploads: int = 0

    @property
    def item_ids(self) -> List[str]:
        return [item.item_id for item in self.items]

    @property
    def is_placeholder(self) -> bool:
        return not self.items

    @property
    def is_synced(self) -> bool:
        return (
            self.state == ChunkState.SYNCED
            and self.last_synced_hash == self.content_hash
            and self.last_synced_title == self.title
        )

    @property
    def filename(self) -> str:
        return artifact_filename(self.title)


def artifact_filename(title: str) -> str:
    """Deterministic artifact name for a chunk title."""
    cleaned = title.replace("/", "-").replace("\\", "-").strip()
    return f"{cleaned}.pdf"


def chunk_title(book_title: str, ordinal: int, part_label: str = "Part") -> str:
    return f"{book_title} ({part_label} {ordinal})"
