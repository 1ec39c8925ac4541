"""Pydantic models for the book packing endpoints and persisted sessions."""
from __future__ import annotations

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from .packing.hashing import chunk_content_hash
from .packing.session import ChunkView, PackingSession
from .packing.types import (
    Boundary,
    Chunk,
    ChunkState,
    CompressionLevel,
    Item,
    ItemKind,
    PackingParameters,
)


class ItemPayload(BaseModel):
    id: str
    name: str
    kind: ItemKind = ItemKind.IMAGE
    raw_size: int = Field(default=0, ge=0, description="Source size in bytes, 0 when unknown")
    revision: str = ""
    source: Optional[str] = None
    header_text: str = ""
    description: str = ""
    page_meta: Dict[str, Any] = Field(default_factory=dict)
    processed_size: Optional[int] = None
    compression_level_used: Optional[CompressionLevel] = None

    def to_item(self) -> Item:
        return Item(
            item_id=self.id,
            name=self.name,
            kind=self.kind,
            raw_size=self.raw_size,
            revision=self.revision,
            source=self.source,
            header_text=self.header_text,
            description=self.description,
            page_meta=dict(self.page_meta),
            processed_size=self.processed_size,
            compression_level_used=self.compression_level_used,
        )

    @classmethod
    def from_item(cls, item: Item) -> "ItemPayload":
        return cls(
            id=item.item_id,
            name=item.name,
            kind=item.kind,
            raw_size=item.raw_size,
            revision=item.revision,
            source=item.source,
            header_text=item.header_text,
            description=item.description,
            page_meta=dict(item.page_meta),
            processed_size=item.processed_size,
            compression_level_used=item.compression_level_used,
        )


class ParametersPayload(BaseModel):
    ceiling_mb: float = Field(gt=0)
    safety_margin_percent: float = Field(default=1.0, ge=0, le=100)
    compression_level: CompressionLevel = CompressionLevel.LOW

    def to_parameters(self) -> PackingParameters:
        return PackingParameters(
            ceiling_mb=self.ceiling_mb,
            safety_margin_percent=self.safety_margin_percent,
            compression_level=self.compression_level,
        )

    @classmethod
    def from_parameters(cls, parameters: PackingParameters) -> "ParametersPayload":
        return cls(
            ceiling_mb=parameters.ceiling_mb,
            safety_margin_percent=parameters.safety_margin_percent,
            compression_level=parameters.compression_level,
        )


class BookCreateRequest(BaseModel):
    title: str = Field(min_length=1)
    parameters: Optional[ParametersPayload] = None
    items: List[ItemPayload] = Field(default_factory=list)
    container_id: Optional[str] = None


class ItemsUpdateRequest(BaseModel):
    items: List[ItemPayload]


class TitleUpdateRequest(BaseModel):
    title: str = Field(min_length=1)


class ChunkPayload(BaseModel):
    ordinal: int
    item_ids: List[str]
    size_bytes: int
    state: ChunkState
    title: str
    oversized: bool = False
    is_optimized: bool = True

    @classmethod
    def from_view(cls, view: ChunkView) -> "ChunkPayload":
        return cls(
            ordinal=view.ordinal,
            item_ids=list(view.item_ids),
            size_bytes=view.size_bytes,
            state=view.state,
            title=view.title,
            oversized=view.oversized,
            is_optimized=view.is_optimized,
        )


class ChunkListResponse(BaseModel):
    book_id: str
    title: str
    chunks: List[ChunkPayload]
    pending: Optional[ChunkPayload] = None
    cursor: int
    total_items: int
    fully_packed: bool
    fully_synced: bool
    status: str = ""

    @classmethod
    def from_session(cls, session: PackingSession) -> "ChunkListResponse":
        pending = session.pending_view()
        return cls(
            book_id=session.book_id,
            title=session.title,
            chunks=[ChunkPayload.from_view(view) for view in session.chunks()],
            pending=ChunkPayload.from_view(pending) if pending else None,
            cursor=session.cursor,
            total_items=len(session.items),
            fully_packed=session.fully_packed,
            fully_synced=session.fully_synced,
            status=session.status.latest,
        )


class BookSummary(BaseModel):
    book_id: str
    title: str
    updated_at: str


# ----------------------------------------------------------------------
# Persistence
# ----------------------------------------------------------------------


class ChunkSnapshot(BaseModel):
    ordinal: int
    item_ids: List[str]
    size_bytes: int
    title: str
    content_hash: str
    state: ChunkState
    is_optimized: bool = True
    boundary: Boundary = Boundary.END_OF_INPUT
    oversized: bool = False
    last_synced_hash: Optional[str] = None
    last_synced_title: Optional[str] = None
    failed_uploads: int = 0

    @classmethod
    def from_chunk(cls, chunk: Chunk) -> "ChunkSnapshot":
        return cls(
            ordinal=chunk.ordinal,
            item_ids=chunk.item_ids,
            size_bytes=chunk.size_bytes,
            title=chunk.title,
            content_hash=chunk.content_hash,
            state=chunk.state,
            is_optimized=chunk.is_optimized,
            boundary=chunk.boundary,
            oversized=chunk.oversized,
            last_synced_hash=chunk.last_synced_hash,
            last_synced_title=chunk.last_synced_title,
            failed_uploads=chunk.failed_uploads,
        )

    def to_chunk(self, items_by_id: Dict[str, Item]) -> Optional[Chunk]:
        try:
            items = [items_by_id[item_id] for item_id in self.item_ids]
        except KeyError:
            return None
        if chunk_content_hash(items) != self.content_hash:
            return None
        return Chunk(
            ordinal=self.ordinal,
            items=items,
            size_bytes=self.size_bytes,
            title=self.title,
            content_hash=self.content_hash,
            state=self.state,
            is_optimized=self.is_optimized,
            boundary=self.boundary,
            oversized=self.oversized,
            last_synced_hash=self.last_synced_hash,
            last_synced_title=self.last_synced_title,
            failed_uploads=self.failed_uploads,
        )


class SessionSnapshot(BaseModel):
    """Everything needed to resume a session except item buffers."""

    book_id: str
    title: str
    container_id: Optional[str] = None
    container_title: Optional[str] = None
    parameters: ParametersPayload
    items: List[ItemPayload] = Field(default_factory=list)
    chunks: List[ChunkSnapshot] = Field(default_factory=list)
    cursor: int = 0
    artifact_renames: Dict[str, str] = Field(default_factory=dict)

    @classmethod
    def from_session(cls, session: PackingSession) -> "SessionSnapshot":
        return cls(
            book_id=session.book_id,
            title=session.title,
            container_id=session.container_id,
            container_title=session.container_title,
            parameters=ParametersPayload.from_parameters(session.parameters),
            items=[ItemPayload.from_item(item) for item in session.items],
            chunks=[ChunkSnapshot.from_chunk(chunk) for chunk in session.store],
            cursor=session.cursor,
            artifact_renames=dict(session.artifact_renames),
        )

    def to_items(self) -> List[Item]:
        return [payload.to_item() for payload in self.items]

    def to_chunks(self, items: List[Item]) -> List[Chunk]:
        """Rebuild chunks in order, stopping at the first that cannot be resolved."""
        items_by_id = {item.item_id: item for item in items}
        chunks: List[Chunk] = []
        for snapshot in self.chunks:
            chunk = snapshot.to_chunk(items_by_id)
            if chunk is None:
                break
            chunks.append(chunk)
        return chunks
