"""Authoritative chunk list and the per-chunk sync state machine."""
from __future__ import annotations

import logging
from typing import Dict, FrozenSet, Iterator, List, Optional

from .types import Chunk, ChunkState

logger = logging.getLogger(__name__)


class ChunkStateError(RuntimeError):
    """Raised when a chunk is asked to make a transition its state forbids."""


ALLOWED_TRANSITIONS: Dict[ChunkState, FrozenSet[ChunkState]] = {
    ChunkState.PENDING_OPTIMIZATION: frozenset({ChunkState.OPTIMIZED}),
    ChunkState.OPTIMIZED: frozenset({ChunkState.UPLOADING, ChunkState.PENDING_OPTIMIZATION}),
    ChunkState.UPLOADING: frozenset(
        {ChunkState.SYNCED, ChunkState.DIRTY, ChunkState.PENDING_OPTIMIZATION}
    ),
    ChunkState.SYNCED: frozenset({ChunkState.DIRTY, ChunkState.PENDING_OPTIMIZATION}),
    ChunkState.DIRTY: frozenset({ChunkState.UPLOADING, ChunkState.PENDING_OPTIMIZATION}),
}


class ChunkStore:
    """Ordered list of finalized chunks.

    The store covers a strict prefix of the item sequence; ``cursor`` is the
    number of items it holds. Only the owning session writes to it.
    """

    def __init__(self) -> None:
        self._chunks: List[Chunk] = []

    def __len__(self) -> int:
        return len(self._chunks)

    def __iter__(self) -> Iterator[Chunk]:
        return iter(self._chunks)

    def __getitem__(self, index: int) -> Chunk:
        return self._chunks[index]

    @property
    def chunks(self) -> List[Chunk]:
        return list(self._chunks)

    @property
    def cursor(self) -> int:
        return sum(len(chunk.items) for chunk in self._chunks)

    def contains(self, chunk: Chunk) -> bool:
        return any(existing is chunk for existing in self._chunks)

    # ------------------------------------------------------------------
    # Structure
    # ------------------------------------------------------------------

    def append(self, chunk: Chunk) -> None:
        expected = len(self._chunks) + 1
        if chunk.ordinal != expected:
            raise ChunkStateError(f"chunk ordinal {chunk.ordinal} appended at position {expected}")
        self._chunks.append(chunk)
        logger.info(
            "chunk %s '%s': finalized with %s items, %s bytes (%s)",
            chunk.ordinal,
            chunk.title,
            len(chunk.items),
            chunk.size_bytes,
            chunk.state.value,
        )

    def truncate(self, keep: int) -> List[Chunk]:
        """Drop every chunk from position ``keep`` on and return them."""
        dropped = self._chunks[keep:]
        self._chunks = self._chunks[:keep]
        for chunk in dropped:
            self._transition(chunk, ChunkState.PENDING_OPTIMIZATION)
        return dropped

    def clear(self) -> List[Chunk]:
        return self.truncate(0)

    def restore(self, chunks: List[Chunk]) -> None:
        self._chunks = list(chunks)

    # ------------------------------------------------------------------
    # Sync lifecycle
    # ------------------------------------------------------------------

    def needs_sync(self, chunk: Chunk) -> bool:
        if chunk.is_placeholder:
            return False
        if chunk.state in (ChunkState.OPTIMIZED, ChunkState.DIRTY):
            return True
        return chunk.state == ChunkState.SYNCED and not chunk.is_synced

    def next_for_sync(self, after: Optional[int] = None) -> Optional[Chunk]:
        """Lowest-ordinal chunk needing an upload.

        With ``after`` set, chunks past that ordinal are preferred and the
        scan wraps around to the start.
        """
        candidates = [chunk for chunk in self._chunks if self.needs_sync(chunk)]
        if not candidates:
            return None
        if after is not None:
            later = [chunk for chunk in candidates if chunk.ordinal > after]
            if later:
                return later[0]
        return candidates[0]

    def mark_uploading(self, chunk: Chunk) -> None:
        if chunk.state == ChunkState.SYNCED:
            # content or title moved on since the last upload
            self._transition(chunk, ChunkState.DIRTY)
        self._transition(chunk, ChunkState.UPLOADING)

    def mark_synced(self, chunk: Chunk, uploaded_hash: str, uploaded_title: str) -> None:
        chunk.last_synced_hash = uploaded_hash
        chunk.last_synced_title = uploaded_title
        chunk.failed_uploads = 0
        self._transition(chunk, ChunkState.SYNCED)

    def mark_dirty(self, chunk: Chunk) -> None:
        chunk.failed_uploads += 1
        self._transition(chunk, ChunkState.DIRTY)

    def mark_stale(self, chunk: Chunk) -> None:
        """Flag a synced chunk whose artifact no longer matches it."""
        if chunk.state == ChunkState.SYNCED:
            self._transition(chunk, ChunkState.DIRTY)

    def _transition(self, chunk: Chunk, target: ChunkState) -> None:
        if chunk.state == target:
            return
        if target not in ALLOWED_TRANSITIONS[chunk.state]:
            raise ChunkStateError(
                f"chunk {chunk.ordinal} cannot move from {chunk.state.value} to {target.value}"
            )
        logger.info("chunk %s '%s': %s -> %s", chunk.ordinal, chunk.title, chunk.state.value, target.value)
        chunk.state = target
