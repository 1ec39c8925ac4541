"""Uploads chunks whose content changed since their last successful upload."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Callable, Optional

from .chunk_store import ChunkStore
from .collaborators import CloudStore, DocumentAssembler
from .types import Chunk, ChunkState, CompressionLevel, artifact_filename

logger = logging.getLogger(__name__)

StatusCallback = Callable[[str], None]


@dataclass(frozen=True)
class SyncOutcome:
    ordinal: int
    title: str
    succeeded: bool
    applied: bool = True    # False when the chunk was replaced mid-upload
    detail: Optional[str] = None


class SyncDriver:
    """Moves one chunk per step through Uploading to Synced or Dirty.

    The lowest-ordinal chunk needing attention goes first. After a failure
    the next step looks past the failed chunk before wrapping around, so a
    chunk that keeps failing never starves the ones behind it.
    """

    def __init__(
        self,
        cloud: CloudStore,
        assembler: DocumentAssembler,
        *,
        status: Optional[StatusCallback] = None,
    ) -> None:
        self.cloud = cloud
        self.assembler = assembler
        self._status = status or (lambda message: None)
        self._resume_after: Optional[int] = None

    def reset(self) -> None:
        self._resume_after = None

    def pending(self, store: ChunkStore) -> Optional[Chunk]:
        return store.next_for_sync(after=self._resume_after)

    async def step(
        self,
        store: ChunkStore,
        container_id: str,
        level: CompressionLevel,
    ) -> Optional[SyncOutcome]:
        chunk = self.pending(store)
        if chunk is None:
            return None

        uploaded_hash = chunk.content_hash
        uploaded_title = chunk.title
        items = list(chunk.items)
        store.mark_uploading(chunk)
        self._status(f"Uploading {uploaded_title}...")
        try:
            data = await self.assembler.assemble(items, uploaded_title, level)
            await self.cloud.upload(container_id, artifact_filename(uploaded_title), data)
        except Exception as exc:  # noqa: BLE001
            logger.warning("Upload failed for chunk %s '%s': %s", chunk.ordinal, uploaded_title, exc)
            if store.contains(chunk) and chunk.state == ChunkState.UPLOADING:
                store.mark_dirty(chunk)
                self._resume_after = chunk.ordinal
            self._status(f"Upload failed for {uploaded_title}")
            return SyncOutcome(chunk.ordinal, uploaded_title, succeeded=False, detail=str(exc))

        if not store.contains(chunk) or chunk.state != ChunkState.UPLOADING:
            # invalidated while the upload was in flight
            logger.info("Discarding upload result for replaced chunk '%s'", uploaded_title)
            return SyncOutcome(chunk.ordinal, uploaded_title, succeeded=True, applied=False)

        store.mark_synced(chunk, uploaded_hash, uploaded_title)
        self._resume_after = None
        self._status(f"Saved {uploaded_title}")
        return SyncOutcome(chunk.ordinal, uploaded_title, succeeded=True)
