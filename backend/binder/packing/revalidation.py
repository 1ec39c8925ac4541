"""Prefix-stable repair of a chunk list after the item sequence changes."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Sequence

from .hashing import same_content
from .types import Chunk, ChunkState, Item

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Revalidation:
    keep: int       # number of leading chunks that stay as they are
    cursor: int     # items covered by the kept chunks


class RevalidationChecker:
    """Find the longest run of leading chunks still valid for ``items``.

    Chunks are compared against same-length slices of the new sequence on
    item id and fingerprint. The first mismatch drops that chunk and all
    later ones. When every chunk matches, the last one is reopened unless it
    is already synced, so an unpersisted boundary is never locked in.
    """

    def check(self, chunks: Sequence[Chunk], items: Sequence[Item]) -> Revalidation:
        keep = 0
        offset = 0
        for chunk in chunks:
            if chunk.is_placeholder:
                if items:
                    break
                keep += 1
                continue
            end = offset + len(chunk.items)
            if end > len(items):
                break
            window = items[offset:end]
            if not all(same_content(old, new) for old, new in zip(chunk.items, window)):
                break
            keep += 1
            offset = end

        if keep and keep == len(chunks):
            last = chunks[-1]
            if not last.is_placeholder and last.state != ChunkState.SYNCED:
                keep -= 1
                offset -= len(last.items)

        if keep < len(chunks):
            logger.debug("Revalidation keeps %s of %s chunks (cursor %s)", keep, len(chunks), offset)
        return Revalidation(keep=keep, cursor=offset)
