"""Content fingerprints for items and chunks."""
from __future__ import annotations

import hashlib
import json
from typing import Iterable

from .types import Item

EMPTY_CHUNK_HASH = hashlib.sha256(b"").hexdigest()


def item_fingerprint(item: Item) -> str:
    """Digest of everything that affects an item's assembled bytes."""
    digest = hashlib.sha256()
    level = item.compression_level_used.value if item.compression_level_used else ""
    processed = "" if item.processed_size is None else str(item.processed_size)
    for part in (
        item.item_id,
        item.revision,
        str(item.raw_size),
        processed,
        level,
        item.header_text,
        item.description,
        json.dumps(item.page_meta, sort_keys=True, ensure_ascii=False, default=str),
    ):
        encoded = part.encode("utf-8")
        # length prefix keeps field boundaries unambiguous
        digest.update(len(encoded).to_bytes(8, "big"))
        digest.update(encoded)
    return digest.hexdigest()


def chunk_content_hash(items: Iterable[Item]) -> str:
    """Ordered hash-of-hashes over a chunk's items."""
    digest = hashlib.sha256()
    for item in items:
        digest.update(f"{item.item_id}:{item_fingerprint(item)}\n".encode("utf-8"))
    return digest.hexdigest()


def same_content(left: Item, right: Item) -> bool:
    return left.item_id == right.item_id and item_fingerprint(left) == item_fingerprint(right)
