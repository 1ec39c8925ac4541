"""Contracts for the I/O collaborators the packing engine drives."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Optional, Protocol, Sequence

from .types import CompressionLevel, Item


class CompressionError(RuntimeError):
    """Raised when an item cannot be loaded or compressed."""


class AssemblyError(RuntimeError):
    """Raised when a volume cannot be assembled."""


class CloudStoreError(RuntimeError):
    """Raised when the cloud store rejects a lookup or upload."""


@dataclass(frozen=True)
class ProcessedItem:
    data: bytes
    size: int


class Compressor(Protocol):
    async def process(self, item: Item, level: CompressionLevel) -> ProcessedItem:
        """Deterministic for the same item and level."""


class DocumentAssembler(Protocol):
    async def assemble(self, items: Sequence[Item], title: str, level: CompressionLevel) -> bytes:
        """Build the volume holding ``items`` in order."""


class CloudStore(Protocol):
    async def upload(self, container_id: str, filename: str, data: bytes) -> None:
        """Upsert keyed by filename within the container."""

    async def exists(self, container_id: str, filename: str) -> Optional[str]:
        """Return the stored object's id, or None."""

    async def ensure_folder(self, parent_id: Optional[str], name: str) -> str:
        """Find or create a named container."""

    async def rename(self, container_id: str, filename: str, new_filename: str) -> None:
        """Move an object to a new name; drop it when the new name is taken."""

    async def rename_folder(self, folder_id: str, name: str) -> str:
        """Rename a container and return its (possibly new) id."""
