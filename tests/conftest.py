import sys
from pathlib import Path
from typing import Callable, Dict, List, Optional, Sequence, Tuple

import pytest

PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from backend.binder.packing.collaborators import (  # noqa: E402
    AssemblyError,
    CloudStoreError,
    CompressionError,
    ProcessedItem,
)
from backend.binder.packing.estimator import PDF_OVERHEAD_BASE, PDF_OVERHEAD_PER_PAGE  # noqa: E402
from backend.binder.packing.types import CompressionLevel, Item, ItemKind  # noqa: E402


def make_item(item_id: str, raw_size: int = 1000, **kwargs) -> Item:
    kwargs.setdefault("name", f"{item_id}.jpg")
    return Item(item_id=item_id, raw_size=raw_size, **kwargs)


def make_items(count: int, raw_size: int = 1000, kind: ItemKind = ItemKind.IMAGE) -> List[Item]:
    return [make_item(f"item-{index}", raw_size, kind=kind) for index in range(1, count + 1)]


def item_bytes(item: Item) -> int:
    if item.processed_size is not None:
        return item.processed_size
    return item.raw_size


class FakeCompressor:
    """Returns the raw size scaled by ``ratio``; ids in ``failing`` always fail."""

    def __init__(self, ratio: float = 1.0, failing: Sequence[str] = ()) -> None:
        self.ratio = ratio
        self.failing = set(failing)
        self.calls: List[Tuple[str, CompressionLevel]] = []

    async def process(self, item: Item, level: CompressionLevel) -> ProcessedItem:
        self.calls.append((item.item_id, level))
        if item.item_id in self.failing:
            raise CompressionError(f"cannot read {item.name}")
        size = int(item.raw_size * self.ratio)
        return ProcessedItem(data=b"", size=size)


class FakeAssembler:
    """Sizes a volume as base overhead plus each item's bytes and page overhead."""

    def __init__(self, extra_per_item: int = 0, fail_when: Optional[Callable[[Sequence[Item]], bool]] = None) -> None:
        self.extra_per_item = extra_per_item
        self.fail_when = fail_when
        self.calls: List[List[str]] = []

    def size_of(self, items: Sequence[Item]) -> int:
        return PDF_OVERHEAD_BASE + sum(
            item_bytes(item) + PDF_OVERHEAD_PER_PAGE + self.extra_per_item for item in items
        )

    async def assemble(self, items: Sequence[Item], title: str, level: CompressionLevel) -> bytes:
        self.calls.append([item.item_id for item in items])
        if self.fail_when is not None and self.fail_when(items):
            raise AssemblyError("assembler crashed")
        return bytes(self.size_of(items))


class FakeCloudStore:
    """In-memory CloudStore; ``failures`` maps filename to remaining failures."""

    def __init__(self, failures: Optional[Dict[str, int]] = None) -> None:
        self.files: Dict[Tuple[str, str], bytes] = {}
        self.uploads: List[Tuple[str, str]] = []
        self.failures = dict(failures or {})
        self.folders: Dict[Tuple[Optional[str], str], str] = {}

    async def upload(self, container_id: str, filename: str, data: bytes) -> None:
        remaining = self.failures.get(filename, 0)
        if remaining:
            self.failures[filename] = remaining - 1
            raise CloudStoreError(f"upload of {filename} rejected")
        self.files[(container_id, filename)] = data
        self.uploads.append((container_id, filename))

    async def exists(self, container_id: str, filename: str) -> Optional[str]:
        return filename if (container_id, filename) in self.files else None

    async def ensure_folder(self, parent_id: Optional[str], name: str) -> str:
        key = (parent_id, name)
        if key not in self.folders:
            self.folders[key] = f"folder-{len(self.folders) + 1}"
        return self.folders[key]

    async def rename(self, container_id: str, filename: str, new_filename: str) -> None:
        data = self.files.pop((container_id, filename), None)
        if data is not None:
            self.files.setdefault((container_id, new_filename), data)

    async def rename_folder(self, folder_id: str, name: str) -> str:
        for (parent_id, current), existing in list(self.folders.items()):
            if existing == folder_id:
                del self.folders[(parent_id, current)]
                self.folders[(parent_id, name)] = folder_id
        return folder_id


@pytest.fixture
def compressor() -> FakeCompressor:
    return FakeCompressor()


@pytest.fixture
def assembler() -> FakeAssembler:
    return FakeAssembler()


@pytest.fixture
def cloud() -> FakeCloudStore:
    return FakeCloudStore()
