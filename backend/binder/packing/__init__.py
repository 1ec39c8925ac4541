"""Size-bounded packing of an ordered item sequence into uploadable volumes."""
from .chunk_store import ChunkStateError, ChunkStore
from .collaborators import AssemblyError, CloudStoreError, CompressionError, ProcessedItem
from .estimator import SizeEstimator
from .partitioner import CompressionCache, PackResult, Partitioner
from .revalidation import Revalidation, RevalidationChecker
from .scheduler import Scheduler
from .session import ChunkView, PackingSession
from .status import StatusFeed, StatusMessage
from .sync_driver import SyncDriver, SyncOutcome
from .types import (
    Boundary,
    Chunk,
    ChunkState,
    CompressionLevel,
    Item,
    ItemKind,
    PackingParameters,
)

__all__ = [
    "AssemblyError",
    "Boundary",
    "Chunk",
    "ChunkState",
    "ChunkStateError",
    "ChunkStore",
    "ChunkView",
    "CloudStoreError",
    "CompressionCache",
    "CompressionError",
    "CompressionLevel",
    "Item",
    "ItemKind",
    "PackResult",
    "PackingParameters",
    "PackingSession",
    "Partitioner",
    "ProcessedItem",
    "Revalidation",
    "RevalidationChecker",
    "Scheduler",
    "SizeEstimator",
    "StatusFeed",
    "StatusMessage",
    "SyncDriver",
    "SyncOutcome",
]
