"""A packing session: the single owner of one book's chunk state."""
from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from typing import Callable, Dict, List, Optional, Sequence

from .chunk_store import ChunkStore
from .collaborators import CloudStore, CloudStoreError, Compressor, DocumentAssembler
from .estimator import SizeEstimator
from .partitioner import CompressionCache, Partitioner
from .revalidation import RevalidationChecker
from .status import StatusFeed
from .sync_driver import SyncDriver, SyncOutcome
from .types import Chunk, ChunkState, Item, PackingParameters, artifact_filename, chunk_title

logger = logging.getLogger(__name__)

ChangeListener = Callable[[], None]


@dataclass(frozen=True)
class ChunkView:
    ordinal: int
    item_ids: List[str]
    size_bytes: int
    state: ChunkState
    title: str
    oversized: bool = False
    is_optimized: bool = True


class PackingSession:
    """Holds the item sequence, parameters, chunk store and cursor for a book.

    Edits go through :meth:`on_items_changed`, :meth:`on_parameters_changed`
    and :meth:`on_title_changed`; each bumps ``generation``. Step coroutines
    snapshot the generation before awaiting a collaborator and drop their
    result when it moved in the meantime.
    """

    def __init__(
        self,
        book_id: str,
        title: str,
        *,
        compressor: Compressor,
        assembler: DocumentAssembler,
        cloud: CloudStore,
        parameters: Optional[PackingParameters] = None,
        container_id: Optional[str] = None,
        container_title: Optional[str] = None,
        root_container_id: Optional[str] = None,
        root_folder_name: Optional[str] = None,
        part_label: str = "Part",
        verify_threshold: float = 0.85,
        max_assembly_failures: int = 3,
        compression_retry_limit: int = 3,
        status: Optional[StatusFeed] = None,
    ) -> None:
        self.book_id = book_id
        self.title = title
        self.container_id = container_id
        self.container_title = container_title or (title if container_id else None)
        self.root_container_id = root_container_id
        self.root_folder_name = root_folder_name
        # stored artifact name -> name it should carry after a title change
        self.artifact_renames: Dict[str, str] = {}
        self.part_label = part_label
        self.parameters = parameters or PackingParameters()
        self.compressor = compressor
        self.assembler = assembler
        self.cloud = cloud
        self.verify_threshold = verify_threshold
        self.max_assembly_failures = max_assembly_failures
        self.compression_retry_limit = compression_retry_limit
        self.status = status or StatusFeed()
        self.store = ChunkStore()
        self.revalidator = RevalidationChecker()
        self.cache = CompressionCache()
        self.partitioner = self._build_partitioner()
        self.sync_driver = SyncDriver(cloud, assembler, status=self.status.publish)
        self.generation = 0
        self._items: List[Item] = []
        self._listeners: List[ChangeListener] = []
        self._ensure_placeholder()

    def _build_partitioner(self) -> Partitioner:
        return Partitioner(
            self.compressor,
            self.assembler,
            self.parameters,
            verify_threshold=self.verify_threshold,
            max_assembly_failures=self.max_assembly_failures,
            cache=self.cache,
            status=self.status.publish,
        )

    # ------------------------------------------------------------------
    # Observers
    # ------------------------------------------------------------------

    @property
    def items(self) -> List[Item]:
        return list(self._items)

    @property
    def cursor(self) -> int:
        return self.store.cursor

    @property
    def fully_packed(self) -> bool:
        return self.cursor == len(self._items)

    @property
    def fully_synced(self) -> bool:
        return self.fully_packed and self.sync_driver.pending(self.store) is None

    def chunks(self) -> List[ChunkView]:
        return [
            ChunkView(
                ordinal=chunk.ordinal,
                item_ids=chunk.item_ids,
                size_bytes=chunk.size_bytes,
                state=chunk.state,
                title=chunk.title,
                oversized=chunk.oversized,
                is_optimized=chunk.is_optimized,
            )
            for chunk in self.store
        ]

    def pending_view(self) -> Optional[ChunkView]:
        """The unassigned tail, shown as the part currently being packed."""
        if self.fully_packed:
            return None
        remaining = self._items[self.cursor:]
        ordinal = len(self.store) + 1
        return ChunkView(
            ordinal=ordinal,
            item_ids=[item.item_id for item in remaining],
            size_bytes=SizeEstimator(self.parameters).estimate_batch(remaining),
            state=ChunkState.PENDING_OPTIMIZATION,
            title=self._title_for(ordinal),
            is_optimized=False,
        )

    def add_listener(self, listener: ChangeListener) -> None:
        self._listeners.append(listener)

    def remove_listener(self, listener: ChangeListener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    # ------------------------------------------------------------------
    # Edits
    # ------------------------------------------------------------------

    def on_items_changed(self, items: Sequence[Item]) -> None:
        self._items = [self._hydrate(item) for item in items]
        self._revalidate()
        self._changed()

    def on_parameters_changed(self, parameters: PackingParameters) -> None:
        if parameters == self.parameters:
            return
        logger.info("Book %s: parameters changed to %s; repacking from the start", self.book_id, parameters)
        self.parameters = parameters
        self.partitioner = self._build_partitioner()
        self.store.clear()
        self.sync_driver.reset()
        self._ensure_placeholder()
        self.status.publish("Settings changed, repacking")
        self._changed()

    def on_title_changed(self, title: str) -> None:
        if title == self.title:
            return
        self.title = title
        for chunk in self.store:
            previous = chunk.title
            chunk.title = self._title_for(chunk.ordinal)
            if chunk.is_placeholder:
                chunk.last_synced_title = chunk.title
            else:
                self._queue_rename(artifact_filename(previous), artifact_filename(chunk.title))
                self.store.mark_stale(chunk)
        self._changed()

    def _queue_rename(self, old: str, new: str) -> None:
        """Record that the artifact stored as ``old`` should become ``new``.

        Chained renames collapse onto the name actually stored.
        """
        for source, target in list(self.artifact_renames.items()):
            if target == old:
                del self.artifact_renames[source]
                old = source
                break
        if old != new:
            self.artifact_renames[old] = new

    def _revalidate(self) -> None:
        verdict = self.revalidator.check(self.store.chunks, self._items)
        if verdict.keep < len(self.store):
            self.store.truncate(verdict.keep)
            self.partitioner.reset_failures()
            self.sync_driver.reset()
        self._ensure_placeholder()

    def _ensure_placeholder(self) -> None:
        if not self._items and len(self.store) == 0:
            self.store.append(Partitioner.placeholder(self._title_for(1)))

    def _changed(self) -> None:
        self.generation += 1
        for listener in list(self._listeners):
            listener()

    def _title_for(self, ordinal: int) -> str:
        return chunk_title(self.title, ordinal, self.part_label)

    # ------------------------------------------------------------------
    # Steps
    # ------------------------------------------------------------------

    async def partition_step(self) -> bool:
        """Finalize at most one chunk. Returns True when the store grew."""
        if self.fully_packed:
            return False
        token = self.generation
        ordinal = len(self.store) + 1
        start = self.cursor
        result = await self.partitioner.pack_next(self._items, start, ordinal, self._title_for(ordinal))
        # keep the unpacked tail in step with sizes the partitioner just cached
        cursor = self.cursor
        self._items = self._items[:cursor] + [self._hydrate(item) for item in self._items[cursor:]]
        if token != self.generation:
            logger.debug("Dropping stale partition result for part %s", ordinal)
            return False
        if result.chunk is None:
            return False
        self.store.append(result.chunk)
        self.status.publish(
            "All parts packed" if self.fully_packed else f"Part {ordinal} ready"
        )
        return True

    async def sync_step(self) -> Optional[SyncOutcome]:
        if self.sync_driver.pending(self.store) is None:
            return None
        await self._ensure_container()
        await self._apply_renames()
        outcome = await self.sync_driver.step(self.store, self.container_id, self.parameters.compression_level)
        if outcome and self.fully_synced:
            self.status.publish("All parts saved")
        return outcome

    async def _ensure_container(self) -> None:
        if self.container_id:
            return
        if self.root_container_id is None and self.root_folder_name:
            self.root_container_id = await self.cloud.ensure_folder(None, self.root_folder_name)
        title = self.title
        self.container_id = await self.cloud.ensure_folder(self.root_container_id, title)
        self.container_title = title
        logger.info("Book %s stored in container %s", self.book_id, self.container_id)

    async def _apply_renames(self) -> None:
        """Bring the book folder and stored artifacts in line with the title.

        A failed rename is kept for the next sync step; uploads go ahead
        meanwhile.
        """
        title = self.title
        if self.container_title is not None and self.container_title != title:
            try:
                self.container_id = await self.cloud.rename_folder(self.container_id, title)
            except CloudStoreError as exc:
                logger.warning("Could not rename folder of book %s to '%s': %s", self.book_id, title, exc)
            else:
                self.container_title = title
        while self.artifact_renames:
            old, new = next(iter(self.artifact_renames.items()))
            try:
                await self.cloud.rename(self.container_id, old, new)
            except CloudStoreError as exc:
                logger.warning("Could not rename %s to %s: %s", old, new, exc)
                return
            target = self.artifact_renames.pop(old, None)
            if target is not None and target != new:
                # retitled again while the rename was in flight
                self.artifact_renames[new] = target

    async def recompress_step(self) -> bool:
        """Retry compression for items packed from raw-size estimates.

        A success swaps in the processed item and revalidates, which reopens
        the chunk holding it. Returns True when anything changed.
        """
        if not self.fully_packed:
            return False
        level = self.parameters.compression_level
        for chunk in self.store:
            if chunk.is_optimized:
                continue
            for item in chunk.items:
                if item.is_processed_at(level):
                    continue
                if self.cache.failures(item, level) > self.compression_retry_limit:
                    continue
                token = self.generation
                try:
                    processed = await self.compressor.process(item, level)
                except Exception as exc:  # noqa: BLE001
                    attempts = self.cache.record_failure(item, level)
                    logger.warning("Compression retry %s failed for %s: %s", attempts, item.name, exc)
                    continue
                self.cache.put(item, level, processed.size)
                if token != self.generation:
                    return False
                self.on_items_changed(self._items)
                return True
        return False

    async def pack_to_end(self, max_steps: int = 10_000) -> None:
        """Drive packing to completion without debouncing (CLI and tests)."""
        for _ in range(max_steps):
            if self.fully_packed:
                return
            await self.partition_step()
        raise RuntimeError(f"Packing did not finish within {max_steps} steps")

    def _hydrate(self, item: Item) -> Item:
        """Fill in a processed size already known for the current level."""
        level = self.parameters.compression_level
        if item.is_processed_at(level):
            return item
        cached = self.cache.get(item, level)
        if cached is None:
            return item
        return replace(item, processed_size=cached, compression_level_used=level)

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def restore(self, items: Sequence[Item], chunks: Sequence[Chunk]) -> None:
        """Reinstate persisted state, then revalidate it against ``items``."""
        self._items = list(items)
        for item in self._items:
            if item.processed_size is not None and item.compression_level_used is not None:
                self.cache.put(item, item.compression_level_used, item.processed_size)
        restored: List[Chunk] = []
        for chunk in chunks:
            if chunk.state == ChunkState.UPLOADING:
                # interrupted upload: retry it
                chunk.state = ChunkState.DIRTY
            restored.append(chunk)
        self.store.restore(restored)
        self._revalidate()
        self._changed()
