"""Estimate-then-verify bin packing of items into size-bounded chunks."""
from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from typing import Callable, Dict, List, Optional, Sequence, Tuple

from .collaborators import AssemblyError, Compressor, DocumentAssembler
from .estimator import PDF_OVERHEAD_BASE, SizeEstimator
from .hashing import EMPTY_CHUNK_HASH, chunk_content_hash
from .types import Boundary, Chunk, ChunkState, CompressionLevel, Item, PackingParameters

logger = logging.getLogger(__name__)

StatusCallback = Callable[[str], None]
CacheKey = Tuple[str, str, int, Optional[str], CompressionLevel]


def _cache_key(item: Item, level: CompressionLevel) -> CacheKey:
    return (item.item_id, item.revision, item.raw_size, item.source, level)


class CompressionCache:
    """Processed sizes and failure counts per (item source, level)."""

    def __init__(self) -> None:
        self._sizes: Dict[CacheKey, int] = {}
        self._failures: Dict[CacheKey, int] = {}

    def get(self, item: Item, level: CompressionLevel) -> Optional[int]:
        return self._sizes.get(_cache_key(item, level))

    def put(self, item: Item, level: CompressionLevel, size: int) -> None:
        key = _cache_key(item, level)
        self._sizes[key] = size
        self._failures.pop(key, None)

    def record_failure(self, item: Item, level: CompressionLevel) -> int:
        key = _cache_key(item, level)
        self._failures[key] = self._failures.get(key, 0) + 1
        return self._failures[key]

    def failures(self, item: Item, level: CompressionLevel) -> int:
        return self._failures.get(_cache_key(item, level), 0)


@dataclass
class PackResult:
    """Outcome of one partitioner step."""
    chunk: Optional[Chunk] = None
    assembly_failed: bool = False


class Partitioner:
    """Packs the item sequence one chunk per call.

    Fast-fill accumulates cheap estimates until the running total reaches
    ``verify_threshold`` of the ceiling; precision-verify then measures the
    batch with the assembler and grows or sheds it one item at a time.
    """

    def __init__(
        self,
        compressor: Compressor,
        assembler: DocumentAssembler,
        parameters: PackingParameters,
        *,
        verify_threshold: float = 0.85,
        max_assembly_failures: int = 3,
        cache: Optional[CompressionCache] = None,
        status: Optional[StatusCallback] = None,
    ) -> None:
        if not 0 < verify_threshold <= 1:
            raise ValueError("verify_threshold must be in (0, 1]")
        self.compressor = compressor
        self.assembler = assembler
        self.parameters = parameters
        self.estimator = SizeEstimator(parameters)
        self.verify_threshold = verify_threshold
        self.max_assembly_failures = max(1, max_assembly_failures)
        self.cache = cache or CompressionCache()
        self._status = status or (lambda message: None)
        self._assembly_failures: Dict[int, int] = {}
        self._epoch = 0

    def reset_failures(self) -> None:
        """Forget failure counts; steps already in flight no longer record any."""
        self._assembly_failures.clear()
        self._epoch += 1

    @staticmethod
    def placeholder(title: str) -> Chunk:
        """The single empty chunk standing in for an empty sequence."""
        return Chunk(
            ordinal=1,
            items=[],
            size_bytes=0,
            title=title,
            content_hash=EMPTY_CHUNK_HASH,
            state=ChunkState.SYNCED,
            is_optimized=True,
            boundary=Boundary.END_OF_INPUT,
            last_synced_hash=EMPTY_CHUNK_HASH,
            last_synced_title=title,
        )

    async def pack_next(
        self,
        items: Sequence[Item],
        start: int,
        ordinal: int,
        title: str,
    ) -> PackResult:
        result = PackResult()
        total = len(items)
        if start >= total:
            return result

        epoch = self._epoch
        ceiling = self.parameters.ceiling_bytes
        threshold = ceiling * self.verify_threshold
        self._status(f"Packing part {ordinal}...")

        # Phase 1: fast fill on estimates
        batch: List[Item] = []
        estimated = PDF_OVERHEAD_BASE
        index = start
        while index < total:
            item = await self._prepare(items[index])
            item_estimate = self.estimator.estimate(item)
            if not batch and PDF_OVERHEAD_BASE + item_estimate > ceiling:
                return await self._pack_oversized(item, start, ordinal, title, result)
            if batch and estimated + item_estimate > ceiling:
                break
            batch.append(item)
            estimated += item_estimate
            index += 1
            if estimated >= threshold:
                break

        # Phase 2: precision verify with the assembler
        measured: Dict[int, int] = {}
        accepted: Optional[int] = None
        while True:
            try:
                size = await self._measure(batch, title, measured)
            except AssemblyError as exc:
                return self._recover_from_assembly_failure(
                    exc, batch, accepted, measured, start, epoch, ordinal, title, result
                )
            if size < ceiling:
                accepted = len(batch)
                if index < total:
                    batch.append(await self._prepare(items[index]))
                    index += 1
                    continue
                boundary = Boundary.END_OF_INPUT
                break

            while len(batch) > 1 and size >= ceiling:
                batch.pop()
                index -= 1
                try:
                    size = await self._measure(batch, title, measured)
                except AssemblyError as exc:
                    return self._recover_from_assembly_failure(
                        exc, batch, accepted, measured, start, epoch, ordinal, title, result
                    )
            boundary = Boundary.CEILING if size < ceiling else Boundary.OVERSIZE
            break

        self._assembly_failures.pop(start, None)
        result.chunk = self._build_chunk(ordinal, title, batch, size, boundary)
        return result

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    async def _prepare(self, item: Item) -> Item:
        """Return ``item`` sized at the target level, compressing it if needed."""
        level = self.parameters.compression_level
        if item.is_processed_at(level):
            return item
        cached = self.cache.get(item, level)
        if cached is None and self.cache.failures(item, level) == 0:
            self._status(f"Compressing {item.name}...")
            try:
                processed = await self.compressor.process(item, level)
            except Exception as exc:  # noqa: BLE001
                self.cache.record_failure(item, level)
                logger.warning("Compression failed for %s; estimating from raw size: %s", item.name, exc)
                return item
            cached = processed.size
            self.cache.put(item, level, cached)
        if cached is None:
            return item
        return replace(item, processed_size=cached, compression_level_used=level)

    async def _measure(self, batch: List[Item], title: str, measured: Dict[int, int]) -> int:
        known = measured.get(len(batch))
        if known is not None:
            return known
        self._status(f"Measuring {len(batch)} items...")
        try:
            data = await self.assembler.assemble(batch, title, self.parameters.compression_level)
        except AssemblyError:
            raise
        except Exception as exc:  # noqa: BLE001
            raise AssemblyError(str(exc)) from exc
        measured[len(batch)] = len(data)
        return len(data)

    async def _pack_oversized(
        self,
        item: Item,
        start: int,
        ordinal: int,
        title: str,
        result: PackResult,
    ) -> PackResult:
        try:
            size = await self._measure([item], title, {})
        except AssemblyError as exc:
            logger.warning("Could not measure oversized item %s; keeping its estimate: %s", item.name, exc)
            size = self.estimator.estimate_batch([item])
        self._assembly_failures.pop(start, None)
        result.chunk = self._build_chunk(ordinal, title, [item], size, Boundary.OVERSIZE)
        return result

    def _recover_from_assembly_failure(
        self,
        exc: AssemblyError,
        batch: List[Item],
        accepted: Optional[int],
        measured: Dict[int, int],
        start: int,
        epoch: int,
        ordinal: int,
        title: str,
        result: PackResult,
    ) -> PackResult:
        if accepted is not None:
            logger.warning(
                "Assembly failed while growing part %s; keeping last good boundary of %s items: %s",
                ordinal,
                accepted,
                exc,
            )
            kept = batch[:accepted]
            result.chunk = self._build_chunk(ordinal, title, kept, measured[accepted], Boundary.FALLBACK)
            self._assembly_failures.pop(start, None)
            return result

        if epoch != self._epoch:
            logger.debug("Ignoring assembly failure of superseded step for part %s: %s", ordinal, exc)
            result.assembly_failed = True
            return result

        failures = self._assembly_failures.get(start, 0) + 1
        self._assembly_failures[start] = failures
        if failures < self.max_assembly_failures:
            logger.warning(
                "Assembly failed for part %s (attempt %s/%s); retrying later: %s",
                ordinal,
                failures,
                self.max_assembly_failures,
                exc,
            )
            result.assembly_failed = True
            return result

        logger.warning(
            "Assembly failed %s times for part %s; accepting estimated size", failures, ordinal
        )
        self._assembly_failures.pop(start, None)
        chunk = self._build_chunk(
            ordinal, title, list(batch), self.estimator.estimate_batch(batch), Boundary.FALLBACK
        )
        chunk.is_optimized = False
        result.chunk = chunk
        return result

    def _build_chunk(
        self,
        ordinal: int,
        title: str,
        batch: List[Item],
        size: int,
        boundary: Boundary,
    ) -> Chunk:
        return Chunk(
            ordinal=ordinal,
            items=list(batch),
            size_bytes=size,
            title=title,
            content_hash=chunk_content_hash(batch),
            state=ChunkState.OPTIMIZED,
            is_optimized=all(self.estimator.is_exact(item) for item in batch),
            boundary=boundary,
            oversized=size >= self.parameters.ceiling_bytes,
        )
