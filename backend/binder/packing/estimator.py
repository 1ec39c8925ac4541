"""Cheap per-item size prediction used by the fast-fill phase."""
from __future__ import annotations

from typing import Dict

from .types import CompressionLevel, Item, ItemKind, PackingParameters

COMPRESSION_MULTIPLIERS: Dict[CompressionLevel, float] = {
    CompressionLevel.LOW: 1.0,
    CompressionLevel.MEDIUM: 0.6,
    CompressionLevel.HIGH: 0.3,
}
PDF_OVERHEAD_BASE = 15000
PDF_OVERHEAD_PER_PAGE = 4000
UNKNOWN_ITEM_BYTES = 800_000


class SizeEstimator:
    """Predict an item's contribution to an assembled volume.

    A processed size recorded at the target level is used as-is; otherwise
    the raw size is scaled by the level's multiplier (images only) and
    inflated by the safety margin. Both paths add a fixed packaging overhead.
    The assembler is never consulted.
    """

    def __init__(
        self,
        parameters: PackingParameters,
        *,
        per_item_overhead: int = PDF_OVERHEAD_PER_PAGE,
    ) -> None:
        self.parameters = parameters
        self.per_item_overhead = per_item_overhead

    def is_exact(self, item: Item) -> bool:
        return item.is_processed_at(self.parameters.compression_level)

    def estimate(self, item: Item) -> int:
        level = self.parameters.compression_level
        if item.is_processed_at(level):
            base = float(item.processed_size or 0)
        else:
            multiplier = COMPRESSION_MULTIPLIERS[level] if item.kind == ItemKind.IMAGE else 1.0
            safety = 1 + self.parameters.safety_margin_percent / 100
            base = (item.raw_size or UNKNOWN_ITEM_BYTES) * multiplier * safety
        return int(round(base)) + self.per_item_overhead

    def estimate_batch(self, items) -> int:
        """Estimated size of a whole volume, document overhead included."""
        return PDF_OVERHEAD_BASE + sum(self.estimate(item) for item in items)
