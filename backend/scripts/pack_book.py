import argparse
import asyncio
import logging
from pathlib import Path
from typing import List

from backend.binder.compression import ImageCompressor
from backend.binder.config import get_settings
from backend.binder.packing import CompressionLevel, Item, ItemKind, PackingParameters, PackingSession
from backend.binder.pdf_utils import PdfAssembler
from backend.binder.storage import LocalDirectoryStore

KIND_BY_SUFFIX = {
    ".jpg": ItemKind.IMAGE,
    ".jpeg": ItemKind.IMAGE,
    ".png": ItemKind.IMAGE,
    ".gif": ItemKind.IMAGE,
    ".webp": ItemKind.IMAGE,
    ".pdf": ItemKind.PDF,
    ".txt": ItemKind.TEXT,
    ".md": ItemKind.TEXT,
}


def parse_args() -> argparse.Namespace:
    settings = get_settings()
    parser = argparse.ArgumentParser(description="Pack files into size-bounded PDF volumes")
    parser.add_argument("files", nargs="+", type=Path, help="Files to bind, in order")
    parser.add_argument("--title", required=True, help="Book title")
    parser.add_argument("--out", type=Path, default=settings.output_dir, help="Output directory")
    parser.add_argument("--ceiling-mb", type=float, default=settings.ceiling_mb)
    parser.add_argument("--margin", type=float, default=settings.safety_margin_percent, help="Safety margin in percent")
    parser.add_argument(
        "--level",
        choices=[level.value for level in CompressionLevel],
        default=settings.compression_level.value,
    )
    parser.add_argument("-v", "--verbose", action="store_true")
    return parser.parse_args()


def build_items(paths: List[Path]) -> List[Item]:
    items = []
    for index, path in enumerate(paths, start=1):
        if not path.is_file():
            raise SystemExit(f"File not found: {path}")
        kind = KIND_BY_SUFFIX.get(path.suffix.lower())
        if kind is None:
            raise SystemExit(f"Unsupported file type: {path}")
        stat = path.stat()
        items.append(
            Item(
                item_id=f"{index:04d}-{path.name}",
                name=path.name,
                kind=kind,
                raw_size=stat.st_size,
                revision=str(stat.st_mtime_ns),
                source=str(path.resolve()),
            )
        )
    return items


async def run(args: argparse.Namespace) -> PackingSession:
    settings = get_settings()
    compressor = ImageCompressor()
    session = PackingSession(
        "cli",
        args.title,
        compressor=compressor,
        assembler=PdfAssembler(compressor),
        cloud=LocalDirectoryStore(args.out),
        parameters=PackingParameters(
            ceiling_mb=args.ceiling_mb,
            safety_margin_percent=args.margin,
            compression_level=CompressionLevel(args.level),
        ),
        part_label=settings.part_label,
        verify_threshold=settings.verify_threshold,
        max_assembly_failures=settings.max_assembly_failures,
        compression_retry_limit=settings.compression_retry_limit,
    )
    session.on_items_changed(build_items(args.files))
    await session.pack_to_end()
    attempts = 0
    limit = len(session.store) * (settings.max_assembly_failures + 1)
    while not session.fully_synced and attempts < limit:
        await session.sync_step()
        attempts += 1
    return session


def main() -> None:
    args = parse_args()
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    session = asyncio.run(run(args))
    print(f"{'part':>4}  {'items':>5}  {'size (MB)':>9}  {'state':<20}  title")
    for view in session.chunks():
        print(
            f"{view.ordinal:>4}  {len(view.item_ids):>5}  {view.size_bytes / (1024 * 1024):>9.2f}  "
            f"{view.state.value:<20}  {view.title}{'  (oversized)' if view.oversized else ''}"
        )
    if not session.fully_synced:
        raise SystemExit("Some parts could not be written; see the log for details")


if __name__ == "__main__":
    main()
