"""CloudStore backed by a local directory tree."""
from __future__ import annotations

import asyncio
import logging
import os
import tempfile
from pathlib import Path
from typing import Optional

from ..packing.collaborators import CloudStoreError

logger = logging.getLogger(__name__)


class LocalDirectoryStore:
    """Containers are sub-directories of ``root``; files are written atomically."""

    def __init__(self, root: Path) -> None:
        self.root = Path(root)
        self.root.mkdir(parents=True, exist_ok=True)

    def _container(self, container_id: str) -> Path:
        path = (self.root / container_id).resolve()
        if self.root.resolve() not in path.parents and path != self.root.resolve():
            raise CloudStoreError(f"Container outside of store root: {container_id}")
        return path

    async def upload(self, container_id: str, filename: str, data: bytes) -> None:
        await asyncio.to_thread(self._write, container_id, filename, data)

    async def exists(self, container_id: str, filename: str) -> Optional[str]:
        target = self._container(container_id) / filename
        return str(target.relative_to(self.root.resolve())) if target.is_file() else None

    async def ensure_folder(self, parent_id: Optional[str], name: str) -> str:
        relative = Path(parent_id) / name if parent_id else Path(name)
        folder = self._container(str(relative))
        folder.mkdir(parents=True, exist_ok=True)
        return str(relative)

    async def rename(self, container_id: str, filename: str, new_filename: str) -> None:
        await asyncio.to_thread(self._rename, container_id, filename, new_filename)

    async def rename_folder(self, folder_id: str, name: str) -> str:
        return await asyncio.to_thread(self._rename_folder, folder_id, name)

    def _write(self, container_id: str, filename: str, data: bytes) -> None:
        folder = self._container(container_id)
        if not folder.is_dir():
            raise CloudStoreError(f"Unknown container: {container_id}")
        target = folder / filename
        temp_name = None
        try:
            fd, temp_name = tempfile.mkstemp(dir=folder, suffix=".part")
            with os.fdopen(fd, "wb") as handle:
                handle.write(data)
            os.replace(temp_name, target)
        except OSError as exc:
            if temp_name is not None:
                Path(temp_name).unlink(missing_ok=True)
            raise CloudStoreError(f"Could not write {target}: {exc}") from exc
        logger.info("Wrote %s (%s bytes)", target, len(data))

    def _rename(self, container_id: str, filename: str, new_filename: str) -> None:
        folder = self._container(container_id)
        source = folder / filename
        target = folder / new_filename
        if not source.is_file():
            return
        try:
            if target.exists():
                source.unlink()
                logger.info("Removed %s; %s already exists", source, target.name)
            else:
                source.rename(target)
                logger.info("Renamed %s to %s", source, target.name)
        except OSError as exc:
            raise CloudStoreError(f"Could not rename {source}: {exc}") from exc

    def _rename_folder(self, folder_id: str, name: str) -> str:
        folder = self._container(folder_id)
        relative = Path(folder_id).parent / name
        target = self._container(str(relative))
        if target.exists():
            raise CloudStoreError(f"Folder already exists: {relative}")
        try:
            folder.rename(target)
        except OSError as exc:
            raise CloudStoreError(f"Could not rename {folder}: {exc}") from exc
        logger.info("Renamed folder %s to %s", folder_id, relative)
        return str(relative)
