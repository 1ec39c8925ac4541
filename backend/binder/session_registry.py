"""Active packing sessions, their schedulers and persistence."""
from __future__ import annotations

import asyncio
import logging
import uuid
from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence

from .compression import ImageCompressor
from .config import Settings
from .models import BookSummary, SessionSnapshot
from .packing.collaborators import CloudStore, Compressor, DocumentAssembler
from .packing.scheduler import Scheduler
from .packing.session import PackingSession
from .packing.types import Item, PackingParameters
from .pdf_utils import PdfAssembler
from .session_store import SessionStore
from .storage import DriveClient, LocalDirectoryStore

logger = logging.getLogger(__name__)


class SessionNotFoundError(RuntimeError):
    """Raised when a book id has no active or persisted session."""


@dataclass
class BookHandle:
    session: PackingSession
    scheduler: Scheduler


def build_cloud_store(settings: Settings) -> CloudStore:
    if settings.drive_access_token:
        return DriveClient(settings.drive_access_token)
    return LocalDirectoryStore(settings.output_dir)


class SessionRegistry:
    """Owns one PackingSession and Scheduler per open book."""

    def __init__(
        self,
        settings: Settings,
        store: SessionStore,
        *,
        compressor: Optional[Compressor] = None,
        assembler: Optional[DocumentAssembler] = None,
        cloud: Optional[CloudStore] = None,
    ) -> None:
        self.settings = settings
        self.store = store
        if compressor is None:
            image_compressor = ImageCompressor()
            compressor = image_compressor
            assembler = assembler or PdfAssembler(image_compressor)
        if assembler is None:
            raise ValueError("An assembler is required when a custom compressor is given")
        self.compressor = compressor
        self.assembler = assembler
        self.cloud = cloud or build_cloud_store(settings)
        self._handles: Dict[str, BookHandle] = {}
        self._lock = asyncio.Lock()

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def create(
        self,
        title: str,
        *,
        parameters: Optional[PackingParameters] = None,
        items: Sequence[Item] = (),
        container_id: Optional[str] = None,
    ) -> PackingSession:
        book_id = uuid.uuid4().hex
        handle = self._open(book_id, title, parameters or self.settings.default_parameters(), container_id)
        if items:
            handle.session.on_items_changed(items)
        self.persist(handle.session)
        handle.scheduler.start()
        logger.info("Opened book %s (%s)", book_id, title)
        return handle.session

    async def get(self, book_id: str) -> PackingSession:
        async with self._lock:
            handle = self._handles.get(book_id)
            if handle is None:
                handle = await self._resume(book_id)
        return handle.session

    async def delete(self, book_id: str) -> None:
        handle = self._handles.pop(book_id, None)
        if handle is not None:
            await handle.scheduler.stop()
        removed = await asyncio.to_thread(self.store.delete, book_id)
        if handle is None and not removed:
            raise SessionNotFoundError(book_id)
        logger.info("Closed book %s", book_id)

    def list_books(self) -> List[BookSummary]:
        return self.store.list_books()

    async def shutdown(self) -> None:
        handles = list(self._handles.values())
        self._handles.clear()
        for handle in handles:
            await handle.scheduler.stop()
            self.persist(handle.session)

    def persist(self, session: PackingSession) -> None:
        try:
            self.store.save(session.book_id, SessionSnapshot.from_session(session))
        except Exception:  # noqa: BLE001
            logger.exception("Failed to persist book %s", session.book_id)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _open(
        self,
        book_id: str,
        title: str,
        parameters: PackingParameters,
        container_id: Optional[str],
        container_title: Optional[str] = None,
    ) -> BookHandle:
        session = PackingSession(
            book_id,
            title,
            compressor=self.compressor,
            assembler=self.assembler,
            cloud=self.cloud,
            parameters=parameters,
            container_id=container_id,
            container_title=container_title,
            root_folder_name=self.settings.drive_root_folder_name,
            part_label=self.settings.part_label,
            verify_threshold=self.settings.verify_threshold,
            max_assembly_failures=self.settings.max_assembly_failures,
            compression_retry_limit=self.settings.compression_retry_limit,
        )
        scheduler = Scheduler(
            session,
            partition_delay=self.settings.partition_debounce_seconds,
            sync_delay=self.settings.sync_debounce_seconds,
            on_step=self.persist,
        )
        handle = BookHandle(session=session, scheduler=scheduler)
        self._handles[book_id] = handle
        return handle

    async def _resume(self, book_id: str) -> BookHandle:
        snapshot = self.store.load(book_id)
        if snapshot is None:
            raise SessionNotFoundError(book_id)
        handle = self._open(
            book_id,
            snapshot.title,
            snapshot.parameters.to_parameters(),
            snapshot.container_id,
            snapshot.container_title,
        )
        handle.session.artifact_renames.update(snapshot.artifact_renames)
        items = snapshot.to_items()
        handle.session.restore(items, snapshot.to_chunks(items))
        handle.scheduler.start()
        logger.info("Resumed book %s at cursor %s", book_id, handle.session.cursor)
        return handle
