from __future__ import annotations

import json
import logging
from typing import AsyncIterator, List, Optional

from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import StreamingResponse

from .config import get_settings
from .models import (
    BookCreateRequest,
    BookSummary,
    ChunkListResponse,
    ItemPayload,
    ItemsUpdateRequest,
    ParametersPayload,
    TitleUpdateRequest,
)
from .packing.session import PackingSession
from .packing.status import StatusMessage
from .packing.types import Item
from .session_registry import SessionNotFoundError, SessionRegistry
from .session_store import SessionStore

logger = logging.getLogger("uvicorn.error")

router = APIRouter(prefix="/api/books", tags=["books"])

_registry: Optional[SessionRegistry] = None


def get_registry() -> SessionRegistry:
    global _registry
    if _registry is None:
        settings = get_settings()
        _registry = SessionRegistry(settings, SessionStore(settings.session_db_path))
    return _registry


async def shutdown_registry() -> None:
    if _registry is not None:
        await _registry.shutdown()


def _to_items(payloads: List[ItemPayload]) -> List[Item]:
    seen = set()
    for payload in payloads:
        if payload.id in seen:
            raise HTTPException(status_code=400, detail=f"Duplicate item id: {payload.id}")
        seen.add(payload.id)
    return [payload.to_item() for payload in payloads]


def _sse(message: StatusMessage) -> str:
    return f"data: {json.dumps({'text': message.text, 'timestamp': message.timestamp})}\n\n"


async def _session(book_id: str, registry: SessionRegistry) -> PackingSession:
    try:
        return await registry.get(book_id)
    except SessionNotFoundError as exc:
        raise HTTPException(status_code=404, detail="Book not found") from exc


@router.get("", response_model=List[BookSummary])
async def list_books(registry: SessionRegistry = Depends(get_registry)) -> List[BookSummary]:
    return registry.list_books()


@router.post("", response_model=ChunkListResponse, status_code=201)
async def create_book(
    payload: BookCreateRequest,
    registry: SessionRegistry = Depends(get_registry),
) -> ChunkListResponse:
    items = _to_items(payload.items)
    parameters = payload.parameters.to_parameters() if payload.parameters else None
    session = await registry.create(
        payload.title.strip(),
        parameters=parameters,
        items=items,
        container_id=payload.container_id,
    )
    return ChunkListResponse.from_session(session)


@router.get("/{book_id}/chunks", response_model=ChunkListResponse)
async def get_chunks(book_id: str, registry: SessionRegistry = Depends(get_registry)) -> ChunkListResponse:
    session = await _session(book_id, registry)
    return ChunkListResponse.from_session(session)


@router.put("/{book_id}/items", response_model=ChunkListResponse)
async def replace_items(
    book_id: str,
    payload: ItemsUpdateRequest,
    registry: SessionRegistry = Depends(get_registry),
) -> ChunkListResponse:
    session = await _session(book_id, registry)
    session.on_items_changed(_to_items(payload.items))
    registry.persist(session)
    return ChunkListResponse.from_session(session)


@router.put("/{book_id}/parameters", response_model=ChunkListResponse)
async def update_parameters(
    book_id: str,
    payload: ParametersPayload,
    registry: SessionRegistry = Depends(get_registry),
) -> ChunkListResponse:
    session = await _session(book_id, registry)
    try:
        parameters = payload.to_parameters()
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    session.on_parameters_changed(parameters)
    registry.persist(session)
    return ChunkListResponse.from_session(session)


@router.put("/{book_id}/title", response_model=ChunkListResponse)
async def rename_book(
    book_id: str,
    payload: TitleUpdateRequest,
    registry: SessionRegistry = Depends(get_registry),
) -> ChunkListResponse:
    session = await _session(book_id, registry)
    session.on_title_changed(payload.title.strip())
    registry.persist(session)
    return ChunkListResponse.from_session(session)


@router.get("/{book_id}/status")
async def stream_status(book_id: str, registry: SessionRegistry = Depends(get_registry)) -> StreamingResponse:
    session = await _session(book_id, registry)

    async def events() -> AsyncIterator[str]:
        for message in session.status.history():
            yield _sse(message)
        async for message in session.status.subscribe():
            yield _sse(message)

    return StreamingResponse(events(), media_type="text/event-stream")


@router.delete("/{book_id}", status_code=204)
async def delete_book(book_id: str, registry: SessionRegistry = Depends(get_registry)) -> None:
    try:
        await registry.delete(book_id)
    except SessionNotFoundError as exc:
        raise HTTPException(status_code=404, detail="Book not found") from exc
    logger.info("Deleted book %s", book_id)
