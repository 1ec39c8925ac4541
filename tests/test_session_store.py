import asyncio

import pytest

from conftest import FakeAssembler, FakeCloudStore, FakeCompressor, make_items

from backend.binder.models import SessionSnapshot
from backend.binder.packing.session import PackingSession
from backend.binder.packing.types import MIB, ChunkState, CompressionLevel, PackingParameters
from backend.binder.session_store import SessionStore

PARAMS = PackingParameters(
    ceiling_mb=100_000 / MIB,
    safety_margin_percent=0,
    compression_level=CompressionLevel.MEDIUM,
)


def new_session(book_id="book-1", compressor=None):
    return PackingSession(
        book_id,
        "Book",
        compressor=compressor or FakeCompressor(),
        assembler=FakeAssembler(),
        cloud=FakeCloudStore(),
        parameters=PARAMS,
    )


@pytest.fixture
def store(tmp_path):
    return SessionStore(tmp_path / "sessions.db")


@pytest.fixture
def packed_session():
    session = new_session()
    session.on_items_changed(make_items(6, 30_000))
    asyncio.run(session.pack_to_end())
    asyncio.run(session.sync_step())
    return session


def test_save_and_load_round_trip(store, packed_session):
    store.save("book-1", SessionSnapshot.from_session(packed_session))

    loaded = store.load("book-1")

    assert loaded.title == "Book"
    assert loaded.container_id == "folder-1"
    assert loaded.parameters.compression_level == CompressionLevel.MEDIUM
    assert [chunk.item_ids for chunk in loaded.chunks] == [view.item_ids for view in packed_session.chunks()]
    assert loaded.chunks[0].state == ChunkState.SYNCED
    assert loaded.items[0].processed_size == 30_000


def test_restored_session_keeps_synced_prefix(store, packed_session):
    store.save("book-1", SessionSnapshot.from_session(packed_session))
    snapshot = store.load("book-1")

    compressor = FakeCompressor()
    restored = new_session(compressor=compressor)
    items = snapshot.to_items()
    restored.restore(items, snapshot.to_chunks(items))

    assert restored.chunks()[0].state == ChunkState.SYNCED
    assert restored.store[0].is_synced
    # freshly supplied items are recognised from the restored sizes
    restored.on_items_changed(make_items(6, 30_000))
    assert restored.store[0].is_synced
    assert compressor.calls == []


def test_chunk_with_unknown_items_is_not_restored(packed_session):
    snapshot = SessionSnapshot.from_session(packed_session)
    items = snapshot.to_items()[:3]
    chunks = snapshot.to_chunks(items)
    assert [chunk.item_ids for chunk in chunks] == [["item-1", "item-2"]]


def test_update_overwrites_existing_row(store, packed_session):
    store.save("book-1", SessionSnapshot.from_session(packed_session))
    packed_session.on_title_changed("Renamed")
    store.save("book-1", SessionSnapshot.from_session(packed_session))

    books = store.list_books()

    assert [(book.book_id, book.title) for book in books] == [("book-1", "Renamed")]
    assert store.load("book-1").chunks[0].title == "Renamed (Part 1)"


def test_delete(store, packed_session):
    store.save("book-1", SessionSnapshot.from_session(packed_session))
    assert store.delete("book-1")
    assert not store.delete("book-1")
    assert store.load("book-1") is None
    assert store.list_books() == []
