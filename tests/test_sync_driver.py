import asyncio

from conftest import FakeAssembler, FakeCloudStore, make_item

from backend.binder.packing.chunk_store import ChunkStore
from backend.binder.packing.hashing import chunk_content_hash
from backend.binder.packing.sync_driver import SyncDriver
from backend.binder.packing.types import Chunk, ChunkState, CompressionLevel

LEVEL = CompressionLevel.LOW


def build_store(count=2):
    store = ChunkStore()
    for ordinal in range(1, count + 1):
        items = [make_item(f"item-{ordinal}")]
        store.append(
            Chunk(
                ordinal=ordinal,
                items=items,
                size_bytes=100,
                title=f"Book (Part {ordinal})",
                content_hash=chunk_content_hash(items),
            )
        )
    return store


def run_steps(driver, store, count):
    return [asyncio.run(driver.step(store, "folder", LEVEL)) for _ in range(count)]


def test_uploads_each_chunk_once_then_goes_idle():
    store = build_store(2)
    cloud = FakeCloudStore()
    driver = SyncDriver(cloud, FakeAssembler())

    outcomes = run_steps(driver, store, 3)

    assert [outcome.ordinal for outcome in outcomes[:2]] == [1, 2]
    assert outcomes[2] is None
    assert cloud.uploads == [("folder", "Book (Part 1).pdf"), ("folder", "Book (Part 2).pdf")]
    assert all(chunk.state == ChunkState.SYNCED for chunk in store)


def test_synced_chunk_is_not_uploaded_again():
    store = build_store(1)
    cloud = FakeCloudStore()
    driver = SyncDriver(cloud, FakeAssembler())

    run_steps(driver, store, 1)
    assert asyncio.run(driver.step(store, "folder", LEVEL)) is None
    assert len(cloud.uploads) == 1


def test_chunk_two_fails_twice_then_succeeds(caplog):
    store = build_store(2)
    cloud = FakeCloudStore(failures={"Book (Part 2).pdf": 2})
    driver = SyncDriver(cloud, FakeAssembler())
    run_steps(driver, store, 1)

    with caplog.at_level("INFO"):
        outcomes = run_steps(driver, store, 3)

    assert [outcome.succeeded for outcome in outcomes] == [False, False, True]
    assert store[1].state == ChunkState.SYNCED
    assert cloud.uploads.count(("folder", "Book (Part 2).pdf")) == 1
    assert caplog.text.count("chunk 2 'Book (Part 2)': uploading -> dirty") == 2
    assert store[1].failed_uploads == 0


def test_failing_chunk_does_not_starve_later_chunks():
    store = build_store(3)
    cloud = FakeCloudStore(failures={"Book (Part 1).pdf": 10})
    driver = SyncDriver(cloud, FakeAssembler())

    outcomes = run_steps(driver, store, 4)

    assert [outcome.ordinal for outcome in outcomes] == [1, 2, 1, 3]
    assert store[0].state == ChunkState.DIRTY
    assert store[0].failed_uploads == 2
    assert store[1].state == ChunkState.SYNCED
    assert store[2].state == ChunkState.SYNCED
    assert driver.pending(store).ordinal == 1


def test_assembly_error_during_upload_marks_chunk_dirty():
    store = build_store(1)
    driver = SyncDriver(FakeCloudStore(), FakeAssembler(fail_when=lambda items: True))

    outcome = asyncio.run(driver.step(store, "folder", LEVEL))

    assert not outcome.succeeded
    assert store[0].state == ChunkState.DIRTY


def test_result_for_chunk_replaced_mid_upload_is_discarded():
    store = build_store(1)

    class TruncatingCloud(FakeCloudStore):
        async def upload(self, container_id, filename, data):
            store.truncate(0)
            await super().upload(container_id, filename, data)

    driver = SyncDriver(TruncatingCloud(), FakeAssembler())
    outcome = asyncio.run(driver.step(store, "folder", LEVEL))

    assert outcome.succeeded
    assert not outcome.applied
    assert len(store) == 0


def test_rename_during_upload_leaves_chunk_needing_sync():
    store = build_store(1)

    class RenamingCloud(FakeCloudStore):
        async def upload(self, container_id, filename, data):
            store[0].title = "Renamed (Part 1)"
            await super().upload(container_id, filename, data)

    cloud = RenamingCloud()
    driver = SyncDriver(cloud, FakeAssembler())
    asyncio.run(driver.step(store, "folder", LEVEL))

    assert store[0].state == ChunkState.SYNCED
    assert not store[0].is_synced
    asyncio.run(driver.step(store, "folder", LEVEL))
    assert cloud.uploads[-1] == ("folder", "Renamed (Part 1).pdf")
    assert store[0].is_synced
