import asyncio

from conftest import FakeAssembler, FakeCloudStore, FakeCompressor, make_item, make_items

from backend.binder.packing.scheduler import Scheduler
from backend.binder.packing.session import PackingSession
from backend.binder.packing.types import MIB, ChunkState, PackingParameters

PARAMS = PackingParameters(ceiling_mb=100_000 / MIB, safety_margin_percent=0)


def new_session(assembler=None, cloud=None):
    return PackingSession(
        "book-1",
        "Book",
        compressor=FakeCompressor(),
        assembler=assembler or FakeAssembler(),
        cloud=cloud or FakeCloudStore(),
        parameters=PARAMS,
    )


async def settle(session, **kwargs):
    scheduler = Scheduler(session, partition_delay=0.001, sync_delay=0.001, **kwargs)
    scheduler.start()
    return scheduler


def test_scheduler_packs_and_syncs_whole_book():
    cloud = FakeCloudStore()
    session = new_session(cloud=cloud)
    observed = []

    async def scenario():
        scheduler = await settle(session, on_step=lambda s: observed.append(s.cursor))
        session.on_items_changed(make_items(6, 30_000))
        await scheduler.wait_idle(timeout=5)
        await scheduler.stop()

    asyncio.run(scenario())

    assert session.fully_synced
    assert [view.state for view in session.chunks()] == [ChunkState.SYNCED] * 3
    assert len(cloud.uploads) == 3
    assert observed and observed[-1] == 6


def test_rapid_edits_only_pack_the_latest_sequence():
    assembler = FakeAssembler()
    session = new_session(assembler=assembler)

    async def scenario():
        scheduler = Scheduler(session, partition_delay=0.05, sync_delay=0.05)
        scheduler.start()
        session.on_items_changed([make_item("draft-1", 10_000)])
        session.on_items_changed([make_item("draft-1", 10_000), make_item("draft-2", 10_000)])
        session.on_items_changed([make_item("final-1", 10_000)])
        await scheduler.wait_idle(timeout=5)
        await scheduler.stop()

    asyncio.run(scenario())

    packed_ids = {item_id for call in assembler.calls for item_id in call}
    assert "draft-1" not in packed_ids
    assert "draft-2" not in packed_ids
    assert session.chunks()[0].item_ids == ["final-1"]


def test_failed_uploads_are_retried_until_synced(caplog):
    cloud = FakeCloudStore(failures={"Book (Part 1).pdf": 2})
    session = new_session(cloud=cloud)

    async def scenario():
        scheduler = await settle(session)
        session.on_items_changed(make_items(2, 10_000))
        await scheduler.wait_idle(timeout=5)
        await scheduler.stop()

    with caplog.at_level("INFO"):
        asyncio.run(scenario())

    assert session.fully_synced
    assert caplog.text.count("uploading -> dirty") == 2
    assert cloud.uploads == [("folder-1", "Book (Part 1).pdf")]


def test_step_exception_is_logged_and_step_retried(caplog):
    session = new_session()
    original = session.partition_step
    attempts = {"count": 0}

    async def flaky():
        attempts["count"] += 1
        if attempts["count"] == 1:
            raise RuntimeError("boom")
        return await original()

    session.partition_step = flaky

    async def scenario():
        scheduler = await settle(session)
        session.on_items_changed(make_items(2, 10_000))
        await scheduler.wait_idle(timeout=5)
        await scheduler.stop()

    asyncio.run(scenario())

    assert session.fully_synced
    assert "partition step failed" in caplog.text


def test_stop_cancels_pending_timers():
    session = new_session()

    async def scenario():
        scheduler = Scheduler(session, partition_delay=10, sync_delay=10)
        scheduler.start()
        session.on_items_changed(make_items(2, 10_000))
        assert scheduler.busy
        await scheduler.stop()
        return scheduler

    scheduler = asyncio.run(scenario())

    assert not scheduler.busy
    assert session.cursor == 0
