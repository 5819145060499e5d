import pytest

from app.jobs.celery_app import CeleryQueue
from app.jobs.scheduler import Scheduler
from conftest import add_store


class RecordingQueue:
    def __init__(self):
        self.calls = []

    def enqueue(self, store_id, *, delay=0.0):
        self.calls.append((store_id, delay))


class BrokenDatastore:
    def find_active_stores(self):
        raise RuntimeError("database unavailable")


class FakeTask:
    def __init__(self):
        self.calls = []

    def apply_async(self, *, kwargs, countdown):
        self.calls.append((kwargs, countdown))


@pytest.mark.asyncio
async def test_tick_staggers_active_stores(engine, datastore, broadcaster):
    for store_id in ("s1", "s2", "s3"):
        add_store(engine, store_id)
    add_store(engine, "s4", status="inactive")
    queue = RecordingQueue()

    count = await Scheduler(datastore, queue, stagger=60, broadcaster=broadcaster).tick()

    assert count == 3
    assert queue.calls == [("s1", 0), ("s2", 60), ("s3", 120)]
    assert broadcaster.events[-1].type == "success"
    assert broadcaster.events[-1].message == "Enqueued 3 stores for order processing"


@pytest.mark.asyncio
async def test_tick_without_stores_emits_info(datastore, broadcaster):
    queue = RecordingQueue()
    assert await Scheduler(datastore, queue, broadcaster=broadcaster).tick() == 0
    assert queue.calls == []
    assert [(e.type, e.message) for e in broadcaster.events] == [("info", "No active stores found to process")]


@pytest.mark.asyncio
async def test_tick_failure_emits_error(broadcaster):
    scheduler = Scheduler(BrokenDatastore(), RecordingQueue(), kind="product", broadcaster=broadcaster)
    assert await scheduler.tick() == 0
    assert broadcaster.events[-1].type == "error"
    assert broadcaster.events[-1].message == "Failed to enqueue product processing: database unavailable"


@pytest.mark.asyncio
async def test_celery_queue_uses_countdown(engine, datastore, broadcaster):
    add_store(engine, "a")
    add_store(engine, "b")
    task = FakeTask()

    await Scheduler(datastore, CeleryQueue(task), stagger=60, broadcaster=broadcaster).tick()

    assert task.calls == [({"store_id": "a"}, 0), ({"store_id": "b"}, 60)]
