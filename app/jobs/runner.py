"""Schedulers and in-process queues sharing one event loop.

The API starts a :class:`SyncRunner` in its lifespan so scheduled job events
reach the same broadcaster as websocket clients. ``python -m app.jobs.runner``
runs it standalone.
"""

from __future__ import annotations

import asyncio
import logging
import os

from dotenv import load_dotenv
from sqlalchemy.engine import Engine

from app.db.session import create_engine_from_env
from app.db.store import Datastore
from app.ingest.marketplace import MarketplaceClient
from app.jobs.orders import OrderPipeline
from app.jobs.products import ProductPipeline
from app.jobs.queue import JobQueue
from app.jobs.scheduler import Scheduler, order_interval_seconds, product_interval_seconds
from app.utils.broadcast import StatusBroadcaster, get_broadcaster, init_broadcaster

logger = logging.getLogger(__name__)


def sync_enabled() -> bool:
    """Whether the API process runs the interval schedulers itself."""
    return os.environ.get("RUN_SYNC_SCHEDULERS", "true").lower() in ("1", "true", "yes")


def start_delay_seconds() -> float:
    return float(os.environ.get("SYNC_START_DELAY_SECONDS", "0"))


class SyncRunner:
    def __init__(
        self,
        datastore: Datastore,
        client: MarketplaceClient,
        *,
        broadcaster: StatusBroadcaster | None = None,
        stagger: float | None = None,
        start_delay: float | None = None,
        order_interval: float | None = None,
        product_interval: float | None = None,
    ) -> None:
        self.datastore = datastore
        self.client = client
        self.broadcaster = broadcaster or get_broadcaster()
        self.start_delay = start_delay_seconds() if start_delay is None else start_delay
        self.order_queue = JobQueue(OrderPipeline(datastore, client).run, kind="order", broadcaster=self.broadcaster)
        self.product_queue = JobQueue(
            ProductPipeline(datastore, client).run, kind="product", broadcaster=self.broadcaster
        )
        self.schedules = [
            (
                Scheduler(datastore, self.order_queue, kind="order", stagger=stagger, broadcaster=self.broadcaster),
                order_interval or order_interval_seconds(),
            ),
            (
                Scheduler(datastore, self.product_queue, kind="product", stagger=stagger, broadcaster=self.broadcaster),
                product_interval or product_interval_seconds(),
            ),
        ]
        self._tasks: list[asyncio.Task] = []
        self._engine: Engine | None = None

    @classmethod
    def from_env(cls, broadcaster: StatusBroadcaster | None = None) -> SyncRunner:
        engine = create_engine_from_env()
        runner = cls(Datastore(engine), MarketplaceClient(), broadcaster=broadcaster)
        runner._engine = engine
        return runner

    def start(self) -> None:
        if self._tasks:
            return
        self.order_queue.start()
        self.product_queue.start()
        self._tasks = [
            asyncio.create_task(scheduler.run_forever(interval, delay=self.start_delay))
            for scheduler, interval in self.schedules
        ]
        logger.info("Sync schedulers started")

    async def wait(self) -> None:
        await asyncio.gather(*self._tasks)

    async def stop(self) -> None:
        for task in self._tasks:
            task.cancel()
        await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks = []
        await self.order_queue.close()
        await self.product_queue.close()
        if self._engine is not None:
            await self.client.close()
            self._engine.dispose()
            self._engine = None
        logger.info("Sync schedulers stopped")


async def run() -> None:
    load_dotenv()
    runner = SyncRunner.from_env(init_broadcaster())
    runner.start()
    try:
        await runner.wait()
    finally:
        await runner.stop()


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO)
    asyncio.run(run())
