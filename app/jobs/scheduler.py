"""Interval trigger that fans out one staggered job per active store."""

from __future__ import annotations

import asyncio
import logging
import os
from typing import Any, Protocol

from app.db.store import Datastore
from app.utils.broadcast import StatusBroadcaster, get_broadcaster

logger = logging.getLogger(__name__)


def stagger_seconds() -> float:
    return float(os.environ.get("SYNC_STAGGER_SECONDS", "60"))


def order_interval_seconds() -> float:
    return float(os.environ.get("ORDER_SYNC_INTERVAL_MINUTES", "15")) * 60


def product_interval_seconds() -> float:
    return float(os.environ.get("PRODUCT_SYNC_INTERVAL_MINUTES", "5")) * 60


class Enqueuer(Protocol):
    def enqueue(self, store_id: str, *, delay: float = 0.0) -> Any:
        ...


class Scheduler:
    def __init__(
        self,
        datastore: Datastore,
        queue: Enqueuer,
        *,
        kind: str = "order",
        stagger: float | None = None,
        broadcaster: StatusBroadcaster | None = None,
    ) -> None:
        self.datastore = datastore
        self.queue = queue
        self.kind = kind
        self.stagger = stagger_seconds() if stagger is None else stagger
        self.broadcaster = broadcaster or get_broadcaster()

    async def tick(self) -> int:
        """Enqueue every active store; returns how many were enqueued.

        Never raises: failures are reported as status events so the next tick
        still runs.
        """
        try:
            stores = await asyncio.get_running_loop().run_in_executor(None, self.datastore.find_active_stores)
            if not stores:
                self.broadcaster.info("No active stores found to process")
                return 0
            for index, store in enumerate(stores):
                self.queue.enqueue(store.id, delay=index * self.stagger)
        except Exception as exc:
            logger.exception("%s scheduler tick failed", self.kind)
            self.broadcaster.error(f"Failed to enqueue {self.kind} processing: {exc}")
            return 0
        self.broadcaster.success(f"Enqueued {len(stores)} stores for {self.kind} processing")
        return len(stores)

    async def run_forever(self, interval: float, *, delay: float = 0.0) -> None:
        if delay > 0:
            await asyncio.sleep(delay)
        while True:
            await self.tick()
            await asyncio.sleep(interval)
