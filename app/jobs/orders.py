"""Per-store order synchronization and allocation."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any

from dotenv import load_dotenv

from app.db.session import create_engine_from_env
from app.db.store import Datastore
from app.ingest.marketplace import MarketplaceClient
from app.jobs.queue import PassSummary, run_pass
from app.logic.allocation import AllocationEngine, AllocationReport
from app.utils.broadcast import StatusBroadcaster, init_broadcaster

logger = logging.getLogger(__name__)


class StoreNotFound(LookupError):
    def __init__(self, store_id: str) -> None:
        super().__init__(f"Store {store_id} not found or inactive")
        self.store_id = store_id


@dataclass(slots=True)
class OrderJobResult:
    success: bool = True
    total_fetched: int = 0
    orders_created: int = 0
    orders_skipped: int = 0
    orders_failed: int = 0
    stock_alerts: int = 0

    @classmethod
    def from_report(cls, report: AllocationReport, total_fetched: int) -> OrderJobResult:
        return cls(
            total_fetched=total_fetched,
            orders_created=len(report.created_orders),
            orders_skipped=len(report.skipped_orders),
            orders_failed=len(report.failed_orders),
            stock_alerts=len(report.stock_alerts),
        )

    def summary(self) -> str:
        return (
            f"Orders: {self.orders_created} created, {self.orders_skipped} skipped, "
            f"{self.orders_failed} failed, {self.stock_alerts} stock alerts"
        )

    def as_dict(self) -> dict[str, Any]:
        return {
            "success": self.success,
            "totalFetched": self.total_fetched,
            "ordersCreated": self.orders_created,
            "ordersSkipped": self.orders_skipped,
            "ordersFailed": self.orders_failed,
            "stockAlerts": self.stock_alerts,
        }


class OrderPipeline:
    def __init__(self, datastore: Datastore, client: MarketplaceClient, engine: AllocationEngine | None = None) -> None:
        self.datastore = datastore
        self.client = client
        self.engine = engine or AllocationEngine(datastore)

    async def run(self, store_id: str) -> OrderJobResult:
        loop = asyncio.get_running_loop()
        store = await loop.run_in_executor(None, self.datastore.find_store, store_id)
        if store is None or not store.is_active:
            raise StoreNotFound(store_id)
        raw_orders = await self.client.fetch_orders(store)
        if not raw_orders:
            logger.info("No orders to process for store %s", store_id)
            return OrderJobResult()
        report = await loop.run_in_executor(None, self.engine.allocate, raw_orders)
        await loop.run_in_executor(None, self._record, store_id, report)
        result = OrderJobResult.from_report(report, len(raw_orders))
        logger.info("Order processing completed for store %s: %s", store_id, result.summary())
        return result

    def _record(self, store_id: str, report: AllocationReport) -> None:
        self.datastore.record_stock_alerts(store_id, report.stock_alerts)
        self.datastore.record_failed_orders(store_id, report.failed_orders)


async def process_orders_now(
    datastore: Datastore,
    client: MarketplaceClient,
    *,
    broadcaster: StatusBroadcaster | None = None,
) -> PassSummary:
    """One synchronous order pass over every active store."""
    pipeline = OrderPipeline(datastore, client)
    stores = await asyncio.get_running_loop().run_in_executor(None, datastore.find_active_stores)
    return await run_pass([store.id for store in stores], pipeline.run, kind="order", broadcaster=broadcaster)


async def main() -> None:
    load_dotenv()
    init_broadcaster()
    engine = create_engine_from_env()
    client = MarketplaceClient()
    try:
        summary = await process_orders_now(Datastore(engine), client)
    finally:
        await client.close()
        engine.dispose()
    logger.info("Order pass finished: %s", summary.as_dict())


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO)
    asyncio.run(main())
