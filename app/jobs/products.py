"""Per-store product catalog refresh."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any

from dotenv import load_dotenv

from app.db.session import create_engine_from_env
from app.db.store import Datastore
from app.ingest.catalog import CatalogIngestor, CatalogResult
from app.ingest.marketplace import MarketplaceClient
from app.jobs.orders import StoreNotFound
from app.jobs.queue import PassSummary, run_pass
from app.utils.broadcast import StatusBroadcaster, init_broadcaster

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class ProductJobResult:
    success: bool = True
    new_products: int = 0
    updated_products: int = 0
    failed_products: int = 0
    total_items: int = 0
    pages: int = 0

    @classmethod
    def from_catalog(cls, result: CatalogResult) -> ProductJobResult:
        return cls(
            new_products=result.new_products,
            updated_products=result.updated_products,
            failed_products=len(result.failed_products),
            total_items=result.total_items,
            pages=result.pages,
        )

    def summary(self) -> str:
        return (
            f"New: {self.new_products} | Updated: {self.updated_products} | Failed: {self.failed_products}\n"
            f"Pages: {self.pages} | Catalog Size: {self.total_items}"
        )

    def as_dict(self) -> dict[str, Any]:
        return {
            "success": self.success,
            "newProducts": self.new_products,
            "updatedProducts": self.updated_products,
            "failedProducts": self.failed_products,
            "totalItems": self.total_items,
            "pages": self.pages,
        }


class ProductPipeline:
    def __init__(self, datastore: Datastore, client: MarketplaceClient) -> None:
        self.datastore = datastore
        self.ingestor = CatalogIngestor(datastore, client)

    async def run(self, store_id: str) -> ProductJobResult:
        store = await asyncio.get_running_loop().run_in_executor(None, self.datastore.find_store, store_id)
        if store is None or not store.is_active:
            raise StoreNotFound(store_id)
        return ProductJobResult.from_catalog(await self.ingestor.ingest(store))


async def process_products_now(
    datastore: Datastore,
    client: MarketplaceClient,
    *,
    broadcaster: StatusBroadcaster | None = None,
) -> PassSummary:
    pipeline = ProductPipeline(datastore, client)
    stores = await asyncio.get_running_loop().run_in_executor(None, datastore.find_active_stores)
    return await run_pass([store.id for store in stores], pipeline.run, kind="product", broadcaster=broadcaster)


async def main() -> None:
    load_dotenv()
    init_broadcaster()
    engine = create_engine_from_env()
    client = MarketplaceClient()
    try:
        summary = await process_products_now(Datastore(engine), client)
    finally:
        await client.close()
        engine.dispose()
    logger.info("Product pass finished: %s", summary.as_dict())


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO)
    asyncio.run(main())
