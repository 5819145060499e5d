"""Product catalog refresh from marketplace items."""

from __future__ import annotations

import asyncio
import logging
import os
import uuid
from dataclasses import dataclass, field
from typing import Any, Mapping

from app.db.store import Datastore
from app.ingest.marketplace import MarketplaceClient
from app.ingest.models import ItemPage, Store
from app.utils.dates import utc_now

logger = logging.getLogger(__name__)

TRACKED_FIELDS = (
    "product_name",
    "upc",
    "gtin",
    "wpid",
    "price_amount",
    "price_currency",
    "published_status",
    "lifecycle_status",
)


def items_max_pages() -> int:
    return int(os.environ.get("ITEMS_MAX_PAGES", "50"))


@dataclass(slots=True)
class CatalogResult:
    new_products: int = 0
    updated_products: int = 0
    failed_products: list[dict[str, Any]] = field(default_factory=list)
    total_items: int = 0
    pages: int = 0


def item_to_row(item: Mapping[str, Any], store_id: str) -> dict[str, Any]:
    price = item.get("price") or {}
    amount = price.get("amount")
    return {
        "sku": item["sku"],
        "store_id": store_id,
        "product_name": item.get("productName"),
        "upc": item.get("upc"),
        "gtin": item.get("gtin"),
        "wpid": item.get("wpid"),
        "price_amount": float(amount) if amount not in (None, "") else 0.0,
        "price_currency": price.get("currency") or "USD",
        "published_status": item.get("publishedStatus"),
        "lifecycle_status": item.get("lifecycleStatus"),
    }


def needs_update(existing: Mapping[str, Any], row: Mapping[str, Any]) -> bool:
    return any(existing.get(name) != row.get(name) for name in TRACKED_FIELDS)


class CatalogIngestor:
    def __init__(self, datastore: Datastore, client: MarketplaceClient) -> None:
        self.datastore = datastore
        self.client = client

    async def ingest(self, store: Store, *, max_pages: int | None = None) -> CatalogResult:
        token = await self.client.authenticate(store)
        correlation_id = str(uuid.uuid4())
        max_pages = max_pages or items_max_pages()
        result = CatalogResult()
        cursor: str | None = None
        loop = asyncio.get_running_loop()
        while result.pages < max_pages:
            page = await self.client.list_items(token, cursor=cursor, correlation_id=correlation_id)
            result.pages += 1
            result.total_items = page.total_items or result.total_items
            await loop.run_in_executor(None, self._persist_page, store, page, result)
            if not page.next_cursor:
                break
            cursor = page.next_cursor
        logger.info(
            "Catalog refresh for %s: %s new, %s updated, %s failed over %s pages",
            store.id,
            result.new_products,
            result.updated_products,
            len(result.failed_products),
            result.pages,
        )
        return result

    def _persist_page(self, store: Store, page: ItemPage, result: CatalogResult) -> None:
        rows_by_sku: dict[str, dict[str, Any]] = {}
        for item in page.items:
            if not item.get("sku"):
                result.failed_products.append({"item": item, "reason": "Missing SKU"})
                continue
            rows_by_sku[item["sku"]] = item_to_row(item, store.id)
        rows = list(rows_by_sku.values())
        existing = self.datastore.find_products_by_skus(row["sku"] for row in rows)
        synced_at = utc_now().naive()
        new_rows = [dict(row, last_synced=synced_at) for row in rows if row["sku"] not in existing]
        changed_rows = [
            dict(row, last_synced=synced_at)
            for row in rows
            if row["sku"] in existing and needs_update(existing[row["sku"]], row)
        ]
        result.new_products += self.datastore.insert_products(new_rows)
        result.updated_products += self.datastore.update_products(changed_rows)
