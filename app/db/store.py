"""Persistence operations used by the sync pipelines."""

from __future__ import annotations

import logging
from collections.abc import Iterable, Sequence
from typing import TYPE_CHECKING, Any

from sqlalchemy import insert, select, update
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError

from app.db import tables
from app.ingest.models import STORE_ACTIVE, OrderRecord, Product, PurchaseLot, Store
from app.utils.dates import utc_now

if TYPE_CHECKING:
    from app.logic.allocation import Failed, StockAlert

logger = logging.getLogger(__name__)


class PersistenceError(Exception):
    pass


class Datastore:
    def __init__(self, engine: Engine) -> None:
        self.engine = engine

    # Stores

    def find_active_stores(self) -> list[Store]:
        query = select(tables.stores).where(tables.stores.c.status == STORE_ACTIVE).order_by(tables.stores.c.id)
        with self.engine.connect() as conn:
            return [_store(row) for row in conn.execute(query).mappings()]

    def find_store(self, store_id: str) -> Store | None:
        query = select(tables.stores).where(tables.stores.c.id == store_id)
        with self.engine.connect() as conn:
            row = conn.execute(query).mappings().first()
        return _store(row) if row else None

    # Catalog and lots

    def find_product_by_sku(self, sku: str) -> Product | None:
        p = tables.products.c
        query = select(p.id, p.sku, p.available, p.product_name).where(p.sku == sku)
        with self.engine.connect() as conn:
            row = conn.execute(query).mappings().first()
        if row is None:
            return None
        return Product(id=row["id"], sku=row["sku"], available=row["available"], product_name=row["product_name"])

    def find_lots(self, product_id: int) -> list[PurchaseLot]:
        """Lots of ``product_id`` that still hold stock."""
        lot = tables.purchase_lots.c
        query = select(tables.purchase_lots).where(lot.product_id == product_id, lot.quantity > 0)
        with self.engine.connect() as conn:
            return [
                PurchaseLot(
                    id=row["id"],
                    product_id=row["product_id"],
                    quantity=row["quantity"],
                    cost_of_price=row["cost_of_price"],
                    sell_price=row["sell_price"],
                    date=row["date"],
                )
                for row in conn.execute(query).mappings()
            ]

    def decrement_lot(self, product_id: int, lot_id: int, amount: int) -> bool:
        """Take ``amount`` units from a lot and from the product's ``available``.

        Both updates run in one transaction, and the lot update only matches
        while the lot still holds ``amount`` units. Returns False on conflict,
        in which case nothing is written.
        """
        lot = tables.purchase_lots.c
        product = tables.products.c
        with self.engine.begin() as conn:
            result = conn.execute(
                update(tables.purchase_lots)
                .where(lot.id == lot_id, lot.product_id == product_id, lot.quantity >= amount)
                .values(quantity=lot.quantity - amount)
            )
            if result.rowcount != 1:
                return False
            conn.execute(
                update(tables.products)
                .where(product.id == product_id)
                .values(available=product.available - amount)
            )
        return True

    def restore_lot(self, product_id: int, lot_id: int, amount: int) -> None:
        lot = tables.purchase_lots.c
        product = tables.products.c
        with self.engine.begin() as conn:
            conn.execute(
                update(tables.purchase_lots)
                .where(lot.id == lot_id, lot.product_id == product_id)
                .values(quantity=lot.quantity + amount)
            )
            conn.execute(
                update(tables.products)
                .where(product.id == product_id)
                .values(available=product.available + amount)
            )

    def find_products_by_skus(self, skus: Iterable[str]) -> dict[str, dict[str, Any]]:
        sku_list = list(skus)
        if not sku_list:
            return {}
        query = select(tables.products).where(tables.products.c.sku.in_(sku_list))
        with self.engine.connect() as conn:
            return {row["sku"]: dict(row) for row in conn.execute(query).mappings()}

    def insert_products(self, rows: Sequence[dict[str, Any]]) -> int:
        if not rows:
            return 0
        with self.engine.begin() as conn:
            conn.execute(insert(tables.products), [dict(row, available=0) for row in rows])
        return len(rows)

    def update_products(self, rows: Sequence[dict[str, Any]]) -> int:
        if not rows:
            return 0
        product = tables.products.c
        with self.engine.begin() as conn:
            for row in rows:
                values = {key: value for key, value in row.items() if key != "sku"}
                conn.execute(update(tables.products).where(product.sku == row["sku"]).values(**values))
        return len(rows)

    # Orders

    def find_order_by_external_id(self, external_order_id: str) -> dict[str, Any] | None:
        query = select(tables.orders).where(tables.orders.c.external_order_id == external_order_id)
        with self.engine.connect() as conn:
            row = conn.execute(query).mappings().first()
        return dict(row) if row else None

    def bulk_insert_orders(self, records: Sequence[OrderRecord]) -> int:
        """Insert all ``records`` in one transaction or none of them."""
        if not records:
            return 0
        try:
            with self.engine.begin() as conn:
                for record in records:
                    result = conn.execute(
                        insert(tables.orders).values(
                            external_order_id=record.external_order_id,
                            store_id=record.store_id,
                            channel_type=record.channel_type,
                            status=record.status,
                            order_date=record.order_date,
                            customer_name=record.customer_name,
                            customer_address=record.customer_address,
                        )
                    )
                    order_id = result.inserted_primary_key[0]
                    if record.lines:
                        conn.execute(
                            insert(tables.order_lines),
                            [
                                {
                                    "order_id": order_id,
                                    "sku": line.sku,
                                    "product_name": line.product_name,
                                    "image_url": line.image_url,
                                    "quantity": line.quantity,
                                    "purchase_price": line.purchase_price,
                                    "sell_price": line.sell_price,
                                    "tax": line.tax,
                                    "shipping": line.shipping,
                                }
                                for line in record.lines
                            ],
                        )
        except SQLAlchemyError as exc:
            raise PersistenceError(str(exc)) from exc
        return len(records)

    # Sync records

    def record_stock_alerts(self, store_id: str, alerts: Sequence[StockAlert]) -> None:
        if not alerts:
            return
        now = utc_now().naive()
        with self.engine.begin() as conn:
            conn.execute(
                insert(tables.stock_alerts),
                [
                    {
                        "store_id": store_id,
                        "order_id": alert.order_id,
                        "sku": alert.sku,
                        "reason": alert.reason,
                        "quantity_needed": alert.needed,
                        "quantity_available": alert.available,
                        "date": now,
                    }
                    for alert in alerts
                ],
            )

    def record_failed_orders(self, store_id: str, failures: Sequence[Failed]) -> None:
        if not failures:
            return
        now = utc_now().naive()
        with self.engine.begin() as conn:
            conn.execute(
                insert(tables.failed_orders),
                [
                    {
                        "store_id": store_id,
                        "order_id": failure.order_id,
                        "sku": failure.sku,
                        "reason": failure.reason,
                        "error": failure.error,
                        "date": now,
                    }
                    for failure in failures
                ],
            )


def _store(row) -> Store:
    return Store(
        id=row["id"],
        name=row["name"],
        client_id=row["client_id"],
        client_secret=row["client_secret"],
        status=row["status"],
    )
