"""Seed database with a demo store, products and purchase lots."""

from __future__ import annotations

import os
from datetime import datetime

from dotenv import load_dotenv
from sqlalchemy import insert, select

from app.db import tables
from app.db.migrate import run_migrations
from app.db.session import create_engine_from_env
from app.utils.crypto import encrypt


DEMO_PRODUCTS = [
    {
        "sku": "DEMO-MUG-01",
        "product_name": "Enamel Camp Mug",
        "lots": [
            {"quantity": 12, "cost_of_price": 4.25, "sell_price": 12.99, "date": datetime(2024, 1, 5)},
            {"quantity": 30, "cost_of_price": 3.90, "sell_price": 12.99, "date": datetime(2024, 3, 2)},
        ],
    },
    {
        "sku": "DEMO-LAMP-02",
        "product_name": "Folding Lantern",
        "lots": [
            {"quantity": 5, "cost_of_price": 11.00, "sell_price": 29.99, "date": datetime(2024, 2, 14)},
        ],
    },
]


def main() -> None:
    load_dotenv()
    engine = create_engine_from_env()
    run_migrations(engine)
    store_id = os.environ.get("DEMO_STORE_ID", "demo-store")
    with engine.begin() as conn:
        existing = conn.execute(select(tables.stores.c.id).where(tables.stores.c.id == store_id)).first()
        if existing is None:
            conn.execute(
                insert(tables.stores).values(
                    id=store_id,
                    name="Demo Store",
                    client_id=encrypt(os.environ.get("DEMO_CLIENT_ID", "demo-client")),
                    client_secret=encrypt(os.environ.get("DEMO_CLIENT_SECRET", "demo-secret")),
                    status="active",
                )
            )
        for product in DEMO_PRODUCTS:
            found = conn.execute(select(tables.products.c.id).where(tables.products.c.sku == product["sku"])).first()
            if found is not None:
                continue
            lots = product["lots"]
            result = conn.execute(
                insert(tables.products).values(
                    sku=product["sku"],
                    store_id=store_id,
                    product_name=product["product_name"],
                    available=sum(lot["quantity"] for lot in lots),
                )
            )
            product_id = result.inserted_primary_key[0]
            conn.execute(insert(tables.purchase_lots), [dict(lot, product_id=product_id) for lot in lots])
    print("Seed complete")


if __name__ == "__main__":
    main()
