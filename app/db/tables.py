"""Table definitions for stores, catalog, lots, orders and sync records."""

from __future__ import annotations

from sqlalchemy import (
    Column,
    DateTime,
    Float,
    ForeignKey,
    Integer,
    MetaData,
    Table,
    Text,
    func,
)

metadata = MetaData()

stores = Table(
    "stores",
    metadata,
    Column("id", Text, primary_key=True),
    Column("name", Text, nullable=False),
    Column("client_id", Text, nullable=False),
    Column("client_secret", Text, nullable=False),
    Column("status", Text, nullable=False, server_default="active", index=True),
)

products = Table(
    "products",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("sku", Text, nullable=False, unique=True),
    Column("store_id", Text, ForeignKey("stores.id"), index=True),
    Column("product_name", Text),
    Column("upc", Text),
    Column("gtin", Text),
    Column("wpid", Text),
    Column("price_amount", Float),
    Column("price_currency", Text),
    Column("published_status", Text),
    Column("lifecycle_status", Text),
    Column("available", Integer, nullable=False, server_default="0"),
    Column("last_synced", DateTime),
)

purchase_lots = Table(
    "purchase_lots",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("product_id", Integer, ForeignKey("products.id"), nullable=False, index=True),
    Column("quantity", Integer, nullable=False, server_default="0"),
    Column("cost_of_price", Float, nullable=False, server_default="0"),
    Column("sell_price", Float, nullable=False, server_default="0"),
    Column("date", DateTime, nullable=False, server_default=func.current_timestamp()),
)

orders = Table(
    "orders",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("external_order_id", Text, nullable=False, unique=True),
    Column("store_id", Text, index=True),
    Column("channel_type", Text),
    Column("status", Text, index=True),
    Column("order_date", DateTime, index=True),
    Column("customer_name", Text),
    Column("customer_address", Text),
    Column("created_at", DateTime, nullable=False, server_default=func.current_timestamp()),
)

order_lines = Table(
    "order_lines",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("order_id", Integer, ForeignKey("orders.id"), nullable=False, index=True),
    Column("sku", Text, index=True),
    Column("product_name", Text),
    Column("image_url", Text),
    Column("quantity", Integer, nullable=False),
    Column("purchase_price", Float),
    Column("sell_price", Float),
    Column("tax", Float),
    Column("shipping", Float),
)

stock_alerts = Table(
    "stock_alerts",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("store_id", Text, index=True),
    Column("order_id", Text),
    Column("sku", Text),
    Column("reason", Text),
    Column("quantity_needed", Integer),
    Column("quantity_available", Integer),
    Column("date", DateTime, nullable=False, server_default=func.current_timestamp()),
)

failed_orders = Table(
    "failed_orders",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("store_id", Text, index=True),
    Column("order_id", Text),
    Column("sku", Text),
    Column("reason", Text),
    Column("error", Text),
    Column("date", DateTime, nullable=False, server_default=func.current_timestamp()),
)
