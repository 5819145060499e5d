"""Ingestion and inventory data models."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Mapping

STORE_ACTIVE = "active"
STORE_INACTIVE = "inactive"


@dataclass(slots=True)
class Store:
    id: str
    name: str
    client_id: str
    client_secret: str
    status: str = STORE_ACTIVE

    @property
    def is_active(self) -> bool:
        return self.status == STORE_ACTIVE


@dataclass(slots=True)
class RawOrder:
    """One marketplace order as fetched, tagged with its store and channel."""

    store_id: str
    channel_type: str
    payload: Mapping[str, Any]

    @property
    def external_id(self) -> str:
        return str(self.payload.get("customerOrderId") or "")

    @property
    def lines(self) -> list[Mapping[str, Any]]:
        return list((self.payload.get("orderLines") or {}).get("orderLine") or [])


@dataclass(slots=True)
class ItemPage:
    items: list[dict[str, Any]]
    next_cursor: str | None
    total_items: int


@dataclass(slots=True)
class Product:
    id: int
    sku: str
    available: int
    product_name: str | None = None


@dataclass(slots=True)
class PurchaseLot:
    id: int
    product_id: int
    quantity: int
    cost_of_price: float
    sell_price: float
    date: datetime


@dataclass(slots=True)
class OrderLine:
    sku: str
    product_name: str
    image_url: str
    quantity: int
    purchase_price: float
    sell_price: float
    tax: float
    shipping: float


@dataclass(slots=True)
class OrderRecord:
    external_order_id: str
    store_id: str
    channel_type: str
    status: str
    order_date: datetime | None
    customer_name: str
    customer_address: str
    lines: list[OrderLine] = field(default_factory=list)
