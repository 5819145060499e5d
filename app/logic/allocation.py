"""Order allocation against cost-ordered purchase lots.

Each raw order is checked for duplicates, planned line by line against the
cheapest (then oldest) lots with stock, and only committed once every line
can be filled. Orders are then inserted in one bulk operation.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass, field
from typing import Any, Union

from app.db.store import Datastore, PersistenceError
from app.ingest.models import OrderLine, OrderRecord, PurchaseLot, RawOrder
from app.logic import orders as fields
from app.utils.dates import parse_marketplace_datetime

logger = logging.getLogger(__name__)

REASON_DUPLICATE = "Duplicate customerOrderId"
REASON_NOT_FOUND = "Product not found in inventory"
REASON_PROCESSING = "Processing error"
REASON_INSERT = "Database insertion failed"
REASON_MISSING_ID = "Missing customerOrderId"


class ProductNotFound(LookupError):
    def __init__(self, sku: str) -> None:
        super().__init__(f"No product with SKU {sku!r}")
        self.sku = sku


class InsufficientStock(Exception):
    def __init__(self, sku: str, needed: int, available: int) -> None:
        super().__init__(f"Insufficient inventory for {sku} (Need {needed}, Available {available})")
        self.sku = sku
        self.needed = needed
        self.available = available


class DuplicateOrder(Exception):
    pass


@dataclass(slots=True, frozen=True)
class Created:
    order_id: str
    record: OrderRecord


@dataclass(slots=True, frozen=True)
class Skipped:
    order_id: str
    reason: str = REASON_DUPLICATE


@dataclass(slots=True, frozen=True)
class Failed:
    order_id: str
    reason: str
    sku: str | None = None
    error: str | None = None


@dataclass(slots=True, frozen=True)
class StockAlert:
    order_id: str
    sku: str
    needed: int
    available: int

    @property
    def reason(self) -> str:
        return f"Insufficient inventory (Need {self.needed}, Available {self.available})"


OrderOutcome = Union[Created, Skipped, Failed, StockAlert]


@dataclass(slots=True)
class AllocationReport:
    outcomes: list[OrderOutcome] = field(default_factory=list)

    @property
    def created_orders(self) -> list[OrderRecord]:
        return [outcome.record for outcome in self.outcomes if isinstance(outcome, Created)]

    @property
    def skipped_orders(self) -> list[Skipped]:
        return [outcome for outcome in self.outcomes if isinstance(outcome, Skipped)]

    @property
    def failed_orders(self) -> list[Failed]:
        return [outcome for outcome in self.outcomes if isinstance(outcome, Failed)]

    @property
    def stock_alerts(self) -> list[StockAlert]:
        return [outcome for outcome in self.outcomes if isinstance(outcome, StockAlert)]


@dataclass(slots=True, frozen=True)
class Allocation:
    lot_id: int
    product_id: int
    quantity: int
    cost_of_price: float


@dataclass(slots=True)
class LinePlan:
    line: Mapping[str, Any]
    sku: str
    needed: int
    allocations: list[Allocation]

    @property
    def purchase_price(self) -> float:
        return self.allocations[0].cost_of_price if self.allocations else 0.0


def plan_allocation(
    lots: Iterable[PurchaseLot],
    needed: int,
    *,
    sku: str = "",
    reserved: Mapping[int, int] | None = None,
) -> list[Allocation]:
    """Greedy allocation, cheapest lot first and oldest lot on equal cost.

    ``reserved`` holds units per lot already promised to earlier lines of the
    same order. Raises :class:`InsufficientStock` without side effects when
    the lots cannot cover ``needed``.
    """
    reserved = reserved or {}
    candidates = [lot for lot in lots if lot.quantity - reserved.get(lot.id, 0) > 0]
    candidates.sort(key=lambda lot: (lot.cost_of_price, lot.date, lot.id))
    remaining = needed
    plan: list[Allocation] = []
    for lot in candidates:
        if remaining <= 0:
            break
        take = min(remaining, lot.quantity - reserved.get(lot.id, 0))
        plan.append(Allocation(lot_id=lot.id, product_id=lot.product_id, quantity=take, cost_of_price=lot.cost_of_price))
        remaining -= take
    if remaining > 0:
        raise InsufficientStock(sku, needed, needed - remaining)
    return plan


class AllocationEngine:
    def __init__(self, datastore: Datastore) -> None:
        self.datastore = datastore

    def allocate(self, raw_orders: Iterable[RawOrder]) -> AllocationReport:
        report = AllocationReport()
        staged_ids: set[str] = set()
        for raw in raw_orders:
            outcome = self._process(raw, staged_ids)
            if isinstance(outcome, Created):
                staged_ids.add(outcome.order_id)
            report.outcomes.append(outcome)
        self._insert(report)
        return report

    def _process(self, raw: RawOrder, staged_ids: set[str]) -> OrderOutcome:
        order_id = raw.external_id
        if not order_id:
            return Failed(order_id, REASON_MISSING_ID)
        try:
            if order_id in staged_ids or self.datastore.find_order_by_external_id(order_id) is not None:
                raise DuplicateOrder(order_id)
            plans = self._plan(raw)
            record = _build_record(raw, plans)
            self._commit(plans)
        except DuplicateOrder:
            return Skipped(order_id)
        except ProductNotFound as exc:
            return Failed(order_id, REASON_NOT_FOUND, sku=exc.sku)
        except InsufficientStock as exc:
            return StockAlert(order_id, exc.sku, exc.needed, exc.available)
        except Exception as exc:
            logger.exception("Failed to process order %s", order_id)
            return Failed(order_id, REASON_PROCESSING, error=str(exc))
        return Created(order_id, record)

    def _plan(self, raw: RawOrder) -> list[LinePlan]:
        reserved: dict[int, int] = {}
        plans: list[LinePlan] = []
        for line in raw.lines:
            sku = fields.line_sku(line)
            needed = fields.line_quantity(line)
            product = self.datastore.find_product_by_sku(sku)
            if product is None:
                raise ProductNotFound(sku)
            lots = self.datastore.find_lots(product.id)
            allocations = plan_allocation(lots, needed, sku=sku, reserved=reserved)
            for allocation in allocations:
                reserved[allocation.lot_id] = reserved.get(allocation.lot_id, 0) + allocation.quantity
            plans.append(LinePlan(line=line, sku=sku, needed=needed, allocations=allocations))
        return plans

    def _commit(self, plans: Sequence[LinePlan]) -> None:
        applied: list[Allocation] = []
        try:
            for plan in plans:
                for allocation in plan.allocations:
                    if self.datastore.decrement_lot(allocation.product_id, allocation.lot_id, allocation.quantity):
                        applied.append(allocation)
                        continue
                    # A concurrent job drained the lot after planning.
                    self._restore(applied)
                    applied = []
                    remaining = sum(lot.quantity for lot in self.datastore.find_lots(allocation.product_id))
                    raise InsufficientStock(plan.sku, plan.needed, remaining)
        except Exception:
            self._restore(applied)
            raise

    def _restore(self, applied: Sequence[Allocation]) -> None:
        for done in reversed(applied):
            try:
                self.datastore.restore_lot(done.product_id, done.lot_id, done.quantity)
            except Exception:
                logger.exception(
                    "Could not restore %s units to lot %s of product %s",
                    done.quantity,
                    done.lot_id,
                    done.product_id,
                )

    def _insert(self, report: AllocationReport) -> None:
        staged = report.created_orders
        if not staged:
            return
        try:
            self.datastore.bulk_insert_orders(staged)
        except PersistenceError as exc:
            logger.error(
                "Bulk insert of %s orders failed; their inventory deductions stay applied: %s",
                len(staged),
                exc,
            )
            report.outcomes = [
                Failed(outcome.order_id, REASON_INSERT, error=str(exc)) if isinstance(outcome, Created) else outcome
                for outcome in report.outcomes
            ]


def _build_record(raw: RawOrder, plans: Sequence[LinePlan]) -> OrderRecord:
    payload = raw.payload
    return OrderRecord(
        external_order_id=raw.external_id,
        store_id=raw.store_id,
        channel_type=raw.channel_type,
        status=fields.order_status(payload),
        order_date=parse_marketplace_datetime(payload.get("orderDate")),
        customer_name=fields.customer_name(payload),
        customer_address=fields.customer_address(payload),
        lines=[
            OrderLine(
                sku=plan.sku,
                product_name=str((plan.line.get("item") or {}).get("productName") or fields.UNKNOWN_PRODUCT),
                image_url=str((plan.line.get("item") or {}).get("imageUrl") or ""),
                quantity=plan.needed,
                purchase_price=plan.purchase_price,
                sell_price=fields.sell_price(plan.line),
                tax=fields.tax(plan.line),
                shipping=fields.shipping(plan.line),
            )
            for plan in plans
        ],
    )
