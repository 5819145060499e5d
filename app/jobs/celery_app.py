"""Celery configuration: beat-driven scheduler ticks and durable per-store tasks."""

from __future__ import annotations

import asyncio
import os
import time

from celery import Celery
from celery.schedules import crontab

from app.utils.dates import timezone_name

broker_url = os.environ.get("REDIS_URL", "redis://redis:6379/0")
backend_url = os.environ.get("REDIS_URL", "redis://redis:6379/0")

ORDER_INTERVAL = int(os.environ.get("ORDER_SYNC_INTERVAL_MINUTES", "15"))
PRODUCT_INTERVAL = int(os.environ.get("PRODUCT_SYNC_INTERVAL_MINUTES", "5"))

celery_app = Celery("lotsync", broker=broker_url, backend=backend_url)
celery_app.conf.timezone = timezone_name()
celery_app.conf.task_acks_late = True
celery_app.conf.worker_prefetch_multiplier = 1
celery_app.conf.beat_schedule = {
    "orders-sync": {
        "task": "app.jobs.scheduler.tick_orders",
        "schedule": crontab(minute=f"*/{ORDER_INTERVAL}"),
    },
    "products-sync": {
        "task": "app.jobs.scheduler.tick_products",
        "schedule": crontab(minute=f"*/{PRODUCT_INTERVAL}"),
    },
}


class CeleryQueue:
    """Enqueuer backed by a Celery task; ``delay`` becomes the task countdown."""

    def __init__(self, task) -> None:
        self.task = task

    def enqueue(self, store_id: str, *, delay: float = 0.0):
        return self.task.apply_async(kwargs={"store_id": store_id}, countdown=delay)


def _tick(kind: str, task) -> int:
    from dotenv import load_dotenv

    from app.db.session import create_engine_from_env
    from app.db.store import Datastore
    from app.jobs.scheduler import Scheduler

    load_dotenv()
    engine = create_engine_from_env()
    try:
        return asyncio.run(Scheduler(Datastore(engine), CeleryQueue(task), kind=kind).tick())
    finally:
        engine.dispose()


async def _run_store(kind: str, store_id: str):
    from dotenv import load_dotenv

    from app.db.session import create_engine_from_env
    from app.db.store import Datastore
    from app.ingest.marketplace import MarketplaceClient
    from app.jobs.orders import OrderPipeline
    from app.jobs.products import ProductPipeline

    load_dotenv()
    engine = create_engine_from_env()
    datastore = Datastore(engine)
    client = MarketplaceClient()
    pipeline = OrderPipeline(datastore, client) if kind == "order" else ProductPipeline(datastore, client)
    try:
        return await pipeline.run(store_id)
    finally:
        await client.close()
        engine.dispose()


def _process_store(task, kind: str, store_id: str) -> dict:  # pragma: no cover - executed by worker
    from app.jobs.queue import RetryPolicy, report_failure, report_success
    from app.utils.broadcast import get_broadcaster

    policy = RetryPolicy.from_env()
    attempt = task.request.retries + 1
    started = time.monotonic()
    try:
        result = asyncio.run(_run_store(kind, store_id))
    except Exception as exc:
        if attempt < policy.attempts:
            raise task.retry(exc=exc, countdown=policy.delay_for(attempt), max_retries=policy.attempts - 1)
        report_failure(get_broadcaster(), kind, store_id, attempt, exc)
        raise
    report_success(get_broadcaster(), kind, store_id, result, time.monotonic() - started)
    return result.as_dict()


@celery_app.task(name="app.jobs.orders.process_store", bind=True)
def process_store_orders_task(self, store_id: str) -> dict:  # pragma: no cover - executed by worker
    return _process_store(self, "order", store_id)


@celery_app.task(name="app.jobs.products.process_store", bind=True)
def process_store_products_task(self, store_id: str) -> dict:  # pragma: no cover - executed by worker
    return _process_store(self, "product", store_id)


@celery_app.task(name="app.jobs.scheduler.tick_orders")
def tick_orders_task() -> int:  # pragma: no cover - executed by beat
    return _tick("order", process_store_orders_task)


@celery_app.task(name="app.jobs.scheduler.tick_products")
def tick_products_task() -> int:  # pragma: no cover - executed by beat
    return _tick("product", process_store_products_task)
