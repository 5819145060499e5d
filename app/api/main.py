"""FastAPI operational surface: manual sync triggers and the status websocket."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Any

from fastapi import Depends, FastAPI, WebSocket, WebSocketDisconnect
from fastapi.responses import JSONResponse
from pydantic import BaseModel
from sqlalchemy.engine import Engine

from app.db.session import create_engine_from_env
from app.db.store import Datastore
from app.ingest.marketplace import MarketplaceClient
from app.jobs.orders import OrderPipeline, StoreNotFound, process_orders_now
from app.jobs.products import ProductPipeline, process_products_now
from app.jobs.runner import SyncRunner, sync_enabled
from app.utils.broadcast import StatusBroadcaster, StatusEvent, init_broadcaster

logger = logging.getLogger(__name__)

WEBSOCKET_BUFFER = 100


def build_runner(broadcaster: StatusBroadcaster) -> SyncRunner:
    return SyncRunner.from_env(broadcaster)


@asynccontextmanager
async def lifespan(_: FastAPI) -> AsyncIterator[None]:
    broadcaster = init_broadcaster()
    runner = None
    if sync_enabled():
        runner = build_runner(broadcaster)
        runner.start()
    try:
        yield
    finally:
        if runner is not None:
            await runner.stop()


app = FastAPI(title="Lot Sync API", lifespan=lifespan)


class PassResponse(BaseModel):
    message: str
    success: bool
    summary: dict[str, Any]


class StoreResponse(BaseModel):
    message: str
    success: bool
    storeId: str
    status: dict[str, Any]


_engine: Engine | None = None


def get_engine() -> Engine:
    global _engine
    if _engine is None:
        _engine = create_engine_from_env()
    return _engine


def get_datastore(engine: Engine = Depends(get_engine)) -> Datastore:
    return Datastore(engine)


async def get_client() -> AsyncIterator[MarketplaceClient]:
    client = MarketplaceClient()
    try:
        yield client
    finally:
        await client.close()


def get_status_broadcaster() -> StatusBroadcaster:
    return init_broadcaster()


def _failure(message: str, status_code: int = 500, **extra: Any) -> JSONResponse:
    return JSONResponse({"message": message, "success": False, **extra}, status_code=status_code)


@app.get("/health")
async def health() -> dict[str, str]:
    return {"status": "ok"}


@app.post("/orders/process", response_model=PassResponse)
async def process_orders(
    datastore: Datastore = Depends(get_datastore),
    client: MarketplaceClient = Depends(get_client),
    broadcaster: StatusBroadcaster = Depends(get_status_broadcaster),
):
    try:
        summary = await process_orders_now(datastore, client, broadcaster=broadcaster)
    except Exception:
        logger.exception("Manual order processing failed")
        return _failure("Failed to process orders")
    return PassResponse(message="Order processing completed", success=True, summary=summary.as_dict())


@app.post("/orders/process/{store_id}", response_model=StoreResponse)
async def process_store_orders(
    store_id: str,
    datastore: Datastore = Depends(get_datastore),
    client: MarketplaceClient = Depends(get_client),
):
    try:
        result = await OrderPipeline(datastore, client).run(store_id)
    except StoreNotFound:
        return _failure("Store not found or inactive", 404, storeId=store_id)
    except Exception:
        logger.exception("Order processing failed for store %s", store_id)
        return _failure("Failed to process store orders", storeId=store_id)
    return StoreResponse(message="Order processing completed", success=True, storeId=store_id, status=result.as_dict())


@app.post("/products/process", response_model=PassResponse)
async def process_products(
    datastore: Datastore = Depends(get_datastore),
    client: MarketplaceClient = Depends(get_client),
    broadcaster: StatusBroadcaster = Depends(get_status_broadcaster),
):
    try:
        summary = await process_products_now(datastore, client, broadcaster=broadcaster)
    except Exception:
        logger.exception("Manual product processing failed")
        return _failure("Failed to process products")
    return PassResponse(message="Product processing completed", success=True, summary=summary.as_dict())


@app.post("/products/process/{store_id}", response_model=StoreResponse)
async def process_store_products(
    store_id: str,
    datastore: Datastore = Depends(get_datastore),
    client: MarketplaceClient = Depends(get_client),
):
    try:
        result = await ProductPipeline(datastore, client).run(store_id)
    except StoreNotFound:
        return _failure("Store not found or inactive", 404, storeId=store_id)
    except Exception:
        logger.exception("Product processing failed for store %s", store_id)
        return _failure("Failed to process store products", storeId=store_id)
    return StoreResponse(message="Product processing completed", success=True, storeId=store_id, status=result.as_dict())


@app.websocket("/ws/notifications")
async def notifications(
    websocket: WebSocket,
    broadcaster: StatusBroadcaster = Depends(get_status_broadcaster),
) -> None:
    buffer: asyncio.Queue[StatusEvent] = asyncio.Queue(maxsize=WEBSOCKET_BUFFER)

    def enqueue(event: StatusEvent) -> None:
        try:
            buffer.put_nowait(event)
        except asyncio.QueueFull:
            logger.debug("Dropping status event for slow websocket client")

    async def forward() -> None:
        while True:
            event = await buffer.get()
            await websocket.send_json(event.as_dict())

    unsubscribe = broadcaster.subscribe(enqueue)
    sender: asyncio.Task | None = None
    try:
        await websocket.accept()
        sender = asyncio.create_task(forward())
        # Client messages are ignored; reading detects the disconnect.
        while True:
            await websocket.receive_text()
    except WebSocketDisconnect:
        logger.info("Status websocket disconnected")
    finally:
        unsubscribe()
        if sender is not None:
            sender.cancel()
