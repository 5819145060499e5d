"""Marketplace order and item retrieval."""

from __future__ import annotations

import asyncio
import logging
import os
import uuid
from datetime import date
from typing import Any
from urllib.parse import urlparse

import httpx

from app.ingest import channel_types
from app.ingest.auth import (
    AuthError,
    TokenProvider,
    marketplace_base_url,
    marketplace_service_name,
    marketplace_timeout,
)
from app.ingest.models import ItemPage, RawOrder, Store
from app.utils.crypto import CredentialError, reveal
from app.utils.dates import format_date, orders_since
from app.utils.rate_limit import RateLimiter
from app.utils.retry import retry_async

logger = logging.getLogger(__name__)


def orders_page_limit() -> int:
    return int(os.environ.get("ORDERS_PAGE_LIMIT", "200"))


def items_page_limit() -> int:
    return int(os.environ.get("ITEMS_PAGE_LIMIT", "200"))


class FetchError(Exception):
    def __init__(self, status: int | None, body: str) -> None:
        super().__init__(f"Marketplace request failed ({status}): {body[:200]}")
        self.status = status
        self.body = body


class MarketplaceClient:
    def __init__(
        self,
        *,
        session: httpx.AsyncClient | None = None,
        token_provider: TokenProvider | None = None,
        rate_limiter: RateLimiter | None = None,
        base_url: str | None = None,
        channels: list[str] | None = None,
    ) -> None:
        self.base_url = (base_url or marketplace_base_url()).rstrip("/")
        self._session = session or httpx.AsyncClient(timeout=marketplace_timeout())
        self._tokens = token_provider or TokenProvider(session=self._session, base_url=self.base_url)
        self._rate_limiter = rate_limiter or RateLimiter()
        self.channels = channels or channel_types()

    async def close(self) -> None:
        await self._session.aclose()

    async def authenticate(self, store: Store) -> str:
        try:
            client_id = reveal(store.client_id)
            client_secret = reveal(store.client_secret)
        except CredentialError as exc:
            raise AuthError(f"Stored credentials for {store.id} could not be decrypted") from exc
        return await self._tokens.get_access_token(client_id, client_secret)

    async def fetch_orders(self, store: Store, *, since: date | None = None, limit: int | None = None) -> list[RawOrder]:
        """Orders of ``store`` across every channel type.

        Raises :class:`AuthError` when no token can be obtained. A failing
        channel is logged and contributes no orders.
        """
        token = await self.authenticate(store)
        correlation_id = str(uuid.uuid4())
        since = since or orders_since()
        limit = limit or orders_page_limit()
        results = await asyncio.gather(
            *(self._fetch_channel(store, token, channel, since, limit, correlation_id) for channel in self.channels)
        )
        orders = [order for channel_orders in results for order in channel_orders]
        logger.info("Fetched %s orders for store %s (%s)", len(orders), store.id, correlation_id)
        return orders

    async def _fetch_channel(
        self, store: Store, token: str, channel: str, since: date, limit: int, correlation_id: str
    ) -> list[RawOrder]:
        try:
            payloads = await self.list_orders(token, channel, since=since, limit=limit, correlation_id=correlation_id)
        except FetchError as exc:
            logger.warning("Failed to fetch %s orders for store %s: %s", channel, store.id, exc)
            return []
        return [RawOrder(store_id=store.id, channel_type=channel, payload=payload) for payload in payloads]

    async def list_orders(
        self, token: str, channel: str, *, since: date, limit: int, correlation_id: str
    ) -> list[dict[str, Any]]:
        params = {
            "createdStartDate": format_date(since),
            "limit": limit,
            "shipNodeType": channel,
            "replacementInfo": "false",
            "productInfo": "true",
        }
        data = await self._get_json("/v3/orders", token, correlation_id, params)
        return list((((data.get("list") or {}).get("elements") or {}).get("order")) or [])

    async def list_items(self, token: str, *, cursor: str | None = None, limit: int | None = None, correlation_id: str) -> ItemPage:
        params = {"limit": limit or items_page_limit(), "nextCursor": cursor or "*"}
        data = await self._get_json("/v3/items", token, correlation_id, params)
        if "ItemResponse" not in data:
            raise FetchError(None, "Invalid response structure from marketplace")
        return ItemPage(
            items=list(data.get("ItemResponse") or []),
            next_cursor=data.get("nextCursor") or None,
            total_items=int(data.get("totalItems") or 0),
        )

    async def _get_json(self, path: str, token: str, correlation_id: str, params: dict[str, Any]) -> dict[str, Any]:
        url = f"{self.base_url}{path}"
        headers = {
            "WM_SEC.ACCESS_TOKEN": token,
            "WM_QOS.CORRELATION_ID": correlation_id,
            "WM_SVC.NAME": marketplace_service_name(),
            "Accept": "application/json",
        }
        await self._rate_limiter.wait_for_host(urlparse(url).netloc)
        try:
            response = await retry_async(self._session.get)(url, params=params, headers=headers)
        except httpx.HTTPError as exc:
            raise FetchError(None, str(exc) or exc.__class__.__name__) from exc
        if response.is_error:
            raise FetchError(response.status_code, response.text)
        try:
            return response.json()
        except ValueError as exc:
            raise FetchError(response.status_code, "Response was not JSON") from exc
