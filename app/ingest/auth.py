"""Marketplace access token exchange."""

from __future__ import annotations

import logging
import os
import uuid

import httpx

from app.utils.retry import retry_async

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "https://marketplace.walmartapis.com"
DEFAULT_SERVICE_NAME = "Walmart Marketplace"


def marketplace_base_url() -> str:
    return os.environ.get("MARKETPLACE_BASE_URL", DEFAULT_BASE_URL).rstrip("/")


def marketplace_service_name() -> str:
    return os.environ.get("MARKETPLACE_SERVICE_NAME", DEFAULT_SERVICE_NAME)


def marketplace_timeout() -> float:
    return float(os.environ.get("MARKETPLACE_TIMEOUT", "120"))


class AuthError(Exception):
    pass


class TokenProvider:
    """Exchanges decrypted client credentials for a short-lived access token."""

    def __init__(self, *, session: httpx.AsyncClient | None = None, base_url: str | None = None) -> None:
        self.session = session or httpx.AsyncClient(timeout=marketplace_timeout())
        self.base_url = (base_url or marketplace_base_url()).rstrip("/")

    async def close(self) -> None:
        await self.session.aclose()

    async def get_access_token(self, client_id: str, client_secret: str) -> str:
        if not client_id.strip() or not client_secret.strip():
            raise AuthError("Client credentials cannot be empty")
        headers = {
            "WM_QOS.CORRELATION_ID": str(uuid.uuid4()),
            "WM_SVC.NAME": marketplace_service_name(),
            "Accept": "application/json",
        }
        try:
            response = await retry_async(self.session.post)(
                f"{self.base_url}/v3/token",
                auth=(client_id, client_secret),
                data={"grant_type": "client_credentials"},
                headers=headers,
            )
        except httpx.HTTPError as exc:
            raise AuthError(f"Token request failed: {exc}") from exc
        if response.is_error:
            raise AuthError(f"Token request rejected ({response.status_code}): {response.text[:200]}")
        try:
            token = response.json().get("access_token")
        except ValueError as exc:
            raise AuthError("Token response was not JSON") from exc
        if not token:
            raise AuthError("No access token received from marketplace")
        return token
