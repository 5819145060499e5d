"""Ingestion helpers."""

from __future__ import annotations

import os

DEFAULT_CHANNEL_TYPES = ("SellerFulfilled", "WFSFulfilled", "3PLFulfilled")


def channel_types() -> list[str]:
    """Fulfillment channels queried per store, in order."""
    raw = os.environ.get("MARKETPLACE_CHANNEL_TYPES")
    if not raw:
        return list(DEFAULT_CHANNEL_TYPES)
    return [value.strip() for value in raw.split(",") if value.strip()]
