"""Datetime helpers."""

from __future__ import annotations

import os
from datetime import date, datetime
from typing import Any

import pendulum

DEFAULT_TZ = "UTC"
DEFAULT_ORDERS_SINCE = "2023-01-01"


def timezone_name() -> str:
    return os.environ.get("TIMEZONE", DEFAULT_TZ)


def utc_now() -> pendulum.DateTime:
    return pendulum.now("UTC")


def iso_timestamp() -> str:
    return utc_now().to_iso8601_string()


def orders_since() -> date:
    return parse_iso_date(os.environ.get("ORDERS_SINCE", DEFAULT_ORDERS_SINCE))


def parse_iso_date(value: str) -> date:
    return pendulum.parse(value).date()


def format_date(value: date) -> str:
    return value.strftime("%Y-%m-%d")


def parse_marketplace_datetime(value: Any) -> datetime | None:
    """Marketplace timestamps arrive as epoch milliseconds or ISO strings."""
    if value in (None, ""):
        return None
    if isinstance(value, (int, float)):
        return pendulum.from_timestamp(value / 1000, tz="UTC")
    try:
        parsed = pendulum.parse(str(value))
    except ValueError:
        return None
    if not isinstance(parsed, datetime):
        return None
    return parsed
