"""Database engine helpers."""

from __future__ import annotations

import os

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine, make_url


DEFAULT_DATABASE_URL = "postgresql://user:pass@db:5432/orders"


def database_url() -> str:
    return os.environ.get("DATABASE_URL", DEFAULT_DATABASE_URL)


def create_engine_from_env() -> Engine:
    """Engine for DATABASE_URL.

    Allocation and catalog writes run on executor threads, so server
    databases get a pool sized for the worker count plus the API.
    """
    url = make_url(database_url())
    if url.get_backend_name() == "sqlite":
        return create_engine(url, future=True, connect_args={"check_same_thread": False})
    pool_size = int(os.environ.get("DATABASE_POOL_SIZE", "10"))
    return create_engine(url, pool_pre_ping=True, pool_size=pool_size, max_overflow=pool_size, future=True)
