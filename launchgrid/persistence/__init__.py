"""Persistence layer for LaunchGrid records."""

from __future__ import annotations

import os
from typing import Optional

from ..config import LaunchGridConfig, load_config
from .base import Store
from .inmemory import InMemoryStore
from .repository import WorkflowRepository

_store_instance: Store | None = None


def get_store(
    database_url: Optional[str] = None, config: Optional[LaunchGridConfig] = None
) -> Store:
    """Factory function to obtain a row store.

    The backend is selected based on ``database_url`` which can be provided
    explicitly, via environment variable ``LAUNCHGRID_DATABASE_URL`` or
    ``DATABASE_URL``, or from loaded configuration. When no database is
    configured, an in-memory store is returned.
    """

    global _store_instance
    if _store_instance is not None and database_url is None and config is None:
        return _store_instance

    config = config or load_config()
    database_url = (
        database_url
        or os.getenv("LAUNCHGRID_DATABASE_URL")
        or os.getenv("DATABASE_URL")
        or getattr(config, "database_url", None)
    )

    if not database_url:
        _store_instance = InMemoryStore()
        return _store_instance

    if database_url.startswith(("sqlite", "postgres")):
        from ..db import SQLStore

        _store_instance = SQLStore(database_url)
    else:
        raise ValueError(f"Unsupported database backend: {database_url}")

    return _store_instance


def get_repository(
    database_url: Optional[str] = None, config: Optional[LaunchGridConfig] = None
) -> WorkflowRepository:
    return WorkflowRepository(get_store(database_url, config))


__all__ = [
    "InMemoryStore",
    "Store",
    "WorkflowRepository",
    "get_repository",
    "get_store",
]
