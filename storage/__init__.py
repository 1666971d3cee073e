# storage/__init__.py
import logging
from contextlib import asynccontextmanager

import psycopg

import config
import db
from storage.base import Storage, StorageError
from storage.memory import MemoryStorage
from storage.postgres import PostgresStorage

__all__ = [
    "MemoryStorage",
    "PostgresStorage",
    "Storage",
    "StorageError",
    "get_memory_storage",
    "get_storage",
    "reset_memory_storage",
    "storage_session",
]

logger = logging.getLogger(__name__)

# Process-wide store for the "memory" backend
_memory_storage: MemoryStorage | None = None


def get_memory_storage() -> MemoryStorage:
    global _memory_storage
    if _memory_storage is None:
        _memory_storage = MemoryStorage()
    return _memory_storage


def reset_memory_storage() -> MemoryStorage:
    """Drop everything held by the memory backend and return the fresh store."""
    global _memory_storage
    _memory_storage = MemoryStorage()
    return _memory_storage


@asynccontextmanager
async def storage_session():
    """
    Open a storage handle for one unit of work.

    HTTP requests get one per request through ``get_storage``; the chat
    relay opens one per frame so a long-lived socket never pins a pooled
    connection. Pool timeouts, connect failures and a failed commit on
    exit surface as StorageError like any query error.
    """
    if config.STORAGE_BACKEND == "memory":
        yield get_memory_storage()
        return

    try:
        async with db.connection() as conn:
            yield PostgresStorage(conn)
    except psycopg.Error as exc:
        logger.exception("Database connection failed")
        raise StorageError("Failed to reach the database") from exc


async def get_storage():
    """FastAPI dependency: a storage handle scoped to the request."""
    async with storage_session() as storage:
        yield storage
