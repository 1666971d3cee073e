# db.py
import logging
from contextlib import asynccontextmanager

from psycopg.rows import dict_row
from psycopg_pool import AsyncConnectionPool

import config

logger = logging.getLogger(__name__)

# Module-level pool, created on first use
_pool: AsyncConnectionPool | None = None


async def get_pool() -> AsyncConnectionPool:
    """
    Return the shared connection pool, opening it on first use.

    Rows come back as dicts (``row["id"]``) instead of tuples.
    """
    global _pool

    # Lazy loading: the pool is only built when the first query needs it
    if _pool is None:
        logger.info("Initializing connection pool")
        pool = AsyncConnectionPool(
            conninfo=config.DATABASE_URL,
            kwargs={"row_factory": dict_row},
            open=False,  # opened explicitly below
        )
        try:
            await pool.open()
        except Exception:
            logger.exception("Could not open connection pool")
            raise
        _pool = pool
        logger.info("Connection pool opened")

    return _pool


@asynccontextmanager
async def connection():
    """
    Borrow one connection for the duration of the block.

    The pool commits on a clean exit and rolls back if the block raises.
    """
    pool = await get_pool()
    async with pool.connection() as conn:
        yield conn


async def close_pool() -> None:
    global _pool
    if _pool is not None:
        await _pool.close()
        _pool = None
        logger.info("Connection pool closed")
