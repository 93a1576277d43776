"""PostgreSQL LISTEN helper with auto-reconnect."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable

import asyncpg

logger = logging.getLogger(__name__)

PayloadHandler = Callable[[str], Awaitable[None]]


async def pg_listen(
    pool: asyncpg.Pool,
    channel: str,
    on_payload: PayloadHandler,
    *,
    keepalive_interval: int = 30,
    reconnect_delay: int = 10,
) -> None:
    """Listen on a NOTIFY channel until cancelled, reconnecting on errors.

    Args:
        pool: asyncpg connection pool; one connection is held for the listener.
        channel: PostgreSQL NOTIFY channel name.
        on_payload: Async callback receiving the notification payload.
            Errors raised by it are logged and do not drop the listener.
        keepalive_interval: Seconds between keepalive pings on the held
            connection, so idle proxies do not cut it.
        reconnect_delay: Seconds to wait before reconnecting after an error.
    """

    async def _callback(
        connection: asyncpg.Connection, pid: int, channel_name: str, payload: str
    ) -> None:
        try:
            await on_payload(payload)
        except Exception as e:
            logger.exception(f"Handler for '{channel_name}' failed on {payload!r}: {e}")

    while True:
        connection: asyncpg.Connection | None = None
        try:
            connection = await pool.acquire()
            await connection.add_listener(channel, _callback)
            logger.info(f"PostgreSQL LISTEN active on '{channel}' channel")

            while True:
                await asyncio.sleep(keepalive_interval)
                await connection.execute("SELECT 1")

        except asyncio.CancelledError:
            logger.info(f"PostgreSQL LISTEN '{channel}' shutting down...")
            break
        except Exception as e:
            logger.error(f"Error in pg_listen('{channel}'): {type(e).__name__}: {e}")
            logger.warning(f"Reconnecting to PostgreSQL LISTEN '{channel}' in {reconnect_delay}s...")
            try:
                await asyncio.sleep(reconnect_delay)
            except asyncio.CancelledError:
                break
        finally:
            if connection is not None:
                await _release(pool, connection, channel, _callback)


async def _release(pool: asyncpg.Pool, connection: asyncpg.Connection, channel: str, callback) -> None:
    """Drop the listener and hand the connection back, terminating it if that fails."""
    try:
        if not connection.is_closed():
            await connection.remove_listener(channel, callback)
        await pool.release(connection)
    except Exception as e:
        logger.debug(f"Terminating LISTEN connection for '{channel}': {e}")
        connection.terminate()
