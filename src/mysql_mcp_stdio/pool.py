import asyncio
import logging
from collections import deque
from typing import Any, Callable, Deque, Dict, Optional

import mysql.connector

from .config import DatabaseConfig

logger = logging.getLogger(__name__)

POOL_SIZE = 5


class ConnectionPool:
    """Fixed-capacity pool of MySQL connections shared by the tool handlers.

    Connections are opened lazily up to ``size``. When every connection is
    checked out, ``acquire()`` waits until one is released; released
    connections go straight to the longest waiting caller. Idle connections
    are pinged before they are handed out and reconnected if the server has
    dropped them. The driver is blocking, so every driver call runs in a
    worker thread.
    """

    def __init__(
        self,
        config: DatabaseConfig,
        size: int = POOL_SIZE,
        connect: Optional[Callable[..., Any]] = None,
    ):
        self.config = config
        self.size = size
        self._connect = connect or mysql.connector.connect
        self._idle: Deque[Any] = deque()
        self._waiters: "Deque[asyncio.Future]" = deque()
        self._checked_out: Dict[int, Any] = {}
        self._opened = 0
        self._closed = False

    @property
    def in_use(self) -> int:
        return len(self._checked_out)

    @property
    def idle(self) -> int:
        return len(self._idle)

    @property
    def closed(self) -> bool:
        return self._closed

    async def acquire(self):
        if self._closed:
            raise RuntimeError("Connection pool is closed")

        if self._idle:
            conn = await self._revive(self._idle.popleft())
        elif self._opened < self.size:
            conn = await self._open()
        else:
            logger.debug(f"All {self.size} connections busy, waiting")
            conn = await self._revive(await self._wait_for_release())

        self._checked_out[id(conn)] = conn
        return conn

    def release(self, conn) -> None:
        if self._checked_out.pop(id(conn), None) is None:
            raise ValueError("Connection is not checked out from this pool")
        self._put(conn)

    async def close(self) -> None:
        """Close idle connections; busy ones are closed when released."""
        if self._closed:
            return
        self._closed = True
        while self._waiters:
            waiter = self._waiters.popleft()
            if not waiter.done():
                waiter.set_exception(RuntimeError("Connection pool is closed"))
        while self._idle:
            conn = self._idle.popleft()
            self._opened -= 1
            await asyncio.to_thread(_close_quietly, conn)
        logger.info(f"Connection pool closed ({self.in_use} connections still busy)")

    def _put(self, conn) -> None:
        if self._closed:
            self._discard(conn)
            return
        while self._waiters:
            waiter = self._waiters.popleft()
            if not waiter.done():
                waiter.set_result(conn)
                return
        self._idle.append(conn)

    def _discard(self, conn) -> None:
        self._opened -= 1
        _close_quietly(conn)

    async def _wait_for_release(self):
        waiter = asyncio.get_running_loop().create_future()
        self._waiters.append(waiter)
        try:
            return await waiter
        except asyncio.CancelledError:
            if waiter in self._waiters:
                self._waiters.remove(waiter)
            elif waiter.done() and not waiter.cancelled() and waiter.exception() is None:
                # handed a connection just as we were cancelled; pass it on
                self._put(waiter.result())
            raise

    async def _open(self):
        # reserve the slot before yielding to the event loop
        self._opened += 1
        task = asyncio.ensure_future(asyncio.to_thread(self._connect, **self.config.connection_kwargs()))
        try:
            conn = await asyncio.shield(task)
        except asyncio.CancelledError:
            task.add_done_callback(self._adopt)
            raise
        except BaseException:
            self._opened -= 1
            raise
        logger.debug(f"Opened connection {self._opened}/{self.size} to {self.config.describe()}")
        return conn

    def _adopt(self, task: "asyncio.Future") -> None:
        """Pool a connection whose caller stopped waiting for it."""
        if task.cancelled() or task.exception() is not None:
            self._opened -= 1
            return
        self._put(task.result())

    async def _revive(self, conn):
        """Check an idle connection is alive; replace it if it cannot be."""
        task = asyncio.ensure_future(asyncio.to_thread(_ensure_connected, conn))
        try:
            await asyncio.shield(task)
        except asyncio.CancelledError:
            task.add_done_callback(lambda t: self._after_revive(t, conn))
            raise
        except mysql.connector.Error as e:
            logger.warning(f"Dropping dead connection: {e}")
            self._discard(conn)
            return await self._open()
        return conn

    def _after_revive(self, task: "asyncio.Future", conn) -> None:
        if task.cancelled() or task.exception() is not None:
            self._discard(conn)
        else:
            self._put(conn)


def _ensure_connected(conn) -> None:
    # is_connected() pings the server
    if conn.is_connected():
        return
    logger.info("Connection lost, reconnecting")
    conn.reconnect(attempts=1, delay=0)


def _close_quietly(conn) -> None:
    try:
        conn.close()
    except mysql.connector.Error as e:
        logger.debug(f"Error closing connection: {e}")
