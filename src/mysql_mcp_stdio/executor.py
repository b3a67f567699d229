"""
Timeout-bounded statement execution.

Each statement runs on a pooled connection in a worker thread while the
caller waits at most ``query_timeout`` seconds for it. When the deadline
passes first, ``KILL QUERY`` is sent for the statement's session from a
second pooled connection and the caller gets a QueryTimeoutError. The
borrowed connection goes back to the pool only once its worker thread has
finished with it.
"""

import asyncio
import logging
import re
from typing import Any, Dict, List, Union

import mysql.connector

from .errors import ConnectivityError, QueryError, QueryTimeoutError
from .pool import ConnectionPool

logger = logging.getLogger(__name__)

# ER_QUERY_TIMEOUT: the server enforced MAX_EXECUTION_TIME itself
ER_QUERY_TIMEOUT = 3024

_SELECT_PREFIX = re.compile(r"select", re.IGNORECASE)

ResultSet = Union[List[Dict[str, Any]], Dict[str, Any]]


def apply_execution_time_hint(sql: str, timeout_ms: int) -> str:
    """Insert a MAX_EXECUTION_TIME optimizer hint after a leading SELECT.

    Only text that literally starts with SELECT (any case) is rewritten.
    Leading whitespace or comments, CTEs and other statements pass through
    untouched, and text that already carries a hint gets a second one.
    """
    match = _SELECT_PREFIX.match(sql)
    if not match:
        return sql
    end = match.end()
    return f"{sql[:end]} /*+ MAX_EXECUTION_TIME({int(timeout_ms)}) */{sql[end:]}"


def _fetch_session_id(conn) -> int:
    cursor = conn.cursor()
    try:
        cursor.execute("SELECT CONNECTION_ID()")
        (session_id,) = cursor.fetchone()
        return session_id
    finally:
        cursor.close()


def _run_statement(conn, sql: str) -> ResultSet:
    cursor = conn.cursor(dictionary=True)
    try:
        cursor.execute(sql)
        if cursor.description is not None:
            return cursor.fetchall()
        return {"affectedRows": cursor.rowcount, "insertId": cursor.lastrowid}
    finally:
        cursor.close()


def _kill_query(conn, session_id: int) -> None:
    cursor = conn.cursor()
    try:
        cursor.execute(f"KILL QUERY {int(session_id)}")
    finally:
        cursor.close()


class QueryExecutor:
    """Runs single statements against the pool under a deadline."""

    def __init__(self, pool: ConnectionPool, timeout: int):
        self.pool = pool
        self.timeout = timeout

    async def check_connectivity(self) -> None:
        try:
            rows = await self.execute("SELECT 1")
        except Exception as e:
            raise ConnectivityError(f"MySQL connection failed: {e}") from e
        logger.info(f"MySQL connection OK ({len(rows)} row from SELECT 1)")

    async def execute(self, sql: str) -> ResultSet:
        conn = await self.pool.acquire()
        worker = None
        try:
            session_id = await asyncio.to_thread(_fetch_session_id, conn)
            statement = apply_execution_time_hint(sql, self.timeout * 1000)

            worker = asyncio.ensure_future(asyncio.to_thread(_run_statement, conn, statement))
            done, _ = await asyncio.wait({worker}, timeout=self.timeout)
            if worker in done:
                return worker.result()

            logger.warning(
                f"Query on session {session_id} exceeded {self.timeout}s, "
                f"killing it: {sql[:100]}"
            )
            await self._kill(session_id)
            raise QueryTimeoutError(self.timeout)
        except mysql.connector.Error as e:
            if e.errno == ER_QUERY_TIMEOUT:
                raise QueryTimeoutError(self.timeout) from e
            raise QueryError(str(e), errno=e.errno) from e
        finally:
            if worker is None or worker.done():
                self.pool.release(conn)
            else:
                # the driver call cannot be interrupted from here; hand the
                # connection back once the worker thread lets go of it
                worker.add_done_callback(lambda task: self._release_after(task, conn))

    async def _kill(self, session_id: int) -> None:
        """Best effort KILL QUERY from a separate connection; never raises."""
        try:
            conn = await asyncio.wait_for(self.pool.acquire(), timeout=self.timeout)
        except Exception as e:
            logger.warning(f"No connection available to kill session {session_id}: {e!r}")
            return
        try:
            await asyncio.to_thread(_kill_query, conn, session_id)
            logger.info(f"Sent KILL QUERY {session_id}")
        except Exception as e:
            logger.warning(f"KILL QUERY {session_id} failed: {e}")
        finally:
            self.pool.release(conn)

    def _release_after(self, task: "asyncio.Future", conn) -> None:
        if not task.cancelled() and task.exception() is not None:
            logger.debug(f"Abandoned statement finished with: {task.exception()}")
        self.pool.release(conn)
