import asyncio
import re
import threading
import time

import pytest
from mysql.connector import errors

from mysql_mcp_stdio.config import DatabaseConfig
from mysql_mcp_stdio.executor import QueryExecutor
from mysql_mcp_stdio.pool import ConnectionPool
from mysql_mcp_stdio.server import MySQLToolServer

_HINT = re.compile(r"\s*/\*\+.*?\*/", re.DOTALL)
_SLEEP = re.compile(r"SLEEP\((\d+(?:\.\d+)?)\)", re.IGNORECASE)
_KILL = re.compile(r"KILL QUERY (\d+)", re.IGNORECASE)
_COLUMNS = re.compile(r"SHOW FULL COLUMNS FROM (.*)", re.IGNORECASE | re.DOTALL)


class FakeMySQL:
    """In-memory stand-in for a MySQL server reached through mysql.connector.

    ``SLEEP(n)`` statements block the calling thread for n seconds unless a
    ``KILL QUERY`` for their session arrives, in which case they fail with
    errno 1317 like a real server.
    """

    def __init__(self, database="shop", tables=None):
        self.database = database
        self.tables = tables if tables is not None else {}
        self.sessions = {}
        self.statements = []
        self.killed = []
        self.scripted_errors = {}
        self.connect_error = None
        self.kill_error = None
        self.reconnect_error = None
        self.connect_delay = 0
        self.pings = 0
        self.running = 0
        self.max_running = 0
        self.violations = []
        self._next_id = 100
        self._lock = threading.Lock()

    def connect(self, **kwargs):
        if self.connect_delay:
            time.sleep(self.connect_delay)
        if self.connect_error is not None:
            raise self.connect_error
        with self._lock:
            self._next_id += 1
            conn = FakeConnection(self, self._next_id, kwargs)
            self.sessions[conn.session_id] = conn
        return conn

    @property
    def opened(self):
        return len(self.sessions)

    def run(self, conn, sql):
        """Returns (column names, rows) or (None, rowcount)."""
        with self._lock:
            self.statements.append(sql)
        plain = _HINT.sub("", sql).strip()

        if not conn.alive:
            raise errors.OperationalError(
                msg="Lost connection to MySQL server at 'localhost:3306', system error: 32 Broken pipe", errno=2055
            )

        if plain in self.scripted_errors:
            raise self.scripted_errors[plain]
        if plain == "SELECT CONNECTION_ID()":
            return ["CONNECTION_ID()"], [(conn.session_id,)]
        if plain == "SELECT 1":
            return ["1"], [(1,)]

        kill = _KILL.fullmatch(plain)
        if kill:
            if self.kill_error is not None:
                raise self.kill_error
            session_id = int(kill.group(1))
            self.killed.append(session_id)
            self.sessions[session_id].interrupt.set()
            return None, 0

        sleep = _SLEEP.search(plain)
        if sleep:
            # a kill aimed at an earlier statement does not carry over
            conn.interrupt.clear()
            if conn.interrupt.wait(float(sleep.group(1))):
                conn.interrupt.clear()
                raise errors.DatabaseError(msg="Query execution was interrupted", errno=1317, sqlstate="70100")
            return [sleep.group(0)], [(0,)]

        if plain.upper() == "SHOW TABLE STATUS":
            rows = [(name, "InnoDB", comment) for name, comment in self.tables.items()]
            return ["Name", "Engine", "Comment"], rows

        columns = _COLUMNS.fullmatch(plain)
        if columns:
            table = columns.group(1)
            if table not in self.tables:
                raise errors.ProgrammingError(
                    msg=f"Table '{self.database}.{table}' doesn't exist", errno=1146, sqlstate="42S02"
                )
            return (
                ["Field", "Type", "Collation", "Null", "Key", "Default", "Extra", "Privileges", "Comment"],
                [("id", "int", None, "NO", "PRI", None, "auto_increment", "select,insert", "")],
            )

        if plain.upper().startswith("INSERT"):
            return None, 1

        raise errors.ProgrammingError(
            msg="You have an error in your SQL syntax", errno=1064, sqlstate="42000"
        )


class FakeConnection:
    def __init__(self, server, session_id, kwargs):
        self.server = server
        self.session_id = session_id
        self.kwargs = kwargs
        self.interrupt = threading.Event()
        self.closed = False
        self.busy = False
        self.alive = True

    def is_connected(self):
        self.server.pings += 1
        return self.alive

    def reconnect(self, attempts=1, delay=0):
        if self.server.reconnect_error is not None:
            raise self.server.reconnect_error
        self.alive = True

    def cursor(self, dictionary=False):
        return FakeCursor(self, dictionary)

    def close(self):
        self.closed = True


class FakeCursor:
    def __init__(self, conn, dictionary):
        self.conn = conn
        self.dictionary = dictionary
        self.description = None
        self.rowcount = -1
        self.lastrowid = None
        self._rows = []

    def execute(self, sql):
        conn, server = self.conn, self.conn.server
        if conn.busy:
            server.violations.append(sql)
        conn.busy = True
        with server._lock:
            server.running += 1
            server.max_running = max(server.max_running, server.running)
        try:
            columns, rows = server.run(conn, sql)
        finally:
            with server._lock:
                server.running -= 1
            conn.busy = False

        if columns is None:
            self.description = None
            self.rowcount = rows
            self.lastrowid = 7 if rows else 0
            return
        self.description = [(name,) for name in columns]
        self.rowcount = len(rows)
        if self.dictionary:
            self._rows = [dict(zip(columns, row)) for row in rows]
        else:
            self._rows = list(rows)

    def fetchone(self):
        return self._rows.pop(0) if self._rows else None

    def fetchall(self):
        rows, self._rows = self._rows, []
        return rows

    def close(self):
        pass


async def wait_until(predicate, timeout=5.0):
    deadline = asyncio.get_running_loop().time() + timeout
    while not predicate():
        if asyncio.get_running_loop().time() > deadline:
            raise AssertionError("condition not reached in time")
        await asyncio.sleep(0.02)


@pytest.fixture
def fake_mysql():
    return FakeMySQL(tables={"users": "Registered users", "orders": None})


@pytest.fixture
def config():
    return DatabaseConfig(host="localhost", user="root", database="shop", query_timeout=1)


@pytest.fixture
def pool(config, fake_mysql):
    return ConnectionPool(config, connect=fake_mysql.connect)


@pytest.fixture
def executor(pool, config):
    return QueryExecutor(pool, config.query_timeout)


@pytest.fixture
def server(config, pool):
    return MySQLToolServer(config, pool=pool)
