import asyncio
import logging
import os
import sys
from typing import IO, Optional, TextIO

from . import __version__
from .config import DatabaseConfig, load_config, load_dotenv_file
from .dispatcher import ProtocolDispatcher
from .errors import ConfigError, ConnectivityError
from .executor import QueryExecutor
from .pool import ConnectionPool
from .tools import ToolHandlers
from .transport import LineTransport

logger = logging.getLogger("mysql_mcp_stdio")


class MySQLToolServer:
    """Everything one server process owns: pool, executor and dispatcher."""

    def __init__(self, config: DatabaseConfig, pool: Optional[ConnectionPool] = None):
        self.config = config
        self.pool = pool or ConnectionPool(config)
        self.executor = QueryExecutor(self.pool, config.query_timeout)
        self.tools = ToolHandlers(self.executor)
        self.dispatcher = ProtocolDispatcher(self.tools, __version__)

    async def check_connectivity(self) -> None:
        await self.executor.check_connectivity()

    async def serve(self, stdin: Optional[IO] = None, stdout: Optional[TextIO] = None) -> None:
        try:
            await LineTransport(self.dispatcher, stdin, stdout).run()
        finally:
            await self.pool.close()


def configure_logging() -> None:
    # stdout carries the protocol, logs go to stderr
    logging.basicConfig(
        level=os.getenv("LOG_LEVEL", "INFO").upper(),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        stream=sys.stderr,
    )


async def main() -> int:
    """Run the server until stdin closes; returns the process exit code."""
    configure_logging()
    load_dotenv_file()

    try:
        config = load_config()
    except ConfigError as e:
        logger.error(f"Configuration error: {e}")
        return 1

    logger.info(f"Starting MySQL MCP server v{__version__}")
    logger.info(f"Database config: {config.describe()} (query timeout {config.query_timeout}s)")

    server = MySQLToolServer(config)
    try:
        await server.check_connectivity()
    except ConnectivityError as e:
        logger.error(str(e))
        await server.pool.close()
        return 1

    try:
        await server.serve()
    except Exception as e:
        logger.error(f"Server error: {str(e)}", exc_info=True)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(asyncio.run(main()))
