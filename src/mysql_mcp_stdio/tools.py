import logging
from typing import Any, Awaitable, Callable, Dict, List

from mcp.types import CallToolResult, TextContent, Tool

from .errors import InvalidArgumentsError, UnknownToolError
from .executor import QueryExecutor
from .formatting import to_json_text

logger = logging.getLogger(__name__)

TOOLS = (
    Tool(
        name="query",
        description="Execute a SQL query",
        inputSchema={
            "type": "object",
            "properties": {
                "sql": {
                    "type": "string",
                    "description": "SQL statement to execute"
                }
            },
            "required": ["sql"]
        }
    ),
    Tool(
        name="list_tables",
        description="List all tables in the database",
        inputSchema={
            "type": "object",
            "properties": {}
        }
    ),
    Tool(
        name="describe_table",
        description="Show the structure of a table",
        inputSchema={
            "type": "object",
            "properties": {
                "table": {
                    "type": "string",
                    "description": "Table name"
                }
            },
            "required": ["table"]
        }
    ),
)


def _require_string(arguments: Dict[str, Any], name: str) -> str:
    value = arguments.get(name)
    if not isinstance(value, str):
        raise InvalidArgumentsError(f"Missing required string argument: {name}")
    return value


def _text_result(data) -> CallToolResult:
    return CallToolResult(content=[TextContent(type="text", text=to_json_text(data))])


class ToolHandlers:
    """Implementations of the tools listed in TOOLS."""

    def __init__(self, executor: QueryExecutor):
        self.executor = executor
        self._handlers: Dict[str, Callable[[Dict[str, Any]], Awaitable[Any]]] = {
            "query": self.query,
            "list_tables": self.list_tables,
            "describe_table": self.describe_table,
        }

    def list_tools(self) -> List[Tool]:
        return list(TOOLS)

    async def call(self, name: str, arguments: Dict[str, Any]) -> CallToolResult:
        handler = self._handlers.get(name)
        if handler is None:
            raise UnknownToolError(name)
        logger.info(f"Calling tool: {name}")
        return _text_result(await handler(arguments or {}))

    async def query(self, arguments):
        return await self.executor.execute(_require_string(arguments, "sql"))

    async def list_tables(self, arguments):
        rows = await self.executor.execute("SHOW TABLE STATUS")
        return [{"name": row["Name"], "comment": row.get("Comment") or ""} for row in rows]

    async def describe_table(self, arguments):
        table = _require_string(arguments, "table")
        # the caller is a trusted local client; the name goes into the SQL as is
        return await self.executor.execute(f"SHOW FULL COLUMNS FROM {table}")
