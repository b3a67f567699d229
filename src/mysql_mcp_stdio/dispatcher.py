"""
JSON-RPC 2.0 dispatch for the MCP stdio protocol.

One input line becomes at most one output envelope. Messages without an id
are notifications and never get an answer, not even an error. Lines that are
not valid JSON get a parse error with a null id.
"""

import json
import logging
from typing import Any, Dict, Optional, Union

from mcp.types import (
    INTERNAL_ERROR,
    PARSE_ERROR,
    Implementation,
    InitializeResult,
    ServerCapabilities,
    ToolsCapability,
)

from .errors import MethodNotFoundError, MySQLToolServerError
from .tools import ToolHandlers

logger = logging.getLogger(__name__)

JSONRPC_VERSION = "2.0"
PROTOCOL_VERSION = "2024-11-05"
SERVER_NAME = "mysql-server"

KNOWN_NOTIFICATIONS = (
    "notifications/initialized",
    "notifications/cancelled",
    "notifications/progress",
)


def _dump(model) -> Dict[str, Any]:
    return model.model_dump(mode="json", by_alias=True, exclude_none=True)


def error_envelope(request_id, code: int, message: str) -> Dict[str, Any]:
    return {
        "jsonrpc": JSONRPC_VERSION,
        "id": request_id,
        "error": {"code": code, "message": message},
    }


def result_envelope(request_id, result: Dict[str, Any]) -> Dict[str, Any]:
    return {"jsonrpc": JSONRPC_VERSION, "id": request_id, "result": result}


class ProtocolDispatcher:
    def __init__(self, tools: ToolHandlers, server_version: str):
        self.tools = tools
        self.server_version = server_version

    async def handle_line(self, line: Union[str, bytes]) -> Optional[Dict[str, Any]]:
        """Handle one input line; returns the response envelope or None."""
        if isinstance(line, bytes):
            try:
                line = line.decode("utf-8")
            except UnicodeDecodeError:
                logger.warning(f"Input is not valid UTF-8: {line[:200]!r}")
                return error_envelope(None, PARSE_ERROR, "Parse error")

        try:
            message = json.loads(line)
        except (ValueError, RecursionError):
            logger.warning(f"Unparseable input: {line[:200]}")
            return error_envelope(None, PARSE_ERROR, "Parse error")

        if not isinstance(message, dict):
            logger.warning(f"Ignoring non-object message: {line[:200]}")
            return None

        request_id = message.get("id")
        method = message.get("method")
        params = message.get("params") or {}

        if request_id is None:
            self._handle_notification(method)
            return None

        try:
            return result_envelope(request_id, await self._handle_request(method, params))
        except MySQLToolServerError as e:
            logger.error(f"Request {request_id} ({method}) failed: {e}")
            return error_envelope(request_id, e.code, str(e))
        except Exception as e:
            logger.error(f"Request {request_id} ({method}) failed: {e}", exc_info=True)
            return error_envelope(request_id, INTERNAL_ERROR, str(e))

    def _handle_notification(self, method) -> None:
        if method in KNOWN_NOTIFICATIONS:
            # notifications/cancelled is accepted but does not abort anything
            logger.info(f"Received notification: {method}")
        else:
            logger.info(f"Ignoring unknown notification: {method}")

    async def _handle_request(self, method, params) -> Dict[str, Any]:
        if method == "initialize":
            return self.initialize()
        elif method == "tools/list":
            return self.list_tools()
        elif method == "tools/call":
            result = await self.tools.call(params.get("name"), params.get("arguments"))
            return _dump(result)
        raise MethodNotFoundError(method)

    def initialize(self) -> Dict[str, Any]:
        return _dump(InitializeResult(
            protocolVersion=PROTOCOL_VERSION,
            capabilities=ServerCapabilities(tools=ToolsCapability()),
            serverInfo=Implementation(name=SERVER_NAME, version=self.server_version),
        ))

    def list_tools(self) -> Dict[str, Any]:
        return {"tools": [_dump(tool) for tool in self.tools.list_tools()]}
