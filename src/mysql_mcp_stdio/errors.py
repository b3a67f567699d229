"""Exception types raised while serving tool calls."""

from mcp.types import INTERNAL_ERROR, METHOD_NOT_FOUND


class MySQLToolServerError(Exception):
    """Base class for errors raised by the server"""

    code = INTERNAL_ERROR


class ConfigError(MySQLToolServerError):
    """Required connection settings are missing or malformed"""


class ConnectivityError(MySQLToolServerError):
    """The database could not be reached at startup"""


class MethodNotFoundError(MySQLToolServerError):
    """A request named a JSON-RPC method this server does not implement"""

    code = METHOD_NOT_FOUND

    def __init__(self, method):
        super().__init__(f"Unknown method: {method}")
        self.method = method


class UnknownToolError(MySQLToolServerError):
    """tools/call named a tool that does not exist"""

    def __init__(self, name):
        super().__init__(f"Unknown tool: {name}")
        self.name = name


class InvalidArgumentsError(MySQLToolServerError):
    """A tool call is missing a required argument"""


class QueryError(MySQLToolServerError):
    """The database rejected or failed a statement"""

    def __init__(self, message, errno=None):
        super().__init__(message)
        self.errno = errno


class QueryTimeoutError(MySQLToolServerError):
    """A statement ran past the configured deadline"""

    def __init__(self, timeout):
        super().__init__(
            f"Query timed out after {timeout} seconds. "
            "Simplify the query or retry later."
        )
        self.timeout = timeout
