import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Mapping, Optional

from dotenv import load_dotenv

from .errors import ConfigError

logger = logging.getLogger(__name__)

DEFAULT_PORT = 3306
DEFAULT_CHARSET = "utf8mb4"
DEFAULT_QUERY_TIMEOUT = 10

REQUIRED_SETTINGS = (
    ("host", "DB_HOST"),
    ("user", "DB_USER"),
    ("database", "DB_DATABASE"),
)


@dataclass(frozen=True)
class DatabaseConfig:
    """Connection settings for the MySQL server behind the tools."""

    host: str
    user: str
    database: str
    port: int = DEFAULT_PORT
    password: str = ""
    charset: str = DEFAULT_CHARSET
    collation: Optional[str] = None
    query_timeout: int = DEFAULT_QUERY_TIMEOUT

    def connection_kwargs(self) -> Dict[str, Any]:
        """Keyword arguments for mysql.connector.connect()"""
        kwargs = {
            "host": self.host,
            "port": self.port,
            "user": self.user,
            "password": self.password,
            "database": self.database,
            "charset": self.charset,
            # every tool call is a single statement
            "autocommit": True,
        }
        if self.collation:
            kwargs["collation"] = self.collation
        return kwargs

    def describe(self) -> str:
        return f"{self.host}:{self.port}/{self.database} as {self.user}"


def load_dotenv_file(path=".env") -> bool:
    """Load a .env file if present; real environment variables win."""
    env_path = Path(path)
    if not env_path.exists():
        logger.debug(f"No .env file found at: {env_path.absolute()}")
        return False
    load_dotenv(env_path, override=False)
    logger.info(f"Loaded environment from: {env_path.absolute()}")
    return True


def _read_int(environ: Mapping[str, str], name: str, default: int) -> int:
    raw = environ.get(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return int(raw)
    except ValueError:
        raise ConfigError(f"{name} must be an integer, got {raw!r}")


def load_config(environ: Optional[Mapping[str, str]] = None) -> DatabaseConfig:
    """Build the database configuration from environment variables.

    DB_HOST, DB_USER and DB_DATABASE are required. DB_PORT, DB_PASSWORD,
    DB_CHARSET, DB_COLLATION and DB_QUERY_TIMEOUT are optional.
    """
    if environ is None:
        environ = os.environ

    values = {key: environ.get(env_name, "") for key, env_name in REQUIRED_SETTINGS}
    missing = [env_name for key, env_name in REQUIRED_SETTINGS if not values[key]]
    if missing:
        logger.error("Missing required database configuration. Please check environment variables:")
        logger.error(", ".join(env_name for _, env_name in REQUIRED_SETTINGS) + " are required")
        raise ConfigError(f"Missing required environment variable: {', '.join(missing)}")

    timeout = _read_int(environ, "DB_QUERY_TIMEOUT", DEFAULT_QUERY_TIMEOUT)
    if timeout < 1:
        logger.warning(f"DB_QUERY_TIMEOUT={timeout} is below one second, using 1")
        timeout = 1

    return DatabaseConfig(
        host=values["host"],
        user=values["user"],
        database=values["database"],
        port=_read_int(environ, "DB_PORT", DEFAULT_PORT),
        password=environ.get("DB_PASSWORD", ""),
        charset=environ.get("DB_CHARSET") or DEFAULT_CHARSET,
        collation=environ.get("DB_COLLATION") or None,
        query_timeout=timeout,
    )
