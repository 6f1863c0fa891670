"""Transport factory."""
import logging
from typing import Any, Dict

from dbdrive.core.errors import DriverError
from dbdrive.models.flags import SqlDialect
from dbdrive.transport.base import Transport, TransportConnection
from dbdrive.transport.sqlite_local import SQLiteFileTransport

logger = logging.getLogger(__name__)


class TransportNotBundledError(DriverError, NotImplementedError):
    """Raised when no in-process transport ships for a dialect."""


def open_transport(dialect: SqlDialect, config: Dict[str, Any]) -> Transport:
    """Create the bundled transport for a dialect.

    Args:
        dialect: Target SQL dialect
        config: Validated connection configuration

    Returns:
        Transport ready to be wrapped in a TransportConnection

    Raises:
        TransportNotBundledError: If the dialect is served by an external transport
    """
    if dialect == SqlDialect.SQLITE:
        logger.debug("Opening SQLite file transport for %s", config["path"])
        return SQLiteFileTransport(config["path"], timeout=float(config.get("timeout", 30.0)))

    raise TransportNotBundledError(
        f"No bundled transport for {dialect.value}; "
        f"connect through a Transport implementation supplied by the host application"
    )


__all__ = [
    "Transport",
    "TransportConnection",
    "SQLiteFileTransport",
    "TransportNotBundledError",
    "open_transport",
]
