"""Driver registry and factory."""
import logging
from typing import Any, Dict, List, Optional, Type

from dbdrive.drivers.base import Driver
from dbdrive.drivers.mysql import MySQLDriver
from dbdrive.drivers.postgres import PostgresDriver
from dbdrive.drivers.sqlite import SQLiteDriver
from dbdrive.models.flags import SqlDialect

logger = logging.getLogger(__name__)


class UnsupportedDialectError(ValueError):
    """Raised when an unknown dialect name is requested."""


# Registry of available drivers
# Format: dialect name -> driver class
DRIVERS: Dict[str, Type[Driver]] = {
    SqlDialect.MYSQL.value: MySQLDriver,
    SqlDialect.POSTGRES.value: PostgresDriver,
    SqlDialect.SQLITE.value: SQLiteDriver,
}

# Products speaking one of the registered dialects
ALIASES: Dict[str, str] = {
    "mariadb": SqlDialect.MYSQL.value,
    "dolt": SqlDialect.MYSQL.value,
    "postgresql": SqlDialect.POSTGRES.value,
    "pg": SqlDialect.POSTGRES.value,
    "libsql": SqlDialect.SQLITE.value,
    "turso": SqlDialect.SQLITE.value,
    "d1": SqlDialect.SQLITE.value,
}


def resolve_dialect(name: str) -> SqlDialect:
    """Map a dialect or product name to its SqlDialect.

    Raises:
        UnsupportedDialectError: If the name is not recognized
    """
    key = name.strip().lower()
    key = ALIASES.get(key, key)
    if key not in DRIVERS:
        raise UnsupportedDialectError(
            f"Unsupported dialect: '{name}'. "
            f"Supported: {', '.join(list_supported_dialects())}"
        )
    return SqlDialect(key)


def get_driver_class(name: str) -> Type[Driver]:
    return DRIVERS[resolve_dialect(name).value]


def get_driver(name: str, connection: Any, options: Optional[Dict[str, Any]] = None) -> Driver:
    """Create a driver instance by dialect name.

    Args:
        name: Dialect or product name (case-insensitive)
        connection: Object with async query/transaction, usually a TransportConnection
        options: Driver options; ``flags`` overrides individual capability
            flags and ``support_pragma_list`` applies to SQLite

    Returns:
        Driver instance

    Raises:
        UnsupportedDialectError: If the dialect is not recognized
    """
    options = dict(options or {})
    driver_class = get_driver_class(name)
    kwargs: Dict[str, Any] = {"flag_overrides": options.get("flags")}
    if driver_class is SQLiteDriver and "support_pragma_list" in options:
        kwargs["support_pragma_list"] = bool(options["support_pragma_list"])

    logger.debug("Creating %s for dialect %s", driver_class.__name__, name)
    return driver_class(connection, **kwargs)


def list_supported_dialects() -> List[str]:
    """Registered dialect names followed by their aliases."""
    return list(DRIVERS.keys()) + list(ALIASES.keys())


__all__ = [
    "Driver",
    "MySQLDriver",
    "PostgresDriver",
    "SQLiteDriver",
    "UnsupportedDialectError",
    "get_driver",
    "get_driver_class",
    "list_supported_dialects",
    "resolve_dialect",
]
