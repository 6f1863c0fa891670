"""Where dbdrive finds database connection settings."""
import logging
import os
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml

logger = logging.getLogger(__name__)

CONFIG_DIR = ".dbdrive"

# Suffixes read from {DIALECT}_<SUFFIX>; each maps to the lowercase config key
_ENV_PARAMS = ["PATH", "HOST", "PORT", "USER", "PASSWORD", "DATABASE"]

_SERVER_DEFAULTS = {"host": "localhost", "user": "", "password": "", "database": ""}

_DIALECT_DEFAULTS: Dict[str, Dict[str, Any]] = {
    "sqlite": {"path": ""},
    "mysql": {**_SERVER_DEFAULTS, "port": 3306},
    "postgres": {**_SERVER_DEFAULTS, "port": 5432},
}

_REQUIRED_FIELDS: Dict[str, List[str]] = {
    "sqlite": ["path"],
    "mysql": ["host", "user", "database"],
    "postgres": ["host", "user", "database"],
}


class ConnectionConfigError(ValueError):
    """A connection configuration source is unreadable or incomplete."""


def default_config_path(dialect: str) -> Path:
    """Per-user configuration file, ``~/.dbdrive/<dialect>.yaml``."""
    return Path.home() / CONFIG_DIR / f"{dialect.lower()}.yaml"


def load_connection_config(
    dialect: str,
    conn_file: Optional[str] = None
) -> Dict[str, Any]:
    """Resolve the connection settings for a dialect.

    Sources are tried in order and the first one found wins:

    1. ``conn_file`` (the CLI's ``--conn-file``)
    2. ``~/.dbdrive/<dialect>.yaml``
    3. ``<DIALECT>_PATH``, ``<DIALECT>_HOST``, ... environment variables
    4. Built-in defaults for the dialect

    Args:
        dialect: Dialect name (sqlite, mysql, postgres)
        conn_file: Optional path given on the command line

    Returns:
        Connection settings; an optional ``options`` mapping carries driver options

    Raises:
        ConnectionConfigError: If a file is missing or malformed, or an
            environment value has the wrong type
    """
    if conn_file:
        logger.info("Using connection file %s", conn_file)
        return _read_config_file(Path(conn_file))

    user_file = default_config_path(dialect)
    if user_file.exists():
        logger.info("Using connection file %s", user_file)
        return _read_config_file(user_file)

    from_env = _read_env(dialect)
    if from_env:
        logger.info("Using %s connection settings from the environment", dialect)
        return from_env

    logger.warning("No connection settings found for %s, falling back to defaults", dialect)
    return dict(_DIALECT_DEFAULTS.get(dialect.lower(), {}))


def _read_config_file(path: Path) -> Dict[str, Any]:
    if not path.is_file():
        raise ConnectionConfigError(f"Configuration file not found: {path}")

    try:
        loaded = yaml.safe_load(path.read_text(encoding="utf-8"))
    except yaml.YAMLError as e:
        raise ConnectionConfigError(f"Invalid YAML configuration: {path}\n{e}") from e
    except OSError as e:
        raise ConnectionConfigError(f"Cannot read configuration file {path}: {e}") from e

    if not isinstance(loaded, dict):
        raise ConnectionConfigError(f"Configuration file must contain a YAML dictionary: {path}")
    if not isinstance(loaded.get("options", {}), dict):
        raise ConnectionConfigError(f"'options' must be a mapping: {path}")
    return loaded


def _read_env(dialect: str) -> Dict[str, Any]:
    prefix = dialect.upper()
    settings: Dict[str, Any] = {
        suffix.lower(): os.environ[f"{prefix}_{suffix}"]
        for suffix in _ENV_PARAMS
        if os.environ.get(f"{prefix}_{suffix}")
    }
    if "port" in settings:
        if not settings["port"].strip().isdigit():
            raise ConnectionConfigError(f"{prefix}_PORT must be an integer, got {settings['port']!r}")
        settings["port"] = int(settings["port"])
    return settings


def validate_connection_config(dialect: str, config: Dict[str, Any]) -> bool:
    """Check that every setting the dialect needs is present and non-empty.

    Raises:
        ConnectionConfigError: Naming the missing settings
    """
    missing = [name for name in _REQUIRED_FIELDS.get(dialect.lower(), []) if not config.get(name)]
    if missing:
        raise ConnectionConfigError(
            f"Missing required connection parameters for {dialect}: {', '.join(missing)}. "
            f"Set them in --conn-file or {Path('~') / CONFIG_DIR / (dialect.lower() + '.yaml')}"
        )
    return True


def driver_options(config: Dict[str, Any]) -> Dict[str, Any]:
    """The ``options`` mapping of a configuration (flag overrides, pragma mode, request cap)."""
    return dict(config.get("options") or {})
