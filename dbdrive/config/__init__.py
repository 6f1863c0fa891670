"""Connection settings for the CLI and embedding applications."""
from dbdrive.config.connection import (
    ConnectionConfigError,
    default_config_path,
    driver_options,
    load_connection_config,
    validate_connection_config,
)

__all__ = [
    'ConnectionConfigError',
    'default_config_path',
    'driver_options',
    'load_connection_config',
    'validate_connection_config',
]
