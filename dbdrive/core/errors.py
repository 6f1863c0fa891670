"""Error taxonomy shared by drivers, the diff engine and the type catalog."""
from typing import Optional


class DriverError(Exception):
    """Base class for every error raised by the driver layer."""


class TransportError(DriverError):
    """The underlying channel reported a failure or returned garbage.

    Surfaced verbatim; the driver layer never retries.
    """


class IncompleteMetadataError(DriverError):
    """Catalog rows are missing fields required to build the schema model."""

    def __init__(self, message: str, source: Optional[str] = None):
        super().__init__(message)
        self.source = source


class UnsupportedOperationError(DriverError):
    """A requested operation cannot be expressed for this dialect."""

    def __init__(self, operation: str, reason: Optional[str] = None):
        message = f"Unsupported operation: {operation}"
        if reason:
            message = f"{message} ({reason})"
        super().__init__(message)
        self.operation = operation
        self.reason = reason


class InvalidTypeParameterError(DriverError, ValueError):
    """A parameterized column type received malformed parameters."""

    def __init__(self, type_name: str, parameter: str, message: str):
        super().__init__(f"{type_name}: {message}")
        self.type_name = type_name
        self.parameter = parameter
