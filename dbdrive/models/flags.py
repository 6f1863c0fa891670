"""Driver capability flags."""
from enum import Enum

from pydantic import BaseModel, ConfigDict


class SqlDialect(str, Enum):
    """Families of SQL engines sharing catalog structure and DDL syntax."""

    MYSQL = "mysql"
    POSTGRES = "postgres"
    SQLITE = "sqlite"


class DriverFlags(BaseModel):
    """Immutable descriptor of what a dialect/connection supports.

    The schema editor reads these to decide which edit operations to offer,
    and the diff engine reads them to pick between in-place ALTER statements
    and a recreate migration.
    """

    model_config = ConfigDict(frozen=True)

    dialect: SqlDialect
    default_schema: str = ""
    optional_schema: bool = False
    support_big_int: bool = False
    support_modify_column: bool = False
    support_create_update_table: bool = False
    mismatch_detection: bool = False
    support_use_statement: bool = False
    support_row_id: bool = False
    support_insert_returning: bool = False
    support_update_returning: bool = False
