"""Command-line interface for dbdrive."""
import argparse
import asyncio
import json
import logging
import sys
from typing import Any, Dict, List, Optional, Tuple

from dbdrive.config.connection import (
    driver_options,
    load_connection_config,
    validate_connection_config,
)
from dbdrive.core.diff import SchemaChangePlan, diff_table_schemas
from dbdrive.core.errors import DriverError
from dbdrive.core.tracker import RequestTracker
from dbdrive.drivers import Driver, get_driver, list_supported_dialects, resolve_dialect
from dbdrive.models.change import DatabaseTableSchemaChange
from dbdrive.models.schema import DatabaseTableSchema
from dbdrive.output.json import render_json, render_types_json
from dbdrive.output.markdown import (
    render_plan_markdown,
    render_schemas_markdown,
    render_table_markdown,
    render_types_markdown,
)
from dbdrive.sql.ddl_parser import split_qualified_name
from dbdrive.transport import TransportConnection, open_transport

logger = logging.getLogger(__name__)


def _read_json(path: str) -> Any:
    with open(path, 'r', encoding='utf-8') as f:
        return json.load(f)


def load_change(args) -> DatabaseTableSchemaChange:
    """Build the table change from --change, or from --before/--after snapshots."""
    if args.change:
        return DatabaseTableSchemaChange.model_validate(_read_json(args.change))

    if not (args.before and args.after):
        raise ValueError("Provide --change, or both --before and --after")

    before = DatabaseTableSchema.model_validate(_read_json(args.before))
    after = DatabaseTableSchema.model_validate(_read_json(args.after))
    return diff_table_schemas(before, after, renames=_parse_pairs(args.rename, "--rename"))


def _parse_pairs(values: Optional[List[str]], option: str) -> Dict[str, str]:
    pairs = {}
    for value in values or []:
        if "=" not in value:
            raise ValueError(f"{option} expects KEY=VALUE, got '{value}'")
        key, _, item = value.partition("=")
        pairs[key.strip()] = item.strip()
    return pairs


def _parse_flag_overrides(values: Optional[List[str]]) -> Dict[str, Any]:
    overrides: Dict[str, Any] = {}
    for key, value in _parse_pairs(values, "--flag").items():
        lowered = value.lower()
        if lowered in ("true", "yes", "1"):
            overrides[key] = True
        elif lowered in ("false", "no", "0"):
            overrides[key] = False
        else:
            overrides[key] = value
    return overrides


def _planning_driver(args) -> Driver:
    """A driver used only for DDL generation; it never touches a database."""
    options = {"flags": _parse_flag_overrides(args.flag)} if args.flag else None
    return get_driver(args.dialect, connection=None, options=options)


def _open_driver(args) -> Tuple[Driver, TransportConnection]:
    dialect = resolve_dialect(args.dialect)
    config = load_connection_config(dialect.value, args.conn_file)
    validate_connection_config(dialect.value, config)
    options = driver_options(config)
    if getattr(args, 'flag', None):
        options["flags"] = {**options.get("flags", {}), **_parse_flag_overrides(args.flag)}

    transport = open_transport(dialect, config)
    connection = TransportConnection(transport, RequestTracker(max_pending=options.get("max_pending")))
    return get_driver(dialect.value, connection, options), connection


def _render_plan(plan: SchemaChangePlan, change: DatabaseTableSchemaChange, args) -> str:
    if args.format == "json":
        return render_json(plan)
    return render_plan_markdown(plan, change.name.new or change.name.old or "", args.dialect)


def run_plan(args) -> int:
    """Print the DDL for a table change without executing it."""
    change = load_change(args)
    driver = _planning_driver(args)
    plan = driver.plan_update_table_schema(change)
    print(_render_plan(plan, change, args))
    return 0


def run_types(args) -> int:
    """Print the type catalog, or validate a single type string."""
    driver = get_driver(args.dialect, connection=None)
    selector = driver.column_type_selector

    if args.check:
        formatted = selector.validate_type(args.check)
        print(formatted)
        description = selector.describe(formatted)
        if description:
            print(description)
        return 0

    if args.format == "json":
        print(render_types_json(selector))
    else:
        print(render_types_markdown(selector, args.dialect))
    return 0


async def run_inspect(args) -> int:
    """Introspect a live database through the bundled transport."""
    driver, connection = _open_driver(args)
    try:
        if args.trigger:
            schema_name, trigger_name = split_qualified_name(args.trigger)
            schema_name = schema_name or args.schema or driver.get_flags().default_schema
            result: Any = await driver.trigger(schema_name, trigger_name)
            print(render_json(result))
        elif args.table:
            schema_name, table_name = split_qualified_name(args.table)
            schema_name = schema_name or args.schema or await driver.get_current_schema()
            table = await driver.table_schema(schema_name, table_name)
            print(render_json(table) if args.format == "json" else render_table_markdown(table))
        else:
            schemas = await driver.schemas()
            print(render_json(schemas) if args.format == "json" else render_schemas_markdown(schemas))
    finally:
        connection.close()
    return 0


async def run_apply(args) -> int:
    """Generate the DDL for a change and run it as one transaction."""
    change = load_change(args)
    driver, connection = _open_driver(args)
    try:
        plan = driver.plan_update_table_schema(change)
        for warning in plan.warnings:
            print(f"Warning: {warning}", file=sys.stderr)

        if not plan.statements:
            print("No changes to apply.")
            return 0

        if args.dry_run:
            print(_render_plan(plan, change, args))
            return 0

        results = await driver.transaction(plan.statements)
        print(f"Applied {len(results)} statement(s) to {change.name.new}")
    finally:
        connection.close()
    return 0


def _add_change_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--change", help="Change JSON (DatabaseTableSchemaChange)")
    parser.add_argument("--before", help="Table definition JSON as it exists")
    parser.add_argument("--after", help="Table definition JSON as it should become")
    parser.add_argument(
        "--rename", action="append", metavar="OLD=NEW",
        help="Column rename used with --before/--after (repeatable)"
    )


def _add_common_arguments(parser: argparse.ArgumentParser, connect: bool = False) -> None:
    parser.add_argument(
        "--dialect", required=True,
        help=f"SQL dialect ({', '.join(list_supported_dialects())})"
    )
    parser.add_argument(
        "--format", choices=["json", "markdown"], default="markdown",
        help="Output format (default: markdown)"
    )
    parser.add_argument(
        "--flag", action="append", metavar="NAME=VALUE",
        help="Override a driver capability flag (repeatable)"
    )
    if connect:
        parser.add_argument(
            "--conn-file",
            help="Path to connection config file (default: ~/.dbdrive/{dialect}.yaml)"
        )


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="dbdrive - SQL driver abstraction and schema change generator",
        epilog="Examples:\n"
               "  dbdrive plan --dialect mysql --change change.json\n"
               "  dbdrive types --dialect mysql --check 'decimal(10,2)'\n"
               "  dbdrive inspect --dialect sqlite --conn-file local.yaml",
        formatter_class=argparse.RawDescriptionHelpFormatter
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging")
    subparsers = parser.add_subparsers(dest="command")

    plan_parser = subparsers.add_parser("plan", help="Generate DDL for a table change")
    _add_common_arguments(plan_parser)
    _add_change_arguments(plan_parser)

    types_parser = subparsers.add_parser("types", help="Show or validate column types")
    _add_common_arguments(types_parser)
    types_parser.add_argument("--check", metavar="TYPE", help="Validate a type string such as 'varchar(50)'")

    inspect_parser = subparsers.add_parser("inspect", help="Introspect a live database")
    _add_common_arguments(inspect_parser, connect=True)
    inspect_parser.add_argument("--schema", help="Schema name (default: current schema)")
    inspect_parser.add_argument("--table", help="Show a single table (NAME or SCHEMA.NAME)")
    inspect_parser.add_argument("--trigger", help="Show a single trigger (NAME or SCHEMA.NAME)")

    apply_parser = subparsers.add_parser("apply", help="Generate and execute DDL for a table change")
    _add_common_arguments(apply_parser, connect=True)
    _add_change_arguments(apply_parser)
    apply_parser.add_argument("--dry-run", action="store_true", help="Print the plan without executing it")

    return parser


def main(argv: Optional[List[str]] = None):
    """Parse command line arguments and execute appropriate command."""
    parser = build_parser()
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s"
    )

    try:
        if args.command == "plan":
            code = run_plan(args)
        elif args.command == "types":
            code = run_types(args)
        elif args.command == "inspect":
            code = asyncio.run(run_inspect(args))
        elif args.command == "apply":
            code = asyncio.run(run_apply(args))
        else:
            parser.print_help()
            code = 1
    except (DriverError, ValueError, OSError) as e:
        print(f"Error: {e}", file=sys.stderr)
        code = 1

    sys.exit(code)


if __name__ == "__main__":
    main()
