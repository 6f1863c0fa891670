"""Markdown output rendering for plans, schemas and type catalogs."""
from typing import Optional

from dbdrive.core.diff import SchemaChangePlan
from dbdrive.core.type_selector import ColumnTypeSelector
from dbdrive.models.schema import DatabaseSchemas, DatabaseTableSchema


def render_plan_markdown(plan: SchemaChangePlan, table_name: str, dialect: Optional[str] = None) -> str:
    """Render a schema change plan as a Markdown report."""
    title = f"# Schema change for `{table_name}`"
    if dialect:
        title += f" ({dialect})"
    lines = [title, ""]

    if plan.recreate:
        lines.append("**Strategy:** recreate table (copy rows into a new table)")
    else:
        lines.append("**Strategy:** in-place ALTER TABLE")
    lines.append("")

    if plan.warnings:
        lines.append("### ⚠️ Warnings")
        for warning in plan.warnings:
            lines.append(f"- {warning}")
        lines.append("")

    lines.append("## Statements")
    lines.append("")
    if not plan.statements:
        lines.append("No changes detected.")
    else:
        lines.append("```sql")
        lines.extend(f"{statement};" for statement in plan.statements)
        lines.append("```")

    return "\n".join(lines)


def render_table_markdown(table: DatabaseTableSchema) -> str:
    """Render one table definition as a Markdown column table."""
    lines = [f"### {table.schema_name}.{table.table_name}" if table.schema_name else f"### {table.table_name}"]
    lines.append("")
    lines.append("| Column | Type | Not Null | PK | Default |")
    lines.append("|--------|------|----------|----|---------|")
    for column in table.columns:
        constraint = column.constraint
        not_null = "Yes" if constraint and constraint.not_null else "No"
        pk = "Yes" if column.name in table.pk else ""
        default = ""
        if constraint is not None:
            if constraint.default_value is not None:
                default = f"`{constraint.default_value!r}`"
            elif constraint.default_expression:
                default = f"`{constraint.default_expression}`"
        lines.append(f"| {column.name} | {column.type} | {not_null} | {pk} | {default} |")

    for constraint in table.constraints:
        label = f"{constraint.kind} {constraint.name}" if constraint.name else constraint.kind
        lines.append(f"- {label}")
    return "\n".join(lines)


def render_schemas_markdown(schemas: DatabaseSchemas) -> str:
    """Render an introspected schema listing."""
    lines = ["# Database schemas", ""]
    if not schemas:
        lines.append("No schemas found.")
    for schema_name, items in schemas.items():
        lines.append(f"## {schema_name or '(default)'}")
        lines.append("")
        if not items:
            lines.append("Empty schema.")
        for item in items:
            suffix = f" on `{item.table_name}`" if item.table_name else ""
            column_count = f" ({len(item.table_schema.columns)} columns)" if item.table_schema else ""
            lines.append(f"- **{item.type.value}** `{item.name}`{suffix}{column_count}")
        lines.append("")
    return "\n".join(lines)


def render_types_markdown(selector: ColumnTypeSelector, dialect: str) -> str:
    """Render a dialect's type catalog."""
    lines = [f"# Column types for {dialect}", ""]
    for group in selector.type_suggestions:
        lines.append(f"## {group.name}")
        lines.append("")
        for suggestion in group.suggestions:
            parameters = ", ".join(
                f"{p.name}={p.default}" + ("" if p.required else "?")
                for p in suggestion.parameters
            )
            name = f"{suggestion.name}({parameters})" if parameters else suggestion.name
            description = suggestion.describe(
                [p.default for p in suggestion.parameters]
            ).split("\n")[0]
            lines.append(f"- `{name}`: {description}")
        lines.append("")
    return "\n".join(lines)
