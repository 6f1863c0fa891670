"""Schema diffing and DDL generation."""
import logging
import re
from abc import ABC, abstractmethod
from typing import Dict, List, Optional, Sequence, Set, Tuple

from pydantic import BaseModel

from dbdrive.core.errors import UnsupportedOperationError
from dbdrive.core.escape import SqlCodec
from dbdrive.core.statements import (
    column_definition,
    column_list,
    constraint_definition,
    create_table_statement,
    effective_primary_key,
)
from dbdrive.models.change import (
    ChangeKind,
    DatabaseTableColumnChange,
    DatabaseTableConstraintChange,
    DatabaseTableSchemaChange,
    TableNameChange,
)
from dbdrive.models.flags import DriverFlags
from dbdrive.models.schema import (
    DatabaseColumnConstraint,
    DatabaseForeignKeyReference,
    DatabaseTableColumn,
    DatabaseTableConstraint,
    DatabaseTableSchema,
)
from dbdrive.sql.ddl_parser import expression_columns, rename_expression_columns

logger = logging.getLogger(__name__)

TEMP_TABLE_SUFFIX = "__new"


class SchemaChangeWarning(UserWarning):
    """Emitted for generated DDL that may fail or lose data at execution time."""


class SchemaChangePlan(BaseModel):
    """Ordered DDL for one table change plus caller-visible warnings."""

    statements: List[str] = []
    warnings: List[str] = []
    recreate: bool = False


class ColumnPartition(BaseModel):
    """Column operations grouped by kind, each group in editor order."""

    added: List[DatabaseTableColumnChange] = []
    removed: List[DatabaseTableColumnChange] = []
    changed: List[DatabaseTableColumnChange] = []
    unchanged: List[DatabaseTableColumnChange] = []


class AlterSyntax(ABC):
    """In-place ALTER TABLE grammar of one dialect family.

    The diff engine decides *what* changes and in which order; an
    ``AlterSyntax`` only knows how each step is spelled.
    """

    def __init__(self, codec: SqlCodec):
        self.codec = codec

    @abstractmethod
    def change_column(
        self,
        table_ref: str,
        old: DatabaseTableColumn,
        new: DatabaseTableColumn
    ) -> List[str]:
        """Statements renaming and/or retyping one column (key constraints excluded)."""

    def add_column(self, table_ref: str, column: DatabaseTableColumn) -> str:
        definition = column_definition(self.codec, column, include_key_constraints=False)
        return f"ALTER TABLE {table_ref} ADD COLUMN {definition}"

    def drop_column(self, table_ref: str, column: DatabaseTableColumn) -> str:
        return f"ALTER TABLE {table_ref} DROP COLUMN {self.codec.escape_id(column.name)}"

    def add_constraint(self, table_ref: str, constraint: DatabaseTableConstraint) -> str:
        return f"ALTER TABLE {table_ref} ADD {constraint_definition(self.codec, constraint)}"

    @abstractmethod
    def drop_constraint(self, table_ref: str, constraint: DatabaseTableConstraint) -> str:
        """Statement dropping a constraint.

        Raises:
            UnsupportedOperationError: If the constraint cannot be addressed,
                typically because it has no name
        """

    @abstractmethod
    def rename_table(self, schema_name: Optional[str], old_name: str, new_name: str) -> str:
        """Statement renaming the table itself."""


def partition_columns(change: DatabaseTableSchemaChange) -> ColumnPartition:
    """Group column operations into added, removed, changed and unchanged."""
    partition = ColumnPartition()
    groups = {
        ChangeKind.ADDED: partition.added,
        ChangeKind.REMOVED: partition.removed,
        ChangeKind.CHANGED: partition.changed,
        ChangeKind.UNCHANGED: partition.unchanged,
    }
    for operation in change.columns:
        groups[operation.kind].append(operation)
    return partition


def describe_column_change(operation: DatabaseTableColumnChange) -> str:
    """Short human-readable label of a column operation."""
    kind = operation.kind
    if kind == ChangeKind.ADDED:
        return f"add column {operation.new.name}"
    if kind == ChangeKind.REMOVED:
        return f"drop column {operation.old.name}"
    if operation.renamed:
        return f"rename column {operation.old.name} to {operation.new.name}"
    if operation.retyped:
        return f"change type of column {operation.old.name} to {operation.new.type}"
    if kind == ChangeKind.CHANGED:
        return f"change column {operation.old.name}"
    return f"keep column {operation.old.name}"


def _describe_first_change(change: DatabaseTableSchemaChange) -> str:
    for operation in change.columns:
        if operation.kind != ChangeKind.UNCHANGED:
            return describe_column_change(operation)
    for constraint in change.constraints:
        if constraint.kind != ChangeKind.UNCHANGED:
            side = constraint.new or constraint.old
            return f"{constraint.kind.value} {side.kind} constraint"
    if change.name.new != change.name.old:
        return f"rename table {change.name.old} to {change.name.new}"
    return "alter table"


def _has_changes(change: DatabaseTableSchemaChange) -> bool:
    if change.name.new != change.name.old:
        return True
    if any(op.kind != ChangeKind.UNCHANGED for op in change.columns):
        return True
    return any(op.kind != ChangeKind.UNCHANGED for op in change.constraints)


def _strip_key_constraints(column: DatabaseTableColumn) -> DatabaseTableColumn:
    constraint = column.constraint or DatabaseColumnConstraint()
    stripped = constraint.model_copy(
        update={"primary_key": False, "primary_key_order": None, "unique": False, "foreign_key": None}
    )
    return column.model_copy(update={"constraint": stripped})


def column_body_changed(old: DatabaseTableColumn, new: DatabaseTableColumn) -> bool:
    """True when anything other than key constraints differs between two columns."""
    return _strip_key_constraints(old) != _strip_key_constraints(new)


def _constraint_of(column: DatabaseTableColumn) -> DatabaseColumnConstraint:
    return column.constraint or DatabaseColumnConstraint()


class ColumnIdentity:
    """Old-to-new column names of one change.

    Carries definitions written against the old table (untouched constraints,
    expressions, self references) over to the new column names.
    """

    def __init__(self, change: DatabaseTableSchemaChange, dialect: str):
        self.renames: Dict[str, str] = {
            op.old.name: op.new.name for op in change.columns
            if op.old is not None and op.new is not None and op.old.name != op.new.name
        }
        self.removed: Set[str] = {op.old.name for op in change.columns if op.new is None}
        self.old_table = change.name.old
        self.new_table = change.name.new
        self.dialect = dialect

    def names(self, columns: Sequence[str]) -> List[str]:
        return [self.renames.get(name, name) for name in columns]

    def covered_columns(self, constraint: DatabaseTableConstraint) -> List[str]:
        """Columns a constraint depends on, read from its expression for CHECK constraints."""
        if constraint.primary_key:
            return list(constraint.primary_columns)
        if constraint.unique:
            return list(constraint.unique_columns)
        if constraint.foreign_key is not None:
            return list(constraint.foreign_key.columns)
        if constraint.check_expression:
            return expression_columns(constraint.check_expression, self.dialect) or []
        return []

    def expression(self, expression: str, subject: str) -> Optional[str]:
        """An expression rewritten to the new column names.

        Returns:
            The rewritten expression, or None when it reads a removed column

        Raises:
            UnsupportedOperationError: If the expression mentions a renamed or
                removed column but cannot be parsed
        """
        touched = self.removed | set(self.renames)
        if not touched:
            return expression

        referenced = expression_columns(expression, self.dialect)
        if referenced is None:
            if any(re.search(rf"\b{re.escape(name)}\b", expression) for name in touched):
                raise UnsupportedOperationError(subject, "its expression cannot be parsed")
            return expression
        if self.removed.intersection(referenced):
            return None
        if not set(self.renames).intersection(referenced):
            return expression
        return rename_expression_columns(expression, self.renames, self.dialect)

    def reference(self, reference: DatabaseForeignKeyReference) -> DatabaseForeignKeyReference:
        """Rename a foreign key's own columns, and its targets when it points at this table."""
        update = {"columns": self.names(reference.columns)}
        if reference.foreign_table_name == self.old_table:
            update["foreign_table_name"] = self.new_table
            update["foreign_columns"] = self.names(reference.foreign_columns)
        return reference.model_copy(update=update)

    def constraint(self, constraint: DatabaseTableConstraint) -> Optional[DatabaseTableConstraint]:
        """An untouched constraint on the new column names, or None when it covers a removed column."""
        if self.removed.intersection(self.covered_columns(constraint)):
            return None
        if constraint.primary_key:
            return constraint.model_copy(update={"primary_columns": self.names(constraint.primary_columns)})
        if constraint.unique:
            return constraint.model_copy(update={"unique_columns": self.names(constraint.unique_columns)})
        if constraint.foreign_key is not None:
            return constraint.model_copy(update={"foreign_key": self.reference(constraint.foreign_key)})
        if constraint.check_expression:
            expression = self.expression(
                constraint.check_expression, f"keep CHECK constraint {constraint.name or ''}".rstrip()
            )
            if expression is None:
                return None
            return constraint.model_copy(update={"check_expression": expression})
        return constraint

    def column(self, operation: DatabaseTableColumnChange) -> DatabaseTableColumn:
        """New side of a carried column with expressions it kept from the old side rewritten."""
        old = _constraint_of(operation.old)
        new = operation.new.constraint
        if new is None:
            return operation.new

        update = {}
        for field, label in (("check_expression", "CHECK"), ("generated_expression", "generated expression")):
            value = getattr(new, field)
            if not value or value != getattr(old, field):
                continue
            carried = self.expression(value, f"keep {label} of column {operation.new.name}")
            if carried is None:
                raise UnsupportedOperationError(
                    f"keep {label} of column {operation.new.name}", "it reads a removed column"
                )
            update[field] = carried
        if new.foreign_key is not None and new.foreign_key == old.foreign_key:
            update["foreign_key"] = self.reference(new.foreign_key)

        if not update:
            return operation.new
        return operation.new.model_copy(update={"constraint": new.model_copy(update=update)})


def _target_constraints(
    change: DatabaseTableSchemaChange,
    identity: ColumnIdentity
) -> Tuple[List[DatabaseTableConstraint], List[DatabaseTableConstraint]]:
    """Table constraints the table ends up with.

    Untouched constraints follow column renames. Edited and new ones are
    taken as written, against the new column names.

    Returns:
        (constraints of the new table, untouched constraints lost because
        they cover a removed column)

    Raises:
        UnsupportedOperationError: If an edited constraint names a column the
            new table does not have
    """
    new_names = {op.new.name for op in change.columns if op.new is not None}
    kept: List[DatabaseTableConstraint] = []
    lost: List[DatabaseTableConstraint] = []
    for operation in change.constraints:
        if operation.kind == ChangeKind.UNCHANGED:
            carried = identity.constraint(operation.old)
            if carried is None:
                lost.append(operation.old)
            else:
                kept.append(carried)
        elif operation.new is not None:
            # CHECK expressions are left for the engine to resolve
            missing = [] if operation.new.kind == "CHECK" else [
                name for name in identity.covered_columns(operation.new)
                if name not in new_names
            ]
            if missing:
                raise UnsupportedOperationError(
                    f"add {operation.new.kind} constraint",
                    f"column {missing[0]} is not part of the table"
                )
            kept.append(operation.new)
    return kept, lost


def _lost_constraint_warnings(lost: Sequence[DatabaseTableConstraint], table_name: str) -> List[str]:
    return [
        f"{constraint.kind} constraint {constraint.name or '(unnamed)'} on {table_name} "
        f"covers a removed column and is dropped"
        for constraint in lost
    ]


def _validate_target(change: DatabaseTableSchemaChange) -> None:
    """Reject target shapes no dialect can hold."""
    target_name = change.name.new
    if not target_name:
        raise UnsupportedOperationError("alter table", "the new table name is empty")

    names = [op.new.name for op in change.columns if op.new is not None]
    if not names:
        raise UnsupportedOperationError(
            f"alter table {target_name}", "a table must keep at least one column"
        )
    seen = set()
    for name in names:
        if not name:
            raise UnsupportedOperationError(f"alter table {target_name}", "a column name is empty")
        if name in seen:
            raise UnsupportedOperationError(f"add column {name}", "duplicate column name")
        seen.add(name)


def _collect_warnings(partition: ColumnPartition, table_name: str) -> List[str]:
    warnings = []
    for operation in partition.added:
        constraint = _constraint_of(operation.new)
        has_default = (
            constraint.default_value is not None
            or bool(constraint.default_expression)
            or constraint.auto_increment
            or bool(constraint.generated_expression)
        )
        if constraint.not_null and not has_default:
            warnings.append(
                f"Column {operation.new.name} on {table_name} is NOT NULL without a default; "
                f"the change fails unless the table is empty"
            )
    for operation in partition.changed:
        if _constraint_of(operation.new).not_null and not _constraint_of(operation.old).not_null:
            warnings.append(
                f"Column {operation.new.name} on {table_name} becomes NOT NULL; "
                f"existing NULL values make the change fail"
            )
    return warnings


def generate_schema_change(
    change: DatabaseTableSchemaChange,
    flags: DriverFlags,
    codec: SqlCodec,
    alter_syntax: Optional[AlterSyntax] = None,
    temp_table_name: Optional[str] = None
) -> SchemaChangePlan:
    """Compute the DDL that turns a table into its edited shape.

    Args:
        change: Column and constraint operations from the schema editor
        flags: Capabilities of the target driver
        codec: Escaping rules of the target dialect
        alter_syntax: In-place ALTER grammar, required when the flags allow
            modifying columns
        temp_table_name: Name of the scratch table used by a recreate
            migration (defaults to ``<table>__new``)

    Returns:
        SchemaChangePlan with the ordered statements and any warnings

    Raises:
        UnsupportedOperationError: If any part of the change cannot be
            expressed; no statements are produced in that case
    """
    if change.is_create:
        if not flags.support_create_update_table:
            raise UnsupportedOperationError(
                f"create table {change.name.new}",
                f"the {flags.dialect.value} driver cannot generate table definitions"
            )
        return _create_table_plan(change, codec)

    if not _has_changes(change):
        logger.debug("No changes for table %s", change.name.old)
        return SchemaChangePlan()

    if not flags.support_create_update_table:
        raise UnsupportedOperationError(
            _describe_first_change(change),
            f"the {flags.dialect.value} driver cannot alter table structure"
        )

    _validate_target(change)
    partition = partition_columns(change)

    if flags.support_modify_column:
        if alter_syntax is None:
            raise UnsupportedOperationError(
                _describe_first_change(change),
                f"no ALTER TABLE grammar registered for {flags.dialect.value}"
            )
        plan = _alter_plan(change, partition, codec, alter_syntax)
    else:
        plan = _recreate_plan(change, partition, codec, temp_table_name)

    for warning in plan.warnings:
        logger.warning("%s", warning)
    logger.debug("Generated %d statement(s) for %s", len(plan.statements), change.name.old)
    return plan


def _create_table_plan(change: DatabaseTableSchemaChange, codec: SqlCodec) -> SchemaChangePlan:
    _validate_target(change)
    columns = [op.new for op in change.columns if op.new is not None]
    constraints, _ = _target_constraints(change, ColumnIdentity(change, codec.dialect.value))
    statement = create_table_statement(
        codec, change.schema_name, change.name.new, columns, constraints,
        without_row_id=change.without_row_id
    )
    return SchemaChangePlan(statements=[statement])


def _check_column_change(operation: DatabaseTableColumnChange) -> None:
    old = _constraint_of(operation.old)
    new = _constraint_of(operation.new)
    if old.check_expression != new.check_expression:
        raise UnsupportedOperationError(
            f"change CHECK of column {operation.old.name}",
            "declare the check as a table constraint instead"
        )
    if (old.generated_expression, old.generated_type) != (new.generated_expression, new.generated_type):
        raise UnsupportedOperationError(
            f"change generated expression of column {operation.old.name}"
        )


def _alter_plan(
    change: DatabaseTableSchemaChange,
    partition: ColumnPartition,
    codec: SqlCodec,
    syntax: AlterSyntax
) -> SchemaChangePlan:
    table_ref = codec.qualify(change.schema_name, change.name.old)
    identity = ColumnIdentity(change, codec.dialect.value)
    target_constraints, lost = _target_constraints(change, identity)

    # (i) rename / retype
    renames = []
    for operation in partition.changed:
        _check_column_change(operation)
        if column_body_changed(operation.old, operation.new):
            renames.extend(syntax.change_column(table_ref, operation.old, operation.new))

    # (ii) add
    additions = [syntax.add_column(table_ref, op.new) for op in partition.added]

    # constraint work is computed up front so an unsupported step fails
    # before anything is returned
    steps = _constraint_steps(change, syntax, table_ref, identity, target_constraints, lost)

    # (iii) drop
    drops = [syntax.drop_column(table_ref, op.old) for op in partition.removed]

    statements = (
        steps.before_renames + renames + additions + steps.early_drops + drops
        + steps.late_drops + steps.adds
    )

    # table rename last, every earlier statement addresses the old name
    if change.name.new != change.name.old:
        statements.append(syntax.rename_table(change.schema_name, change.name.old, change.name.new))

    return SchemaChangePlan(
        statements=statements,
        warnings=_collect_warnings(partition, change.name.old)
        + _lost_constraint_warnings(lost, change.name.old),
    )


def _identity_of(change: DatabaseTableSchemaChange, side: str) -> Dict[str, str]:
    """Map column names on one side of the change to their editor keys."""
    result = {}
    for operation in change.columns:
        column = getattr(operation, side)
        if column is not None:
            result[column.name] = operation.key
    return result


class ConstraintSteps(BaseModel):
    """Constraint statements of an in-place ALTER, grouped by where they run."""

    # drops of CHECK constraints whose expression follows a column rename
    before_renames: List[str] = []
    # drops involving a removed column, run before the column drops
    early_drops: List[str] = []
    late_drops: List[str] = []
    adds: List[str] = []


def _constraint_steps(
    change: DatabaseTableSchemaChange,
    syntax: AlterSyntax,
    table_ref: str,
    identity: ColumnIdentity,
    target_constraints: Sequence[DatabaseTableConstraint],
    lost: Sequence[DatabaseTableConstraint]
) -> ConstraintSteps:
    """Primary key and constraint statements.

    Untouched constraints are compared on the new column names, so a column
    rename alone never drops and re-adds the keys that cover it.
    """
    steps = ConstraintSteps()

    def drop(constraint: DatabaseTableConstraint, columns: Sequence[str], early: bool = False) -> None:
        statement = syntax.drop_constraint(table_ref, constraint)
        if early or identity.removed.intersection(columns):
            steps.early_drops.append(statement)
        else:
            steps.late_drops.append(statement)

    # primary key, compared by column identity
    old_columns = [op.old for op in change.columns if op.old is not None]
    new_columns = [op.new for op in change.columns if op.new is not None]
    old_constraints = [op.old for op in change.constraints if op.old is not None]
    old_pk = effective_primary_key(old_columns, old_constraints)
    new_pk = effective_primary_key(new_columns, target_constraints)
    old_keys = _identity_of(change, "old")
    new_keys = _identity_of(change, "new")
    if [old_keys.get(n) for n in old_pk] != [new_keys.get(n) for n in new_pk]:
        if old_pk:
            old_constraint = next(
                (c for c in old_constraints if c.primary_key),
                DatabaseTableConstraint(primary_key=True, primary_columns=old_pk),
            )
            drop(old_constraint, old_pk)
        if new_pk:
            new_constraint = next(
                (c for c in target_constraints if c.primary_key),
                DatabaseTableConstraint(primary_key=True, primary_columns=new_pk),
            )
            steps.adds.append(syntax.add_constraint(table_ref, new_constraint))

    # untouched constraints that cover a removed column go before the column does
    for constraint in lost:
        if not constraint.primary_key:
            drop(constraint, identity.covered_columns(constraint), early=True)

    # untouched CHECK constraints reading a renamed column are re-declared
    for operation in change.constraints:
        if operation.kind != ChangeKind.UNCHANGED or not operation.old.check_expression:
            continue
        carried = identity.constraint(operation.old)
        if carried is not None and carried != operation.old:
            steps.before_renames.append(syntax.drop_constraint(table_ref, operation.old))
            steps.adds.append(syntax.add_constraint(table_ref, carried))

    # column-level UNIQUE and REFERENCES, managed as table constraints
    for operation in change.columns:
        old = _constraint_of(operation.old) if operation.old is not None else None
        new = _constraint_of(operation.new) if operation.new is not None else None
        if new is None:
            if old.foreign_key is not None:
                drop(
                    DatabaseTableConstraint(name=old.name, foreign_key=old.foreign_key),
                    [operation.old.name],
                    early=True,
                )
            continue
        name = operation.new.name
        old_unique = bool(old and old.unique)
        if new.unique and not old_unique:
            steps.adds.append(syntax.add_constraint(
                table_ref, DatabaseTableConstraint(unique=True, unique_columns=[name])
            ))
        elif old_unique and not new.unique:
            drop(
                DatabaseTableConstraint(name=old.name, unique=True, unique_columns=[operation.old.name]),
                [operation.old.name],
            )

        old_fk = old.foreign_key if old else None
        if new.foreign_key != old_fk:
            if old_fk is not None:
                drop(
                    DatabaseTableConstraint(name=old.name, foreign_key=old_fk),
                    [operation.old.name],
                )
            if new.foreign_key is not None:
                reference = new.foreign_key.model_copy(update={"columns": [name]})
                steps.adds.append(syntax.add_constraint(
                    table_ref, DatabaseTableConstraint(foreign_key=reference)
                ))

    # table-level constraints other than the primary key
    for operation in change.constraints:
        if operation.kind == ChangeKind.UNCHANGED:
            continue
        if (operation.old is not None and operation.old.primary_key) or \
           (operation.new is not None and operation.new.primary_key):
            continue
        if operation.old is not None:
            drop(operation.old, identity.covered_columns(operation.old))
        if operation.new is not None:
            steps.adds.append(syntax.add_constraint(table_ref, operation.new))

    return steps


def _recreate_plan(
    change: DatabaseTableSchemaChange,
    partition: ColumnPartition,
    codec: SqlCodec,
    temp_table_name: Optional[str]
) -> SchemaChangePlan:
    """Create-copy-drop-rename migration for engines without column alteration.

    Indexes and triggers belong to the original table and disappear with it;
    re-creating them is left to the caller.
    """
    original_name = change.name.old
    target_name = change.name.new
    temp_name = temp_table_name or f"{original_name}{TEMP_TABLE_SUFFIX}"
    original_ref = codec.qualify(change.schema_name, original_name)
    temp_ref = codec.qualify(change.schema_name, temp_name)

    identity = ColumnIdentity(change, codec.dialect.value)
    new_constraints, lost = _target_constraints(change, identity)
    new_columns = [
        identity.column(op) if op.old is not None else op.new
        for op in change.columns if op.new is not None
    ]

    statements = [
        create_table_statement(
            codec, change.schema_name, temp_name, new_columns, new_constraints,
            without_row_id=change.without_row_id
        )
    ]
    warnings = _collect_warnings(partition, original_name) + _lost_constraint_warnings(lost, original_name)

    # carried columns are matched by identity, never by name
    carried = [
        op for op in change.columns
        if op.old is not None and op.new is not None
        and not _constraint_of(op.new).generated_expression
    ]
    if carried:
        target_columns = column_list(codec, [op.new.name for op in carried])
        source_columns = column_list(codec, [op.old.name for op in carried])
        statements.append(
            f"INSERT INTO {temp_ref} ({target_columns}) "
            f"SELECT {source_columns} FROM {original_ref}"
        )
    else:
        warnings.append(
            f"No column of {original_name} is carried over; its existing rows are discarded"
        )

    statements.append(f"DROP TABLE {original_ref}")
    statements.append(f"ALTER TABLE {temp_ref} RENAME TO {codec.escape_id(target_name)}")
    warnings.append(
        f"Table {original_name} is recreated; indexes and triggers defined on it are dropped "
        f"and must be re-created"
    )
    return SchemaChangePlan(statements=statements, warnings=warnings, recreate=True)


def diff_table_schemas(
    before: DatabaseTableSchema,
    after: DatabaseTableSchema,
    renames: Optional[Dict[str, str]] = None
) -> DatabaseTableSchemaChange:
    """Build a change from two table snapshots.

    Columns are matched by name; ``renames`` maps old column names to new
    ones for columns whose identity survives a rename.

    Args:
        before: Table as it exists
        after: Table as it should become
        renames: Optional old-name to new-name mapping

    Returns:
        DatabaseTableSchemaChange ordered like ``after`` with removed
        columns appended
    """
    renames = renames or {}
    reverse = {new: old for old, new in renames.items()}
    before_cols = {c.name: c for c in before.columns}

    columns = []
    matched = set()
    for column in after.columns:
        old_name = reverse.get(column.name, column.name)
        old = before_cols.get(old_name)
        if old is not None and old_name not in matched:
            matched.add(old_name)
            columns.append(DatabaseTableColumnChange(key=old_name, old=old, new=column))
        else:
            columns.append(DatabaseTableColumnChange(key=f"new:{column.name}", new=column))

    for column in before.columns:
        if column.name not in matched:
            columns.append(DatabaseTableColumnChange(key=column.name, old=column))

    change = DatabaseTableSchemaChange(
        schema_name=before.schema_name,
        name=TableNameChange(old=before.table_name, new=after.table_name),
        columns=columns,
        without_row_id=after.without_row_id,
    )
    identity = ColumnIdentity(change, "sqlite")

    def carried_unchanged(old: DatabaseTableConstraint, new: DatabaseTableConstraint) -> bool:
        # CHECK expressions are compared as written
        return old.kind != "CHECK" and identity.constraint(old) == new

    constraints = []
    remaining = list(before.constraints)
    for index, constraint in enumerate(after.constraints):
        match = next((c for c in remaining if carried_unchanged(c, constraint)), None)
        if match is not None:
            # untouched apart from column renames, kept on the old names
            remaining.remove(match)
            constraints.append(DatabaseTableConstraintChange(
                key=match.name or f"constraint-{index}", old=match, new=match.model_copy()
            ))
            continue
        match = next(
            (c for c in remaining
             if (constraint.name and c.name == constraint.name) or c == constraint),
            None,
        )
        if match is not None:
            remaining.remove(match)
            constraints.append(DatabaseTableConstraintChange(
                key=match.name or f"constraint-{index}", old=match, new=constraint
            ))
        else:
            constraints.append(DatabaseTableConstraintChange(
                key=f"new-constraint-{index}", new=constraint
            ))
    for index, constraint in enumerate(remaining):
        constraints.append(DatabaseTableConstraintChange(
            key=constraint.name or f"removed-constraint-{index}", old=constraint
        ))

    change.constraints = constraints
    return change
