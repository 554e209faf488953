"""
Schema reconciler: bring live tables in line with entity declarations.

For each entity, in order:
1. Missing table -> CREATE TABLE with system, field and FK columns
2. Existing table -> ADD COLUMN for every expected column that is missing
3. Field columns whose live type differs -> classify; safe changes are
   converted automatically, unsafe ones are reported as warnings
4. Live columns no declaration mentions -> warning only

Invariants:
    - Nothing is ever dropped (a safe type change rebuilds the table, keeps
      every column and row, and leaves the old table behind as a backup)
    - A required field added to an existing table without a default is
      added nullable, and a warning says so
    - Warnings never abort the pass; boot always continues
    - A second pass without declaration changes issues no statements
    - Not safe to run concurrently with itself or with live traffic

How to change safely:
    - All DDL text comes from ddl.py; do not build statements here
    - Add a test for each new warning condition

Example:
    >>> reconciler = SchemaReconciler(SqliteSchemaBackend(Database(path)))
    >>> report = reconciler.reconcile([Task, Project])
    >>> for warning in report.warnings:
    ...     print(warning)
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Iterable

from ..schema.physical import TENANT_COLUMN, ColumnSpec, ColumnType, TableSpec, build_table_spec
from ..schema.types import EntityDef
from . import ddl
from .backend import SchemaBackend
from .classify import classify_type_change

logger = logging.getLogger(__name__)

DEFAULT_BACKFILL_TENANT = "00000000-0000-0000-0000-000000000001"


@dataclass
class MigrationReport:
    """Outcome of one reconciliation pass.

    Attributes:
        statements: Statements executed (or planned, for a dry run)
        warnings: Situations that need an operator
        created_tables: Tables created in this pass
        altered_tables: Existing tables that received changes
        dry_run: Whether statements were only planned
    """

    statements: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    created_tables: list[str] = field(default_factory=list)
    altered_tables: list[str] = field(default_factory=list)
    dry_run: bool = False

    @property
    def changed(self) -> bool:
        return bool(self.statements)

    def to_dict(self) -> dict:
        return {
            "statements": list(self.statements),
            "warnings": list(self.warnings),
            "created_tables": list(self.created_tables),
            "altered_tables": list(self.altered_tables),
            "dry_run": self.dry_run,
        }


class SchemaReconciler:
    """Reconciles the live schema with entity declarations.

    Args:
        backend: Live schema access
        backfill_tenant_id: Tenant assigned to pre-existing rows when the
            tenant column has to be added to an old table
    """

    def __init__(
        self,
        backend: SchemaBackend,
        backfill_tenant_id: str = DEFAULT_BACKFILL_TENANT,
    ) -> None:
        self.backend = backend
        self.backfill_tenant_id = backfill_tenant_id

    def reconcile(self, entities: Iterable[EntityDef], dry_run: bool = False) -> MigrationReport:
        """Run one reconciliation pass, sequentially per entity.

        Args:
            entities: Entity declarations
            dry_run: Plan statements without executing them

        Returns:
            MigrationReport with statements and warnings

        Raises:
            UnsafeIdentifierError: If a declared name cannot be used as an identifier
            InvalidDefaultError: If a declared default does not fit its type
        """
        return self.reconcile_tables([build_table_spec(entity) for entity in entities], dry_run)

    def reconcile_tables(self, specs: Iterable[TableSpec], dry_run: bool = False) -> MigrationReport:
        """Reconcile explicit table layouts (entity or platform tables)."""
        report = MigrationReport(dry_run=dry_run)
        for spec in specs:
            ddl.validate_identifier(spec.table, "table name")
            for column in spec.columns:
                ddl.validate_identifier(column.name, f'column name for "{spec.entity}"')

            if not self.backend.table_exists(spec.table):
                self._create(spec, report)
            else:
                self._evolve(spec, report)

        logger.info(
            "Schema reconciliation finished",
            extra={
                "statements": len(report.statements),
                "warnings": len(report.warnings),
                "created_tables": report.created_tables,
                "altered_tables": report.altered_tables,
                "dry_run": dry_run,
            },
        )
        return report

    def _run(self, statements: list[str], report: MigrationReport) -> None:
        report.statements.extend(statements)
        if not report.dry_run:
            self.backend.execute(statements)

    def _warn(self, message: str, report: MigrationReport, **extra: object) -> None:
        report.warnings.append(message)
        logger.warning(message, extra=extra)

    def _create(self, spec: TableSpec, report: MigrationReport) -> None:
        self._run([ddl.create_table(spec)], report)
        report.created_tables.append(spec.table)
        logger.info("Created table", extra={"table": spec.table})

    def _evolve(self, spec: TableSpec, report: MigrationReport) -> None:
        existing = self.backend.get_columns(spec.table)
        before = len(report.statements)

        for column in spec.columns:
            if column.name not in existing:
                self._add_column(spec.table, column, report)

        self._reconcile_types(spec, existing, report)

        expected = set(spec.column_names)
        for name in existing:
            if name not in expected:
                self._warn(
                    f'Column "{spec.table}.{name}" is not declared by entity "{spec.entity}". '
                    "It was left in place; drop it manually once its data is no longer needed.",
                    report,
                    table=spec.table,
                    column=name,
                )

        if len(report.statements) > before:
            report.altered_tables.append(spec.table)

    def _add_column(self, table: str, column: ColumnSpec, report: MigrationReport) -> None:
        if column.primary_key:
            self._warn(
                f'Table "{table}" has no "{column.name}" column and a primary key cannot be '
                "added to an existing table; recreate the table manually.",
                report,
                table=table,
            )
            return

        if column.name == TENANT_COLUMN:
            backfilled = ColumnSpec(
                name=column.name,
                type=column.type,
                api_name=column.api_name,
                not_null=True,
                default=self.backfill_tenant_id,
                system=True,
            )
            self._run(ddl.add_column(table, backfilled), report)
            self._warn(
                f'Added tenant column to "{table}"; existing rows were assigned tenant '
                f'"{self.backfill_tenant_id}".',
                report,
                table=table,
            )
            return

        nullable = False
        if column.not_null and not column.has_default:
            nullable = True
            self._warn(
                f'Adding required column "{table}.{column.name}" without a default. '
                "It was added as nullable to avoid breaking existing rows; "
                "consider declaring a default value.",
                report,
                table=table,
                column=column.name,
            )
        elif column.not_null and ddl.is_now(column.default):
            self._warn(
                f'Column "{table}.{column.name}" was added nullable and backfilled with the '
                "current time; existing rows now carry the migration timestamp.",
                report,
                table=table,
                column=column.name,
            )

        self._run(ddl.add_column(table, column, nullable=nullable), report)
        logger.info("Added column", extra={"table": table, "column": column.name})

    def _reconcile_types(self, spec: TableSpec, existing: dict, report: MigrationReport) -> None:
        safe: dict[str, ColumnType] = {}
        for column in spec.field_columns:
            info = existing.get(column.name)
            if info is None:
                continue
            change = classify_type_change(info, column.type)
            if not change.changed:
                continue
            if change.safe:
                safe[column.name] = column.type
                logger.info(
                    "Converting column type",
                    extra={"table": spec.table, "column": column.name, "reason": change.reason},
                )
            else:
                self._warn(
                    f'Type of "{spec.table}.{column.name}" differs from its declaration '
                    f"({change.reason}). Not applied automatically; migrate it manually.",
                    report,
                    table=spec.table,
                    column=column.name,
                )

        if not safe:
            return
        try:
            rebuild = self.backend.type_change_statements(spec.table, safe)
        except ddl.UnsafeIdentifierError as e:
            self._warn(
                f'Cannot convert column types on "{spec.table}": {e}',
                report,
                table=spec.table,
            )
            return
        self._run(rebuild.statements, report)
        self._warn(
            f'Converting column types rebuilds "{spec.table}"; the previous rows are kept in '
            f'"{rebuild.backup_table}", which can be dropped manually once verified.',
            report,
            table=spec.table,
            backup_table=rebuild.backup_table,
        )
