"""
Migration CLI for the entity engine.

Commands:
- migrate: Create platform tables and reconcile entity tables
- plan: Same as migrate, but only print the statements (dry run)
- describe: Print the compiled operations as JSON

Usage:
    metasaas-migrate plan --file entities.yaml
    metasaas-migrate migrate --file entities.yaml --database ./data/app.db
    metasaas-migrate describe --module myapp.entities

Invariants:
    - plan never changes the database
    - Warnings are printed but never change the exit code
    - Exit code 1 means the declarations or configuration could not be loaded

How to change safely:
    - Keep output of plan and describe stable; CI jobs parse it
"""

from __future__ import annotations

import argparse
import importlib
import json
import logging
import sys
from typing import Optional

from ..actions.compiler import compile_entity
from ..config import EngineConfig
from ..migrate.backend import SqliteSchemaBackend
from ..migrate.ddl import InvalidDefaultError, UnsafeIdentifierError
from ..migrate.platform import ensure_platform_tables
from ..migrate.reconciler import MigrationReport, SchemaReconciler
from ..schema.loader import load_entities, parse_entities
from ..schema.types import EntityDef
from ..store.database import Database

logger = logging.getLogger(__name__)


class MigrateCLI:
    """Schema migration commands.

    Example:
        >>> cli = MigrateCLI(Database("./data/app.db"))
        >>> report = cli.migrate(entities, dry_run=True)
        >>> print(cli.format_report(report))
    """

    def __init__(self, database: Database) -> None:
        self.database = database
        self.reconciler = SchemaReconciler(SqliteSchemaBackend(database))

    def migrate(self, entities: list[EntityDef], dry_run: bool = False) -> MigrationReport:
        """Reconcile platform and entity tables.

        Args:
            entities: Entity declarations
            dry_run: Only plan statements

        Returns:
            Combined report of both passes
        """
        report = ensure_platform_tables(self.reconciler, dry_run=dry_run)
        entity_report = self.reconciler.reconcile(entities, dry_run=dry_run)
        report.statements.extend(entity_report.statements)
        report.warnings.extend(entity_report.warnings)
        report.created_tables.extend(entity_report.created_tables)
        report.altered_tables.extend(entity_report.altered_tables)
        return report

    @staticmethod
    def format_report(report: MigrationReport) -> str:
        lines = []
        if not report.statements:
            lines.append("Schema is up to date")
        else:
            verb = "Planned" if report.dry_run else "Applied"
            lines.append(f"{verb} {len(report.statements)} statement(s):")
            lines.extend(f"  {statement};" for statement in report.statements)
        if report.warnings:
            lines.append(f"{len(report.warnings)} warning(s):")
            lines.extend(f"  - {warning}" for warning in report.warnings)
        return "\n".join(lines)


def describe_operations(entities: list[EntityDef]) -> str:
    """JSON description of every compiled operation."""
    operations = [op.describe() for entity in entities for op in compile_entity(entity)]
    return json.dumps({"operations": operations}, indent=2, sort_keys=True, default=str)


def _load_entities(file_path: Optional[str], module_path: Optional[str]) -> list[EntityDef]:
    """Load declarations from a file or from a module's ``entities`` attribute.

    Raises:
        ValueError: If neither source is given or the module has no entities
    """
    if file_path:
        return load_entities(file_path)
    if module_path:
        module = importlib.import_module(module_path)
        entities = getattr(module, "entities", None)
        if entities is None:
            raise ValueError(f"Module {module_path} has no 'entities'")
        if isinstance(entities, dict) or not all(isinstance(e, EntityDef) for e in entities):
            return parse_entities(entities)
        return list(entities)
    raise ValueError("Either --file or --module is required")


def create_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="metasaas-migrate", description="Entity engine schema migration tool"
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    for name, help_text in (
        ("migrate", "Reconcile the database schema with the declarations"),
        ("plan", "Print the statements a migration would run"),
        ("describe", "Print the compiled operations as JSON"),
    ):
        sub = subparsers.add_parser(name, help=help_text)
        source = sub.add_mutually_exclusive_group(required=True)
        source.add_argument("--file", "-f", help="Entity declaration file (YAML or JSON)")
        source.add_argument("--module", "-m", help="Python module exposing 'entities'")
        if name != "describe":
            sub.add_argument(
                "--database", "-d", help="SQLite database path (default: METASAAS_DATABASE_PATH)"
            )
    return parser


def main(argv: Optional[list[str]] = None) -> None:
    """CLI entry point for the migration tool."""
    args = create_parser().parse_args(argv)

    try:
        entities = _load_entities(args.file, args.module)
    except (OSError, ImportError, ValueError) as e:
        print(f"Cannot load entities: {e}", file=sys.stderr)
        sys.exit(1)

    if args.command == "describe":
        print(describe_operations(entities))
        sys.exit(0)

    try:
        config = EngineConfig.from_env()
    except ValueError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        sys.exit(1)

    storage = config.storage
    database = Database(
        args.database or storage.database_path,
        wal_mode=storage.wal_mode,
        busy_timeout_ms=storage.busy_timeout_ms,
    )
    cli = MigrateCLI(database)

    try:
        report = cli.migrate(entities, dry_run=args.command == "plan")
    except (UnsafeIdentifierError, InvalidDefaultError) as e:
        print(f"Invalid declarations: {e}", file=sys.stderr)
        sys.exit(1)

    print(cli.format_report(report))
    sys.exit(0)


if __name__ == "__main__":
    main()
