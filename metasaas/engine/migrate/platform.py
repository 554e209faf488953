"""
Tables owned by the engine itself rather than by an entity declaration.
"""

from __future__ import annotations

from ..bus.audit import AUDIT_LOG_TABLE
from ..schema.physical import BOOLEAN, NUMERIC, TEXT, TIMESTAMPTZ, UUID, ColumnSpec, TableSpec
from .reconciler import MigrationReport, SchemaReconciler

AUDIT_LOG = TableSpec(
    entity="AuditLog",
    table=AUDIT_LOG_TABLE,
    columns=(
        ColumnSpec("id", UUID, "id", not_null=True, primary_key=True, system=True),
        ColumnSpec("tenant_id", UUID, "tenantId", not_null=True, system=True),
        ColumnSpec("user_id", TEXT, "userId", not_null=True),
        ColumnSpec("operation_id", TEXT, "operationId", not_null=True),
        ColumnSpec("success", BOOLEAN, "success", not_null=True),
        ColumnSpec("duration_ms", NUMERIC, "durationMs", not_null=True),
        ColumnSpec("input", TEXT, "input"),
        ColumnSpec("error", TEXT, "error"),
        ColumnSpec("created_at", TIMESTAMPTZ, "createdAt", not_null=True, default="NOW()", system=True),
    ),
)

PLATFORM_TABLES = (AUDIT_LOG,)


def ensure_platform_tables(reconciler: SchemaReconciler, dry_run: bool = False) -> MigrationReport:
    """Create or evolve the engine's own tables."""
    return reconciler.reconcile_tables(PLATFORM_TABLES, dry_run=dry_run)
