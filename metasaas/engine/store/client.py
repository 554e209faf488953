"""
Tenant-scoped data access on SQLite.

TenantDataAccess is the concrete DataAccess handed to operations through
their execution context. It is built per dispatch for the caller's tenant
and translates between camelCase API keys and snake_case columns using the
entity's TableSpec.

Invariants:
    - Every statement carries "tenant_id = ?" bound to the handle's tenant
    - Callers can never set id, tenant_id, created_at or updated_at
    - Unknown filter keys are ignored, unknown sort fields fall back to created_at
    - Records come back with camelCase keys; booleans are bool

How to change safely:
    - Column names are interpolated into SQL only from a TableSpec, whose
      identifiers the reconciler validated; never interpolate caller input
    - Keep the returned key set equal to the TableSpec api names
"""

from __future__ import annotations

import logging
import sqlite3
import uuid
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Any, Optional

from ..actions.errors import RecordNotFoundError
from ..schema.physical import TENANT_COLUMN, ColumnKind, ColumnSpec, TableSpec
from ..schema.registry import EntityRegistry
from .database import Database

logger = logging.getLogger(__name__)

_SEARCHABLE_KINDS = (ColumnKind.TEXT, ColumnKind.VARCHAR)
_LIKE_ESCAPE = "\\"


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def _to_db(value: Any) -> Any:
    """Convert a Python value to something sqlite3 binds natively."""
    if isinstance(value, bool):
        return 1 if value else 0
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, Decimal):
        return float(value)
    return value


def _escape_like(term: str) -> str:
    return (
        term.replace(_LIKE_ESCAPE, _LIKE_ESCAPE * 2)
        .replace("%", _LIKE_ESCAPE + "%")
        .replace("_", _LIKE_ESCAPE + "_")
    )


class TenantDataAccess:
    """Data access bound to one tenant.

    Args:
        database: SQLite database
        entities: Registry the table layouts come from
        tenant_id: Tenant every statement is scoped to

    Example:
        >>> db = TenantDataAccess(database, registry, "7c1e...")
        >>> task = await db.create("Task", {"title": "Ship it"})
        >>> await db.find_many("Task", where={"status": "todo"}, limit=10)
    """

    def __init__(self, database: Database, entities: EntityRegistry, tenant_id: str) -> None:
        if not tenant_id:
            raise ValueError("tenant_id is required")
        self.database = database
        self.entities = entities
        self.tenant_id = tenant_id

    def _spec(self, entity: str) -> TableSpec:
        return self.entities.table_spec(entity)

    def _select(self, spec: TableSpec) -> str:
        columns = ", ".join(f'"{name}"' for name in spec.column_names)
        return f'SELECT {columns} FROM "{spec.table}"'

    def _row_to_record(self, spec: TableSpec, row: sqlite3.Row) -> dict[str, Any]:
        record: dict[str, Any] = {}
        for col in spec.columns:
            value = row[col.name]
            if value is not None and col.type.kind == ColumnKind.BOOLEAN:
                value = bool(value)
            record[col.api_name] = value
        return record

    def _writable(self, spec: TableSpec, data: dict[str, Any]) -> list[tuple[ColumnSpec, Any]]:
        # A link alias and its covering field share a column; the later key wins.
        values: dict[str, tuple[ColumnSpec, Any]] = {}
        for key, value in data.items():
            col = spec.by_api_name(key)
            if col is None or col.system:
                continue
            values[col.name] = (col, _to_db(value))
        return list(values.values())

    def _conditions(
        self,
        spec: TableSpec,
        where: Optional[dict[str, Any]],
        search: Optional[dict[str, Any]],
    ) -> tuple[str, list[Any]]:
        clauses = [f'"{TENANT_COLUMN}" = ?']
        params: list[Any] = [self.tenant_id]

        for key, value in (where or {}).items():
            col = spec.by_api_name(key)
            if col is None or col.name == TENANT_COLUMN:
                continue
            if value is None:
                clauses.append(f'"{col.name}" IS NULL')
            else:
                clauses.append(f'"{col.name}" = ?')
                params.append(_to_db(value))

        if search and search.get("term"):
            names = search.get("fields") or [
                col.api_name for col in spec.field_columns if col.type.kind in _SEARCHABLE_KINDS
            ]
            columns = [spec.by_api_name(name) for name in names]
            columns = [col for col in columns if col is not None and col.name != TENANT_COLUMN]
            if columns:
                pattern = f"%{_escape_like(str(search['term']))}%"
                clauses.append(
                    "("
                    + " OR ".join(f"\"{col.name}\" LIKE ? ESCAPE '{_LIKE_ESCAPE}'" for col in columns)
                    + ")"
                )
                params.extend(pattern for _ in columns)

        return " AND ".join(clauses), params

    async def find_many(
        self,
        entity: str,
        where: Optional[dict[str, Any]] = None,
        order_by: Optional[dict[str, str]] = None,
        limit: Optional[int] = None,
        offset: int = 0,
        search: Optional[dict[str, Any]] = None,
    ) -> list[dict[str, Any]]:
        """List records of ``entity`` for the tenant."""
        spec = self._spec(entity)
        condition, params = self._conditions(spec, where, search)

        sort_column = "created_at"
        direction = "ASC"
        if order_by:
            col = spec.by_api_name(order_by.get("field", ""))
            if col is not None:
                sort_column = col.name
            if str(order_by.get("direction", "asc")).lower() == "desc":
                direction = "DESC"

        sql = f'{self._select(spec)} WHERE {condition} ORDER BY "{sort_column}" {direction}, rowid {direction}'
        if limit is not None:
            sql += " LIMIT ? OFFSET ?"
            params.extend([int(limit), int(offset or 0)])
        elif offset:
            sql += " LIMIT -1 OFFSET ?"
            params.append(int(offset))

        with self.database.connect() as conn:
            rows = conn.execute(sql, params).fetchall()
        return [self._row_to_record(spec, row) for row in rows]

    async def find_by_id(self, entity: str, record_id: str) -> Optional[dict[str, Any]]:
        spec = self._spec(entity)
        with self.database.connect() as conn:
            row = conn.execute(
                f'{self._select(spec)} WHERE "id" = ? AND "{TENANT_COLUMN}" = ?',
                (record_id, self.tenant_id),
            ).fetchone()
        return self._row_to_record(spec, row) if row else None

    async def create(self, entity: str, data: dict[str, Any]) -> dict[str, Any]:
        """Insert a record and return it as stored."""
        spec = self._spec(entity)
        record_id = str(uuid.uuid4())
        now = _now()

        values = self._writable(spec, data)
        names = ["id", TENANT_COLUMN, "created_at", "updated_at"] + [col.name for col, _ in values]
        params = [record_id, self.tenant_id, now, now] + [value for _, value in values]
        columns = ", ".join(f'"{name}"' for name in names)
        placeholders = ", ".join("?" for _ in names)

        with self.database.transaction() as conn:
            conn.execute(f'INSERT INTO "{spec.table}" ({columns}) VALUES ({placeholders})', params)
            row = conn.execute(
                f'{self._select(spec)} WHERE "id" = ?', (record_id,)
            ).fetchone()

        logger.debug(
            "Created record",
            extra={"entity": entity, "record_id": record_id, "tenant_id": self.tenant_id},
        )
        return self._row_to_record(spec, row)

    async def update(self, entity: str, record_id: str, data: dict[str, Any]) -> dict[str, Any]:
        """Apply ``data`` to a record and return it as stored.

        Raises:
            RecordNotFoundError: If no record with that id exists for the tenant
        """
        spec = self._spec(entity)
        values = self._writable(spec, data)
        assignments = ['"updated_at" = ?'] + [f'"{col.name}" = ?' for col, _ in values]
        params = [_now()] + [value for _, value in values] + [record_id, self.tenant_id]

        with self.database.transaction() as conn:
            cursor = conn.execute(
                f'UPDATE "{spec.table}" SET {", ".join(assignments)} '
                f'WHERE "id" = ? AND "{TENANT_COLUMN}" = ?',
                params,
            )
            if cursor.rowcount == 0:
                raise RecordNotFoundError(entity, record_id)
            row = conn.execute(
                f'{self._select(spec)} WHERE "id" = ?', (record_id,)
            ).fetchone()

        return self._row_to_record(spec, row)

    async def delete(self, entity: str, record_id: str) -> bool:
        """Delete a record; returns whether a row was removed."""
        spec = self._spec(entity)
        with self.database.transaction() as conn:
            cursor = conn.execute(
                f'DELETE FROM "{spec.table}" WHERE "id" = ? AND "{TENANT_COLUMN}" = ?',
                (record_id, self.tenant_id),
            )
            deleted = cursor.rowcount > 0
        return deleted

    async def count(
        self,
        entity: str,
        where: Optional[dict[str, Any]] = None,
        search: Optional[dict[str, Any]] = None,
    ) -> int:
        spec = self._spec(entity)
        condition, params = self._conditions(spec, where, search)
        with self.database.connect() as conn:
            return conn.execute(
                f'SELECT COUNT(*) FROM "{spec.table}" WHERE {condition}', params
            ).fetchone()[0]
