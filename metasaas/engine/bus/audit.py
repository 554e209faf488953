"""
Persistent audit log.

Every dispatch, successful or not, leaves one row in the audit_log table.
Writes happen in background tasks so they never delay or fail a dispatch.

Invariants:
    - record() never raises
    - Stored input is JSON truncated to max_input_chars characters
    - Queries are always scoped to one tenant and return newest first

How to change safely:
    - The audit_log layout is declared in migrate/platform.py; change both together
    - Keep write() usable on its own so tests can await a single entry
"""

from __future__ import annotations

import asyncio
import json
import logging
import sqlite3
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Optional

from ..store.database import Database

logger = logging.getLogger(__name__)

AUDIT_LOG_TABLE = "audit_log"
DEFAULT_MAX_INPUT_CHARS = 10_000
MAX_QUERY_LIMIT = 100


@dataclass(frozen=True)
class AuditEntry:
    """One dispatch outcome.

    Attributes:
        tenant_id: Caller's tenant
        user_id: Caller's user id
        operation_id: Dispatched operation id
        success: Whether the dispatch succeeded
        duration_ms: Wall time of the dispatch
        input: Raw input as received
        error: Error message on failure
    """

    tenant_id: str
    user_id: str
    operation_id: str
    success: bool
    duration_ms: float
    input: Any = None
    error: Optional[str] = None


@dataclass(frozen=True)
class AuditQuery:
    """Filters for AuditLog.query().

    ``entity`` matches operation ids by prefix ("task" matches "task.create").
    Dates are ISO-8601 strings compared against created_at.
    """

    tenant_id: str
    user_id: Optional[str] = None
    operation_id: Optional[str] = None
    entity: Optional[str] = None
    success: Optional[bool] = None
    date_from: Optional[str] = None
    date_to: Optional[str] = None
    limit: int = 50
    offset: int = 0

    def __post_init__(self) -> None:
        if not 1 <= self.limit <= MAX_QUERY_LIMIT:
            raise ValueError(f"limit must be between 1 and {MAX_QUERY_LIMIT}")
        if self.offset < 0:
            raise ValueError("offset must be >= 0")


class AuditLog:
    """Writes and reads the audit_log table.

    Args:
        database: Database holding the audit_log table
        enabled: When False, record() is a no-op
        max_input_chars: Truncation limit for the stored input JSON
    """

    def __init__(
        self,
        database: Database,
        enabled: bool = True,
        max_input_chars: int = DEFAULT_MAX_INPUT_CHARS,
    ) -> None:
        self.database = database
        self.enabled = enabled
        self.max_input_chars = max_input_chars
        self._tasks: set[asyncio.Task] = set()

    def record(self, entry: AuditEntry) -> None:
        """Schedule ``entry`` to be written in the background."""
        if not self.enabled:
            return
        task = asyncio.create_task(self._safe_write(entry))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _safe_write(self, entry: AuditEntry) -> None:
        try:
            await self.write(entry)
        except (sqlite3.Error, TypeError, ValueError) as e:
            logger.error(
                f"Failed to write audit entry: {e}",
                extra={"operation_id": entry.operation_id, "tenant_id": entry.tenant_id},
            )

    def _serialize_input(self, value: Any) -> Optional[str]:
        if value is None:
            return None
        return json.dumps(value, default=str)[: self.max_input_chars]

    async def write(self, entry: AuditEntry) -> str:
        """Insert ``entry`` now.

        Returns:
            Id of the new audit row
        """
        entry_id = str(uuid.uuid4())
        with self.database.transaction() as conn:
            conn.execute(
                f"""
                INSERT INTO {AUDIT_LOG_TABLE}
                    (id, tenant_id, user_id, operation_id, success, duration_ms, input, error, created_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    entry_id,
                    entry.tenant_id,
                    entry.user_id,
                    entry.operation_id,
                    1 if entry.success else 0,
                    entry.duration_ms,
                    self._serialize_input(entry.input),
                    entry.error,
                    datetime.now(timezone.utc).isoformat(),
                ),
            )
        return entry_id

    async def query(self, query: AuditQuery) -> dict[str, Any]:
        """Return ``{"data": [...], "total": n}`` for the query, newest first."""
        conditions = ["tenant_id = ?"]
        params: list[Any] = [query.tenant_id]

        if query.user_id:
            conditions.append("user_id = ?")
            params.append(query.user_id)
        if query.operation_id:
            conditions.append("operation_id = ?")
            params.append(query.operation_id)
        if query.entity:
            conditions.append("operation_id LIKE ? ESCAPE '\\'")
            escaped = query.entity.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
            params.append(f"{escaped}.%")
        if query.success is not None:
            conditions.append("success = ?")
            params.append(1 if query.success else 0)
        if query.date_from:
            conditions.append("created_at >= ?")
            params.append(query.date_from)
        if query.date_to:
            conditions.append("created_at <= ?")
            params.append(query.date_to)

        where = " AND ".join(conditions)
        with self.database.connect() as conn:
            total = conn.execute(
                f"SELECT COUNT(*) FROM {AUDIT_LOG_TABLE} WHERE {where}", params
            ).fetchone()[0]
            rows = conn.execute(
                f"""
                SELECT id, tenant_id, user_id, operation_id, success, duration_ms, input, error, created_at
                FROM {AUDIT_LOG_TABLE} WHERE {where}
                ORDER BY created_at DESC, rowid DESC
                LIMIT ? OFFSET ?
                """,
                [*params, query.limit, query.offset],
            ).fetchall()

        return {"data": [self._row_to_dict(row) for row in rows], "total": total}

    @staticmethod
    def _row_to_dict(row: sqlite3.Row) -> dict[str, Any]:
        return {
            "id": row["id"],
            "tenantId": row["tenant_id"],
            "userId": row["user_id"],
            "operationId": row["operation_id"],
            "success": bool(row["success"]),
            "durationMs": row["duration_ms"] or 0,
            "input": row["input"],
            "error": row["error"],
            "createdAt": row["created_at"],
        }

    @property
    def pending(self) -> int:
        return len(self._tasks)

    async def drain(self) -> None:
        """Wait for every scheduled write."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)
