"""
Operation compiler.

Turns one entity declaration into its five standard operations:
create, list, get, update and delete. The results are ordinary
CompiledOperations and go through the same dispatch pipeline as
hand-written ones.

Invariants:
    - Exactly five operations per entity, ids "<lower(name)>.<verb>"
    - Compilation is pure: no I/O, no registry access
    - Workflow rules are enforced inside execute, so every caller gets them

How to change safely:
    - Event names are consumed by subscribers; never rename one silently
    - Keep the create example limited to fields a caller must supply
"""

from __future__ import annotations

import json
import logging
from typing import Any, Optional, Sequence

from ..bus.events import DomainEvent
from ..schema.types import EntityDef, FieldDef, FieldType
from .errors import RecordNotFoundError
from .shapes import (
    DeleteResult,
    ListInput,
    build_create_model,
    build_id_model,
    build_list_output_model,
    build_record_model,
    build_update_model,
)
from .types import (
    ALLOW_ALL,
    CompiledOperation,
    ExecutionContext,
    OperationExample,
    OperationHooks,
    PermissionRule,
)
from .workflow import validate_entry_state, validate_transitions

logger = logging.getLogger(__name__)

VERBS = ("create", "list", "get", "update", "delete")


def _example_value(f: FieldDef) -> Any:
    if f.type.is_numeric:
        return 0
    if f.type == FieldType.BOOLEAN:
        return True
    if f.type == FieldType.ENUM:
        return f.options[0] if f.options else "value"
    return f"example {f.name}"


def example_input(entity: EntityDef) -> dict[str, Any]:
    """Placeholder input covering the fields a caller must supply."""
    return {
        f.name: _example_value(f) for f in entity.fields if f.required and not f.has_default
    }


def field_hints(entity: EntityDef) -> str:
    """Human-readable field list, e.g. ``title(text, required), status(enum, ...)``."""
    hints = []
    for f in entity.fields:
        parts = [f.name, f"({f.type.value}"]
        if f.required and not f.has_default:
            parts.append(", required")
        if f.has_default:
            parts.append(f", default: {json.dumps(f.default, default=str)}")
        if f.options:
            parts.append(f", values: {'|'.join(f.options)}")
        parts.append(")")
        hints.append("".join(parts))
    return ", ".join(hints)


def compile_entity(
    entity: EntityDef,
    permissions: Optional[Sequence[PermissionRule]] = None,
) -> list[CompiledOperation]:
    """Compile the standard operations of an entity.

    Args:
        entity: Entity declaration
        permissions: Rules applied to all five operations (default allow-all)

    Returns:
        The create, list, get, update and delete operations, in that order
    """
    prefix = entity.operation_prefix
    rules = tuple(permissions) if permissions is not None else (ALLOW_ALL,)
    affects = (entity.name,)

    record_model = build_record_model(entity)

    async def create(data: dict[str, Any], ctx: ExecutionContext) -> dict[str, Any]:
        validate_entry_state(entity.workflows, data)
        record = await ctx.db.create(entity.name, data)
        await ctx.emit(DomainEvent(type=f"{prefix}.created", payload=dict(record)))
        return record

    async def list_records(data: dict[str, Any], ctx: ExecutionContext) -> dict[str, Any]:
        order_by = data.get("order_by")
        if order_by is None and entity.default_sort is not None:
            order_by = {
                "field": entity.default_sort.field,
                "direction": entity.default_sort.direction,
            }
        records = await ctx.db.find_many(
            entity.name,
            where=data.get("where"),
            order_by=order_by,
            limit=data.get("limit", 50),
            offset=data.get("offset", 0),
            search=data.get("search"),
        )
        total = await ctx.db.count(entity.name, where=data.get("where"), search=data.get("search"))
        return {"data": records, "total": total}

    async def get(data: dict[str, Any], ctx: ExecutionContext) -> Optional[dict[str, Any]]:
        return await ctx.db.find_by_id(entity.name, data["id"])

    async def update(data: dict[str, Any], ctx: ExecutionContext) -> dict[str, Any]:
        record_id = data["id"]
        changes = data["data"]

        if any(w.field in changes for w in entity.workflows):
            current = await ctx.db.find_by_id(entity.name, record_id)
            if current is None:
                raise RecordNotFoundError(entity.name, record_id)
            for result in validate_transitions(entity.workflows, changes, current):
                if not result.triggers:
                    continue
                await ctx.emit(
                    DomainEvent(
                        type=f"{prefix}.workflow.transitioned",
                        payload={
                            "id": record_id,
                            "workflow": result.workflow_field,
                            "field": result.workflow_field,
                            "from": result.from_state,
                            "to": result.to_state,
                            "triggers": list(result.triggers),
                        },
                    )
                )

        record = await ctx.db.update(entity.name, record_id, changes)
        await ctx.emit(
            DomainEvent(type=f"{prefix}.updated", payload={"id": record_id, "changes": changes})
        )
        return record

    async def delete(data: dict[str, Any], ctx: ExecutionContext) -> dict[str, bool]:
        deleted = await ctx.db.delete(entity.name, data["id"])
        if deleted:
            await ctx.emit(DomainEvent(type=f"{prefix}.deleted", payload={"id": data["id"]}))
        return {"success": deleted}

    hooks = entity.hooks
    description = f" {entity.description}" if entity.description else ""

    operations = [
        CompiledOperation(
            id=f"{prefix}.create",
            name=f"Create {entity.name}",
            description=(
                f"Creates a new {entity.name} record. Fields: {field_hints(entity)}.{description}"
            ),
            input_model=build_create_model(entity),
            output_model=record_model,
            execute=create,
            permissions=rules,
            idempotent=False,
            affects_entities=affects,
            examples=(
                OperationExample(
                    description=f"Create a new {entity.name}",
                    input=example_input(entity),
                    natural_language=f"Create a new {entity.name.lower()}",
                ),
            ),
            hooks=OperationHooks(before=hooks.before_create, after=hooks.after_create),
        ),
        CompiledOperation(
            id=f"{prefix}.list",
            name=f"List {entity.plural_name}",
            description=(
                f"Retrieves a list of {entity.plural_name} with optional filtering, "
                "search and sorting."
            ),
            input_model=ListInput,
            output_model=build_list_output_model(entity, record_model),
            execute=list_records,
            permissions=rules,
            idempotent=True,
        ),
        CompiledOperation(
            id=f"{prefix}.get",
            name=f"Get {entity.name}",
            description=f"Retrieves a single {entity.name} by its unique ID.",
            input_model=build_id_model(entity, "Get"),
            output_model=record_model,
            execute=get,
            permissions=rules,
            idempotent=True,
        ),
        CompiledOperation(
            id=f"{prefix}.update",
            name=f"Update {entity.name}",
            description=(
                f"Updates an existing {entity.name} record. Only provided fields are changed."
            ),
            input_model=build_update_model(entity),
            output_model=record_model,
            execute=update,
            permissions=rules,
            idempotent=True,
            affects_entities=affects,
            hooks=OperationHooks(before=hooks.before_update, after=hooks.after_update),
        ),
        CompiledOperation(
            id=f"{prefix}.delete",
            name=f"Delete {entity.name}",
            description=f"Permanently deletes a {entity.name} record by ID.",
            input_model=build_id_model(entity, "Delete"),
            output_model=DeleteResult,
            execute=delete,
            permissions=rules,
            idempotent=True,
            affects_entities=affects,
            hooks=OperationHooks(before=hooks.before_delete),
        ),
    ]

    logger.debug(
        "Compiled entity operations",
        extra={"entity": entity.name, "operations": [op.id for op in operations]},
    )
    return operations
