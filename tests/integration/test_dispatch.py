"""
Integration tests for the dispatch pipeline.

Tests cover:
- Compiled CRUD operations end to end
- Error classification (not_found, validation, permission, workflow, unknown)
- Stage order (validation before authorization)
- Domain events and workflow transition events
- Entity hooks and hand-written operations with side effects
- Audit log entries for every dispatch
- Tenant isolation through dispatch
"""

import os
import tempfile
import uuid

import pytest
from pydantic import BaseModel

from metasaas.engine.actions.errors import GENERIC_ERROR_MESSAGE, ErrorType
from metasaas.engine.actions.types import (
    ALLOW_ALL,
    Caller,
    CallerType,
    CompiledOperation,
    Effect,
    OperationHooks,
    PermissionRule,
    SideEffect,
    SideEffectType,
)
from metasaas.engine.bus.audit import AuditEntry, AuditLog, AuditQuery
from metasaas.engine.bus.events import EventSubscriber
from metasaas.engine.config import EngineConfig, StorageConfig
from metasaas.engine.migrate.backend import SqliteSchemaBackend
from metasaas.engine.migrate.platform import ensure_platform_tables
from metasaas.engine.migrate.reconciler import SchemaReconciler
from metasaas.engine.schema.types import (
    EntityDef,
    EntityHooks,
    RelationshipDef,
    RelationshipType,
    Transition,
    WorkflowDef,
    field,
)
from metasaas.engine.state import AppState
from metasaas.engine.store.database import Database

TENANT_A = "11111111-1111-1111-1111-111111111111"
TENANT_B = "22222222-2222-2222-2222-222222222222"


async def _title_case(data, ctx):
    return {**data, "name": data["name"].title()}


Project = EntityDef(
    name="Project",
    plural_name="Projects",
    fields=(field("name", "text", required=True),),
    hooks=EntityHooks(before_create=_title_case),
)

Task = EntityDef(
    name="Task",
    plural_name="Tasks",
    fields=(
        field("title", "text", required=True),
        field("status", "enum", required=True, default="todo",
              options=("todo", "in_progress", "done")),
        field("assignee", "text"),
    ),
    relationships=(RelationshipDef(RelationshipType.BELONGS_TO, "Project"),),
    workflows=(
        WorkflowDef(
            field="status",
            transitions=(
                Transition("todo", "in_progress"),
                Transition("in_progress", "done", requires=("assignee",),
                           triggers=("notify_owner",)),
            ),
        ),
    ),
)


class StatsInput(BaseModel):
    status: str = "todo"


async def _count_tasks(data, ctx):
    return {"count": await ctx.db.count("Task", where={"status": data["status"]})}


async def _fail(data, ctx):
    raise RuntimeError("database password is hunter2")


async def _add_caller(result, data, ctx):
    return {**result, "caller": ctx.caller.user_id}


STATS = CompiledOperation(
    id="task.stats",
    name="Task stats",
    description="Counts tasks in a status.",
    input_model=StatsInput,
    output_model=None,
    execute=_count_tasks,
    permissions=(ALLOW_ALL,),
    idempotent=True,
    side_effects=(SideEffect(SideEffectType.EMIT_EVENT, {"event_type": "task.stats.read"}),),
    hooks=OperationHooks(after=_add_caller),
)

BROKEN = CompiledOperation(
    id="task.broken",
    name="Broken",
    description="Always fails.",
    input_model=StatsInput,
    output_model=None,
    execute=_fail,
    permissions=(ALLOW_ALL,),
)

async def _wipe(data, ctx):
    return {"wiped": True}


# No permissions declared
WIPE = CompiledOperation(
    id="task.wipe",
    name="Wipe",
    description="Deletes every task.",
    input_model=StatsInput,
    output_model=None,
    execute=_wipe,
)

ADMIN_ONLY = [PermissionRule(Effect.ALLOW, roles=("admin",))]


class TestDispatch:
    """End-to-end tests for Dispatcher over SQLite."""

    @pytest.fixture
    def data_dir(self):
        """Create temporary data directory."""
        with tempfile.TemporaryDirectory() as tmpdir:
            yield tmpdir

    @pytest.fixture
    def events(self):
        return []

    @pytest.fixture
    def state(self, data_dir, events):
        config = EngineConfig(
            storage=StorageConfig(database_path=os.path.join(data_dir, "app.db"), wal_mode=False)
        )
        state = AppState(config)
        reconciler = SchemaReconciler(SqliteSchemaBackend(state.database))
        ensure_platform_tables(reconciler)
        reconciler.reconcile([Project, Task])

        async def collect(event):
            events.append(event)

        state.bootstrap(
            [Project, Task],
            operations=[STATS, BROKEN, WIPE],
            subscribers=[EventSubscriber("*", "collector", collect)],
            permissions={"Project": ADMIN_ONLY},
        )
        state.freeze()
        return state

    @pytest.fixture
    def member(self):
        return Caller(user_id="ann", tenant_id=TENANT_A, roles=("member",))

    @pytest.fixture
    def admin(self):
        return Caller(user_id="root", tenant_id=TENANT_A, roles=("admin",))

    async def _create_task(self, state, caller, **data):
        result = await state.dispatcher.dispatch("task.create", {"title": "Ship", **data}, caller)
        assert result.success, result.error
        return result.data

    @pytest.mark.asyncio
    async def test_crud(self, state, member):
        task = await self._create_task(state, member)
        assert task["status"] == "todo"
        assert task["tenantId"] == TENANT_A

        got = await state.dispatcher.dispatch("task.get", {"id": task["id"]}, member)
        assert got.data["title"] == "Ship"

        updated = await state.dispatcher.dispatch(
            "task.update", {"id": task["id"], "data": {"title": "Ship it"}}, member
        )
        assert updated.data["title"] == "Ship it"

        listed = await state.dispatcher.dispatch("task.list", {}, member)
        assert listed.data["total"] == 1
        assert listed.data["data"][0]["title"] == "Ship it"

        deleted = await state.dispatcher.dispatch("task.delete", {"id": task["id"]}, member)
        assert deleted.to_dict() == {"success": True, "data": {"success": True}}
        again = await state.dispatcher.dispatch("task.delete", {"id": task["id"]}, member)
        assert again.data == {"success": False}

        missing = await state.dispatcher.dispatch("task.get", {"id": task["id"]}, member)
        assert missing.success is True
        assert missing.data is None

    @pytest.mark.asyncio
    async def test_events(self, state, member, events):
        task = await self._create_task(state, member)
        await state.dispatcher.dispatch(
            "task.update", {"id": task["id"], "data": {"title": "B"}}, member
        )
        await state.dispatcher.dispatch("task.delete", {"id": task["id"]}, member)
        await state.dispatcher.dispatch("task.delete", {"id": task["id"]}, member)

        assert [e.type for e in events] == ["task.created", "task.updated", "task.deleted"]
        assert events[0].payload["id"] == task["id"]
        assert events[1].payload == {"id": task["id"], "changes": {"title": "B"}}
        assert events[2].payload == {"id": task["id"]}

    @pytest.mark.asyncio
    async def test_list_options(self, state, member):
        for title in ("Write docs", "Fix bug", "Write tests"):
            await self._create_task(state, member, title=title)

        result = await state.dispatcher.dispatch(
            "task.list",
            {
                "search": {"term": "write"},
                "order_by": {"field": "title", "direction": "desc"},
                "limit": 1,
            },
            member,
        )
        assert result.data["total"] == 2
        assert [t["title"] for t in result.data["data"]] == ["Write tests"]

    @pytest.mark.asyncio
    async def test_not_found(self, state, member):
        result = await state.dispatcher.dispatch("task.archive", {}, member)

        assert result.success is False
        assert result.error_type == ErrorType.NOT_FOUND
        assert result.error == 'Operation "task.archive" not found'
        assert result.to_dict()["error_type"] == "not_found"

    @pytest.mark.asyncio
    async def test_validation(self, state, member, events):
        result = await state.dispatcher.dispatch("task.create", {"status": "blocked"}, member)

        assert result.error_type == ErrorType.VALIDATION
        fields = {e["field"] for e in result.details["field_errors"]}
        assert fields == {"title", "status"}
        assert events == []

    @pytest.mark.asyncio
    async def test_permission(self, state, member, admin):
        denied = await state.dispatcher.dispatch("project.create", {"name": "x"}, member)
        allowed = await state.dispatcher.dispatch("project.create", {"name": "launch day"}, admin)

        assert denied.error_type == ErrorType.PERMISSION
        assert 'user "ann"' in denied.error
        assert allowed.success is True
        # before_create hook ran after authorization
        assert allowed.data["name"] == "Launch Day"

    @pytest.mark.asyncio
    async def test_missing_permissions_deny(self, state, admin):
        """An operation declared without rules is closed to every caller."""
        webhook = Caller(user_id="hook", tenant_id=TENANT_A, type=CallerType.WEBHOOK)

        for caller in (admin, webhook):
            result = await state.dispatcher.dispatch("task.wipe", {}, caller)
            assert result.success is False
            assert result.error_type == ErrorType.PERMISSION
            assert result.data is None

    @pytest.mark.asyncio
    async def test_validation_precedes_permission(self, state, member):
        result = await state.dispatcher.dispatch("project.create", {}, member)
        assert result.error_type == ErrorType.VALIDATION

    @pytest.mark.asyncio
    async def test_workflow(self, state, member, events):
        task = await self._create_task(state, member)
        task_id = task["id"]

        skipped = await state.dispatcher.dispatch(
            "task.update", {"id": task_id, "data": {"status": "done"}}, member
        )
        assert skipped.error_type == ErrorType.WORKFLOW
        assert skipped.details["valid_targets"] == ["in_progress"]

        started = await state.dispatcher.dispatch(
            "task.update", {"id": task_id, "data": {"status": "in_progress"}}, member
        )
        assert started.success is True

        unassigned = await state.dispatcher.dispatch(
            "task.update", {"id": task_id, "data": {"status": "done"}}, member
        )
        assert unassigned.error_type == ErrorType.WORKFLOW
        assert unassigned.details["required_field"] == "assignee"

        events.clear()
        finished = await state.dispatcher.dispatch(
            "task.update", {"id": task_id, "data": {"status": "done", "assignee": "ann"}}, member
        )
        assert finished.data["status"] == "done"
        assert [e.type for e in events] == ["task.workflow.transitioned", "task.updated"]
        assert events[0].payload == {
            "id": task_id,
            "workflow": "status",
            "field": "status",
            "from": "in_progress",
            "to": "done",
            "triggers": ["notify_owner"],
        }

    @pytest.mark.asyncio
    async def test_create_outside_entry_state(self, state, member):
        result = await state.dispatcher.dispatch(
            "task.create", {"title": "x", "status": "done"}, member
        )
        assert result.error_type == ErrorType.WORKFLOW
        assert result.details["from"] == "(none)"

    @pytest.mark.asyncio
    async def test_update_missing_record(self, state, member):
        result = await state.dispatcher.dispatch(
            "task.update", {"id": str(uuid.uuid4()), "data": {"title": "x"}}, member
        )
        assert result.success is False
        assert result.error_type == ErrorType.UNKNOWN
        assert result.error == GENERIC_ERROR_MESSAGE

    @pytest.mark.asyncio
    async def test_unknown_error_is_generic(self, state, member):
        result = await state.dispatcher.dispatch("task.broken", {}, member)

        assert result.error_type == ErrorType.UNKNOWN
        assert result.error == GENERIC_ERROR_MESSAGE
        assert "hunter2" not in str(result.to_dict())

    @pytest.mark.asyncio
    async def test_hand_written_operation(self, state, member, events):
        await self._create_task(state, member)
        events.clear()

        result = await state.dispatcher.dispatch("task.stats", {"status": "todo"}, member)

        assert result.data == {"count": 1, "caller": "ann"}
        assert [e.type for e in events] == ["task.stats.read"]
        assert events[0].payload["result"] == {"count": 1, "caller": "ann"}

    @pytest.mark.asyncio
    async def test_tenant_isolation(self, state, member):
        task = await self._create_task(state, member)
        outsider = Caller(user_id="eve", tenant_id=TENANT_B, type=CallerType.AI_AGENT)

        got = await state.dispatcher.dispatch("task.get", {"id": task["id"]}, outsider)
        listed = await state.dispatcher.dispatch("task.list", {}, outsider)
        deleted = await state.dispatcher.dispatch("task.delete", {"id": task["id"]}, outsider)

        assert got.data is None
        assert listed.data == {"data": [], "total": 0}
        assert deleted.data == {"success": False}

    @pytest.mark.asyncio
    async def test_audit(self, state, member):
        await self._create_task(state, member)
        await state.dispatcher.dispatch("task.create", {}, member)
        await state.dispatcher.dispatch("project.list", {}, member)
        await state.dispatcher.drain()

        everything = await state.audit.query(AuditQuery(tenant_id=TENANT_A))
        failures = await state.audit.query(AuditQuery(tenant_id=TENANT_A, success=False))
        tasks = await state.audit.query(AuditQuery(tenant_id=TENANT_A, entity="task"))
        other = await state.audit.query(AuditQuery(tenant_id=TENANT_B))

        assert everything["total"] == 3
        assert failures["total"] == 2
        assert {e["operationId"] for e in failures["data"]} == {"task.create", "project.list"}
        assert tasks["total"] == 2
        assert other["total"] == 0

        entry = everything["data"][-1]
        assert entry["success"] is True
        assert entry["userId"] == "ann"
        assert '"title": "Ship"' in entry["input"]


class TestAuditLog:
    """Tests for AuditLog on its own."""

    @pytest.fixture
    def data_dir(self):
        """Create temporary data directory."""
        with tempfile.TemporaryDirectory() as tmpdir:
            yield tmpdir

    @pytest.fixture
    def database(self, data_dir):
        database = Database(os.path.join(data_dir, "app.db"), wal_mode=False)
        ensure_platform_tables(SchemaReconciler(SqliteSchemaBackend(database)))
        return database

    def _entry(self, **overrides):
        values = dict(
            tenant_id=TENANT_A,
            user_id="ann",
            operation_id="task.create",
            success=True,
            duration_ms=1.5,
            input={"title": "x" * 100},
        )
        values.update(overrides)
        return AuditEntry(**values)

    @pytest.mark.asyncio
    async def test_input_truncated(self, database):
        audit = AuditLog(database, max_input_chars=20)
        await audit.write(self._entry())

        (entry,) = (await audit.query(AuditQuery(tenant_id=TENANT_A)))["data"]
        assert len(entry["input"]) == 20
        assert entry["durationMs"] == 1.5

    @pytest.mark.asyncio
    async def test_disabled(self, database):
        audit = AuditLog(database, enabled=False)
        audit.record(self._entry())

        assert audit.pending == 0
        assert (await audit.query(AuditQuery(tenant_id=TENANT_A)))["total"] == 0

    @pytest.mark.asyncio
    async def test_pagination_newest_first(self, database):
        audit = AuditLog(database)
        for name in ("a.one", "a.two", "a.three"):
            await audit.write(self._entry(operation_id=name))

        page = await audit.query(AuditQuery(tenant_id=TENANT_A, limit=2, offset=1))
        assert page["total"] == 3
        assert [e["operationId"] for e in page["data"]] == ["a.two", "a.one"]

    def test_query_bounds(self):
        with pytest.raises(ValueError):
            AuditQuery(tenant_id=TENANT_A, limit=101)
        with pytest.raises(ValueError):
            AuditQuery(tenant_id=TENANT_A, offset=-1)

    @pytest.mark.asyncio
    async def test_write_failure_never_raises(self, data_dir):
        audit = AuditLog(Database(os.path.join(data_dir, "empty.db"), wal_mode=False))
        audit.record(self._entry())
        await audit.drain()
        assert audit.pending == 0
