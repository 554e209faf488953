"""
Unit tests for entity declarations.

Tests cover:
- Name derivation (snake/camel case, table names)
- FieldDef, RelationshipDef and EntityDef validation
- Dictionary round trip of declarations
- Physical table layout (system, field and FK columns)
- Declaration files (YAML and JSON)
"""

import json
import os
import tempfile

import pytest

from metasaas.engine.schema.loader import EntityFileError, load_entities, parse_entities
from metasaas.engine.schema.naming import (
    from_column_name,
    pluralize,
    to_snake_case,
    to_table_name,
)
from metasaas.engine.schema.physical import (
    BOOLEAN,
    NUMERIC,
    TEXT,
    TIMESTAMPTZ,
    UUID,
    ColumnKind,
    ColumnInfo,
    build_table_spec,
    parse_declared_type,
    varchar,
)
from metasaas.engine.schema.types import (
    NO_DEFAULT,
    EntityDef,
    FieldDef,
    FieldType,
    RelationshipDef,
    RelationshipType,
    SortSpec,
    Transition,
    WorkflowDef,
    field,
)


class TestNaming:
    """Tests for name derivation helpers."""

    def test_snake_case(self):
        """camelCase and PascalCase become snake_case."""
        assert to_snake_case("firstName") == "first_name"
        assert to_snake_case("ProjectTask") == "project_task"
        assert to_snake_case("title") == "title"

    def test_camel_case_from_column(self):
        assert from_column_name("first_name") == "firstName"
        assert from_column_name("created_at") == "createdAt"

    def test_pluralize(self):
        """Plural rules used for table names."""
        assert pluralize("task") == "tasks"
        assert pluralize("category") == "categories"
        assert pluralize("day") == "days"
        assert pluralize("address") == "addresses"
        assert pluralize("box") == "boxes"

    def test_table_name(self):
        assert to_table_name("Task") == "tasks"
        assert to_table_name("ProjectTask") == "project_tasks"
        assert to_table_name("Category") == "categories"


class TestFieldDef:
    """Tests for FieldDef."""

    def test_defaults(self):
        """A bare field is optional with no default."""
        f = field("title", "text")
        assert f.type == FieldType.TEXT
        assert f.required is False
        assert f.default is NO_DEFAULT
        assert f.has_default is False

    def test_falsy_default_is_a_default(self):
        """False and 0 are declared defaults, not missing ones."""
        assert field("done", "boolean", default=False).has_default is True
        assert field("count", "number", default=0).has_default is True

    def test_invalid_type_rejected(self):
        with pytest.raises(ValueError, match="Invalid field type"):
            field("title", "string")

    def test_invalid_name_rejected(self):
        """Field names must start with a lowercase letter."""
        with pytest.raises(ValueError):
            field("Title", "text")
        with pytest.raises(ValueError):
            field("", "text")

    def test_options_only_on_enum(self):
        with pytest.raises(ValueError, match="only valid on enum"):
            field("title", "text", options=("a", "b"))

    def test_column_name(self):
        assert field("dueDate", "date").column_name == "due_date"

    def test_from_dict(self):
        """Both defaultValue and default spellings are accepted."""
        f = FieldDef.from_dict(
            {"name": "status", "type": "enum", "required": True,
             "defaultValue": "todo", "options": ["todo", "done"]}
        )
        assert f.default == "todo"
        assert f.options == ("todo", "done")

        g = FieldDef.from_dict({"name": "priority", "type": "number", "default": 3})
        assert g.default == 3


class TestRelationshipDef:
    """Tests for RelationshipDef naming."""

    def test_belongs_to_names(self):
        """Input name and column name derive from the target entity."""
        rel = RelationshipDef(RelationshipType.BELONGS_TO, "Project")
        assert rel.input_name == "projectId"
        assert rel.column_name == "project_id"

    def test_alias(self):
        """An alias renames both the input and the column."""
        rel = RelationshipDef(RelationshipType.BELONGS_TO, "User", alias="owner")
        assert rel.input_name == "ownerId"
        assert rel.column_name == "owner_id"

    def test_foreign_key_only_renames_column(self):
        """The input name ignores foreign_key."""
        rel = RelationshipDef(RelationshipType.BELONGS_TO, "Project", foreign_key="parent_project")
        assert rel.input_name == "projectId"
        assert rel.column_name == "parent_project"

    def test_type_spellings(self):
        assert RelationshipType.from_str("belongsTo") == RelationshipType.BELONGS_TO
        assert RelationshipType.from_str("has_many") == RelationshipType.HAS_MANY
        with pytest.raises(ValueError):
            RelationshipType.from_str("owns")


class TestWorkflowDef:
    """Tests for WorkflowDef helpers."""

    @pytest.fixture
    def workflow(self):
        return WorkflowDef(
            field="status",
            transitions=(
                Transition("todo", "in_progress"),
                Transition("in_progress", "done", requires=("assignee",)),
                Transition("in_progress", "todo"),
            ),
        )

    def test_entry_states(self, workflow):
        """Entry states are the distinct from-states in declaration order."""
        assert workflow.entry_states() == ["todo", "in_progress"]

    def test_targets_from(self, workflow):
        assert workflow.targets_from("in_progress") == ["done", "todo"]
        assert workflow.targets_from("done") == []

    def test_find(self, workflow):
        assert workflow.find("in_progress", "done").requires == ("assignee",)
        assert workflow.find("todo", "done") is None


class TestEntityDef:
    """Tests for EntityDef validation and serialization."""

    def test_duplicate_field_names(self):
        with pytest.raises(ValueError, match="Duplicate field names"):
            EntityDef(
                name="Task",
                plural_name="Tasks",
                fields=(field("title", "text"), field("title", "text")),
            )

    def test_name_must_be_pascal_case(self):
        with pytest.raises(ValueError, match="PascalCase"):
            EntityDef(name="task", plural_name="Tasks")

    def test_plural_required(self):
        with pytest.raises(ValueError, match="plural_name"):
            EntityDef(name="Task", plural_name="")

    def test_workflow_field_must_exist(self):
        with pytest.raises(ValueError, match="unknown field"):
            EntityDef(
                name="Task",
                plural_name="Tasks",
                fields=(field("title", "text"),),
                workflows=(WorkflowDef("status", (Transition("a", "b"),)),),
            )

    def test_sort_direction_validated(self):
        with pytest.raises(ValueError):
            SortSpec("title", "up")

    def test_dict_round_trip(self):
        """from_dict(to_dict()) reproduces the declaration."""
        entity = EntityDef(
            name="Task",
            plural_name="Tasks",
            description="Work item",
            fields=(
                field("title", "text", required=True),
                field("status", "enum", required=True, default="todo", options=("todo", "done")),
            ),
            relationships=(RelationshipDef(RelationshipType.BELONGS_TO, "Project"),),
            workflows=(WorkflowDef("status", (Transition("todo", "done", triggers=("notify",)),)),),
            default_sort=SortSpec("title", "desc"),
        )
        assert EntityDef.from_dict(entity.to_dict()) == entity

    def test_operation_prefix(self):
        assert EntityDef(name="ProjectTask", plural_name="Project Tasks").operation_prefix == "projecttask"


class TestTableSpec:
    """Tests for build_table_spec."""

    @pytest.fixture
    def task(self):
        return EntityDef(
            name="Task",
            plural_name="Tasks",
            fields=(
                field("title", "text", required=True),
                field("contactEmail", "email"),
                field("website", "url"),
                field("budget", "currency"),
                field("dueDate", "date"),
                field("done", "boolean", default=False),
                field("status", "enum", options=("todo", "done")),
                field("notes", "rich_text"),
            ),
            relationships=(
                RelationshipDef(RelationshipType.BELONGS_TO, "Project"),
                RelationshipDef(RelationshipType.HAS_MANY, "Comment"),
            ),
        )

    def test_system_columns_first(self, task):
        spec = build_table_spec(task)
        assert spec.table == "tasks"
        assert spec.column_names[:4] == ["id", "tenant_id", "created_at", "updated_at"]
        assert spec.column("id").primary_key is True

    def test_field_types(self, task):
        """Every logical type maps to its physical column type."""
        spec = build_table_spec(task)
        assert spec.column("title").type == TEXT
        assert spec.column("title").not_null is True
        assert spec.column("contact_email").type == varchar(512)
        assert spec.column("website").type == varchar(512)
        assert spec.column("budget").type == NUMERIC
        assert spec.column("due_date").type == TIMESTAMPTZ
        assert spec.column("done").type == BOOLEAN
        assert spec.column("status").type == varchar(255)
        assert spec.column("notes").type == TEXT

    def test_fk_column(self, task):
        """belongsTo adds a nullable UUID column; hasMany adds nothing."""
        spec = build_table_spec(task)
        fk = spec.column("project_id")
        assert fk.type == UUID
        assert fk.references == "projects"
        assert fk.not_null is False
        assert fk.api_name == "projectId"
        assert spec.column("comment_id") is None
        assert spec.column_names[-1] == "project_id"

    def test_fk_skipped_when_field_exists(self):
        """A declared field with the FK column name wins."""
        entity = EntityDef(
            name="Task",
            plural_name="Tasks",
            fields=(field("projectId", "text"),),
            relationships=(RelationshipDef(RelationshipType.BELONGS_TO, "Project"),),
        )
        spec = build_table_spec(entity)
        assert spec.column_names.count("project_id") == 1
        assert spec.column("project_id").type == TEXT
        assert spec.aliases == ()

    def test_fk_input_aliases_covering_field(self):
        """The link input still reaches a column declared under another name."""
        entity = EntityDef(
            name="Task",
            plural_name="Tasks",
            fields=(field("project_id", "text"),),
            relationships=(RelationshipDef(RelationshipType.BELONGS_TO, "Project"),),
        )
        spec = build_table_spec(entity)
        assert spec.column_names.count("project_id") == 1
        assert spec.aliases == (("projectId", "project_id"),)
        assert spec.by_api_name("projectId") is spec.column("project_id")
        assert spec.by_api_name("project_id") is spec.column("project_id")

    def test_parse_declared_type(self):
        assert parse_declared_type("VARCHAR(255)") == ("character varying", 255)
        assert parse_declared_type("timestamptz") == ("timestamp with time zone", None)
        assert parse_declared_type("BLOB") == ("blob", None)

    def test_column_info_from_declared(self):
        info = ColumnInfo.from_declared("status", "VARCHAR(64)", not_null=True)
        assert info.data_type == ColumnKind.VARCHAR.value
        assert info.max_length == 64
        assert info.not_null is True


class TestLoader:
    """Tests for declaration files."""

    @pytest.fixture
    def data_dir(self):
        """Create temporary data directory."""
        with tempfile.TemporaryDirectory() as tmpdir:
            yield tmpdir

    def test_load_yaml(self, data_dir):
        path = os.path.join(data_dir, "entities.yaml")
        with open(path, "w") as f:
            f.write(
                "entities:\n"
                "  - name: Task\n"
                "    pluralName: Tasks\n"
                "    fields:\n"
                "      - {name: title, type: text, required: true}\n"
                "      - {name: status, type: enum, defaultValue: todo, options: [todo, done]}\n"
                "    relationships:\n"
                "      - {type: belongsTo, entity: Project, as: parent}\n"
                "    workflows:\n"
                "      - field: status\n"
                "        transitions:\n"
                "          - {from: todo, to: done, requires: [title]}\n"
            )

        (task,) = load_entities(path)
        assert task.name == "Task"
        assert task.get_field("status").default == "todo"
        assert task.belongs_to[0].input_name == "parentId"
        assert task.workflows[0].transitions[0].requires == ("title",)

    def test_load_json_list(self, data_dir):
        """A bare JSON list is accepted."""
        path = os.path.join(data_dir, "entities.json")
        with open(path, "w") as f:
            json.dump([{"name": "Project", "pluralName": "Projects", "fields": []}], f)

        assert [e.name for e in load_entities(path)] == ["Project"]

    def test_invalid_entity(self):
        with pytest.raises(EntityFileError, match="Invalid entity Task"):
            parse_entities([{"name": "Task", "pluralName": "Tasks",
                             "fields": [{"name": "x", "type": "nope"}]}])

    def test_invalid_shape(self):
        with pytest.raises(EntityFileError):
            parse_entities({"things": []})

    def test_unparseable_file(self, data_dir):
        path = os.path.join(data_dir, "broken.yaml")
        with open(path, "w") as f:
            f.write("entities: [\n")
        with pytest.raises(EntityFileError, match="Cannot parse"):
            load_entities(path)
