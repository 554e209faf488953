"""
Integration tests for the migration CLI and engine boot.

Tests cover:
- plan / migrate / describe commands
- Loading declarations from a module
- Exit codes on bad input
- Engine start, dispatch and stop
- Logging setup
"""

import json
import logging
import os
import tempfile

import json_log_formatter
import pytest

from metasaas.engine.actions.types import Caller
from metasaas.engine.bus.audit import AuditQuery
from metasaas.engine.config import EngineConfig, ObservabilityConfig, StorageConfig
from metasaas.engine.main import Engine, setup_logging
from metasaas.engine.schema.types import EntityDef, field
from metasaas.engine.tools.migrate_cli import create_parser, main

ENTITIES_YAML = """
entities:
  - name: Contact
    pluralName: Contacts
    fields:
      - {name: fullName, type: text, required: true}
      - {name: email, type: email}
"""

TENANT = "11111111-1111-1111-1111-111111111111"


class TestMigrateCLI:
    """Tests for the metasaas-migrate command."""

    @pytest.fixture
    def data_dir(self):
        """Create temporary data directory."""
        with tempfile.TemporaryDirectory() as tmpdir:
            yield tmpdir

    @pytest.fixture
    def entities_file(self, data_dir):
        path = os.path.join(data_dir, "entities.yaml")
        with open(path, "w") as f:
            f.write(ENTITIES_YAML)
        return path

    def _run(self, argv):
        with pytest.raises(SystemExit) as exc:
            main(argv)
        return exc.value.code

    def test_plan_then_migrate(self, data_dir, entities_file, capsys):
        database = os.path.join(data_dir, "app.db")

        assert self._run(["plan", "-f", entities_file, "-d", database]) == 0
        planned = capsys.readouterr().out
        assert planned.startswith("Planned 2 statement(s):")
        assert 'CREATE TABLE IF NOT EXISTS "contacts"' in planned
        assert 'CREATE TABLE IF NOT EXISTS "audit_log"' in planned

        assert self._run(["migrate", "-f", entities_file, "-d", database]) == 0
        assert capsys.readouterr().out.startswith("Applied 2 statement(s):")

        assert self._run(["plan", "-f", entities_file, "-d", database]) == 0
        assert capsys.readouterr().out.strip() == "Schema is up to date"

    def test_describe(self, entities_file, capsys):
        assert self._run(["describe", "--file", entities_file]) == 0

        described = json.loads(capsys.readouterr().out)
        ids = [op["id"] for op in described["operations"]]
        assert ids == ["contact.create", "contact.list", "contact.get",
                       "contact.update", "contact.delete"]

    def test_module_source(self, data_dir, monkeypatch, capsys):
        with open(os.path.join(data_dir, "crm_entities.py"), "w") as f:
            f.write(
                "entities = [{'name': 'Deal', 'pluralName': 'Deals',\n"
                "             'fields': [{'name': 'amount', 'type': 'currency'}]}]\n"
            )
        monkeypatch.syspath_prepend(data_dir)

        assert self._run(["describe", "--module", "crm_entities"]) == 0
        assert "deal.create" in capsys.readouterr().out

    def test_missing_file(self, data_dir, capsys):
        code = self._run(["plan", "-f", os.path.join(data_dir, "nope.yaml")])
        assert code == 1
        assert "Cannot load entities" in capsys.readouterr().err

    def test_invalid_declarations(self, data_dir, capsys):
        path = os.path.join(data_dir, "bad.yaml")
        with open(path, "w") as f:
            f.write(
                "- name: Deal\n"
                "  pluralName: Deals\n"
                "  fields:\n"
                "    - {name: amount, type: number, defaultValue: lots}\n"
            )
        code = self._run(["migrate", "-f", path, "-d", os.path.join(data_dir, "app.db")])
        assert code == 1
        assert "Invalid declarations" in capsys.readouterr().err

    def test_source_required(self):
        with pytest.raises(SystemExit):
            create_parser().parse_args(["plan"])


class TestEngine:
    """Tests for Engine boot and shutdown."""

    @pytest.fixture
    def data_dir(self):
        """Create temporary data directory."""
        with tempfile.TemporaryDirectory() as tmpdir:
            yield tmpdir

    @pytest.fixture
    def config(self, data_dir):
        return EngineConfig(
            storage=StorageConfig(database_path=os.path.join(data_dir, "app.db"), wal_mode=False)
        )

    @pytest.fixture
    def contact(self):
        return EntityDef(
            name="Contact",
            plural_name="Contacts",
            fields=(field("fullName", "text", required=True),),
        )

    @pytest.mark.asyncio
    async def test_start_dispatch_stop(self, config, contact):
        engine = Engine(config)
        state = await engine.start([contact])

        assert engine.running is True
        assert engine.migration.created_tables == ["audit_log", "contacts"]
        assert state.entities.frozen is True
        assert state.entities.fingerprint.startswith("sha256:")

        caller = Caller(user_id="ann", tenant_id=TENANT)
        result = await state.dispatcher.dispatch("contact.create", {"fullName": "Ann"}, caller)
        assert result.success is True

        await engine.stop()
        assert engine.running is False
        page = await state.audit.query(AuditQuery(tenant_id=TENANT))
        assert page["total"] == 1
        assert page["data"][0]["operationId"] == "contact.create"

    @pytest.mark.asyncio
    async def test_restart_is_noop_migration(self, config, contact):
        first = Engine(config)
        await first.start([contact])
        await first.stop()

        second = Engine(config)
        await second.start([contact])
        assert second.migration.statements == []
        await second.stop()

    @pytest.mark.asyncio
    async def test_start_twice(self, config, contact):
        engine = Engine(config)
        await engine.start([contact])
        with pytest.raises(RuntimeError):
            await engine.start([contact])
        await engine.stop()


class TestSetupLogging:
    """Tests for setup_logging."""

    @pytest.fixture
    def root_handlers(self):
        root = logging.getLogger()
        handlers, level = root.handlers[:], root.level
        yield
        root.handlers = handlers
        root.setLevel(level)

    def test_json(self, root_handlers):
        setup_logging(EngineConfig())
        (handler,) = logging.getLogger().handlers
        assert isinstance(handler.formatter, json_log_formatter.JSONFormatter)

    def test_text(self, root_handlers):
        setup_logging(EngineConfig(observability=ObservabilityConfig(log_level="DEBUG", log_format="text")))
        root = logging.getLogger()
        assert root.level == logging.DEBUG
        assert not isinstance(root.handlers[0].formatter, json_log_formatter.JSONFormatter)
        assert logging.getLogger("httpx").level == logging.WARNING
