"""
Entity engine - boot orchestration.

Boot sequence:
1. Load configuration and set up logging
2. Create the engine's own tables (audit log)
3. Reconcile entity tables with their declarations
4. Bootstrap application state (entities, operations, subscribers)
5. Freeze the registries

Usage:
    metasaas-engine path/to/entities.yaml

Configuration is entirely via environment variables.
See config.py for all available settings.

Invariants:
    - Schema reconciliation finishes before any dispatch is accepted
    - Reconciliation warnings are logged and never stop the boot
    - Shutdown waits for background audit writes and webhook deliveries

How to change safely:
    - Keep reconcile before bootstrap; operations assume their tables exist
    - Test the shutdown sequence when adding background work
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import signal
import sys
from typing import Iterable, Optional

import json_log_formatter

from .actions.types import CompiledOperation
from .bus.events import EventSubscriber
from .config import EngineConfig
from .migrate.backend import SqliteSchemaBackend
from .migrate.platform import ensure_platform_tables
from .migrate.reconciler import MigrationReport, SchemaReconciler
from .schema.loader import EntityFileError, load_entities
from .schema.types import EntityDef
from .state import AppState

logger = logging.getLogger(__name__)


def setup_logging(config: EngineConfig) -> None:
    """Configure logging based on configuration.

    Args:
        config: Engine configuration
    """
    level = getattr(logging, config.observability.log_level.upper(), logging.INFO)

    if config.observability.log_format == "json":
        formatter: logging.Formatter = json_log_formatter.JSONFormatter()
    else:
        formatter = logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")

    handler = logging.StreamHandler()
    handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    root_logger.handlers = [handler]

    # Reduce noise from libraries
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)


class Engine:
    """Engine orchestrator.

    Manages the lifecycle of the engine:
    - Platform and entity table reconciliation
    - Application state bootstrap
    - Draining background work on shutdown

    Attributes:
        config: Engine configuration
        state: Application state (available after start())
        migration: Report of the boot-time reconciliation

    Example:
        >>> engine = Engine()
        >>> await engine.start([Task, Project])
        >>> result = await engine.state.dispatcher.dispatch("task.list", {}, caller)
        >>> await engine.stop()
    """

    def __init__(self, config: Optional[EngineConfig] = None) -> None:
        """Initialize the engine.

        Args:
            config: Optional configuration (loaded from env if not provided)
        """
        self.config = config or EngineConfig.from_env()
        self.state: Optional[AppState] = None
        self.migration: Optional[MigrationReport] = None
        self._running = False
        self._shutdown_event = asyncio.Event()

    @property
    def running(self) -> bool:
        return self._running

    async def start(
        self,
        entities: Iterable[EntityDef],
        operations: Iterable[CompiledOperation] = (),
        subscribers: Iterable[EventSubscriber] = (),
    ) -> AppState:
        """Migrate the schema and bring the application state up.

        Args:
            entities: Entity declarations
            operations: Hand-written operations
            subscribers: Event subscribers

        Returns:
            The bootstrapped, frozen application state
        """
        if self._running:
            raise RuntimeError("Engine is already running")

        entities = list(entities)
        logger.info("Starting entity engine", extra={"entities": len(entities)})
        self.config.log_config()

        state = AppState(self.config)
        reconciler = SchemaReconciler(SqliteSchemaBackend(state.database))

        platform = ensure_platform_tables(reconciler)
        report = reconciler.reconcile(entities)
        report.statements[:0] = platform.statements
        report.warnings[:0] = platform.warnings
        report.created_tables[:0] = platform.created_tables
        report.altered_tables[:0] = platform.altered_tables
        self.migration = report

        state.bootstrap(entities, operations=operations, subscribers=subscribers)
        fingerprint = state.freeze()

        self.state = state
        self._running = True
        logger.info(
            "Entity engine started",
            extra={
                "fingerprint": fingerprint,
                "operations": len(state.operations),
                "migration_warnings": len(report.warnings),
            },
        )
        return state

    async def stop(self) -> None:
        """Stop the engine gracefully."""
        if not self._running or self.state is None:
            return

        logger.info("Stopping entity engine")
        await self.state.dispatcher.drain()
        await self.state.side_effects.close()

        self._running = False
        logger.info("Entity engine stopped")

    async def wait_for_shutdown(self) -> None:
        await self._shutdown_event.wait()

    def request_shutdown(self) -> None:
        """Request graceful shutdown."""
        self._shutdown_event.set()


def create_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="metasaas-engine",
        description="Boot the entity engine: migrate the schema and serve in-process dispatch",
    )
    parser.add_argument("file", help="Entity declaration file (YAML or JSON)")
    return parser


def main(argv: Optional[list[str]] = None) -> None:
    """Main entry point."""
    args = create_parser().parse_args(argv)

    try:
        config = EngineConfig.from_env()
    except ValueError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        sys.exit(1)

    setup_logging(config)

    try:
        entities = load_entities(args.file)
    except (OSError, EntityFileError) as e:
        print(f"Cannot load entities: {e}", file=sys.stderr)
        sys.exit(1)

    loop = asyncio.new_event_loop()
    asyncio.set_event_loop(loop)
    engine = Engine(config)

    def handle_signal(sig: int) -> None:
        logger.info(f"Received signal {sig}, initiating shutdown")
        engine.request_shutdown()

    for sig in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(sig, handle_signal, sig)

    try:
        loop.run_until_complete(engine.start(entities))
        loop.run_until_complete(engine.wait_for_shutdown())
    except KeyboardInterrupt:
        pass
    finally:
        loop.run_until_complete(engine.stop())
        loop.close()


if __name__ == "__main__":
    main()
