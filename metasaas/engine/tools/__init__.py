"""
CLI tools for the entity engine.

- migrate: reconcile the database schema with entity declarations
- plan: print the statements a migration would run
- describe: print compiled operations as JSON

Invariants:
    - Tools work offline (no running engine required)
"""

from .migrate_cli import MigrateCLI

__all__ = ["MigrateCLI"]
