"""
MetaSaaS entity engine - declare business entities once, get typed operations,
a uniform dispatch pipeline and an evolving relational schema.

This package implements:
- Entity declarations (fields, relationships, workflows) and their registry
- An operation compiler turning each entity into create/list/get/update/delete
- A dispatch pipeline every caller goes through: validate -> authorize ->
  execute -> side effects -> audit
- A schema reconciler that creates and evolves SQLite tables without data loss
- Workflow transition validation inside the update path

Architecture:
    ┌──────────────┐     ┌──────────────┐     ┌──────────────────┐
    │ EntityDef    │────▶│  Compiler    │────▶│ OperationRegistry│
    │ (YAML / py)  │     │              │     │                  │
    └──────┬───────┘     └──────────────┘     └────────┬─────────┘
           │                                           │
           ▼                                           ▼
    ┌──────────────┐                          ┌──────────────────┐
    │ Reconciler   │                          │   Dispatcher     │──▶ EventBus
    │ (DDL)        │                          │                  │──▶ AuditLog
    └──────┬───────┘                          └────────┬─────────┘
           │                                           │
           ▼                                           ▼
    ┌─────────────────────────────────────────────────────────────┐
    │                SQLite (tenant_id on every row)              │
    └─────────────────────────────────────────────────────────────┘

Invariants:
    - Every state change goes through dispatch
    - Every row carries tenant_id and every query filters on it
    - Schema evolution never drops a column or a row

How to change safely:
    - New field types need a pydantic annotation and a physical column type
    - Keep the error taxonomy closed; adapters map it to protocol codes
"""

from ._version import __version__

__all__ = ["__version__"]
