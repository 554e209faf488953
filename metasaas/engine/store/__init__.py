"""
Storage module for the entity engine.

- Database: SQLite file handle with per-operation connections
- TenantDataAccess: tenant-scoped CRUD used by operations

Invariants:
    - All tenants share one database; rows are separated by tenant_id
    - Multi-statement writes are transactional
"""

from .client import TenantDataAccess
from .database import Database

__all__ = ["Database", "TenantDataAccess"]
