"""
Entity engine test suite.

This package contains:
- unit/: Unit tests (no I/O beyond temporary files)
- integration/: Integration tests (SQLite in a temporary directory)
"""
