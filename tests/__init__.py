"""
MergeDoc Test Suite.

This package contains:
- unit/: Unit tests (no external dependencies; ClickHouse HTTP is mocked)
- integration/: Integration tests (embedded SQLite backend)
- e2e/: End-to-end tests against a real ClickHouse server
"""
