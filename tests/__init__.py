"""
learnstore test suite.

This package contains:
- unit/: Unit tests (schema types, registry, sync states, clock, config)
- integration/: Integration tests against real SQLite store files and the API
"""
