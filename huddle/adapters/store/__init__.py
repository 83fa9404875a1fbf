"""Document store adapters for persistence and querying.

Implementations support multiple backends:
- In-memory (development and tests)
- SQLite (zero-config, single-file)
"""
