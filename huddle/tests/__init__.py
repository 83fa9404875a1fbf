"""Test suite for the Huddle collaboration service.

Organized into three categories:

1. core/: Unit tests for core domain logic
   - No third-party dependencies, fast execution
   - Uses in-memory fakes for ports

2. adapters/: Integration tests for adapter implementations
   - In-memory and SQLite stores, HTTP app, WebSocket, user directories
   - Validates adapter behavior and error handling

3. fakes/: Port implementations for testing
   - In-memory implementations of DocumentStorePort, UserDirectoryPort, etc.
   - Used by core unit tests
"""
