"""Fake implementations of core ports for testing.

These in-memory implementations allow core domain logic to be tested
without external dependencies:

- FakeDocumentStorePort: In-memory project/task persistence with call
  tracking and failure injection
- FakeUserDirectoryPort: In-memory user profiles
- FakeConnection: Captured wire messages for assertion
- FakeConnectionRegistry: List-backed live connection registry
"""

from .realtime import FakeConnection, FakeConnectionRegistry
from .store import FakeDocumentStorePort
from .users import FakeUserDirectoryPort

__all__ = [
    "FakeConnection",
    "FakeConnectionRegistry",
    "FakeDocumentStorePort",
    "FakeUserDirectoryPort",
]
