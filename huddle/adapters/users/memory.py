"""In-memory user directory adapter.

Implements UserDirectoryPort over a dictionary, optionally seeded from a
JSON file of ``[{"id": ..., "name": ...}, ...]`` records.
"""

import json
import logging
from collections.abc import Iterable
from pathlib import Path

from huddle.core.models import UserProfile
from huddle.core.ports import UserDirectoryPort

logger = logging.getLogger(__name__)


class InMemoryUserDirectory(UserDirectoryPort):
    """User directory held in process memory."""

    def __init__(self, users: Iterable[UserProfile] = ()):
        self._users: dict[str, UserProfile] = {}
        for user in users:
            self.add_user(user)

    @classmethod
    def from_json_file(cls, path: str) -> "InMemoryUserDirectory":
        """Build a directory from a JSON seed file.

        Raises:
            FileNotFoundError: If ``path`` does not exist.
            ValueError: If the file is not a list of id/name records.
        """
        records = json.loads(Path(path).read_text(encoding="utf-8"))
        if not isinstance(records, list):
            raise ValueError(f"User seed file {path} must contain a JSON list")
        try:
            users = [UserProfile(id=str(r["id"]), name=str(r["name"])) for r in records]
        except (KeyError, TypeError) as e:
            raise ValueError(f"Malformed user record in {path}: {e}") from e

        logger.info(f"Loaded {len(users)} users from {path}")
        return cls(users)

    def add_user(self, user: UserProfile) -> None:
        self._users[user.id] = user

    def remove_user(self, user_id: str) -> None:
        self._users.pop(user_id, None)

    async def find_user(self, user_id: str) -> UserProfile | None:
        return self._users.get(user_id)
