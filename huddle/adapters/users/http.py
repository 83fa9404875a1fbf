"""Remote user directory adapter.

Implements UserDirectoryPort against an HTTP user service that exposes
``GET /users/{id}`` returning ``{"id": ..., "name": ...}``. Only the
public profile fields are read; anything else in the payload is ignored.
"""

import logging
import urllib.parse

import httpx

from huddle.core.models import UserProfile
from huddle.core.ports import UserDirectoryPort

logger = logging.getLogger(__name__)


class HttpUserDirectory(UserDirectoryPort):
    """Resolves user ids through a remote user service."""

    def __init__(
        self,
        base_url: str,
        api_token: str = "",
        timeout_seconds: float = 5.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        """Initialize the HTTP user directory.

        Args:
            base_url: Base URL of the user service.
            api_token: Optional bearer token sent with every request.
            timeout_seconds: Per-request timeout.
            transport: Optional httpx transport (used to mock the service).
        """
        self.base_url = base_url.rstrip("/")
        self.api_token = api_token
        self.timeout_seconds = timeout_seconds
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create async HTTP client.

        Returns:
            httpx.AsyncClient configured with the service's authentication.
        """
        if self._client is None:
            headers = {"Accept": "application/json"}
            if self.api_token:
                headers["Authorization"] = f"Bearer {self.api_token}"
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                headers=headers,
                timeout=self.timeout_seconds,
                transport=self._transport,
            )
        return self._client

    async def close(self) -> None:
        """Close the HTTP client."""
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def find_user(self, user_id: str) -> UserProfile | None:
        """Look up a user on the remote service.

        Returns:
            The user's profile, or None when the service answers 404.

        Raises:
            httpx.HTTPError: If the service is unreachable or answers with
                any other error status.
        """
        client = await self._get_client()
        try:
            response = await client.get(f"/users/{urllib.parse.quote(user_id, safe='')}")
        except httpx.RequestError as e:
            logger.error(
                f"User service request failed: {e}",
                extra={"user_id": user_id},
            )
            raise

        if response.status_code == 404:
            return None
        response.raise_for_status()

        data = response.json()
        return UserProfile(id=str(data.get("id", user_id)), name=str(data["name"]))
