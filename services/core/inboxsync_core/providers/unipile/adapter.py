"""Unipile messaging API adapter.

Implements the ProviderAdapter interface on top of the Unipile REST API,
mapping raw responses to normalized DTOs through ``providers.fields``.

Usage:
    adapter = UnipileAdapter(api_key="...", dsn="api1.unipile.com:13111")

    probe = await adapter.test_connectivity("acc_123")
    chats = await adapter.list_chats("acc_123", limit=50)
    messages = await adapter.list_chat_messages(chats.items[0].external_id, "acc_123")
"""

import base64
import logging
from typing import Any, Optional

import httpx

from inboxsync_core.providers.base import (
    AttachmentContent,
    ConnectivityResult,
    PaginatedResult,
    ProviderAdapter,
    ProviderAttendee,
    ProviderChat,
    ProviderMessage,
    ProviderProfile,
)
from inboxsync_core.providers.fields import (
    parse_attendee,
    parse_chat,
    parse_message,
    parse_profile,
)

logger = logging.getLogger(__name__)


class ProviderAPIError(Exception):
    """Raised when a provider API call fails."""

    def __init__(self, message: str, status_code: int = 0):
        super().__init__(message)
        self.status_code = status_code


class UnipileAdapter(ProviderAdapter):
    """Unipile provider adapter.

    Every request opens a short-lived httpx client. Timeouts and transport
    retries are left to httpx; non-2xx responses raise ProviderAPIError.
    """

    API_PREFIX = "/api/v1"

    def __init__(
        self,
        api_key: str,
        dsn: str,
        timeout: float = 30.0,
    ):
        """Initialize the Unipile adapter.

        Args:
            api_key: Unipile API access token.
            dsn: Unipile host and port, e.g. "api1.unipile.com:13111".
            timeout: Request timeout in seconds.
        """
        self.api_key = api_key
        self.dsn = dsn
        self.timeout = timeout

    @property
    def provider_id(self) -> str:
        """Return the provider identifier."""
        return "unipile"

    @property
    def base_url(self) -> str:
        dsn = self.dsn if self.dsn.startswith("http") else f"https://{self.dsn}"
        return f"{dsn.rstrip('/')}{self.API_PREFIX}"

    def _get_headers(self) -> dict[str, str]:
        """Get headers for API requests."""
        return {
            "X-API-KEY": self.api_key,
            "Accept": "application/json",
        }

    async def _api_request(
        self,
        method: str,
        endpoint: str,
        params: Optional[dict] = None,
    ) -> httpx.Response:
        """Make an API request.

        Args:
            method: HTTP method (GET, POST, etc.).
            endpoint: API endpoint path.
            params: Query parameters; None values are dropped.

        Returns:
            The HTTP response.

        Raises:
            ProviderAPIError: On a non-2xx response.
        """
        url = f"{self.base_url}{endpoint}"
        query = {k: v for k, v in (params or {}).items() if v is not None}

        async with httpx.AsyncClient(timeout=self.timeout) as client:
            response = await client.request(
                method, url, headers=self._get_headers(), params=query
            )

        if response.status_code >= 400:
            raise ProviderAPIError(
                f"{method} {endpoint} failed with status {response.status_code}",
                response.status_code,
            )

        return response

    async def _get_json(self, endpoint: str, params: Optional[dict] = None) -> dict[str, Any]:
        response = await self._api_request("GET", endpoint, params)
        return response.json()

    @staticmethod
    def _page(data: dict[str, Any], items: list) -> PaginatedResult:
        cursor = data.get("cursor")
        return PaginatedResult(items=items, next_cursor=cursor, has_more=bool(cursor))

    async def test_connectivity(self, account_id: str) -> ConnectivityResult:
        """Probe the upstream account via GET /accounts/{id}."""
        try:
            info = await self._get_json(f"/accounts/{account_id}")
        except (ProviderAPIError, httpx.HTTPError) as e:
            logger.warning(f"Connectivity test failed for account {account_id}: {e}")
            return ConnectivityResult(connected=False, error=str(e))

        logger.info(
            f"Account {account_id} reachable (status={info.get('status')}, "
            f"type={info.get('type')})"
        )
        return ConnectivityResult(connected=True, account_info=info)

    async def list_chats(
        self,
        account_id: str,
        cursor: Optional[str] = None,
        limit: int = 50,
    ) -> PaginatedResult[ProviderChat]:
        """List the account's chats."""
        data = await self._get_json(
            "/chats",
            {"account_id": account_id, "cursor": cursor, "limit": limit},
        )
        chats = [parse_chat(item) for item in data.get("items") or []]
        return self._page(data, chats)

    async def list_chat_attendees(
        self,
        chat_id: str,
        account_id: str,
        limit: int = 100,
    ) -> PaginatedResult[ProviderAttendee]:
        """List participants of a chat."""
        data = await self._get_json(
            f"/chats/{chat_id}/attendees",
            {"account_id": account_id, "limit": limit},
        )
        attendees = [parse_attendee(item) for item in data.get("items") or []]
        return self._page(data, attendees)

    async def list_chat_messages(
        self,
        chat_id: str,
        account_id: str,
        cursor: Optional[str] = None,
        limit: int = 50,
    ) -> PaginatedResult[ProviderMessage]:
        """List messages in a chat."""
        data = await self._get_json(
            f"/chats/{chat_id}/messages",
            {"account_id": account_id, "cursor": cursor, "limit": limit},
        )
        messages = [parse_message(item, chat_id=chat_id) for item in data.get("items") or []]
        return self._page(data, messages)

    async def get_message_attachment(
        self,
        message_id: str,
        attachment_id: str,
        account_id: str,
    ) -> AttachmentContent:
        """Download one attachment and return it base64-encoded."""
        response = await self._api_request(
            "GET",
            f"/messages/{message_id}/attachments/{attachment_id}",
            {"account_id": account_id},
        )
        mime_type = response.headers.get("content-type")
        if mime_type:
            mime_type = mime_type.split(";")[0].strip()

        return AttachmentContent(
            content_base64=base64.b64encode(response.content).decode("ascii"),
            mime_type=mime_type or None,
        )

    async def get_profile(self, identity: str, account_id: str) -> ProviderProfile:
        """Fetch another user's profile."""
        data = await self._get_json(f"/users/{identity}", {"account_id": account_id})
        return parse_profile(data)

    async def get_own_profile(self, account_id: str) -> ProviderProfile:
        """Fetch the account owner's own profile."""
        data = await self._get_json("/users/me", {"account_id": account_id})
        return parse_profile(data)
