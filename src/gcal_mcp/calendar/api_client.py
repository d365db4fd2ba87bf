"""Thin HTTP client for the Google Calendar v3 REST API.

Returns raw JSON dictionaries; mapping to domain entities and error
classification are done by the gateway.
"""

import logging
from collections.abc import Awaitable, Callable
from typing import Any
from urllib.parse import quote

import httpx

logger = logging.getLogger(__name__)

CALENDAR_API_BASE = "https://www.googleapis.com/calendar/v3"

TokenProvider = Callable[[], Awaitable[str]]


class GoogleCalendarClient:
    """Authenticated access to the calendar endpoints used by gcal-mcp.

    Attributes:
        base_url: API root, overridable for tests.
    """

    def __init__(
        self,
        token_provider: TokenProvider,
        http_client: httpx.AsyncClient | None = None,
        base_url: str = CALENDAR_API_BASE,
    ) -> None:
        """Initialize the client.

        Args:
            token_provider: Async callable returning a valid bearer token.
            http_client: Shared client. Created lazily when not provided.
            base_url: API root URL.
        """
        self._token_provider = token_provider
        self._http_client = http_client
        self._owns_client = http_client is None
        self.base_url = base_url.rstrip("/")

    async def _get_http_client(self) -> httpx.AsyncClient:
        """Get or create shared HTTP client with connection pooling."""
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(
                http2=True,
                limits=httpx.Limits(max_connections=20, max_keepalive_connections=10),
                timeout=httpx.Timeout(30.0, connect=10.0),
            )
        return self._http_client

    async def close(self) -> None:
        """Close the HTTP client if this instance created it."""
        if self._http_client is not None and self._owns_client:
            await self._http_client.aclose()
            self._http_client = None

    async def _make_request(
        self,
        method: str,
        path: str,
        params: dict[str, Any] | None = None,
        json_data: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        """Make an authenticated request.

        Raises:
            httpx.HTTPStatusError: If the API answers with a non-2xx status.
            httpx.RequestError: If no response was received.
        """
        access_token = await self._token_provider()
        client = await self._get_http_client()

        response = await client.request(
            method=method,
            url=f"{self.base_url}{path}",
            params=params,
            json=json_data,
            headers={
                "Authorization": f"Bearer {access_token}",
                "Accept": "application/json",
            },
        )
        response.raise_for_status()
        result: dict[str, Any] = response.json()
        return result

    async def list_calendar_list(self) -> list[dict[str, Any]]:
        """Fetch every calendarList entry, following pagination."""
        items: list[dict[str, Any]] = []
        params: dict[str, Any] = {}
        while True:
            page = await self._make_request("GET", "/users/me/calendarList", params=params)
            items.extend(page.get("items") or [])
            page_token = page.get("nextPageToken")
            if not page_token:
                return items
            params = {"pageToken": page_token}

    async def get_calendar(self, calendar_id: str) -> dict[str, Any]:
        """Fetch calendar metadata."""
        return await self._make_request("GET", f"/calendars/{quote(calendar_id, safe='')}")

    async def insert_event(self, calendar_id: str, body: dict[str, Any]) -> dict[str, Any]:
        """Create an event and return the server's representation."""
        return await self._make_request(
            "POST", f"/calendars/{quote(calendar_id, safe='')}/events", json_data=body
        )
