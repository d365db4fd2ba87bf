"""Shared pytest fixtures for gcal-mcp tests.

This module provides reusable fixtures for credentials, encrypted token
storage, rate limiters and a gateway wired to an in-process fake of the
Google Calendar REST API (httpx.MockTransport).
"""

import json
from collections.abc import Awaitable, Callable
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any
from unittest.mock import MagicMock
from urllib.parse import unquote

import httpx
import pytest

from gcal_mcp.auth.models import Credential
from gcal_mcp.auth.oauth_manager import OAuthManager
from gcal_mcp.auth.token_cipher import TokenCipher
from gcal_mcp.auth.token_storage import TokenStorage
from gcal_mcp.calendar.api_client import CALENDAR_API_BASE, GoogleCalendarClient
from gcal_mcp.calendar.gateway import GoogleCalendarGateway
from gcal_mcp.calendar.metrics import InMemoryMetrics
from gcal_mcp.calendar.rate_limiter import RateLimiter
from gcal_mcp.config import ClientConfig
from gcal_mcp.domain.models import Event, TimeSpec

# =============================================================================
# Credential Fixtures
# =============================================================================


@pytest.fixture
def valid_credential() -> Credential:
    """Create a valid, non-expired credential."""
    return Credential(
        access_token="test_access_token_abc123",
        refresh_token="test_refresh_token_xyz789",
        expires_at=datetime.now(timezone.utc) + timedelta(hours=1),
        scopes=["https://www.googleapis.com/auth/calendar.events"],
        token_type="Bearer",
    )


@pytest.fixture
def expired_credential() -> Credential:
    """Create an expired credential."""
    return Credential(
        access_token="expired_access_token",
        refresh_token="test_refresh_token",
        expires_at=datetime.now(timezone.utc) - timedelta(hours=1),
        scopes=["https://www.googleapis.com/auth/calendar.events"],
    )


# =============================================================================
# Token Storage Fixtures
# =============================================================================


@pytest.fixture
def fast_cipher() -> TokenCipher:
    """Cipher with a fixed passphrase and few PBKDF2 rounds to keep tests quick."""
    return TokenCipher(passphrase=b"gcal_mcp_test-host", iterations=1_000)


@pytest.fixture
def temp_config_dir(tmp_path: Path) -> Path:
    """Create a temporary configuration directory."""
    config_dir = tmp_path / "gcal_mcp"
    config_dir.mkdir(parents=True, mode=0o700)
    return config_dir


@pytest.fixture
def temp_token_path(temp_config_dir: Path) -> Path:
    return temp_config_dir / "token.enc"


@pytest.fixture
def token_storage(temp_token_path: Path, fast_cipher: TokenCipher) -> TokenStorage:
    """Create a TokenStorage instance with temporary storage."""
    return TokenStorage(token_path=temp_token_path, cipher=fast_cipher)


@pytest.fixture
def client_credentials_file(tmp_path: Path) -> Path:
    """Write a valid OAuth client credentials file."""
    path = tmp_path / "credentials.json"
    path.write_text(
        json.dumps(
            {
                "client_id": "test-client-id.apps.googleusercontent.com",
                "client_secret": "test-client-secret",  # pragma: allowlist secret
                "redirect_url": "http://127.0.0.1:8080/",
            }
        )
    )
    return path


@pytest.fixture
def client_config() -> ClientConfig:
    return ClientConfig(
        client_id="test-client-id.apps.googleusercontent.com",
        client_secret="test-client-secret",  # pragma: allowlist secret
        redirect_url="http://127.0.0.1:8080/",
    )


# =============================================================================
# OAuth Manager Fixtures
# =============================================================================


@pytest.fixture
def oauth_manager(token_storage: TokenStorage, client_config: ClientConfig) -> OAuthManager:
    """Create an OAuthManager with temporary encrypted storage."""
    return OAuthManager(storage=token_storage, client_config=client_config)


@pytest.fixture
def mock_google_credentials() -> MagicMock:
    """Create mock google-auth Credentials as returned by the OAuth flow."""
    mock_creds = MagicMock()
    mock_creds.token = "mock_access_token"
    mock_creds.refresh_token = "mock_refresh_token"
    mock_creds.expiry = datetime.now(timezone.utc).replace(tzinfo=None) + timedelta(hours=1)
    mock_creds.scopes = ["https://www.googleapis.com/auth/calendar.events"]
    return mock_creds


# =============================================================================
# Domain Fixtures
# =============================================================================


@pytest.fixture
def meeting_event() -> Event:
    """A valid timed event with location and attendees."""
    return Event(
        title="Design review",
        description="Quarterly architecture review",
        start=TimeSpec(date_time="2025-06-01T10:00:00+09:00", time_zone="Asia/Tokyo"),
        end=TimeSpec(date_time="2025-06-01T11:00:00+09:00", time_zone="Asia/Tokyo"),
        location="Room 4F",
        attendees=["alice@example.com", "bob@example.com"],
    )


# =============================================================================
# Fake Google Calendar API
# =============================================================================


class FakeCalendarAPI:
    """In-process stand-in for the Calendar v3 endpoints used by the gateway.

    Attributes:
        requests: Every request received, in order.
        calendars: Items returned by calendarList.list.
        known_calendar_ids: IDs answered by calendars.get (others 404).
        insert_status: Status returned by events.insert.
    """

    def __init__(self) -> None:
        self.requests: list[httpx.Request] = []
        self.calendars: list[dict[str, Any]] = [
            {
                "id": "primary",
                "summary": "Work",
                "description": "Main calendar",
                "timeZone": "Asia/Tokyo",
            },
            {"id": "team@group.calendar.google.com", "summary": "Team"},
        ]
        self.known_calendar_ids = {"primary", "team@group.calendar.google.com"}
        self.insert_status = 200
        self.list_status = 200
        self.inserted_bodies: list[dict[str, Any]] = []

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = request.url.path.removeprefix("/calendar/v3")

        if path == "/users/me/calendarList":
            if self.list_status != 200:
                return _error_response(self.list_status, "backendError")
            return httpx.Response(200, json={"items": self.calendars})

        if request.method == "GET" and path.startswith("/calendars/"):
            calendar_id = unquote(path.split("/")[2])
            if calendar_id not in self.known_calendar_ids:
                return _error_response(404, "notFound")
            return httpx.Response(200, json={"id": calendar_id, "summary": calendar_id})

        if request.method == "POST" and path.endswith("/events"):
            body = json.loads(request.content)
            self.inserted_bodies.append(body)
            if self.insert_status != 200:
                return _error_response(self.insert_status, "forbidden")
            return httpx.Response(200, json={"id": "evt_001", "htmlLink": "https://x", **body})

        return _error_response(404, "notFound")

    @property
    def network_calls(self) -> int:
        return len(self.requests)


def _error_response(status: int, reason: str) -> httpx.Response:
    return httpx.Response(
        status,
        json={
            "error": {
                "code": status,
                "message": f"{reason} from fake API",
                "errors": [{"reason": reason}],
            }
        },
    )


@pytest.fixture
def fake_api() -> FakeCalendarAPI:
    return FakeCalendarAPI()


@pytest.fixture
def metrics() -> InMemoryMetrics:
    return InMemoryMetrics()


@pytest.fixture
def make_gateway(
    fake_api: FakeCalendarAPI, metrics: InMemoryMetrics
) -> Callable[..., GoogleCalendarGateway]:
    """Factory building a gateway against the fake API."""

    def _make(
        limiter: RateLimiter | None = None,
        handler: Callable[[httpx.Request], Any] | None = None,
        verify_calendar_access: bool = True,
        token_provider: Callable[[], Awaitable[str]] | None = None,
    ) -> GoogleCalendarGateway:
        async def default_token_provider() -> str:
            return "mock_access_token_12345"

        http_client = httpx.AsyncClient(transport=httpx.MockTransport(handler or fake_api.handler))
        client = GoogleCalendarClient(
            token_provider or default_token_provider,
            http_client=http_client,
            base_url=CALENDAR_API_BASE,
        )
        return GoogleCalendarGateway(
            client,
            limiter=limiter or RateLimiter(qps=100, burst=100),
            metrics=metrics,
            verify_calendar_access=verify_calendar_access,
        )

    return _make
