"""OAuth manager for Google Calendar authentication.

Runs the desktop OAuth2 flow with google-auth-oauthlib, persists the
resulting credential through the encrypted :class:`TokenStorage` and
refreshes it when it expires.

The client ID, secret and redirect URL come from the JSON file named by
GCAL_CREDENTIALS_PATH (see :mod:`gcal_mcp.config`).
"""

import asyncio
import logging
import secrets
import webbrowser
from datetime import datetime, timedelta, timezone
from http.server import BaseHTTPRequestHandler, HTTPServer
from pathlib import Path
from urllib.parse import parse_qs, urlparse

from google.auth.exceptions import RefreshError, TransportError
from google.auth.transport.requests import Request
from google.oauth2.credentials import Credentials
from google_auth_oauthlib.flow import Flow

from gcal_mcp.auth.models import Credential, TokenStatus
from gcal_mcp.auth.token_storage import TokenStorage
from gcal_mcp.config import GOOGLE_TOKEN_URL, ClientConfig
from gcal_mcp.errors import CryptoError, DecodeError, OAuthError, TokenNotFoundError

logger = logging.getLogger(__name__)

# Read calendars, write events
CALENDAR_SCOPES = [
    "https://www.googleapis.com/auth/calendar.readonly",
    "https://www.googleapis.com/auth/calendar.events",
]

DEFAULT_OAUTH_HOST = "127.0.0.1"
DEFAULT_OAUTH_PORT = 8080
CALLBACK_TIMEOUT_SECONDS = 300


class OAuthManager:
    """OAuth authentication manager for Google Calendar.

    Attributes:
        storage: Encrypted token storage.
        client_config: OAuth client configuration, needed for the flow and
            for refreshing.

    Example:
        ```python
        manager = OAuthManager(client_config=load_client_config())

        credential = await manager.authenticate()
        access_token = await manager.get_access_token()
        ```
    """

    def __init__(
        self,
        storage: TokenStorage | None = None,
        client_config: ClientConfig | None = None,
    ) -> None:
        self.storage = storage or TokenStorage()
        self.client_config = client_config
        self._refresh_lock = asyncio.Lock()
        self._credential: Credential | None = None

    @property
    def token_path(self) -> Path:
        return self.storage.token_path

    def has_valid_tokens(self) -> bool:
        return self.storage.get_status() == TokenStatus.VALID

    def _credentials_to_token(self, credentials: Credentials, scopes: list[str]) -> Credential:
        """Convert google-auth Credentials to a Credential.

        google-auth reports naive UTC expiry times; they are made aware here.
        A missing expiry defaults to one hour from now.
        """
        if credentials.expiry:
            expires_at = credentials.expiry
            if expires_at.tzinfo is None:
                expires_at = expires_at.replace(tzinfo=timezone.utc)
        else:
            expires_at = datetime.now(timezone.utc) + timedelta(hours=1)

        return Credential(  # nosec B106 - "Bearer" is the OAuth token type
            access_token=credentials.token,
            refresh_token=credentials.refresh_token,
            expires_at=expires_at,
            scopes=list(scopes),
            token_type="Bearer",
        )

    def _token_to_credentials(self, token: Credential) -> Credentials:
        config = self.client_config
        return Credentials(
            token=token.access_token,
            refresh_token=token.refresh_token,
            token_uri=config.token_url if config else GOOGLE_TOKEN_URL,
            client_id=config.client_id if config else None,
            client_secret=config.client_secret if config else None,
            scopes=token.scopes,
            # google-auth compares against naive UTC
            expiry=token.expires_at.astimezone(timezone.utc).replace(tzinfo=None),
        )

    async def authenticate(self, scopes: list[str] | None = None) -> Credential:
        """Perform the complete OAuth2 authorization flow.

        Opens the browser, waits for the callback on the redirect URL, swaps
        the code for tokens and stores them encrypted.

        Raises:
            OAuthError: If no client config is set or any step fails.
        """
        if self.client_config is None:
            raise OAuthError("authorization", "client configuration is required")
        self.client_config.validate_required()

        if scopes is None:
            scopes = CALENDAR_SCOPES

        loop = asyncio.get_running_loop()
        try:
            credentials = await loop.run_in_executor(
                None, self._run_oauth_flow, self.client_config, scopes
            )
        except OAuthError:
            raise
        except Exception as e:
            raise OAuthError("token_exchange", "failed to exchange code for token", e) from e

        token = self._credentials_to_token(credentials, scopes)
        self.storage.save(token)
        self._credential = token
        logger.info("OAuth authentication completed")
        return token

    def _run_oauth_flow(self, client_config: ClientConfig, scopes: list[str]) -> Credentials:
        """Run the OAuth flow (blocking operation).

        Returns:
            Google OAuth2 credentials.
        """
        redirect_uri = client_config.redirect_url
        flow = Flow.from_client_config(
            client_config.to_flow_config(),
            scopes=scopes,
            redirect_uri=redirect_uri,
        )

        state = secrets.token_urlsafe(32)
        auth_url, _ = flow.authorization_url(
            access_type="offline",
            prompt="consent",
            state=state,
        )

        parsed = urlparse(redirect_uri)
        host = parsed.hostname or DEFAULT_OAUTH_HOST
        port = parsed.port or DEFAULT_OAUTH_PORT
        callback_path = parsed.path or "/"

        auth_code: list[str | None] = [None]
        error_message: list[str | None] = [None]

        class OAuthCallbackHandler(BaseHTTPRequestHandler):
            """HTTP handler for the OAuth redirect."""

            def log_message(self, format: str, *args) -> None:
                pass

            def _reply(self, status: int, body: bytes) -> None:
                self.send_response(status)
                self.send_header("Content-type", "text/html")
                self.end_headers()
                self.wfile.write(body)

            def do_GET(self) -> None:
                request_parsed = urlparse(self.path)
                if request_parsed.path != callback_path:
                    self._reply(404, b"Not Found")
                    return

                query_params = parse_qs(request_parsed.query)

                if "error" in query_params:
                    error_message[0] = query_params["error"][0]
                    self._reply(
                        400,
                        b"<html><body><h1>Authentication Failed</h1>"
                        b"<p>Please close this window and try again.</p></body></html>",
                    )
                    return

                if query_params.get("state", [None])[0] != state:
                    error_message[0] = "state mismatch"
                    self._reply(400, b"<html><body><h1>Invalid state</h1></body></html>")
                    return

                if "code" in query_params:
                    auth_code[0] = query_params["code"][0]
                    self._reply(
                        200,
                        b"<html><body><h1>Authentication Successful!</h1>"
                        b"<p>You can close this window and return to the terminal.</p>"
                        b"</body></html>",
                    )
                else:
                    self._reply(
                        400,
                        b"<html><body><h1>Authentication Failed</h1>"
                        b"<p>No authorization code received.</p></body></html>",
                    )

        server = HTTPServer((host, port), OAuthCallbackHandler)
        server.timeout = CALLBACK_TIMEOUT_SECONDS

        logger.info("Opening browser for Google authorization")
        print(f"If browser doesn't open, visit: {auth_url}")
        if not webbrowser.open(auth_url):
            logger.info("Could not open a browser; visit %s manually", auth_url)

        try:
            server.handle_request()
        finally:
            server.server_close()

        if error_message[0]:
            raise OAuthError("authorization", f"authorization failed: {error_message[0]}")
        if not auth_code[0]:
            raise OAuthError("authorization", "no authorization code received from Google")

        flow.fetch_token(code=auth_code[0])
        return flow.credentials

    async def _current_credential(self) -> Credential:
        """Return the cached credential, loading it from storage once.

        Decryption runs in the default executor so the PBKDF2 derivation does
        not block the event loop.

        Raises:
            TokenNotFoundError: If nothing is stored.
            CryptoError: If the stored blob cannot be decrypted.
            DecodeError: If the decrypted payload is malformed.
        """
        if self._credential is None:
            loop = asyncio.get_running_loop()
            self._credential = await loop.run_in_executor(None, self.storage.load)
        return self._credential

    async def refresh_if_needed(self) -> Credential | None:
        """Refresh the current credential if expired or about to expire.

        Returns:
            The current or refreshed credential, or None if nothing is
            stored or it cannot be refreshed.

        Raises:
            OAuthError: If the token endpoint cannot be reached.
        """
        async with self._refresh_lock:
            try:
                stored = await self._current_credential()
            except TokenNotFoundError:
                return None

            if not stored.is_expired():
                return stored

            if stored.refresh_token is None:
                logger.warning("Credential expired and has no refresh token")
                return None

            credentials = self._token_to_credentials(stored)
            loop = asyncio.get_running_loop()
            try:
                await loop.run_in_executor(None, credentials.refresh, Request())
            except RefreshError as e:
                logger.warning("Token refresh failed: %s", e)
                return None
            except TransportError as e:
                raise OAuthError("token_refresh", "could not reach the token endpoint", e) from e

            new_token = self._credentials_to_token(credentials, stored.scopes)
            if new_token.refresh_token is None:
                new_token.refresh_token = stored.refresh_token
            self.storage.save(new_token)
            self._credential = new_token
            logger.info("Refreshed OAuth access token")
            return new_token

    async def get_access_token(self) -> str:
        """Get a valid access token, refreshing if necessary.

        The stored credential is decrypted on first use and kept in memory
        until it is refreshed.

        Raises:
            OAuthError: If no usable credential is available.
        """
        try:
            current = await self._current_credential()
        except TokenNotFoundError as e:
            raise OAuthError(
                "token_load", "no stored credential; run 'gcal-mcp setup' first", e
            ) from e
        except (CryptoError, DecodeError) as e:
            raise OAuthError(
                "token_load",
                "stored credential is invalid or corrupted; run 'gcal-mcp setup' again",
                e,
            ) from e

        if not current.is_expired():
            return current.access_token

        token = await self.refresh_if_needed()
        if token is None:
            raise OAuthError("token_refresh", "token refresh failed; run 'gcal-mcp setup' again")
        return token.access_token

    def get_status(self) -> tuple[TokenStatus, Credential | None]:
        """Get the status of the stored credential.

        Returns:
            Tuple of (TokenStatus, Credential or None).
        """
        status = self.storage.get_status()
        if status in (TokenStatus.MISSING, TokenStatus.INVALID):
            return (status, None)
        try:
            return (status, self.storage.load())
        except (TokenNotFoundError, CryptoError, DecodeError):
            return (TokenStatus.INVALID, None)
