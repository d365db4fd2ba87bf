"""OAuth authentication and encrypted credential storage for gcal-mcp.

Quick Start:
    ```python
    from gcal_mcp.auth import OAuthManager, TokenStorage, ensure_config_dir
    from gcal_mcp.config import load_client_config

    ensure_config_dir()
    manager = OAuthManager(TokenStorage(), client_config=load_client_config())

    # Authenticate (opens the browser)
    credential = await manager.authenticate()

    # Get a bearer token for API use, refreshing when expired
    access_token = await manager.get_access_token()
    ```
"""

from gcal_mcp.auth.models import Credential, TokenStatus
from gcal_mcp.auth.oauth_manager import CALENDAR_SCOPES, OAuthManager
from gcal_mcp.auth.token_cipher import TokenCipher
from gcal_mcp.auth.token_storage import TokenStorage, ensure_config_dir, get_token_path

__all__ = [
    "OAuthManager",
    "TokenStorage",
    "TokenCipher",
    "Credential",
    "TokenStatus",
    "CALENDAR_SCOPES",
    "ensure_config_dir",
    "get_token_path",
]
