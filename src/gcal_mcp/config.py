"""Runtime configuration for gcal-mcp.

Environment Variables:
    GCAL_CREDENTIALS_PATH: Path to the OAuth client JSON file (required).
        The file holds client_id, client_secret and redirect_url, and may
        override auth_url / token_url.
    GCAL_MCP_CONFIG_DIR: Directory holding the encrypted token
        (default: ~/.config/gcal_mcp).
    GCAL_MCP_LOG_LEVEL: Logging level name (default: INFO).
    GCAL_MCP_QPS: Rate limiter refill rate in requests per second (default: 1).
    GCAL_MCP_BURST: Rate limiter burst capacity (default: 10).
    GCAL_MCP_VERIFY_CALENDAR_ACCESS: Check the target calendar exists
        before creating an event (default: true).
"""

import os
from pathlib import Path

from pydantic import BaseModel, Field
from pydantic import ValidationError as PydanticValidationError

from gcal_mcp.errors import ConfigError

CREDENTIALS_PATH_ENV = "GCAL_CREDENTIALS_PATH"

GOOGLE_AUTH_URL = "https://accounts.google.com/o/oauth2/auth"
GOOGLE_TOKEN_URL = "https://oauth2.googleapis.com/token"  # nosec B105 - public endpoint

# Google Calendar API quota is 100 requests / 100 s per user, i.e. 1 QPS.
DEFAULT_QPS = 1.0
DEFAULT_BURST = 10


class ClientConfig(BaseModel):
    """OAuth client configuration loaded from the credentials file."""

    client_id: str = ""
    client_secret: str = ""
    redirect_url: str = ""
    auth_url: str = GOOGLE_AUTH_URL
    token_url: str = GOOGLE_TOKEN_URL

    def validate_required(self) -> None:
        """Raise ConfigError if a required field is empty."""
        for field in ("client_id", "client_secret", "redirect_url"):
            if not getattr(self, field):
                raise ConfigError(field, "is required in the credentials file")

    def to_flow_config(self) -> dict:
        """Build the client config dict expected by google-auth-oauthlib."""
        return {
            "web": {
                "client_id": self.client_id,
                "client_secret": self.client_secret,
                "auth_uri": self.auth_url,
                "token_uri": self.token_url,
                "redirect_uris": [self.redirect_url],
            }
        }


def get_credentials_path() -> Path:
    """Resolve the credentials file path from the environment.

    Raises:
        ConfigError: If the variable is unset or the file does not exist.
    """
    value = os.environ.get(CREDENTIALS_PATH_ENV)
    if not value:
        raise ConfigError(CREDENTIALS_PATH_ENV, "environment variable is not set")

    path = Path(value).expanduser()
    if not path.is_file():
        raise ConfigError(CREDENTIALS_PATH_ENV, f"credentials file does not exist at {path}")
    return path


def load_client_config(path: Path | None = None) -> ClientConfig:
    """Load and validate the OAuth client configuration.

    Args:
        path: Credentials file. Defaults to :func:`get_credentials_path`.

    Raises:
        ConfigError: If the file cannot be read, parsed or is incomplete.
    """
    path = path or get_credentials_path()
    try:
        raw = path.read_text()
    except OSError as e:
        raise ConfigError("credentials_file", f"failed to read {path}", e) from e

    try:
        config = ClientConfig.model_validate_json(raw)
    except PydanticValidationError as e:
        raise ConfigError("credentials_file", f"failed to parse {path}", e) from e

    config.validate_required()
    return config


class Settings(BaseModel):
    """Process-level settings read from the environment."""

    log_level: str = "INFO"
    qps: float = Field(default=DEFAULT_QPS, gt=0)
    burst: int = Field(default=DEFAULT_BURST, ge=1)
    verify_calendar_access: bool = True

    @classmethod
    def from_env(cls) -> "Settings":
        """Build settings from GCAL_MCP_* environment variables.

        Raises:
            ConfigError: If a variable holds an invalid value.
        """
        values: dict[str, str] = {}
        for field, env in (
            ("log_level", "GCAL_MCP_LOG_LEVEL"),
            ("qps", "GCAL_MCP_QPS"),
            ("burst", "GCAL_MCP_BURST"),
            ("verify_calendar_access", "GCAL_MCP_VERIFY_CALENDAR_ACCESS"),
        ):
            if env in os.environ:
                values[field] = os.environ[env]

        try:
            settings = cls.model_validate(values)
        except PydanticValidationError as e:
            raise ConfigError("settings", "invalid GCAL_MCP_* environment value", e) from e

        settings.log_level = settings.log_level.upper()
        return settings
