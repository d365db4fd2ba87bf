"""Credential models for OAuth token persistence."""

from datetime import datetime, timedelta, timezone
from enum import Enum

from pydantic import BaseModel, Field, field_validator


class TokenStatus(str, Enum):
    """State of the persisted credential."""

    VALID = "valid"
    EXPIRED = "expired"
    MISSING = "missing"
    INVALID = "invalid"


class Credential(BaseModel):
    """OAuth2 bearer/refresh token pair with its expiry.

    Attributes:
        access_token: Bearer token sent with every API request.
        refresh_token: Token used to obtain a new access token, if granted.
        expires_at: Expiry instant (always timezone-aware).
        token_type: OAuth token type, normally "Bearer".
        scopes: Granted OAuth scopes.
    """

    access_token: str
    refresh_token: str | None = None
    expires_at: datetime
    token_type: str = "Bearer"
    scopes: list[str] = Field(default_factory=list)

    @field_validator("expires_at")
    @classmethod
    def _ensure_aware(cls, value: datetime) -> datetime:
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value

    def is_expired(self, buffer_seconds: int = 60) -> bool:
        """Check whether the access token is expired or about to expire.

        Args:
            buffer_seconds: Treat tokens expiring within this window as expired.
        """
        return datetime.now(timezone.utc) + timedelta(seconds=buffer_seconds) >= self.expires_at
