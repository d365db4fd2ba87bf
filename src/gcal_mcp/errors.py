"""Error hierarchy for gcal-mcp.

Every failure raised out of the gateway, limiter or token store carries an
``ErrorKind`` so callers can tell a bad calendar ID apart from a transient
upstream failure without string matching. The underlying exception (if any)
is chained as ``__cause__`` and also kept on ``cause`` for diagnostics.
"""

from enum import Enum
from typing import Any


class ErrorKind(str, Enum):
    """Classification attached to every gcal-mcp error."""

    VALIDATION = "validation"
    RATE_LIMIT = "rate_limit"
    CANCELLED = "cancelled"
    API = "api_error"
    CRYPTO = "crypto"
    NOT_FOUND = "not_found"
    DECODE = "decode"
    CONFIG = "config"
    OAUTH = "oauth"


class GCalMCPError(Exception):
    """Base exception for all gcal-mcp errors.

    Attributes:
        message: Human-readable error description.
        kind: Classification of the failure.
        cause: Underlying exception, if any.
        context: Extra diagnostic fields (field name, operation, ...).
    """

    kind: ErrorKind = ErrorKind.API

    def __init__(
        self,
        message: str,
        cause: BaseException | None = None,
        context: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.cause = cause
        self.context = context or {}

    def __str__(self) -> str:
        text = f"{self.kind.value}: {self.message}"
        if self.cause is not None:
            text = f"{text}: {self.cause}"
        return text

    def to_dict(self) -> dict[str, Any]:
        """Convert error to a dictionary for the tool layer."""
        return {
            "error": str(self),
            "kind": self.kind.value,
            **self.context,
        }


class ValidationError(GCalMCPError):
    """Caller-supplied data is structurally or semantically invalid."""

    kind = ErrorKind.VALIDATION

    def __init__(
        self,
        field: str,
        message: str,
        cause: BaseException | None = None,
    ) -> None:
        super().__init__(f"{field}: {message}", cause=cause, context={"field": field})
        self.field = field


class RateLimitExceededError(GCalMCPError):
    """Admission denied by the rate limiter. No network call was made."""

    kind = ErrorKind.RATE_LIMIT

    def __init__(self, operation: str) -> None:
        super().__init__("rate limit exceeded", context={"operation": operation})
        self.operation = operation


class OperationCancelledError(GCalMCPError):
    """The caller's cancel signal or deadline fired while waiting or in flight.

    ``reason`` is ``"cancelled"`` for an explicit cancel signal and
    ``"deadline_exceeded"`` when the timeout elapsed.
    """

    kind = ErrorKind.CANCELLED

    CANCELLED = "cancelled"
    DEADLINE_EXCEEDED = "deadline_exceeded"

    def __init__(
        self,
        operation: str,
        reason: str,
        cause: BaseException | None = None,
    ) -> None:
        super().__init__(
            f"{operation} aborted: {reason}",
            cause=cause,
            context={"operation": operation, "reason": reason},
        )
        self.operation = operation
        self.reason = reason


class APIError(GCalMCPError):
    """Upstream calendar service failure not otherwise classified.

    ``status_code`` is the upstream HTTP status, or ``None`` when the request
    never produced a response (connection reset, DNS failure, ...).
    """

    kind = ErrorKind.API

    def __init__(
        self,
        operation: str,
        message: str,
        status_code: int | None,
        cause: BaseException | None = None,
    ) -> None:
        super().__init__(
            message,
            cause=cause,
            context={"operation": operation, "status_code": status_code},
        )
        self.operation = operation
        self.status_code = status_code

    def __str__(self) -> str:
        return f"{self.kind.value}: {self.operation}: {self.message} (code: {self.status_code})"


class CryptoError(GCalMCPError):
    """Stored credential could not be decrypted (truncated, tampered or wrong key)."""

    kind = ErrorKind.CRYPTO


class TokenNotFoundError(GCalMCPError):
    """No persisted credential exists."""

    kind = ErrorKind.NOT_FOUND


class DecodeError(GCalMCPError):
    """Decrypted credential blob is not a valid credential document."""

    kind = ErrorKind.DECODE


class ConfigError(GCalMCPError):
    """Startup configuration is missing or malformed."""

    kind = ErrorKind.CONFIG

    def __init__(self, field: str, message: str, cause: BaseException | None = None) -> None:
        super().__init__(f"{field}: {message}", cause=cause, context={"field": field})
        self.field = field


class OAuthError(GCalMCPError):
    """OAuth authorization, exchange or refresh failed."""

    kind = ErrorKind.OAUTH

    def __init__(self, operation: str, message: str, cause: BaseException | None = None) -> None:
        super().__init__(
            f"{operation}: {message}", cause=cause, context={"operation": operation}
        )
        self.operation = operation
