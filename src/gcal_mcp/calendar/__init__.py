"""Google Calendar access: REST client, rate limiting, metrics and gateway."""

from gcal_mcp.calendar.api_client import CALENDAR_API_BASE, GoogleCalendarClient
from gcal_mcp.calendar.gateway import CalendarGateway, GoogleCalendarGateway
from gcal_mcp.calendar.metrics import InMemoryMetrics, LoggingMetrics, Observability
from gcal_mcp.calendar.rate_limiter import BackoffSchedule, RateLimiter

__all__ = [
    "CALENDAR_API_BASE",
    "BackoffSchedule",
    "CalendarGateway",
    "GoogleCalendarClient",
    "GoogleCalendarGateway",
    "InMemoryMetrics",
    "LoggingMetrics",
    "Observability",
    "RateLimiter",
]
