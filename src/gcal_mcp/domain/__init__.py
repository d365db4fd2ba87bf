"""Domain model for Google Calendar resources."""

from gcal_mcp.domain.models import Calendar, Event, TimeSpec, parse_timestamp

__all__ = ["Calendar", "Event", "TimeSpec", "parse_timestamp"]
