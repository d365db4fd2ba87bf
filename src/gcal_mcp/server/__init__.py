"""MCP server exposing Google Calendar tools.

Tools:
- list_calendars: calendars visible to the authenticated user
- create_event: create an event with attendees, location and all-day support

Transport: Stdio (for Claude Desktop)
Authentication: OAuth 2.0 with encrypted token storage and automatic refresh
"""

from gcal_mcp.server.calendar_server import CalendarServer, main


def create_server() -> CalendarServer:
    """Create a Google Calendar MCP server from stored credentials.

    Example:
        >>> server = create_server()
        >>> asyncio.run(server.run())
    """
    return CalendarServer()


__all__ = ["create_server", "CalendarServer", "main"]
