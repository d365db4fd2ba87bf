"""Google Calendar MCP server for Claude Desktop integration.

Exposes two tools, ``list_calendars`` and ``create_event``, over the MCP
stdio transport. OAuth tokens come from the encrypted TokenStorage and are
refreshed automatically by the OAuthManager.
"""

import asyncio
import json
import logging
from typing import Any

from mcp.server import Server
from mcp.server.stdio import stdio_server
from mcp.types import TextContent, Tool
from pydantic import ValidationError as PydanticValidationError

from gcal_mcp.auth import OAuthManager, TokenStorage
from gcal_mcp.calendar import (
    GoogleCalendarClient,
    GoogleCalendarGateway,
    InMemoryMetrics,
    RateLimiter,
)
from gcal_mcp.calendar.gateway import CalendarGateway
from gcal_mcp.config import ClientConfig, Settings
from gcal_mcp.domain.models import Event
from gcal_mcp.errors import GCalMCPError, ValidationError
from gcal_mcp.usecases import CreateEventUseCase, GetCalendarsUseCase

logger = logging.getLogger(__name__)

SERVER_NAME = "gcal-mcp"

TIME_SPEC_SCHEMA: dict[str, Any] = {
    "type": "object",
    "properties": {
        "dateTime": {
            "type": "string",
            "description": "RFC 3339 timestamp with offset (e.g., '2025-06-01T10:00:00+09:00')",
        },
        "date": {
            "type": "string",
            "description": "Date for all-day events (YYYY-MM-DD)",
        },
        "timeZone": {
            "type": "string",
            "description": "IANA time zone (e.g., 'Asia/Tokyo', optional)",
        },
    },
}


class CalendarServer:
    """MCP server for the Google Calendar tools.

    Attributes:
        server: MCP Server instance.
        gateway: Calendar gateway used by the tools.
        metrics: Metrics collected by the gateway.
        manager: OAuth manager backing the default gateway; None when a
            gateway is injected.
    """

    def __init__(
        self,
        gateway: CalendarGateway | None = None,
        settings: Settings | None = None,
        client_config: ClientConfig | None = None,
    ) -> None:
        """Initialize the server.

        Args:
            gateway: Gateway to use. Built from stored credentials when omitted.
            settings: Runtime settings. Read from the environment when omitted.
            client_config: OAuth client config, used to refresh tokens.
        """
        self.settings = settings or Settings.from_env()
        self.server = Server(SERVER_NAME)
        self.metrics = InMemoryMetrics()
        self._client: GoogleCalendarClient | None = None
        self.manager: OAuthManager | None = None

        if gateway is None:
            self.manager = OAuthManager(storage=TokenStorage(), client_config=client_config)
            self._client = GoogleCalendarClient(self.manager.get_access_token)
            gateway = GoogleCalendarGateway(
                self._client,
                limiter=RateLimiter(qps=self.settings.qps, burst=self.settings.burst),
                metrics=self.metrics,
                verify_calendar_access=self.settings.verify_calendar_access,
            )

        self.gateway = gateway
        self.get_calendars = GetCalendarsUseCase(gateway)
        self.create_event = CreateEventUseCase(gateway)
        self._setup_handlers()

    async def close(self) -> None:
        """Close the HTTP client and release resources."""
        if self._client is not None:
            await self._client.close()

    def _setup_handlers(self) -> None:
        """Register MCP tool handlers."""

        @self.server.list_tools()
        async def list_tools() -> list[Tool]:
            return [
                Tool(
                    name="list_calendars",
                    description="List all calendars accessible by the authenticated user",
                    inputSchema={"type": "object", "properties": {}, "required": []},
                ),
                Tool(
                    name="create_event",
                    description="Create a new event in the given calendar",
                    inputSchema={
                        "type": "object",
                        "properties": {
                            "calendar_id": {
                                "type": "string",
                                "description": "Calendar ID (use 'primary' for the main calendar)",
                            },
                            "title": {"type": "string", "description": "Event title"},
                            "description": {
                                "type": "string",
                                "description": "Event description (optional)",
                            },
                            "start": {**TIME_SPEC_SCHEMA, "description": "Start time"},
                            "end": {**TIME_SPEC_SCHEMA, "description": "End time"},
                            "location": {
                                "type": "string",
                                "description": "Event location (optional)",
                            },
                            "attendees": {
                                "type": "array",
                                "items": {"type": "string"},
                                "description": "Attendee email addresses (optional)",
                            },
                        },
                        "required": ["calendar_id", "title", "start", "end"],
                    },
                ),
            ]

        @self.server.call_tool()
        async def call_tool(name: str, arguments: dict[str, Any]) -> list[TextContent]:
            result = await self.handle_tool(name, arguments or {})
            return [TextContent(type="text", text=json.dumps(result, indent=2))]

    async def handle_tool(self, name: str, arguments: dict[str, Any]) -> dict[str, Any]:
        """Run a tool and return its JSON-ready result or error envelope."""
        try:
            return await self._dispatch_tool(name, arguments)
        except GCalMCPError as e:
            logger.error("Tool %s failed: %s", name, e)
            return e.to_dict()
        except Exception as e:
            logger.exception("Error calling tool %s", name)
            return {"error": str(e), "kind": "internal"}

    async def _dispatch_tool(self, name: str, arguments: dict[str, Any]) -> dict[str, Any]:
        handlers = {
            "list_calendars": self._list_calendars,
            "create_event": self._create_event,
        }
        handler = handlers.get(name)
        if handler is None:
            raise ValueError(f"Unknown tool: {name}")
        return await handler(arguments)

    async def _list_calendars(self, arguments: dict[str, Any]) -> dict[str, Any]:
        calendars = await self.get_calendars.execute()
        return {
            "status": "success",
            "count": len(calendars),
            "calendars": [c.model_dump(by_alias=True) for c in calendars],
        }

    async def _create_event(self, arguments: dict[str, Any]) -> dict[str, Any]:
        calendar_id = arguments.get("calendar_id", "")
        logger.info("create_event calendar_id=%s title=%r", calendar_id, arguments.get("title"))

        try:
            event = Event.model_validate(
                {
                    "title": arguments.get("title") or "",
                    "description": arguments.get("description"),
                    "start": arguments.get("start") or {},
                    "end": arguments.get("end") or {},
                    "location": arguments.get("location"),
                    "attendees": arguments.get("attendees") or [],
                }
            )
        except PydanticValidationError as e:
            raise ValidationError("arguments", "malformed create_event arguments", e) from e

        created = await self.create_event.execute(calendar_id, event)
        return {
            "status": "success",
            "event": created.model_dump(by_alias=True, exclude_none=True),
        }

    async def run(self) -> None:
        """Run the MCP server using stdio transport."""
        try:
            async with stdio_server() as (read_stream, write_stream):
                await self.server.run(
                    read_stream,
                    write_stream,
                    self.server.create_initialization_options(),
                )
        finally:
            await self.close()


def main(client_config: ClientConfig | None = None) -> None:
    """Entry point for the Google Calendar MCP server."""
    settings = Settings.from_env()
    logging.basicConfig(
        level=getattr(logging, settings.log_level, logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    server = CalendarServer(settings=settings, client_config=client_config)
    asyncio.run(server.run())


if __name__ == "__main__":
    main()
