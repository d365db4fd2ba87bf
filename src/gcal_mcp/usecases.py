"""Application use cases on top of a CalendarGateway."""

import asyncio

from gcal_mcp.calendar.gateway import CalendarGateway
from gcal_mcp.domain.models import Calendar, Event
from gcal_mcp.errors import ValidationError


class GetCalendarsUseCase:
    """List calendars and reject entries missing an ID or title."""

    def __init__(self, gateway: CalendarGateway) -> None:
        self.gateway = gateway

    async def execute(
        self,
        cancel_event: asyncio.Event | None = None,
        timeout: float | None = None,
    ) -> list[Calendar]:
        calendars = await self.gateway.list_calendars(cancel_event=cancel_event, timeout=timeout)
        for calendar in calendars:
            calendar.validate_entity()
        return calendars


class CreateEventUseCase:
    """Validate an event, create it and validate the echoed result."""

    def __init__(self, gateway: CalendarGateway) -> None:
        self.gateway = gateway

    async def execute(
        self,
        calendar_id: str,
        event: Event | None,
        cancel_event: asyncio.Event | None = None,
        timeout: float | None = None,
    ) -> Event:
        if event is None:
            raise ValidationError("event", "event cannot be None")
        event.validate_entity()

        created = await self.gateway.create_event(
            calendar_id, event, cancel_event=cancel_event, timeout=timeout
        )
        created.validate_entity()
        return created
