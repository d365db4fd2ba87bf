"""Gateway between the domain model and the Google Calendar API.

This is the only component that talks to the calendar service. Every call:

1. counts an attempt,
2. asks the rate limiter for admission (no network call on rejection),
3. maps and validates the request,
4. dispatches with the caller's cancel signal and deadline attached,
5. classifies failures into gcal-mcp error kinds,
6. maps the response into fresh domain objects,
7. records latency whatever the outcome.

Retries are not performed here; callers decide whether to try again.
"""

import asyncio
import logging
import time
from collections.abc import Awaitable
from typing import Any, Protocol, TypeVar

import httpx

from gcal_mcp.calendar.api_client import GoogleCalendarClient
from gcal_mcp.calendar.metrics import (
    API_ERRORS_TOTAL,
    API_REQUESTS_TOTAL,
    API_RESPONSE_DURATION_SECONDS,
    RATE_LIMIT_HITS_TOTAL,
    InMemoryMetrics,
    Observability,
)
from gcal_mcp.calendar.rate_limiter import RateLimiter
from gcal_mcp.domain.models import Calendar, Event, TimeSpec
from gcal_mcp.errors import (
    APIError,
    GCalMCPError,
    OperationCancelledError,
    RateLimitExceededError,
    ValidationError,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")

OP_LIST_CALENDARS = "list_calendars"
OP_CREATE_EVENT = "create_event"
OP_VALIDATE_CALENDAR = "validate_calendar"


class CalendarGateway(Protocol):
    """Calendar capabilities needed by the use cases."""

    async def list_calendars(
        self,
        cancel_event: asyncio.Event | None = None,
        timeout: float | None = None,
    ) -> list[Calendar]: ...

    async def create_event(
        self,
        calendar_id: str,
        event: Event | None,
        cancel_event: asyncio.Event | None = None,
        timeout: float | None = None,
    ) -> Event: ...


# =============================================================================
# Wire mapping
# =============================================================================


def time_spec_to_wire(spec: TimeSpec) -> dict[str, str]:
    """Map a TimeSpec to Google's EventDateTime, copying each field independently."""
    wire: dict[str, str] = {}
    if spec.date_time:
        wire["dateTime"] = spec.date_time
    if spec.date:
        wire["date"] = spec.date
    if spec.time_zone:
        wire["timeZone"] = spec.time_zone
    return wire


def time_spec_from_wire(wire: dict[str, Any] | None) -> TimeSpec:
    wire = wire or {}
    return TimeSpec(
        date_time=wire.get("dateTime"),
        date=wire.get("date"),
        time_zone=wire.get("timeZone"),
    )


def event_to_wire(event: Event) -> dict[str, Any]:
    """Build the request body for events.insert.

    Attendees become one ``{"email": ...}`` entry each, in input order.
    """
    body: dict[str, Any] = {
        "summary": event.title,
        "start": time_spec_to_wire(event.start),
        "end": time_spec_to_wire(event.end),
    }
    if event.description is not None:
        body["description"] = event.description
    if event.location is not None:
        body["location"] = str(event.location)
    if event.attendees:
        body["attendees"] = [{"email": email} for email in event.attendees]
    return body


def event_from_wire(wire: dict[str, Any]) -> Event:
    """Map an events.insert response to a new Event.

    The returned object shares no containers with ``wire``.
    """
    return Event(
        id=wire.get("id"),
        title=wire.get("summary") or "",
        description=wire.get("description"),
        start=time_spec_from_wire(wire.get("start")),
        end=time_spec_from_wire(wire.get("end")),
        location=wire.get("location") or None,
        attendees=[a.get("email", "") for a in wire.get("attendees") or []],
    )


def calendar_from_wire(wire: dict[str, Any]) -> Calendar:
    return Calendar(
        id=wire.get("id") or "",
        title=wire.get("summary") or "",
        description=wire.get("description"),
        time_zone=wire.get("timeZone"),
    )


def _is_not_found(error: httpx.HTTPStatusError) -> bool:
    if error.response.status_code == 404:
        return True
    try:
        return "notFound" in error.response.text
    except httpx.ResponseNotRead:
        return False


def _upstream_message(error: httpx.HTTPStatusError) -> str:
    """Extract Google's error message from a failed response, if present."""
    try:
        payload = error.response.json()
    except ValueError:
        return error.response.reason_phrase or str(error)
    if isinstance(payload, dict) and isinstance(payload.get("error"), dict):
        message = payload["error"].get("message")
        if message:
            return str(message)
    return error.response.reason_phrase or str(error)


def _remaining(deadline: float | None) -> float | None:
    """Seconds left until a monotonic deadline, or None when unbounded."""
    if deadline is None:
        return None
    return max(0.0, deadline - time.monotonic())


async def run_cancellable(
    operation: str,
    awaitable: Awaitable[T],
    cancel_event: asyncio.Event | None,
    timeout: float | None,
) -> T:
    """Await ``awaitable`` unless the cancel event fires or the timeout elapses.

    Raises:
        OperationCancelledError: With reason "cancelled" or "deadline_exceeded".
    """
    if cancel_event is not None and cancel_event.is_set():
        if asyncio.iscoroutine(awaitable):
            awaitable.close()
        raise OperationCancelledError(operation, OperationCancelledError.CANCELLED)

    task = asyncio.ensure_future(awaitable)
    waiters: set[asyncio.Future[Any]] = {task}
    cancel_waiter: asyncio.Future[Any] | None = None
    if cancel_event is not None:
        cancel_waiter = asyncio.ensure_future(cancel_event.wait())
        waiters.add(cancel_waiter)

    try:
        done, _ = await asyncio.wait(waiters, timeout=timeout, return_when=asyncio.FIRST_COMPLETED)
    finally:
        if cancel_waiter is not None:
            cancel_waiter.cancel()
        if not task.done():
            task.cancel()
            await asyncio.gather(task, return_exceptions=True)

    if task in done:
        return task.result()
    if cancel_waiter is not None and cancel_waiter in done:
        raise OperationCancelledError(operation, OperationCancelledError.CANCELLED)
    raise OperationCancelledError(operation, OperationCancelledError.DEADLINE_EXCEEDED)


# =============================================================================
# Gateway
# =============================================================================


class GoogleCalendarGateway:
    """Production CalendarGateway backed by the Google Calendar REST API.

    Attributes:
        client: REST client used for outbound calls.
        limiter: Rate limiter consulted before every call.
        metrics: Observability sink.
        verify_calendar_access: Check the target calendar exists before
            creating an event.
    """

    def __init__(
        self,
        client: GoogleCalendarClient,
        limiter: RateLimiter | None = None,
        metrics: Observability | None = None,
        verify_calendar_access: bool = True,
    ) -> None:
        self.client = client
        self.limiter = limiter or RateLimiter()
        self.metrics: Observability = metrics or InMemoryMetrics()
        self.verify_calendar_access = verify_calendar_access

    def _admit(self, operation: str) -> None:
        if not self.limiter.allow():
            self.metrics.increment_counter(RATE_LIMIT_HITS_TOTAL)
            logger.warning("Rate limit exceeded for %s", operation)
            raise RateLimitExceededError(operation)

    def _record_error(self, operation: str, error: GCalMCPError) -> None:
        self.metrics.increment_counter(
            API_ERRORS_TOTAL, {"operation": operation, "error_type": error.kind.value}
        )

    async def _dispatch(
        self,
        operation: str,
        awaitable: Awaitable[T],
        cancel_event: asyncio.Event | None,
        timeout: float | None,
    ) -> T:
        """Run an outbound call and translate every failure to a gcal-mcp error.

        ``asyncio.CancelledError`` is not an ``Exception`` and propagates as is.
        """
        try:
            return await run_cancellable(operation, awaitable, cancel_event, timeout)
        except httpx.HTTPStatusError as e:
            raise APIError(
                operation,
                _upstream_message(e),
                e.response.status_code,
                cause=e,
            ) from e
        except httpx.RequestError as e:
            raise APIError(operation, f"request failed: {e}", None, cause=e) from e
        except GCalMCPError:
            raise
        except ValueError as e:
            raise APIError(operation, f"invalid response body: {e}", None, cause=e) from e
        except Exception as e:
            raise APIError(operation, f"request failed: {e}", None, cause=e) from e

    async def list_calendars(
        self,
        cancel_event: asyncio.Event | None = None,
        timeout: float | None = None,
    ) -> list[Calendar]:
        """List calendars visible to the authenticated user.

        Returns:
            Calendars in API order; an empty list when there are none.

        Raises:
            RateLimitExceededError: If the limiter rejects the call.
            OperationCancelledError: If cancelled or timed out.
            APIError: On any upstream failure.
        """
        operation = OP_LIST_CALENDARS
        start = time.perf_counter()
        self.metrics.increment_counter(API_REQUESTS_TOTAL, {"operation": operation})
        try:
            self._admit(operation)
            items = await self._dispatch(
                operation, self.client.list_calendar_list(), cancel_event, timeout
            )
            return [calendar_from_wire(item) for item in items]
        except GCalMCPError as e:
            self._record_error(operation, e)
            logger.error("%s failed: %s", operation, e)
            raise
        finally:
            self.metrics.observe_histogram(
                API_RESPONSE_DURATION_SECONDS,
                {"operation": operation},
                time.perf_counter() - start,
            )

    async def check_calendar_access(
        self,
        calendar_id: str,
        cancel_event: asyncio.Event | None = None,
        timeout: float | None = None,
    ) -> None:
        """Verify the calendar exists and is readable.

        Raises:
            ValidationError: If the calendar is not found or not accessible.
            APIError: On any other upstream failure.
        """
        try:
            await self._dispatch(
                OP_VALIDATE_CALENDAR,
                self.client.get_calendar(calendar_id),
                cancel_event,
                timeout,
            )
        except APIError as e:
            if isinstance(e.cause, httpx.HTTPStatusError) and _is_not_found(e.cause):
                raise ValidationError(
                    "calendar_id",
                    f"calendar '{calendar_id}' not found or access denied. "
                    "Please verify the calendar ID and ensure you have access to it",
                    cause=e.cause,
                ) from e
            raise APIError(
                OP_VALIDATE_CALENDAR,
                f"failed to validate calendar access: {e.message}",
                e.status_code,
                cause=e.cause,
            ) from e

    async def create_event(
        self,
        calendar_id: str,
        event: Event | None,
        cancel_event: asyncio.Event | None = None,
        timeout: float | None = None,
    ) -> Event:
        """Create an event in a calendar.

        Args:
            calendar_id: Target calendar ID.
            event: Event to create; ``id`` is ignored.
            cancel_event: Aborts the call when set.
            timeout: Seconds before the call is abandoned. One deadline
                covers the access check and the insert together.

        Returns:
            A new Event with the server-assigned ID.

        Raises:
            RateLimitExceededError: If the limiter rejects the call.
            ValidationError: If the event or calendar ID is invalid.
            OperationCancelledError: If cancelled or timed out.
            APIError: On any other upstream failure.
        """
        operation = OP_CREATE_EVENT
        start = time.perf_counter()
        deadline = None if timeout is None else time.monotonic() + timeout
        self.metrics.increment_counter(API_REQUESTS_TOTAL, {"operation": operation})
        try:
            self._admit(operation)

            if event is None:
                raise ValidationError("event", "event cannot be None")
            if not calendar_id:
                raise ValidationError("calendar_id", "calendar ID cannot be empty")

            body = event_to_wire(event)
            event.validate_entity()

            if self.verify_calendar_access:
                await self.check_calendar_access(
                    calendar_id, cancel_event, _remaining(deadline)
                )

            try:
                created = await self._dispatch(
                    operation,
                    self.client.insert_event(calendar_id, body),
                    cancel_event,
                    _remaining(deadline),
                )
            except APIError as e:
                if e.status_code == 404:
                    raise APIError(
                        operation,
                        f"calendar '{calendar_id}' not found or access denied. "
                        "Please check the calendar ID and permissions",
                        e.status_code,
                        cause=e.cause,
                    ) from e
                raise

            result = event_from_wire(created)
            logger.info("Created event %s in calendar %s", result.id, calendar_id)
            return result
        except GCalMCPError as e:
            self._record_error(operation, e)
            logger.error("%s failed: %s", operation, e)
            raise
        finally:
            self.metrics.observe_histogram(
                API_RESPONSE_DURATION_SECONDS,
                {"operation": operation},
                time.perf_counter() - start,
            )
