"""Unit tests for GoogleCalendarGateway.

The gateway talks to FakeCalendarAPI through httpx.MockTransport, so every
request is observable and no network access is needed.
"""

import asyncio
import logging
from collections.abc import Callable
from typing import Any

import httpx
import pytest

from gcal_mcp.calendar.gateway import (
    GoogleCalendarGateway,
    event_from_wire,
    event_to_wire,
)
from gcal_mcp.calendar.metrics import (
    API_ERRORS_TOTAL,
    API_REQUESTS_TOTAL,
    API_RESPONSE_DURATION_SECONDS,
    RATE_LIMIT_HITS_TOTAL,
    InMemoryMetrics,
)
from gcal_mcp.calendar.rate_limiter import RateLimiter
from gcal_mcp.domain.models import Calendar, Event, TimeSpec
from gcal_mcp.errors import (
    APIError,
    OAuthError,
    OperationCancelledError,
    RateLimitExceededError,
    ValidationError,
)

GatewayFactory = Callable[..., GoogleCalendarGateway]


def _errors(metrics: InMemoryMetrics, operation: str, error_type: str) -> int:
    return metrics.counter(API_ERRORS_TOTAL, {"operation": operation, "error_type": error_type})


@pytest.mark.unit
class TestListCalendars:
    """Tests for GoogleCalendarGateway.list_calendars()."""

    @pytest.mark.asyncio
    async def test_should_map_calendar_list(self, make_gateway: GatewayFactory) -> None:
        gateway = make_gateway()

        calendars = await gateway.list_calendars()

        assert calendars == [
            Calendar(
                id="primary",
                title="Work",
                description="Main calendar",
                time_zone="Asia/Tokyo",
            ),
            Calendar(id="team@group.calendar.google.com", title="Team"),
        ]

    @pytest.mark.asyncio
    async def test_should_return_empty_list(
        self, make_gateway: GatewayFactory, fake_api: Any
    ) -> None:
        fake_api.calendars = []

        assert await make_gateway().list_calendars() == []

    @pytest.mark.asyncio
    async def test_should_send_bearer_token(
        self, make_gateway: GatewayFactory, fake_api: Any
    ) -> None:
        await make_gateway().list_calendars()

        assert fake_api.requests[0].headers["Authorization"] == "Bearer mock_access_token_12345"

    @pytest.mark.asyncio
    async def test_should_follow_pagination(self, make_gateway: GatewayFactory) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            if request.url.params.get("pageToken") == "page2":
                return httpx.Response(200, json={"items": [{"id": "b", "summary": "B"}]})
            return httpx.Response(
                200, json={"items": [{"id": "a", "summary": "A"}], "nextPageToken": "page2"}
            )

        calendars = await make_gateway(handler=handler).list_calendars()

        assert [c.id for c in calendars] == ["a", "b"]

    @pytest.mark.asyncio
    async def test_should_reject_when_rate_limited(
        self,
        make_gateway: GatewayFactory,
        fake_api: Any,
        metrics: InMemoryMetrics,
    ) -> None:
        gateway = make_gateway(limiter=RateLimiter(qps=0.001, burst=1))
        await gateway.list_calendars()

        with pytest.raises(RateLimitExceededError):
            await gateway.list_calendars()

        assert fake_api.network_calls == 1
        assert metrics.counter(RATE_LIMIT_HITS_TOTAL) == 1
        assert metrics.counter(API_REQUESTS_TOTAL, {"operation": "list_calendars"}) == 2
        assert _errors(metrics, "list_calendars", "rate_limit") == 1

    @pytest.mark.asyncio
    async def test_should_log_rejection_with_deferred_arguments(
        self, make_gateway: GatewayFactory, caplog: pytest.LogCaptureFixture
    ) -> None:
        caplog.set_level(logging.WARNING, logger="gcal_mcp.calendar.gateway")
        gateway = make_gateway(limiter=RateLimiter(qps=0.001, burst=1))
        await gateway.list_calendars()

        with pytest.raises(RateLimitExceededError):
            await gateway.list_calendars()

        record = next(r for r in caplog.records if r.levelno == logging.WARNING)
        assert record.msg == "Rate limit exceeded for %s"
        assert record.args == ("list_calendars",)

    @pytest.mark.asyncio
    async def test_should_classify_upstream_failure(
        self,
        make_gateway: GatewayFactory,
        fake_api: Any,
        metrics: InMemoryMetrics,
    ) -> None:
        fake_api.list_status = 500

        with pytest.raises(APIError) as exc_info:
            await make_gateway().list_calendars()

        assert exc_info.value.status_code == 500
        assert "backendError from fake API" in str(exc_info.value)
        assert _errors(metrics, "list_calendars", "api_error") == 1

    @pytest.mark.asyncio
    async def test_should_report_transport_failure_without_status(
        self, make_gateway: GatewayFactory
    ) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        with pytest.raises(APIError) as exc_info:
            await make_gateway(handler=handler).list_calendars()

        assert exc_info.value.status_code is None
        assert isinstance(exc_info.value.cause, httpx.ConnectError)

    @pytest.mark.asyncio
    async def test_should_classify_token_provider_failure(
        self, make_gateway: GatewayFactory, fake_api: Any, metrics: InMemoryMetrics
    ) -> None:
        async def token_provider() -> str:
            raise ConnectionError("token endpoint unreachable")

        with pytest.raises(APIError) as exc_info:
            await make_gateway(token_provider=token_provider).list_calendars()

        assert exc_info.value.status_code is None
        assert isinstance(exc_info.value.cause, ConnectionError)
        assert fake_api.network_calls == 0
        assert _errors(metrics, "list_calendars", "api_error") == 1

    @pytest.mark.asyncio
    async def test_should_pass_through_auth_errors(
        self, make_gateway: GatewayFactory, metrics: InMemoryMetrics
    ) -> None:
        async def token_provider() -> str:
            raise OAuthError("token_load", "no stored credential; run 'gcal-mcp setup' first")

        with pytest.raises(OAuthError):
            await make_gateway(token_provider=token_provider).list_calendars()

        assert _errors(metrics, "list_calendars", "oauth") == 1

    @pytest.mark.asyncio
    async def test_should_classify_non_json_body(
        self, make_gateway: GatewayFactory, metrics: InMemoryMetrics
    ) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, text="<html><body>Service Unavailable</body></html>")

        with pytest.raises(APIError) as exc_info:
            await make_gateway(handler=handler).list_calendars()

        assert exc_info.value.status_code is None
        assert "invalid response body" in str(exc_info.value)
        assert _errors(metrics, "list_calendars", "api_error") == 1

    @pytest.mark.asyncio
    async def test_should_record_latency_on_failure(
        self,
        make_gateway: GatewayFactory,
        fake_api: Any,
        metrics: InMemoryMetrics,
    ) -> None:
        gateway = make_gateway()

        await gateway.list_calendars()
        fake_api.list_status = 503
        with pytest.raises(APIError):
            await gateway.list_calendars()
        fake_api.list_status = 200
        await gateway.list_calendars()

        durations = metrics.observations(
            API_RESPONSE_DURATION_SECONDS, {"operation": "list_calendars"}
        )
        assert len(durations) == 3
        assert all(d >= 0 for d in durations)

    @pytest.mark.asyncio
    async def test_should_report_deadline_exceeded(self, make_gateway: GatewayFactory) -> None:
        async def slow(request: httpx.Request) -> httpx.Response:
            await asyncio.sleep(5)
            return httpx.Response(200, json={"items": []})

        with pytest.raises(OperationCancelledError) as exc_info:
            await make_gateway(handler=slow).list_calendars(timeout=0.05)

        assert exc_info.value.reason == OperationCancelledError.DEADLINE_EXCEEDED

    @pytest.mark.asyncio
    async def test_should_stop_in_flight_call_on_cancel(
        self, make_gateway: GatewayFactory, metrics: InMemoryMetrics
    ) -> None:
        cancel_event = asyncio.Event()

        async def slow(request: httpx.Request) -> httpx.Response:
            cancel_event.set()
            await asyncio.sleep(5)
            return httpx.Response(200, json={"items": []})

        with pytest.raises(OperationCancelledError) as exc_info:
            await make_gateway(handler=slow).list_calendars(cancel_event=cancel_event)

        assert exc_info.value.reason == OperationCancelledError.CANCELLED
        assert _errors(metrics, "list_calendars", "cancelled") == 1


@pytest.mark.unit
class TestCreateEvent:
    """Tests for GoogleCalendarGateway.create_event()."""

    @pytest.mark.asyncio
    async def test_should_create_event(
        self, make_gateway: GatewayFactory, meeting_event: Event
    ) -> None:
        created = await make_gateway().create_event("primary", meeting_event)

        assert created.id == "evt_001"
        assert created.title == "Design review"
        assert created.location == "Room 4F"
        assert created.attendees == ["alice@example.com", "bob@example.com"]
        assert created.start == meeting_event.start

    @pytest.mark.asyncio
    async def test_should_marshal_request_body(
        self,
        make_gateway: GatewayFactory,
        fake_api: Any,
        meeting_event: Event,
    ) -> None:
        await make_gateway().create_event("primary", meeting_event)

        assert fake_api.inserted_bodies == [
            {
                "summary": "Design review",
                "description": "Quarterly architecture review",
                "start": {"dateTime": "2025-06-01T10:00:00+09:00", "timeZone": "Asia/Tokyo"},
                "end": {"dateTime": "2025-06-01T11:00:00+09:00", "timeZone": "Asia/Tokyo"},
                "location": "Room 4F",
                "attendees": [{"email": "alice@example.com"}, {"email": "bob@example.com"}],
            }
        ]

    @pytest.mark.asyncio
    async def test_should_verify_calendar_before_insert(
        self,
        make_gateway: GatewayFactory,
        fake_api: Any,
        meeting_event: Event,
    ) -> None:
        await make_gateway().create_event("team@group.calendar.google.com", meeting_event)

        assert [r.method for r in fake_api.requests] == ["GET", "POST"]

    @pytest.mark.asyncio
    async def test_should_skip_access_check_when_disabled(
        self,
        make_gateway: GatewayFactory,
        fake_api: Any,
        meeting_event: Event,
    ) -> None:
        await make_gateway(verify_calendar_access=False).create_event("primary", meeting_event)

        assert [r.method for r in fake_api.requests] == ["POST"]

    @pytest.mark.asyncio
    async def test_should_not_alias_caller_data(
        self, make_gateway: GatewayFactory, meeting_event: Event
    ) -> None:
        created = await make_gateway().create_event("primary", meeting_event)

        meeting_event.attendees.append("mallory@example.com")
        meeting_event.location = "Somewhere else"
        meeting_event.start.time_zone = "UTC"

        assert created.attendees == ["alice@example.com", "bob@example.com"]
        assert created.location == "Room 4F"
        assert created.start.time_zone == "Asia/Tokyo"

    @pytest.mark.asyncio
    async def test_should_reject_empty_title_without_network(
        self,
        make_gateway: GatewayFactory,
        fake_api: Any,
        meeting_event: Event,
        metrics: InMemoryMetrics,
    ) -> None:
        meeting_event.title = ""

        with pytest.raises(ValidationError) as exc_info:
            await make_gateway().create_event("primary", meeting_event)

        assert exc_info.value.field == "title"
        assert fake_api.network_calls == 0
        assert _errors(metrics, "create_event", "validation") == 1

    @pytest.mark.asyncio
    async def test_should_reject_end_before_start_without_network(
        self, make_gateway: GatewayFactory, fake_api: Any
    ) -> None:
        event = Event(
            title="Backwards",
            start=TimeSpec(date_time="2025-06-01T11:00:00+09:00"),
            end=TimeSpec(date_time="2025-06-01T10:00:00+09:00"),
        )

        with pytest.raises(ValidationError, match="end time must not be before start time"):
            await make_gateway().create_event("primary", event)

        assert fake_api.network_calls == 0

    @pytest.mark.asyncio
    async def test_should_reject_missing_event(self, make_gateway: GatewayFactory) -> None:
        with pytest.raises(ValidationError) as exc_info:
            await make_gateway().create_event("primary", None)
        assert exc_info.value.field == "event"

    @pytest.mark.asyncio
    async def test_should_reject_empty_calendar_id(
        self, make_gateway: GatewayFactory, meeting_event: Event
    ) -> None:
        with pytest.raises(ValidationError) as exc_info:
            await make_gateway().create_event("", meeting_event)
        assert exc_info.value.field == "calendar_id"

    @pytest.mark.asyncio
    async def test_should_consume_permit_before_validation(
        self,
        make_gateway: GatewayFactory,
        fake_api: Any,
        meeting_event: Event,
    ) -> None:
        gateway = make_gateway(limiter=RateLimiter(qps=0.001, burst=1))

        with pytest.raises(ValidationError):
            await gateway.create_event("primary", Event(title=""))
        with pytest.raises(RateLimitExceededError):
            await gateway.create_event("primary", meeting_event)

        assert fake_api.network_calls == 0

    @pytest.mark.asyncio
    async def test_should_report_unknown_calendar_as_validation_error(
        self,
        make_gateway: GatewayFactory,
        fake_api: Any,
        meeting_event: Event,
    ) -> None:
        with pytest.raises(ValidationError) as exc_info:
            await make_gateway().create_event("nobody@example.com", meeting_event)

        assert exc_info.value.field == "calendar_id"
        assert "not found or access denied" in str(exc_info.value)
        assert fake_api.inserted_bodies == []

    @pytest.mark.asyncio
    async def test_should_classify_insert_forbidden(
        self,
        make_gateway: GatewayFactory,
        fake_api: Any,
        meeting_event: Event,
        metrics: InMemoryMetrics,
    ) -> None:
        fake_api.insert_status = 403

        with pytest.raises(APIError) as exc_info:
            await make_gateway().create_event("primary", meeting_event)

        assert exc_info.value.status_code == 403
        assert exc_info.value.operation == "create_event"
        assert _errors(metrics, "create_event", "api_error") == 1

    @pytest.mark.asyncio
    async def test_should_explain_insert_not_found(
        self,
        make_gateway: GatewayFactory,
        fake_api: Any,
        meeting_event: Event,
    ) -> None:
        fake_api.insert_status = 404

        with pytest.raises(APIError) as exc_info:
            await make_gateway(verify_calendar_access=False).create_event("primary", meeting_event)

        assert exc_info.value.status_code == 404
        assert "not found or access denied" in str(exc_info.value)

    @pytest.mark.asyncio
    async def test_should_fail_fast_when_already_cancelled(
        self,
        make_gateway: GatewayFactory,
        fake_api: Any,
        meeting_event: Event,
    ) -> None:
        cancel_event = asyncio.Event()
        cancel_event.set()

        with pytest.raises(OperationCancelledError) as exc_info:
            await make_gateway().create_event("primary", meeting_event, cancel_event=cancel_event)

        assert exc_info.value.reason == OperationCancelledError.CANCELLED
        assert fake_api.network_calls == 0

    @pytest.mark.asyncio
    async def test_should_share_one_deadline_across_check_and_insert(
        self,
        make_gateway: GatewayFactory,
        fake_api: Any,
        meeting_event: Event,
    ) -> None:
        """Verify the access check consumes part of the caller's timeout."""

        async def slow(request: httpx.Request) -> httpx.Response:
            await asyncio.sleep(0.15)
            return fake_api.handler(request)

        with pytest.raises(OperationCancelledError) as exc_info:
            await make_gateway(handler=slow).create_event("primary", meeting_event, timeout=0.2)

        assert exc_info.value.reason == OperationCancelledError.DEADLINE_EXCEEDED
        assert fake_api.inserted_bodies == []


@pytest.mark.unit
class TestWireMapping:
    """Tests for the event wire mappers."""

    def test_should_omit_unset_fields(self) -> None:
        body = event_to_wire(
            Event(title="Lunch", start=TimeSpec(date="2025-06-01"), end=TimeSpec(date="2025-06-02"))
        )
        assert body == {
            "summary": "Lunch",
            "start": {"date": "2025-06-01"},
            "end": {"date": "2025-06-02"},
        }

    def test_should_treat_empty_location_as_absent(self) -> None:
        event = event_from_wire({"id": "e1", "summary": "x", "location": ""})
        assert event.location is None

    def test_should_read_attendee_emails_in_order(self) -> None:
        event = event_from_wire(
            {
                "id": "e1",
                "summary": "x",
                "attendees": [
                    {"email": "b@example.com", "responseStatus": "needsAction"},
                    {"email": "a@example.com"},
                ],
            }
        )
        assert event.attendees == ["b@example.com", "a@example.com"]
