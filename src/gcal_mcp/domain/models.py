"""Domain entities for calendars and events.

These are read-only projections of Google Calendar resources. Python
attribute names are snake_case; the aliases reproduce the JSON encoding used
at the tool boundary (``timeZone``, ``dateTime``).
"""

from datetime import date, datetime

from pydantic import BaseModel, ConfigDict, Field

from gcal_mcp.errors import ValidationError


class Calendar(BaseModel):
    """A calendar visible to the authenticated user.

    Attributes:
        id: Calendar identifier (e.g. "primary" or an email-like ID).
        title: Display title (Google's ``summary``).
        description: Optional free-text description.
        time_zone: Optional IANA time zone name.
    """

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    id: str
    title: str
    description: str | None = None
    time_zone: str | None = Field(default=None, alias="timeZone")

    def validate_entity(self) -> None:
        """Raise ValidationError unless id and title are non-empty."""
        if not self.id:
            raise ValidationError("id", "calendar ID is required")
        if not self.title:
            raise ValidationError("title", "calendar title is required")


class TimeSpec(BaseModel):
    """Start or end of an event.

    Either a full RFC 3339 timestamp (``date_time``) or a plain date for
    all-day events, optionally paired with an IANA time zone. All three may
    be set together.
    """

    model_config = ConfigDict(populate_by_name=True)

    date_time: str | None = Field(default=None, alias="dateTime")
    date: str | None = None
    time_zone: str | None = Field(default=None, alias="timeZone")

    def validate_entity(self, field: str) -> None:
        if not self.date_time and not self.date:
            raise ValidationError(field, "either dateTime or date must be set")
        if self.date_time:
            parse_timestamp(field, self.date_time)
        if self.date:
            try:
                date.fromisoformat(self.date)
            except ValueError as e:
                raise ValidationError(field, f"invalid date '{self.date}'", e) from e


class Event(BaseModel):
    """A calendar event.

    ``id`` is empty on creation requests and filled in from the server
    response. ``attendees`` holds email addresses in input order.
    """

    model_config = ConfigDict(populate_by_name=True)

    id: str | None = None
    title: str = ""
    description: str | None = None
    start: TimeSpec = Field(default_factory=TimeSpec)
    end: TimeSpec = Field(default_factory=TimeSpec)
    location: str | None = None
    attendees: list[str] = Field(default_factory=list)

    def validate_entity(self) -> None:
        """Check required fields and chronological order.

        Raises:
            ValidationError: If the title is empty, a TimeSpec has neither a
                timestamp nor a date, or end precedes start.
        """
        if not self.title or not self.title.strip():
            raise ValidationError("title", "event title is required")

        self.start.validate_entity("start")
        self.end.validate_entity("end")

        if self.start.date_time and self.end.date_time:
            start_at = parse_timestamp("start", self.start.date_time)
            end_at = parse_timestamp("end", self.end.date_time)
            if end_at < start_at:
                raise ValidationError("end", "end time must not be before start time")


def parse_timestamp(field: str, value: str) -> datetime:
    """Parse an RFC 3339 timestamp carrying a UTC offset.

    A trailing ``Z`` is accepted as ``+00:00``.

    Raises:
        ValidationError: If the value is not a timestamp or has no offset.
    """
    text = value[:-1] + "+00:00" if value.endswith(("Z", "z")) else value
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError as e:
        raise ValidationError(field, f"invalid dateTime '{value}'", e) from e

    if parsed.tzinfo is None:
        raise ValidationError(field, f"dateTime '{value}' must include a UTC offset")
    return parsed
