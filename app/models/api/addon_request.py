# app/models/api/addon_request.py
"""
Add-on API request models.
Used by routes for input validation.
"""

from pydantic import BaseModel, Field


class EventContextRequest(BaseModel):
    """Event the user opened in the calendar, as forwarded by the add-on host."""

    calendar_id: str = Field(default="primary", description="Calendar ID of the open event")
    event_id: str | None = Field(
        default=None, description="Event ID; empty while a new event is being created"
    )
    access_token: str | None = Field(
        default=None, description="Calendar OAuth token granted to the add-on for this user"
    )


class InsightRequest(BaseModel):
    """Request for generating insights for one event."""

    calendar_id: str = Field(default="primary", description="Calendar ID of the event")
    event_id: str = Field(..., min_length=1, description="Event ID")
    access_token: str = Field(..., min_length=1, description="Calendar OAuth token")
    refresh: bool = Field(default=False, description="Ignore cached insights and regenerate")


class RegisterRequest(BaseModel):
    """Self-registration for a user whose email domain belongs to a known company."""

    name: str | None = Field(default=None, max_length=200, description="Display name")


class CopyRequest(BaseModel):
    """Request for the copy card of an insight."""

    text: str = Field(..., description="Insight text to offer for copying")
    event_id: str = Field(..., description="Event the insight belongs to")
    calendar_id: str = Field(default="primary", description="Calendar ID of the event")
