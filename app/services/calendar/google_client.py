"""
Read-only Google Calendar client used by the add-on.
Loads the event the user opened so its details can feed the insight prompt.
"""

import asyncio
from typing import Any, Protocol
from urllib.parse import quote

import httpx

from app.infrastructure.observability.logging import get_logger
from app.models.domain.calendar_domain import MeetingEvent
from app.services.infrastructure.polling import RetryPolicy, Sleep

logger = get_logger(__name__)

CALENDAR_API_BASE_URL = "https://www.googleapis.com/calendar/v3"
CALENDAR_PRIMARY = "primary"

REQUEST_TIMEOUT = 30  # seconds
# Three tries, waiting 2s then 4s between them
CALENDAR_RETRY_POLICY = RetryPolicy(max_attempts=3, base_delay=2.0, growth_factor=2.0, cap_delay=8.0)
RETRY_STATUS_CODES = {429, 500, 502, 503, 504}
MISSING_EVENT_STATUS_CODES = {404, 410}

USER_MESSAGES = {
    400: "Invalid calendar request format.",
    401: "Calendar authorization expired. Please reconnect.",
    403: "Calendar access denied. Please check permissions.",
    429: "Too many calendar requests. Please try again later.",
    500: "Google Calendar service temporarily unavailable.",
    503: "Google Calendar service temporarily unavailable.",
}


class GoogleCalendarError(Exception):
    """Calendar API failure with a message fit for the add-on card."""

    def __init__(
        self,
        message: str,
        error_code: str | None = None,
        status_code: int | None = None,
        response_data: dict | None = None,
    ):
        super().__init__(message)
        self.error_code = error_code
        self.status_code = status_code
        self.response_data = response_data or {}


class MeetingEventSource(Protocol):
    async def get_event(
        self, access_token: str, event_id: str, calendar_id: str = CALENDAR_PRIMARY
    ) -> MeetingEvent | None: ...


def event_url(calendar_id: str, event_id: str) -> str:
    return (
        f"{CALENDAR_API_BASE_URL}/calendars/{quote(calendar_id, safe='@')}"
        f"/events/{quote(event_id, safe='')}"
    )


def _error_details(response: httpx.Response) -> tuple[dict, str, str]:
    """(body, error code, error message) from a Calendar API error response."""
    try:
        body = response.json() if response.text else {}
    except ValueError:
        return {}, str(response.status_code), f"HTTP {response.status_code}"

    error = body.get("error") if isinstance(body, dict) else None
    if not isinstance(error, dict):
        return body if isinstance(body, dict) else {}, str(response.status_code), "Unknown Calendar API error"
    return body, str(error.get("code", response.status_code)), error.get("message", "Unknown Calendar API error")


class GoogleCalendarService:
    """
    Calendar API client implementing MeetingEventSource.

    Rate limits and server errors are retried under CALENDAR_RETRY_POLICY.
    A deleted or missing event is reported as None.
    """

    def __init__(
        self,
        timeout: float = REQUEST_TIMEOUT,
        policy: RetryPolicy = CALENDAR_RETRY_POLICY,
        sleep: Sleep = asyncio.sleep,
    ):
        self._client = httpx.AsyncClient(
            timeout=httpx.Timeout(timeout),
            limits=httpx.Limits(max_keepalive_connections=20, max_connections=50),
        )
        self._policy = policy
        self._sleep = sleep

    async def close(self) -> None:
        await self._client.aclose()

    async def _send(self, method: str, url: str, **kwargs: Any) -> httpx.Response:
        """
        Raises:
            httpx.RequestError: If the last attempt could not reach the API
        """
        last_attempt = self._policy.max_attempts - 1
        for attempt in range(self._policy.max_attempts):
            if attempt:
                await self._sleep(self._policy.delay_for(attempt - 1))

            try:
                response = await self._client.request(method, url, **kwargs)
            except httpx.RequestError as e:
                if attempt == last_attempt:
                    raise
                logger.debug("Calendar API unreachable, retrying", attempt=attempt + 1, error=str(e))
                continue

            if response.status_code not in RETRY_STATUS_CODES or attempt == last_attempt:
                return response
            logger.debug(
                "Calendar API retryable status",
                attempt=attempt + 1,
                status_code=response.status_code,
            )

        raise RuntimeError("unreachable")

    def _raise_for_error(self, response: httpx.Response, operation: str) -> None:
        body, error_code, error_message = _error_details(response)
        logger.error(
            f"Calendar API {operation} failed",
            status_code=response.status_code,
            error_code=error_code,
            error_message=error_message,
        )
        message = USER_MESSAGES.get(response.status_code, f"Calendar error: {error_message}")
        raise GoogleCalendarError(
            message,
            error_code=error_code,
            status_code=response.status_code,
            response_data=body,
        )

    async def get_event(
        self, access_token: str, event_id: str, calendar_id: str = CALENDAR_PRIMARY
    ) -> MeetingEvent | None:
        """
        Fetch one event.

        Args:
            access_token: OAuth token the add-on host granted for this user
            event_id: Event ID
            calendar_id: Calendar ID (default: primary)

        Returns:
            MeetingEvent, or None if the event is missing or cancelled

        Raises:
            GoogleCalendarError: If the Calendar API call fails
        """
        headers = {"Authorization": f"Bearer {access_token}", "Accept": "application/json"}
        logger.info("Fetching calendar event", event_id=event_id, calendar_id=calendar_id)

        try:
            response = await self._send("GET", event_url(calendar_id, event_id), headers=headers)
        except httpx.RequestError as e:
            logger.error("Calendar API unreachable", event_id=event_id, error=str(e))
            raise GoogleCalendarError(f"Failed to get event: {e}") from e

        if response.status_code in MISSING_EVENT_STATUS_CODES:
            logger.info("Calendar event not found", event_id=event_id)
            return None
        if not response.is_success:
            self._raise_for_error(response, "get_event")

        try:
            data = response.json()
        except ValueError as e:
            raise GoogleCalendarError(f"Invalid response format: {e}") from e

        event = MeetingEvent(data, calendar_id=calendar_id)
        if event.is_cancelled():
            logger.info("Calendar event was cancelled", event_id=event_id)
            return None
        return event
