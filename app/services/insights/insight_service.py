"""
Meeting insight generation.
Checks access, loads the event, builds the prompt and runs the company's
assistant. Results are cached per user and event.
"""

from dataclasses import dataclass

from app.infrastructure.observability.logging import get_logger
from app.models.domain.access_domain import AccessDetails, normalize_email
from app.models.domain.calendar_domain import MeetingEvent
from app.services.access.access_resolver import AccessResolver
from app.services.assistant.assistant_runner import AssistantRunError, AssistantRunner
from app.services.calendar.google_client import CALENDAR_PRIMARY, GoogleCalendarError, MeetingEventSource
from app.services.infrastructure.cache_store import CacheStore, NamespacedCache
from app.services.insights.prompt_builder import build_insight_prompt

logger = get_logger(__name__)

INSIGHT_CACHE_TTL = 1800  # 30 minutes


class InsightError(Exception):
    """Base error for the insight flow."""

    def __init__(self, message: str, recoverable: bool = True):
        super().__init__(message)
        self.recoverable = recoverable


class InsightAccessDenied(InsightError):
    """The user has no access, or their company has no assistant."""

    def __init__(self, email: str):
        super().__init__(f"User not authorized or Assistant ID not found: {email}", recoverable=False)
        self.email = email


class EventNotFoundError(InsightError):
    def __init__(self, event_id: str):
        super().__init__(f"Event not found: {event_id}", recoverable=False)
        self.event_id = event_id


class InsightGenerationError(InsightError):
    """Calendar or assistant failure while generating; retrying may help."""


@dataclass
class InsightResult:
    text: str
    title: str
    event_id: str
    calendar_id: str
    cached: bool = False


def insight_cache(store: CacheStore, email: str) -> NamespacedCache:
    return NamespacedCache(store, f"insight:{normalize_email(email)}")


class InsightService:
    def __init__(
        self,
        access: AccessResolver,
        events: MeetingEventSource,
        runner: AssistantRunner,
        cache: CacheStore,
        *,
        ttl_s: int = INSIGHT_CACHE_TTL,
        language: str = "pt",
    ):
        self._access = access
        self._events = events
        self._runner = runner
        self._cache = cache
        self._ttl_s = ttl_s
        self._language = language

    async def authorize(self, user_email: str) -> AccessDetails:
        """
        Raises:
            InsightAccessDenied: If the user has no access or no assistant is configured
        """
        details = await self._access.resolve(user_email)
        if details is None or not details.assistant_id:
            logger.info("Insight access denied", email=normalize_email(user_email))
            raise InsightAccessDenied(user_email)
        return details

    async def load_event(
        self, access_token: str, event_id: str, calendar_id: str = CALENDAR_PRIMARY
    ) -> MeetingEvent | None:
        try:
            return await self._events.get_event(access_token, event_id, calendar_id)
        except GoogleCalendarError as e:
            raise InsightGenerationError(str(e)) from e

    async def generate(
        self,
        user_email: str,
        event_id: str,
        access_token: str,
        calendar_id: str = CALENDAR_PRIMARY,
        refresh: bool = False,
    ) -> InsightResult:
        """
        Generate (or serve cached) insights for one event.

        Args:
            user_email: Verified email of the add-on user
            event_id: Calendar event ID
            access_token: Calendar OAuth token for reading the event
            calendar_id: Calendar the event belongs to
            refresh: Regenerate even when a cached insight exists

        Returns:
            InsightResult with the assistant's text

        Raises:
            InsightAccessDenied: User is not authorized
            EventNotFoundError: Event does not exist
            InsightGenerationError: Calendar or assistant call failed
        """
        details = await self.authorize(user_email)
        cache = insight_cache(self._cache, user_email)

        if not refresh:
            cached = await cache.get(event_id)
            if cached:
                logger.info("Insights served from cache", event_id=event_id)
                return InsightResult(
                    text=cached["text"],
                    title=cached.get("title", ""),
                    event_id=event_id,
                    calendar_id=calendar_id,
                    cached=True,
                )

        event = await self.load_event(access_token, event_id, calendar_id)
        if event is None:
            raise EventNotFoundError(event_id)

        prompt = build_insight_prompt(event, details.assistant_id, self._language)

        try:
            text = await self._runner.run(prompt, details.assistant_id)
        except AssistantRunError as e:
            logger.error(
                "Insight generation failed",
                event_id=event_id,
                assistant_id=details.assistant_id,
                error=str(e),
                error_type=type(e).__name__,
                step=e.step.value,
                last_status=e.last_status,
                attempts=e.attempts,
            )
            raise InsightGenerationError(str(e), recoverable=e.recoverable) from e

        await cache.set_with_ttl(event_id, {"text": text, "title": event.title}, self._ttl_s)
        logger.info(
            "Insights generated",
            event_id=event_id,
            company_id=details.company_id,
            length=len(text),
        )
        return InsightResult(text=text, title=event.title, event_id=event_id, calendar_id=calendar_id)
