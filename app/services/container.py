"""
Service wiring.
Builds the per-process service graph from Settings; the FastAPI lifespan
stores it on app.state and routes read it from there.
"""

import asyncio
from dataclasses import dataclass

from fastapi import Request

from app.config import Settings
from app.infrastructure.observability.logging import get_logger
from app.services.access.access_resolver import AccessResolver
from app.services.assistant.assistant_runner import ASSISTANT_HEADERS, AssistantRunner
from app.services.backend.auth_session import AuthSession
from app.services.backend.endpoint_registry import EndpointRegistry
from app.services.backend.entity_repository import COMPANIES, USERS, EntityRepository
from app.services.backend.http_client import HttpClient
from app.services.calendar.google_client import GoogleCalendarService, MeetingEventSource
from app.services.infrastructure.cache_store import CacheStore, RedisCacheStore, create_cache_store
from app.services.infrastructure.polling import RetryPolicy
from app.services.insights.insight_service import InsightService

logger = get_logger(__name__)


@dataclass
class ServiceContainer:
    settings: Settings
    cache: CacheStore
    backend_http: HttpClient
    assistant_http: HttpClient
    registry: EndpointRegistry
    auth: AuthSession
    users: EntityRepository
    companies: EntityRepository
    access: AccessResolver
    runner: AssistantRunner
    calendar: MeetingEventSource
    insights: InsightService

    async def close(self) -> None:
        """Close every client, logging failures and continuing with the rest."""
        errors = []
        for name, closer in (
            ("backend_http", self.backend_http.close),
            ("assistant_http", self.assistant_http.close),
            ("calendar", getattr(self.calendar, "close", None)),
            ("cache", self.cache.close),
        ):
            if closer is None:
                continue
            try:
                await closer()
            except Exception as e:
                logger.error("Error closing service", service=name, error=str(e))
                errors.append(f"{name}: {e}")

        if errors:
            logger.warning("Some services had shutdown errors", errors=errors)
        else:
            logger.info("All services closed successfully")


def build_services(
    settings: Settings,
    *,
    cache: CacheStore | None = None,
    calendar: MeetingEventSource | None = None,
    sleep=asyncio.sleep,
) -> ServiceContainer:
    cache = cache or create_cache_store(settings.CACHE_BACKEND, settings.REDIS_URL)

    backend_http = HttpClient(
        settings.BACKEND_BASE_URL,
        timeout=settings.BACKEND_TIMEOUT_SECONDS,
        name="backend",
    )
    assistant_http = HttpClient(
        settings.ASSISTANT_API_BASE_URL,
        timeout=settings.ASSISTANT_TIMEOUT_SECONDS,
        bearer_token=settings.OPENAI_API_KEY,
        default_headers=ASSISTANT_HEADERS,
        name="assistant",
    )

    registry = EndpointRegistry(backend_http, cache, ttl_s=settings.ENDPOINT_CACHE_TTL_SECONDS)
    auth = AuthSession(
        backend_http,
        registry,
        cache,
        ttl_s=settings.TOKEN_CACHE_TTL_SECONDS,
        primary_credentials=settings.primary_credentials(),
        fallback_credentials=settings.BACKEND_FALLBACK_CREDENTIALS,
        dev_token=settings.BACKEND_DEV_TOKEN,
    )
    users = EntityRepository(USERS, backend_http, registry, auth, query_path=settings.BACKEND_QUERY_PATH)
    companies = EntityRepository(
        COMPANIES, backend_http, registry, auth, query_path=settings.BACKEND_QUERY_PATH
    )
    access = AccessResolver(
        users,
        companies,
        cache,
        ttl_s=settings.USER_CACHE_TTL_SECONDS,
        enforce_company_status=settings.ACCESS_ENFORCE_COMPANY_STATUS,
    )
    runner = AssistantRunner(
        assistant_http,
        cache,
        RetryPolicy(**settings.get_poll_policy_config()),
        sleep=sleep,
    )
    calendar = calendar or GoogleCalendarService(sleep=sleep)
    insights = InsightService(
        access,
        calendar,
        runner,
        cache,
        ttl_s=settings.INSIGHT_CACHE_TTL_SECONDS,
        language=settings.INSIGHT_LANGUAGE,
    )

    logger.info(
        "Services built",
        cache_backend=settings.CACHE_BACKEND,
        backend_host=settings.backend_host(),
    )
    return ServiceContainer(
        settings=settings,
        cache=cache,
        backend_http=backend_http,
        assistant_http=assistant_http,
        registry=registry,
        auth=auth,
        users=users,
        companies=companies,
        access=access,
        runner=runner,
        calendar=calendar,
        insights=insights,
    )


async def start_services(services: ServiceContainer) -> None:
    """
    Open the Redis pool when configured, then try to obtain a backend token.

    Backend authentication is best effort: an unreachable backend leaves the
    app serving, and the first repository call retries the login.
    """
    if isinstance(services.cache, RedisCacheStore):
        await services.cache.initialize()

    authenticated = await services.auth.try_auth()
    logger.info("Backend authentication at startup", authenticated=authenticated)


def get_services(request: Request) -> ServiceContainer:
    """FastAPI dependency returning the container built at startup."""
    return request.app.state.services
