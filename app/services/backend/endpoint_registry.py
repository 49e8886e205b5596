"""
Endpoint registry for the company/user backend.

The backend's route layout is not known when the add-on is deployed, so the
registry probes a ranked candidate list per logical operation and caches
whatever answers. Discovery results live for an hour; a hardcoded map is used
when nothing answers at all.
"""

from enum import Enum
from urllib.parse import quote

from app.infrastructure.observability.logging import get_logger
from app.models.domain.backend_domain import OPERATIONS, EndpointMap
from app.services.backend.http_client import (
    BackendHTTPError,
    BackendParseError,
    BackendTransportError,
    HttpClient,
)
from app.services.infrastructure.cache_store import CacheStore

logger = get_logger(__name__)

ENDPOINT_CACHE_KEY = "endpoint:map"
ENDPOINT_CACHE_TTL = 3600  # 1 hour

ENDPOINT_CANDIDATES: dict[str, list[str]] = {
    "login": [
        "/api/auth/login",
        "/api/login",
        "/auth/login",
        "/api/v1/auth/login",
        "/login",
    ],
    "users": ["/api/users", "/api/user", "/api/v1/users", "/users"],
    "user_by_email": [
        "/api/users/email/{email}",
        "/api/users/by-email/{email}",
        "/api/user/email/{email}",
        "/api/v1/users/email/{email}",
        "/users/email/{email}",
    ],
    "companies": ["/api/companies", "/api/company", "/api/v1/companies", "/companies"],
    "company_by_domain": [
        "/api/companies/domain/{domain}",
        "/api/companies/by-domain/{domain}",
        "/api/company/domain/{domain}",
        "/api/v1/companies/domain/{domain}",
        "/companies/domain/{domain}",
    ],
}

FALLBACK_ENDPOINTS = EndpointMap(
    login="/api/auth/login",
    users="/api/users",
    user_by_email="/api/users/email/{email}",
    companies="/api/companies",
    company_by_domain="/api/companies/domain/{domain}",
)

# Values substituted into templated candidates while probing
PROBE_SENTINELS = {"email": "test@example.com", "domain": "example.com"}

# Statuses that prove a route exists even though the probe was refused.
# 405 covers POST-only routes such as login probed with GET.
EXISTING_ROUTE_STATUSES = {401, 403, 405}


class ProbeResult(str, Enum):
    EXISTS = "exists"
    ABSENT = "absent"
    UNREACHABLE = "unreachable"


def expand_template(template: str, **params: str) -> str:
    """Fill `{param}` placeholders, URL-quoting each value."""
    quoted = {key: quote(str(value), safe="@") for key, value in params.items()}
    return template.format(**quoted)


class EndpointRegistry:
    """Cached mapping from logical backend operation to concrete path."""

    def __init__(
        self,
        http: HttpClient,
        cache: CacheStore,
        *,
        ttl_s: int = ENDPOINT_CACHE_TTL,
        candidates: dict[str, list[str]] | None = None,
        fallback: EndpointMap = FALLBACK_ENDPOINTS,
    ):
        self._http = http
        self._cache = cache
        self._ttl_s = ttl_s
        self._candidates = candidates or ENDPOINT_CANDIDATES
        self._fallback = fallback

    async def current_map(self) -> EndpointMap | None:
        """Cached map without triggering discovery."""
        data = await self._cache.get(ENDPOINT_CACHE_KEY)
        return EndpointMap.from_dict(data) if data else None

    async def resolve(self, operation: str) -> str | None:
        """
        Path for a logical operation, discovering lazily.

        Discovery runs when no map is cached or when the cached map knows
        neither `users` nor `login`.
        """
        if operation not in OPERATIONS:
            raise KeyError(f"Unknown backend operation: {operation}")

        endpoint_map = await self.current_map()
        if endpoint_map is None or endpoint_map.needs_discovery():
            endpoint_map = await self.discover()

        return endpoint_map.get(operation)

    async def build(self, operation: str, **params: str) -> str | None:
        """Resolve an operation and expand its template with `params`."""
        template = await self.resolve(operation)
        if template is None:
            return None
        return expand_template(template, **params)

    async def discover(self) -> EndpointMap:
        """
        Probe every candidate and cache the first existing route per operation.

        Returns:
            EndpointMap: discovered routes, or the fallback map when nothing answered
        """
        logger.info("Starting backend endpoint discovery")

        endpoint_map = EndpointMap()
        for operation in OPERATIONS:
            path = await self._discover_operation(operation)
            if path is not None:
                endpoint_map = endpoint_map.with_path(operation, path)

        if endpoint_map.is_empty():
            logger.warning(
                "Endpoint discovery found no routes, using fallback map",
                fallback=self._fallback.to_dict(),
            )
            endpoint_map = self._fallback

        await self._cache.set_with_ttl(ENDPOINT_CACHE_KEY, endpoint_map.to_dict(), self._ttl_s)
        logger.info("Endpoint discovery completed", endpoints=endpoint_map.to_dict())
        return endpoint_map

    async def _discover_operation(self, operation: str) -> str | None:
        for template in self._candidates.get(operation, []):
            probe_path = expand_template(template, **PROBE_SENTINELS) if "{" in template else template
            result = await self.probe(probe_path)

            logger.debug(
                "Endpoint probe",
                operation=operation,
                path=probe_path,
                result=result.value,
            )

            if result is ProbeResult.EXISTS:
                # The template, not the sentinel-filled path, is what gets stored
                return template
        return None

    async def probe(self, path: str) -> ProbeResult:
        """Classify one path by issuing an unauthenticated GET."""
        try:
            await self._http.request(path, "GET", requires_auth=False)
            return ProbeResult.EXISTS
        except BackendHTTPError as e:
            if e.status_code in EXISTING_ROUTE_STATUSES:
                return ProbeResult.EXISTS
            if e.is_not_found:
                return ProbeResult.ABSENT
            return ProbeResult.UNREACHABLE
        except (BackendParseError, BackendTransportError):
            # HTML catch-all pages and dead hosts do not count as API routes
            return ProbeResult.UNREACHABLE

    async def remember(self, operation: str, path: str) -> None:
        """Memoize a route that another component found working."""
        endpoint_map = await self.current_map() or EndpointMap()
        if endpoint_map.get(operation) == path:
            return

        await self._cache.set_with_ttl(
            ENDPOINT_CACHE_KEY, endpoint_map.with_path(operation, path).to_dict(), self._ttl_s
        )
        logger.info("Backend endpoint remembered", operation=operation, path=path)

    async def invalidate(self) -> None:
        await self._cache.delete(ENDPOINT_CACHE_KEY)
        logger.info("Backend endpoint map invalidated")
