"""
Backend authentication session.

Holds the bearer token for the company/user backend. Tokens are obtained by
trying a ranked list of login routes and several response shapes, cached for
an hour together with the route that issued them, and dropped on any 401.
"""

from dataclasses import dataclass
from typing import Any

from app.infrastructure.observability.logging import get_logger
from app.services.backend.endpoint_registry import ENDPOINT_CANDIDATES, EndpointRegistry
from app.services.backend.http_client import TRANSIENT_ERRORS, HttpClient
from app.services.infrastructure.cache_store import CacheStore

logger = get_logger(__name__)

TOKEN_CACHE_KEY = "token"
TOKEN_ENDPOINT_CACHE_KEY = "token:endpoint"
TOKEN_CACHE_TTL = 3600  # tokens are assumed to live about an hour

LOGIN_CANDIDATES = ENDPOINT_CANDIDATES["login"]

# Response locations a token has been seen in, in priority order
TOKEN_FIELD_PATHS: tuple[tuple[str, ...], ...] = (
    ("token",),
    ("access_token",),
    ("data", "token"),
    ("accessToken",),
    ("jwt",),
    ("data", "access_token"),
)


class AuthenticationError(Exception):
    """Raised when no login candidate produced a token."""

    def __init__(self, message: str, attempted: list[str] | None = None, last_error: str | None = None):
        super().__init__(message)
        self.attempted = attempted or []
        self.last_error = last_error


@dataclass(frozen=True)
class AuthResult:
    token: str
    user: dict[str, Any] | None
    endpoint: str


def extract_token(payload: Any) -> str | None:
    """Find a bearer token in any of the known login response shapes."""
    if not isinstance(payload, dict):
        return None

    for path in TOKEN_FIELD_PATHS:
        value: Any = payload
        for key in path:
            value = value.get(key) if isinstance(value, dict) else None
        if isinstance(value, str) and value:
            return value
    return None


def extract_user(payload: Any) -> dict[str, Any] | None:
    if not isinstance(payload, dict):
        return None
    user = payload.get("user")
    if isinstance(user, dict):
        return user
    data = payload.get("data")
    if isinstance(data, dict) and isinstance(data.get("user"), dict):
        return data["user"]
    return None


class AuthSession:
    """
    Bearer token owner for one backend HttpClient.

    Registers itself on the client as token provider and 401 listener, so every
    authenticated request carries the current token and every 401 clears it.
    """

    def __init__(
        self,
        http: HttpClient,
        registry: EndpointRegistry,
        cache: CacheStore,
        *,
        ttl_s: int = TOKEN_CACHE_TTL,
        primary_credentials: dict[str, str] | None = None,
        fallback_credentials: list[dict[str, str]] | None = None,
        dev_token: str | None = None,
    ):
        self._http = http
        self._registry = registry
        self._cache = cache
        self._ttl_s = ttl_s
        self._primary_credentials = primary_credentials
        self._fallback_credentials = fallback_credentials or []
        self._dev_token = dev_token

        http.set_token_provider(self.token)
        http.add_unauthorized_listener(self.invalidate)

    async def token(self) -> str | None:
        return await self._cache.get(TOKEN_CACHE_KEY)

    async def is_authenticated(self) -> bool:
        return bool(await self.token())

    async def _login_candidates(self) -> list[str]:
        candidates = []
        discovered = await self._registry.resolve("login")
        if discovered:
            candidates.append(discovered)
        for path in LOGIN_CANDIDATES:
            if path not in candidates:
                candidates.append(path)
        return candidates

    async def _login_at(self, path: str, credentials: dict[str, str]) -> AuthResult | None:
        payload = await self._http.request(path, "POST", payload=credentials, requires_auth=False)

        token = extract_token(payload)
        if not token:
            logger.debug("Login response carried no token", path=path)
            return None

        await self._store(token, path)
        return AuthResult(token=token, user=extract_user(payload), endpoint=path)

    async def _store(self, token: str, endpoint: str) -> None:
        await self._cache.set_with_ttl(TOKEN_CACHE_KEY, token, self._ttl_s)
        await self._cache.set_with_ttl(TOKEN_ENDPOINT_CACHE_KEY, endpoint, self._ttl_s)
        await self._registry.remember("login", endpoint)

    async def authenticate(self, credentials: dict[str, str]) -> AuthResult:
        """
        Log in against the ranked login candidates.

        Args:
            credentials: Login body, typically {"email": ..., "password": ...}

        Returns:
            AuthResult with the token, the user object if returned, and the route used

        Raises:
            AuthenticationError: If every candidate failed or returned no token
        """
        attempted = []
        last_error = None

        for path in await self._login_candidates():
            attempted.append(path)
            try:
                result = await self._login_at(path, credentials)
            except TRANSIENT_ERRORS as e:
                logger.debug("Login candidate failed", path=path, error=str(e))
                last_error = str(e)
                continue

            if result is not None:
                logger.info("Backend authentication succeeded", endpoint=path)
                return result
            last_error = f"No token in response from {path}"

        logger.warning("Backend authentication failed", attempted=attempted, last_error=last_error)
        raise AuthenticationError(
            "Authentication failed on every login endpoint",
            attempted=attempted,
            last_error=last_error,
        )

    async def _validate_current_token(self) -> bool:
        """Lightweight authenticated probe against the users collection."""
        probe_path = await self._registry.resolve("users") or "/api/users"
        try:
            await self._http.request(probe_path, "GET", requires_auth=True)
            return True
        except TRANSIENT_ERRORS as e:
            logger.info("Cached backend token failed validation", path=probe_path, error=str(e))
            return False

    async def try_auth(self) -> bool:
        """
        Make sure a usable token is available, without raising.

        Order: validate the cached token, re-login at the route that worked
        last time, try each configured credential set, then probe the
        development token.
        """
        if await self.token():
            if await self._validate_current_token():
                return True
            await self.invalidate()

        credential_sets = []
        if self._primary_credentials:
            credential_sets.append(self._primary_credentials)
        credential_sets.extend(self._fallback_credentials)

        previous_endpoint = await self._cache.get(TOKEN_ENDPOINT_CACHE_KEY)
        if previous_endpoint and credential_sets:
            try:
                if await self._login_at(previous_endpoint, credential_sets[0]):
                    logger.info("Re-authenticated at previous endpoint", endpoint=previous_endpoint)
                    return True
            except TRANSIENT_ERRORS as e:
                logger.debug(
                    "Re-login at previous endpoint failed",
                    endpoint=previous_endpoint,
                    error=str(e),
                )

        for credentials in credential_sets:
            try:
                await self.authenticate(credentials)
                return True
            except AuthenticationError:
                continue

        if self._dev_token:
            await self._cache.set_with_ttl(TOKEN_CACHE_KEY, self._dev_token, self._ttl_s)
            if await self._validate_current_token():
                logger.warning("Using development backend token")
                return True
            await self.invalidate()

        logger.warning("No backend authentication available, continuing unauthenticated")
        return False

    async def invalidate(self) -> None:
        """Drop the cached token. The issuing route is kept for re-login."""
        if await self._cache.delete(TOKEN_CACHE_KEY):
            logger.info("Backend token invalidated")

    async def logout(self) -> None:
        await self._cache.delete(TOKEN_CACHE_KEY)
        await self._cache.delete(TOKEN_ENDPOINT_CACHE_KEY)
        logger.info("Backend session logged out")
