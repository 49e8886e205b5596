"""
JSON-over-HTTP client for the company/user backend and the assistant service.
Pure transport: no retries here, callers own the retry and fallback policy.
"""

import time
from collections.abc import Awaitable, Callable
from typing import Any

import httpx

from app.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)

REQUEST_TIMEOUT = 15  # seconds

TokenProvider = Callable[[], Awaitable[str | None]]
UnauthorizedListener = Callable[[], Awaitable[None]]


class BackendHTTPError(Exception):
    """Raised when the remote side answers with status >= 400."""

    def __init__(
        self,
        message: str,
        status_code: int,
        body: Any = None,
        path: str | None = None,
        method: str | None = None,
    ):
        super().__init__(message)
        self.status_code = status_code
        self.body = body
        self.path = path
        self.method = method

    @property
    def is_auth_error(self) -> bool:
        return self.status_code in (401, 403)

    @property
    def is_not_found(self) -> bool:
        return self.status_code == 404

    @property
    def is_server_error(self) -> bool:
        return self.status_code >= 500

    def remote_message(self) -> str | None:
        """Best-effort extraction of an error message from the response body."""
        body = self.body
        if isinstance(body, dict):
            error = body.get("error")
            if isinstance(error, dict):
                return error.get("message")
            if isinstance(error, str):
                return error
            message = body.get("message")
            if isinstance(message, str):
                return message
        if isinstance(body, str) and body:
            return body[:200]
        return None


class BackendParseError(Exception):
    """Raised when a successful response body is not valid JSON."""

    def __init__(self, message: str, path: str | None = None, raw: str | None = None):
        super().__init__(message)
        self.path = path
        self.raw = raw


class BackendTransportError(Exception):
    """Raised on timeouts and connection failures."""

    def __init__(self, message: str, path: str | None = None):
        super().__init__(message)
        self.path = path


# Errors a fallback strategy may swallow before trying the next one
TRANSIENT_ERRORS = (BackendHTTPError, BackendParseError, BackendTransportError)


class HttpClient:
    """
    Thin async wrapper over httpx bound to one base URL.

    Authenticated requests take their bearer token either from a static key
    (assistant service) or from an async token provider (backend session).
    A 401 on an authenticated request notifies the registered listeners so the
    owner of the token can drop it.
    """

    def __init__(
        self,
        base_url: str,
        *,
        timeout: float = REQUEST_TIMEOUT,
        bearer_token: str | None = None,
        default_headers: dict[str, str] | None = None,
        name: str = "backend",
    ):
        self.base_url = base_url.rstrip("/")
        self.name = name
        self._bearer_token = bearer_token
        self._token_provider: TokenProvider | None = None
        self._unauthorized_listeners: list[UnauthorizedListener] = []
        self._default_headers = {
            "Content-Type": "application/json",
            "Accept": "application/json",
            **(default_headers or {}),
        }
        self._client = httpx.AsyncClient(
            base_url=self.base_url,
            timeout=httpx.Timeout(timeout),
            limits=httpx.Limits(max_keepalive_connections=10, max_connections=20),
        )

    def set_token_provider(self, provider: TokenProvider) -> None:
        self._token_provider = provider

    def add_unauthorized_listener(self, listener: UnauthorizedListener) -> None:
        self._unauthorized_listeners.append(listener)

    async def close(self) -> None:
        """Close the underlying HTTP client."""
        await self._client.aclose()

    async def _current_token(self) -> str | None:
        if self._bearer_token:
            return self._bearer_token
        if self._token_provider is not None:
            return await self._token_provider()
        return None

    async def _build_headers(self, requires_auth: bool) -> dict[str, str]:
        headers = dict(self._default_headers)
        if requires_auth:
            token = await self._current_token()
            # Without a token the call still goes out; public routes may answer it
            if token:
                headers["Authorization"] = f"Bearer {token}"
        return headers

    async def request(
        self,
        path: str,
        method: str = "GET",
        payload: Any = None,
        requires_auth: bool = True,
        params: dict[str, Any] | None = None,
    ) -> Any:
        """
        Issue one request and return the parsed JSON body.

        Args:
            path: Path relative to the base URL (leading slash optional)
            method: HTTP method
            payload: JSON body for write methods
            requires_auth: Attach the bearer token and react to 401
            params: Query string parameters

        Returns:
            Parsed JSON (dict or list); an empty body parses as {}

        Raises:
            BackendHTTPError: Status >= 400
            BackendParseError: Successful response with a non-JSON body
            BackendTransportError: Timeout or connection failure
        """
        method = method.upper()
        url = path if path.startswith("/") else f"/{path}"
        headers = await self._build_headers(requires_auth)

        started = time.monotonic()
        try:
            response = await self._client.request(
                method,
                url,
                headers=headers,
                json=payload,
                params=params,
            )
        except httpx.TimeoutException as e:
            logger.warning(f"{self.name} request timed out", method=method, path=url, error=str(e))
            raise BackendTransportError(f"Request to {url} timed out", path=url) from e
        except httpx.RequestError as e:
            logger.warning(f"{self.name} request failed", method=method, path=url, error=str(e))
            raise BackendTransportError(f"Request to {url} failed: {e}", path=url) from e

        duration_ms = round((time.monotonic() - started) * 1000, 1)
        logger.debug(
            f"{self.name} response",
            method=method,
            path=url,
            status_code=response.status_code,
            duration_ms=duration_ms,
        )

        if response.status_code >= 400:
            if response.status_code == 401 and requires_auth:
                await self._notify_unauthorized()
            raise BackendHTTPError(
                f"{self.name} error (HTTP {response.status_code}) for {method} {url}",
                status_code=response.status_code,
                body=self._safe_body(response),
                path=url,
                method=method,
            )

        if not response.content:
            return {}

        try:
            return response.json()
        except ValueError as e:
            logger.warning(
                f"{self.name} returned a non-JSON body",
                method=method,
                path=url,
                response_text=response.text[:200],
            )
            raise BackendParseError(
                f"Invalid JSON from {method} {url}", path=url, raw=response.text[:500]
            ) from e

    async def _notify_unauthorized(self) -> None:
        for listener in self._unauthorized_listeners:
            await listener()

    @staticmethod
    def _safe_body(response: httpx.Response) -> Any:
        if not response.content:
            return None
        try:
            return response.json()
        except ValueError:
            return response.text[:500]
