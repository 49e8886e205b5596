import json
import re

import httpx
import pytest

from app.auth.verify import current_user_email
from app.services.infrastructure.cache_store import MemoryCacheStore

BACKEND_URL = "http://backend.test"
ASSISTANT_URL = "http://assistant.test/v1"


class FakeClock:
    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeSleep:
    """Records requested delays instead of sleeping."""

    def __init__(self):
        self.delays: list[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


class FakeBackend:
    """
    Route table served through pytest-httpx.

    Unknown routes answer 404, like a real server. A route may be a fixed
    (status, body) pair, a list of such pairs consumed in order, or a callable
    taking the httpx.Request.
    """

    def __init__(self, base_url: str):
        self.base_url = base_url.rstrip("/")
        self.prefix = httpx.URL(self.base_url).path.rstrip("/")
        self.routes: dict[tuple[str, str], object] = {}
        self.calls: list[tuple[str, str]] = []
        self.bodies: list[object] = []
        self.headers: list[httpx.Headers] = []

    def on(self, method: str, path: str, status: int = 200, json_body=None, text: str | None = None):
        self.routes[(method.upper(), path)] = (status, json_body, text)

    def sequence(self, method: str, path: str, responses: list[tuple[int, object]]):
        self.routes[(method.upper(), path)] = list(responses)

    def handle(self, method: str, path: str, handler):
        self.routes[(method.upper(), path)] = handler

    def count(self, method: str, path: str) -> int:
        return self.calls.count((method.upper(), path))

    def __call__(self, request: httpx.Request) -> httpx.Response:
        path = request.url.path
        if self.prefix and path.startswith(self.prefix):
            path = path[len(self.prefix):]
        self.calls.append((request.method, path))
        self.bodies.append(json.loads(request.content) if request.content else None)
        self.headers.append(request.headers)

        route = self.routes.get((request.method, path))
        if route is None:
            return httpx.Response(404, json={"error": "Not found"})
        if callable(route):
            return route(request)
        if isinstance(route, list):
            status, body = route.pop(0) if len(route) > 1 else route[0]
            return httpx.Response(status, json=body)

        status, body, text = route
        if text is not None:
            return httpx.Response(status, text=text)
        if body is None:
            return httpx.Response(status)
        return httpx.Response(status, json=body)


def _mount(httpx_mock, base_url: str) -> FakeBackend:
    fake = FakeBackend(base_url)
    httpx_mock.add_callback(
        fake,
        url=re.compile(rf"^{re.escape(fake.base_url)}(/.*)?(\?.*)?$"),
        is_reusable=True,
        is_optional=True,
    )
    return fake


@pytest.fixture
def backend(httpx_mock) -> FakeBackend:
    return _mount(httpx_mock, BACKEND_URL)


@pytest.fixture
def assistant_api(httpx_mock) -> FakeBackend:
    return _mount(httpx_mock, ASSISTANT_URL)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def memory_cache(clock):
    return MemoryCacheStore(clock=clock)


@pytest.fixture
def fake_sleep():
    return FakeSleep()


@pytest.fixture
def user_override():
    def _override():
        return "a@acme.com"

    return _override


@pytest.fixture
def apply_auth_override(user_override):
    def _apply(app):
        app.dependency_overrides[current_user_email] = user_override

    return _apply
