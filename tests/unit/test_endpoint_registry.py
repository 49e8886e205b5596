import pytest

from app.models.domain.backend_domain import EndpointMap
from app.services.backend.endpoint_registry import (
    ENDPOINT_CACHE_KEY,
    FALLBACK_ENDPOINTS,
    EndpointRegistry,
    ProbeResult,
    expand_template,
)
from app.services.backend.http_client import HttpClient

BACKEND_URL = "http://backend.test"


def make_registry(memory_cache):
    return EndpointRegistry(HttpClient(BACKEND_URL), memory_cache)


@pytest.mark.asyncio
async def test_forbidden_route_counts_as_existing(backend, memory_cache):
    backend.on("GET", "/api/users", status=403, json_body={"message": "forbidden"})
    backend.on("GET", "/api/user", status=404)
    registry = make_registry(memory_cache)

    endpoint_map = await registry.discover()

    assert endpoint_map.users == "/api/users"
    assert backend.count("GET", "/api/user") == 0


@pytest.mark.asyncio
async def test_absent_routes_fall_through_to_later_candidates(backend, memory_cache):
    backend.on("GET", "/api/v1/users", json_body=[])
    backend.on("GET", "/api/login", status=405)
    registry = make_registry(memory_cache)

    endpoint_map = await registry.discover()

    assert endpoint_map.users == "/api/v1/users"
    assert endpoint_map.login == "/api/login"
    assert backend.count("GET", "/api/users") == 1
    assert backend.count("GET", "/api/user") == 1


@pytest.mark.asyncio
async def test_parametrized_routes_are_stored_as_templates(backend, memory_cache):
    backend.on("GET", "/api/users", json_body=[])
    backend.on("GET", "/api/users/by-email/test@example.com", status=401)
    backend.on("GET", "/api/company/domain/example.com", json_body={"data": None})
    registry = make_registry(memory_cache)

    endpoint_map = await registry.discover()

    assert endpoint_map.user_by_email == "/api/users/by-email/{email}"
    assert endpoint_map.company_by_domain == "/api/company/domain/{domain}"
    assert await registry.build("user_by_email", email="a@acme.com") == "/api/users/by-email/a@acme.com"


@pytest.mark.asyncio
async def test_server_errors_and_html_pages_are_skipped(backend, memory_cache):
    backend.on("GET", "/api/users", status=502)
    backend.on("GET", "/api/user", text="<html>catch-all</html>")
    backend.on("GET", "/users", json_body=[])
    registry = make_registry(memory_cache)

    endpoint_map = await registry.discover()

    assert endpoint_map.users == "/users"


@pytest.mark.asyncio
async def test_discovery_is_idempotent(backend, memory_cache):
    backend.on("GET", "/api/users", status=403)
    backend.on("GET", "/api/companies", json_body=[])
    backend.on("GET", "/api/auth/login", status=405)
    registry = make_registry(memory_cache)

    first = await registry.discover()
    second = await registry.discover()

    assert first == second
    assert EndpointMap.from_dict(await memory_cache.get(ENDPOINT_CACHE_KEY)) == first


@pytest.mark.asyncio
async def test_nothing_found_uses_and_caches_fallback(backend, memory_cache):
    registry = make_registry(memory_cache)

    endpoint_map = await registry.discover()

    assert endpoint_map == FALLBACK_ENDPOINTS
    assert await registry.current_map() == FALLBACK_ENDPOINTS


@pytest.mark.asyncio
async def test_resolve_discovers_lazily_once(backend, memory_cache):
    backend.on("GET", "/api/users", json_body=[])
    registry = make_registry(memory_cache)

    assert await registry.resolve("users") == "/api/users"
    probes = len(backend.calls)

    assert await registry.resolve("companies") is None
    assert len(backend.calls) == probes


@pytest.mark.asyncio
async def test_resolve_rediscovers_when_users_and_login_unknown(backend, memory_cache):
    await memory_cache.set_with_ttl(
        ENDPOINT_CACHE_KEY, EndpointMap(companies="/api/companies").to_dict(), 3600
    )
    backend.on("GET", "/api/users", json_body=[])
    registry = make_registry(memory_cache)

    assert await registry.resolve("users") == "/api/users"


@pytest.mark.asyncio
async def test_cached_map_expires_after_an_hour(backend, memory_cache, clock):
    backend.on("GET", "/api/users", json_body=[])
    registry = make_registry(memory_cache)
    await registry.discover()

    clock.advance(3600)

    assert await registry.current_map() is None


@pytest.mark.asyncio
async def test_remember_and_invalidate(memory_cache):
    registry = make_registry(memory_cache)

    await registry.remember("users", "/api/v1/users")
    assert (await registry.current_map()).users == "/api/v1/users"

    await registry.invalidate()
    assert await registry.current_map() is None


@pytest.mark.asyncio
async def test_probe_classification(backend, memory_cache):
    backend.on("GET", "/exists", json_body={})
    backend.on("GET", "/locked", status=401)
    backend.on("GET", "/broken", status=500)
    registry = make_registry(memory_cache)

    assert await registry.probe("/exists") is ProbeResult.EXISTS
    assert await registry.probe("/locked") is ProbeResult.EXISTS
    assert await registry.probe("/missing") is ProbeResult.ABSENT
    assert await registry.probe("/broken") is ProbeResult.UNREACHABLE


def test_expand_template_quotes_values():
    assert expand_template("/api/users/email/{email}", email="a b@acme.com") == "/api/users/email/a%20b@acme.com"


@pytest.mark.asyncio
async def test_unknown_operation_is_rejected(memory_cache):
    registry = make_registry(memory_cache)

    with pytest.raises(KeyError):
        await registry.resolve("orders")
