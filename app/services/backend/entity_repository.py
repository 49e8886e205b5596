"""
Entity repository for the company/user backend.
CRUD over a named collection without knowing the backend's exact shape.

Every operation is a ranked list of strategies evaluated in order:
    1. structured query  POST {query_path} {"collection", "filter", ...}
    2. REST              registry-resolved base path (and lookup routes)
    3. alternatives      hardcoded path conventions, remembered on success
    4. collection scan   full fetch + client-side filter (reads only)
The strategy that answers is memoized per operation and tried first next time.
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any
from urllib.parse import quote

from app.infrastructure.observability.logging import get_logger
from app.models.domain.backend_domain import (
    Found,
    LookupOutcome,
    NotFound,
    StrategyExhausted,
    StrategyFailure,
)
from app.services.backend.auth_session import AuthSession
from app.services.backend.endpoint_registry import EndpointRegistry
from app.services.backend.http_client import TRANSIENT_ERRORS, BackendHTTPError, HttpClient

logger = get_logger(__name__)

DEFAULT_QUERY_PATH = "/api/query"

# String fields compared after strip + lowercase
CASE_INSENSITIVE_FIELDS = {"email", "domain"}


@dataclass(frozen=True)
class EntityConfig:
    """Static description of one backend collection."""

    collection: str
    operation: str
    alternative_paths: tuple[str, ...] = ()
    # filter field -> registry operation with a `{field}` templated route
    lookup_operations: dict[str, str] = field(default_factory=dict)


USERS = EntityConfig(
    collection="users",
    operation="users",
    alternative_paths=("/api/user", "/api/v1/users", "/users"),
    lookup_operations={"email": "user_by_email"},
)

COMPANIES = EntityConfig(
    collection="companies",
    operation="companies",
    alternative_paths=("/api/company", "/api/v1/companies", "/companies"),
    lookup_operations={"domain": "company_by_domain"},
)


class RepositoryError(Exception):
    """Raised when every strategy of a list operation failed."""

    def __init__(self, message: str, collection: str, failures: list[StrategyFailure] | None = None):
        super().__init__(message)
        self.collection = collection
        self.failures = failures or []


class StrategyUnavailable(Exception):
    """A strategy cannot run at all (no route, unsupported query endpoint)."""


@dataclass
class _CallContext:
    reauthenticated: bool = False


Strategy = tuple[str, Callable[[], Awaitable[Any]]]


def normalize_payload(payload: Any) -> list[dict[str, Any]]:
    """
    Flatten the response shapes the backend is known to use.

    Accepts {"data": [...]}, {"data": {...}}, a bare list, or the bare entity.
    """
    if isinstance(payload, list):
        return [item for item in payload if isinstance(item, dict)]

    if isinstance(payload, dict):
        if "data" in payload:
            data = payload["data"]
            if isinstance(data, list):
                return [item for item in data if isinstance(item, dict)]
            if isinstance(data, dict):
                return [data]
            return []
        return [payload] if payload else []

    return []


def matches_id(record: dict[str, Any], entity_id: Any) -> bool:
    wanted = str(entity_id)
    return any(
        record.get(key) is not None and str(record.get(key)) == wanted for key in ("_id", "id")
    )


def _field_values(record: dict[str, Any], key: str) -> list[Any]:
    values = []
    for candidate in (record.get(key), record.get(f"{key}s")):
        if isinstance(candidate, list):
            values.extend(candidate)
        elif candidate is not None:
            values.append(candidate)
    return values


def matches_filter(record: dict[str, Any], filters: dict[str, Any] | None) -> bool:
    """Client-side equality filter; plural list fields (domains) also match."""
    for key, expected in (filters or {}).items():
        if key in ("id", "_id"):
            if not matches_id(record, expected):
                return False
            continue

        values = _field_values(record, key)
        if key in CASE_INSENSITIVE_FIELDS:
            wanted = str(expected).strip().lower()
            if not any(str(value).strip().lower() == wanted for value in values):
                return False
        elif not any(value == expected or str(value) == str(expected) for value in values):
            return False
    return True


def _first_match(records: list[dict[str, Any]], filters: dict[str, Any]) -> LookupOutcome:
    for record in records:
        if matches_filter(record, filters):
            return Found(record)
    return NotFound()


def _first_with_id(records: list[dict[str, Any]], entity_id: str) -> LookupOutcome:
    for record in records:
        if matches_id(record, entity_id):
            return Found(record)
    return NotFound()


class EntityRepository:
    """
    CRUD facade over one backend collection.

    Reads return None (or an empty list) when nothing is found; writes raise
    the last strategy error when every strategy failed.
    """

    def __init__(
        self,
        entity: EntityConfig,
        http: HttpClient,
        registry: EndpointRegistry,
        auth: AuthSession | None = None,
        *,
        query_path: str = DEFAULT_QUERY_PATH,
    ):
        self.entity = entity
        self._http = http
        self._registry = registry
        self._auth = auth
        self._query_path = query_path
        self._winners: dict[str, str] = {}
        self._structured_supported: bool | None = None

    # ------------------------------------------------------------------
    # Transport helpers
    # ------------------------------------------------------------------

    async def _ensure_session(self) -> None:
        if self._auth is not None and not await self._auth.is_authenticated():
            await self._auth.try_auth()

    async def _call(
        self,
        ctx: _CallContext,
        path: str,
        method: str = "GET",
        payload: Any = None,
        params: dict[str, Any] | None = None,
    ) -> Any:
        """Request with one re-authentication retry on 401/403 per operation."""
        try:
            return await self._http.request(path, method, payload=payload, params=params)
        except BackendHTTPError as e:
            if not e.is_auth_error or self._auth is None or ctx.reauthenticated:
                raise

            ctx.reauthenticated = True
            if e.status_code == 403:
                await self._auth.invalidate()
            if not await self._auth.try_auth():
                raise

            logger.info("Retrying backend call after re-authentication", path=path, method=method)
            return await self._http.request(path, method, payload=payload, params=params)

    async def _base_path(self) -> str:
        path = await self._registry.resolve(self.entity.operation)
        if not path:
            raise StrategyUnavailable(f"No route known for {self.entity.operation}")
        return path

    async def _structured(self, ctx: _CallContext, body: dict[str, Any]) -> Any:
        try:
            result = await self._call(
                ctx, self._query_path, "POST", payload={"collection": self.entity.collection, **body}
            )
        except BackendHTTPError as e:
            if e.status_code in (404, 405, 501):
                self._structured_supported = False
                logger.info("Structured query endpoint unavailable", path=self._query_path)
                raise StrategyUnavailable("Structured query not supported") from e
            raise

        self._structured_supported = True
        return result

    def _with_structured(self, strategies: list[Strategy]) -> list[Strategy]:
        if self._structured_supported is False:
            return [s for s in strategies if s[0] != "structured"]
        return strategies

    def _ordered(self, operation: str, strategies: list[Strategy]) -> list[Strategy]:
        strategies = self._with_structured(strategies)
        winner = self._winners.get(operation)
        if winner is None:
            return strategies
        return sorted(strategies, key=lambda strategy: strategy[0] != winner)

    def _alternatives(self, build: Callable[[str], Callable[[], Awaitable[Any]]]) -> list[Strategy]:
        return [(f"alternative:{path}", build(path)) for path in self.entity.alternative_paths]

    # ------------------------------------------------------------------
    # Strategy runners
    # ------------------------------------------------------------------

    async def _run_reads(self, operation: str, strategies: list[Strategy]) -> LookupOutcome:
        await self._ensure_session()

        failures: list[StrategyFailure] = []
        answered_not_found = False

        for name, run in self._ordered(operation, strategies):
            try:
                outcome = await run()
            except BackendHTTPError as e:
                if e.is_not_found:
                    answered_not_found = True
                    continue
                failures.append(StrategyFailure(name, e))
                continue
            except (*TRANSIENT_ERRORS, StrategyUnavailable) as e:
                failures.append(StrategyFailure(name, e))
                continue

            if isinstance(outcome, Found):
                self._winners[operation] = name
                await self._remember_alternative(name)
                logger.debug(
                    "Repository strategy answered",
                    collection=self.entity.collection,
                    operation=operation,
                    strategy=name,
                )
                return Found(outcome.value, strategy=name)
            answered_not_found = True

        if answered_not_found:
            return NotFound()

        logger.warning(
            "All repository strategies failed",
            collection=self.entity.collection,
            operation=operation,
            failures=[failure.describe() for failure in failures],
        )
        return StrategyExhausted(failures)

    async def _run_writes(self, operation: str, strategies: list[Strategy]) -> Any:
        await self._ensure_session()

        last_error: Exception | None = None
        for name, run in self._ordered(operation, strategies):
            try:
                result = await run()
            except (*TRANSIENT_ERRORS, StrategyUnavailable) as e:
                logger.debug(
                    "Repository write strategy failed",
                    collection=self.entity.collection,
                    operation=operation,
                    strategy=name,
                    error=str(e),
                )
                last_error = e
                continue

            self._winners[operation] = name
            await self._remember_alternative(name)
            return result

        logger.error(
            "Repository write failed on every strategy",
            collection=self.entity.collection,
            operation=operation,
            error=str(last_error),
        )
        if last_error is None:
            raise RepositoryError(f"No strategy available for {operation}", self.entity.collection)
        raise last_error

    async def _remember_alternative(self, strategy_name: str) -> None:
        if strategy_name.startswith("alternative:"):
            await self._registry.remember(self.entity.operation, strategy_name.split(":", 1)[1])

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def lookup(self, filters: dict[str, Any]) -> LookupOutcome:
        """First record matching `filters`, as a tagged outcome."""
        ctx = _CallContext()

        async def structured():
            return _first_match(normalize_payload(await self._structured(ctx, {"filter": filters})), filters)

        async def lookup_route():
            key, value = next(iter(filters.items()))
            path = await self._registry.build(self.entity.lookup_operations[key], **{key: value})
            if not path:
                raise StrategyUnavailable(f"No lookup route for {key}")
            return _first_match(normalize_payload(await self._call(ctx, path)), filters)

        async def rest():
            payload = await self._call(ctx, await self._base_path(), params=filters)
            return _first_match(normalize_payload(payload), filters)

        def alternative(path: str):
            async def run():
                return _first_match(normalize_payload(await self._call(ctx, path, params=filters)), filters)

            return run

        async def collection_scan():
            return _first_match(normalize_payload(await self._call(ctx, await self._base_path())), filters)

        strategies: list[Strategy] = [("structured", structured)]
        if len(filters) == 1 and next(iter(filters)) in self.entity.lookup_operations:
            strategies.append(("lookup_route", lookup_route))
        strategies.append(("rest", rest))
        strategies.extend(self._alternatives(alternative))
        strategies.append(("collection_scan", collection_scan))

        return await self._run_reads("find", strategies)

    async def find(self, filters: dict[str, Any]) -> dict[str, Any] | None:
        outcome = await self.lookup(filters)
        return outcome.value if isinstance(outcome, Found) else None

    async def lookup_by_id(self, entity_id: str) -> LookupOutcome:
        """Record whose `_id` or `id` equals `entity_id`, as a tagged outcome."""
        ctx = _CallContext()
        quoted_id = quote(str(entity_id), safe="")

        async def structured():
            for id_field in ("_id", "id"):
                payload = await self._structured(ctx, {"filter": {id_field: entity_id}})
                outcome = _first_with_id(normalize_payload(payload), entity_id)
                if isinstance(outcome, Found):
                    return outcome
            return NotFound()

        async def rest():
            payload = await self._call(ctx, f"{await self._base_path()}/{quoted_id}")
            return _first_with_id(normalize_payload(payload), entity_id)

        def alternative(path: str):
            async def run():
                return _first_with_id(normalize_payload(await self._call(ctx, f"{path}/{quoted_id}")), entity_id)

            return run

        async def collection_scan():
            return _first_with_id(normalize_payload(await self._call(ctx, await self._base_path())), entity_id)

        strategies: list[Strategy] = [("structured", structured), ("rest", rest)]
        strategies.extend(self._alternatives(alternative))
        strategies.append(("collection_scan", collection_scan))

        return await self._run_reads("get_by_id", strategies)

    async def get_by_id(self, entity_id: str) -> dict[str, Any] | None:
        if not entity_id:
            return None
        outcome = await self.lookup_by_id(entity_id)
        return outcome.value if isinstance(outcome, Found) else None

    async def list(self, filters: dict[str, Any] | None = None) -> list[dict[str, Any]]:
        """
        All records matching `filters` (all records when None).

        Raises:
            RepositoryError: If every strategy failed with an error
        """
        ctx = _CallContext()

        def keep(payload: Any) -> Found:
            return Found([r for r in normalize_payload(payload) if matches_filter(r, filters)])

        async def structured():
            return keep(await self._structured(ctx, {"filter": filters or {}}))

        async def rest():
            return keep(await self._call(ctx, await self._base_path(), params=filters or None))

        def alternative(path: str):
            async def run():
                return keep(await self._call(ctx, path, params=filters or None))

            return run

        strategies: list[Strategy] = [("structured", structured), ("rest", rest)]
        strategies.extend(self._alternatives(alternative))

        outcome = await self._run_reads("list", strategies)
        if isinstance(outcome, Found):
            return outcome.value
        if isinstance(outcome, StrategyExhausted):
            raise RepositoryError(
                f"Unable to list {self.entity.collection}", self.entity.collection, outcome.failures
            )
        return []

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    async def create(self, data: dict[str, Any]) -> dict[str, Any]:
        """Create a record; returns the stored record when the backend echoes it."""
        ctx = _CallContext()

        def stored(payload: Any) -> dict[str, Any]:
            records = normalize_payload(payload)
            return records[0] if records else dict(data)

        async def structured():
            return stored(await self._structured(ctx, {"action": "create", "document": data}))

        async def rest():
            return stored(await self._call(ctx, await self._base_path(), "POST", payload=data))

        def alternative(path: str):
            async def run():
                return stored(await self._call(ctx, path, "POST", payload=data))

            return run

        strategies: list[Strategy] = [("structured", structured), ("rest", rest)]
        strategies.extend(self._alternatives(alternative))

        record = await self._run_writes("create", strategies)
        logger.info("Backend record created", collection=self.entity.collection)
        return record

    async def update(self, entity_id: str, data: dict[str, Any]) -> dict[str, Any]:
        ctx = _CallContext()
        quoted_id = quote(str(entity_id), safe="")

        def stored(payload: Any) -> dict[str, Any]:
            records = normalize_payload(payload)
            return records[0] if records else {"id": entity_id, **data}

        async def structured():
            body = {"action": "update", "filter": {"id": entity_id}, "update": data}
            return stored(await self._structured(ctx, body))

        async def rest():
            path = f"{await self._base_path()}/{quoted_id}"
            return stored(await self._call(ctx, path, "PUT", payload=data))

        def alternative(path: str):
            async def run():
                return stored(await self._call(ctx, f"{path}/{quoted_id}", "PUT", payload=data))

            return run

        strategies: list[Strategy] = [("structured", structured), ("rest", rest)]
        strategies.extend(self._alternatives(alternative))

        record = await self._run_writes("update", strategies)
        logger.info("Backend record updated", collection=self.entity.collection, entity_id=entity_id)
        return record

    async def delete(self, entity_id: str) -> bool:
        ctx = _CallContext()
        quoted_id = quote(str(entity_id), safe="")

        async def structured():
            await self._structured(ctx, {"action": "delete", "filter": {"id": entity_id}})
            return True

        async def rest():
            await self._call(ctx, f"{await self._base_path()}/{quoted_id}", "DELETE")
            return True

        def alternative(path: str):
            async def run():
                await self._call(ctx, f"{path}/{quoted_id}", "DELETE")
                return True

            return run

        strategies: list[Strategy] = [("structured", structured), ("rest", rest)]
        strategies.extend(self._alternatives(alternative))

        result = await self._run_writes("delete", strategies)
        logger.info("Backend record deleted", collection=self.entity.collection, entity_id=entity_id)
        return result
