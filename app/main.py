"""
Meeting insights add-on backend.

Wires settings, logging and the service container into the FastAPI app.
"""

import time
import uuid
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request

from app.config import settings
from app.infrastructure.observability.logging import (
    bind_request_context,
    clear_request_context,
    get_logger,
    log_request,
    setup_logging,
)
from app.routes import addon, health
from app.services.container import build_services, start_services

REQUEST_ID_HEADER = "X-Request-ID"

setup_logging(settings.LOG_LEVEL, json_logs=settings.LOG_JSON)
logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    services = build_services(settings)
    logger.info(
        "Add-on backend starting",
        environment=settings.environment,
        cache_backend=settings.CACHE_BACKEND,
        backend_host=settings.backend_host(),
    )

    try:
        await start_services(services)
    except Exception as e:
        logger.error("Service startup failed", error=str(e))
        await services.close()
        raise

    app.state.services = services
    yield

    logger.info("Add-on backend stopping")
    await services.close()


app = FastAPI(
    title="Voxerion Meeting Insights",
    description="Calendar add-on backend: access resolution and AI meeting insights",
    version="0.1.0",
    lifespan=lifespan,
)

app.include_router(health.router)
app.include_router(addon.router)


@app.middleware("http")
async def request_context(request: Request, call_next):
    """Tag every log line of a request with its id and echo the id back."""
    request_id = request.headers.get(REQUEST_ID_HEADER) or uuid.uuid4().hex[:12]
    bind_request_context(request_id=request_id)

    started = time.perf_counter()
    try:
        response = await call_next(request)
        log_request(
            method=request.method,
            path=request.url.path,
            status_code=response.status_code,
            duration_ms=round((time.perf_counter() - started) * 1000, 2),
        )
    finally:
        clear_request_context()

    response.headers[REQUEST_ID_HEADER] = request_id
    return response


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("app.main:app", host="0.0.0.0", port=8000, reload=settings.debug)
