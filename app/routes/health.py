# app/routes/health.py
"""
Health check endpoints with cache and configuration checks.
"""

import time

from fastapi import APIRouter, Depends

from app.infrastructure.observability.logging import log_health_check
from app.services.container import ServiceContainer, get_services

router = APIRouter()


@router.get("/healthz")
async def healthz():
    """Basic health check - always returns 200 if app is running."""
    return {"status": "ok", "service": "meeting-insights-addon"}


@router.get("/readyz")
async def readyz(services: ServiceContainer = Depends(get_services)):
    """
    Readiness check: cache reachability plus required configuration.
    """
    checks = {}
    overall_ok = True

    # 1) Cache health check
    t0 = time.time()
    try:
        cache_ok = await services.cache.ping()
        latency_ms = round((time.time() - t0) * 1000, 1)
        checks["cache"] = {
            "ok": bool(cache_ok),
            "latency_ms": latency_ms,
            "backend": services.settings.CACHE_BACKEND,
        }
        log_health_check("cache", bool(cache_ok), latency_ms)
        overall_ok = overall_ok and bool(cache_ok)
    except Exception as e:
        checks["cache"] = {"ok": False, "error": f"{type(e).__name__}: {e}"}
        overall_ok = False

    # 2) Configuration checks
    settings = services.settings
    config_issues = []

    if not settings.BACKEND_BASE_URL:
        config_issues.append("BACKEND_BASE_URL not set")

    if not settings.OPENAI_API_KEY:
        config_issues.append("OPENAI_API_KEY not set")

    has_credentials = (
        settings.primary_credentials() or settings.BACKEND_FALLBACK_CREDENTIALS or settings.BACKEND_DEV_TOKEN
    )
    if not has_credentials:
        config_issues.append("No backend credentials configured")

    checks["configuration"] = {
        "ok": not config_issues,
        "issues": config_issues or None,
        "environment": settings.environment,
    }
    overall_ok = overall_ok and not config_issues

    return {"overall_ok": overall_ok, "checks": checks, "timestamp": time.time()}
