"""
Structured logging for the meeting insights add-on backend.

JSON lines in production, coloured console output for local work. Request
scoped fields (request id, path) are bound through contextvars so every log
line emitted while serving a request carries them.
"""

import logging
import sys
from typing import Any

import structlog
from structlog.contextvars import bind_contextvars, clear_contextvars, merge_contextvars
from structlog.stdlib import LoggerFactory

# Field names whose values never reach the output
SECRET_FIELDS = {"token", "access_token", "api_key", "password", "authorization"}


def _redact_secrets(logger, method_name: str, event_dict: dict[str, Any]) -> dict[str, Any]:
    for key in event_dict:
        if key.lower() in SECRET_FIELDS and event_dict[key]:
            event_dict[key] = "***"
    return event_dict


def setup_logging(log_level: str = "INFO", json_logs: bool = True) -> None:
    """
    Configure structlog on top of stdlib logging.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        json_logs: Render JSON lines; False switches to the console renderer
    """
    renderer = structlog.processors.JSONRenderer() if json_logs else structlog.dev.ConsoleRenderer()

    structlog.configure(
        processors=[
            merge_contextvars,
            structlog.stdlib.add_log_level,
            structlog.stdlib.add_logger_name,
            structlog.processors.TimeStamper(fmt="iso"),
            _redact_secrets,
            renderer,
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        logger_factory=LoggerFactory(),
        context_class=dict,
        cache_logger_on_first_use=True,
    )

    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=getattr(logging, log_level.upper()),
    )

    # httpx logs every request line at INFO
    for noisy in ("httpx", "httpcore", "uvicorn.access"):
        logging.getLogger(noisy).setLevel(logging.WARNING)


def get_logger(name: str = None) -> structlog.stdlib.BoundLogger:
    return structlog.get_logger(name)


def bind_request_context(**fields: Any) -> None:
    """Start a fresh request context carrying `fields`."""
    clear_contextvars()
    bind_contextvars(**fields)


def clear_request_context() -> None:
    clear_contextvars()


def log_health_check(service: str, healthy: bool, latency_ms: float, error: str = None):
    """Log one readiness probe result."""
    logger = get_logger("health")
    fields = {"service": service, "healthy": healthy, "latency_ms": latency_ms}
    if error:
        fields["error"] = error

    if healthy:
        logger.info("Health check passed", **fields)
    else:
        logger.error("Health check failed", **fields)


def log_request(method: str, path: str, status_code: int, duration_ms: float):
    """Access log line; 4xx and 5xx are logged as warnings."""
    logger = get_logger("http")
    log = logger.warning if status_code >= 400 else logger.info
    log(
        "HTTP request failed" if status_code >= 400 else "HTTP request completed",
        method=method,
        path=path,
        status_code=status_code,
        duration_ms=duration_ms,
    )
