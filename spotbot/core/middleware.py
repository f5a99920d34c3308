"""Middleware configuration."""

import time

from fastapi import FastAPI, Request
from fastapi.middleware.trustedhost import TrustedHostMiddleware
from slowapi import Limiter
from slowapi.util import get_remote_address

from spotbot.config import Settings
from spotbot.logging_config import get_logger, log_with_context
from spotbot.security import get_trusted_hosts

logger = get_logger(__name__)

DEFAULT_RATE_LIMIT = "60/minute"
OPERATOR_PREFIX = "/api/"


def setup_middleware(app: FastAPI, settings: Settings) -> Limiter:
    """Configure all middleware for the application.

    Args:
        app: FastAPI application instance
        settings: Application settings

    Returns:
        Limiter used by the rate limit exception handler
    """
    # Only the OAuth redirect and local operators should reach the bot
    trusted_hosts = get_trusted_hosts(settings)
    log_with_context(
        logger,
        "info",
        "Configuring TrustedHost middleware",
        event_type="security_config",
        hosts=trusted_hosts,
    )
    app.add_middleware(
        TrustedHostMiddleware,
        allowed_hosts=trusted_hosts,
    )

    limiter = Limiter(key_func=get_remote_address, default_limits=[DEFAULT_RATE_LIMIT])
    app.state.limiter = limiter

    @app.middleware("http")
    async def track_requests(request: Request, call_next):
        """Count requests for /debug and log operator commands with their outcome."""
        request.app.state.request_count = getattr(request.app.state, "request_count", 0) + 1
        started = time.perf_counter()
        response = await call_next(request)

        if request.url.path.startswith(OPERATOR_PREFIX):
            log_with_context(
                logger,
                "info" if response.status_code < 500 else "warning",
                "Operator request",
                method=request.method,
                path=request.url.path,
                status_code=response.status_code,
                duration_ms=round((time.perf_counter() - started) * 1000, 1),
                event_type="operator_request",
            )
        return response

    return limiter
