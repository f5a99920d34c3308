"""Application lifespan management."""

import os
import time
from collections.abc import AsyncIterator, Callable
from contextlib import asynccontextmanager
from typing import Any

import httpx
from fastapi import FastAPI

from spotbot import __version__
from spotbot.config import get_settings
from spotbot.logging_config import get_logger, log_with_context
from spotbot.middleware.logging_middleware import redact_headers, redact_sensitive_data
from spotbot.services.spotify_service import SpotifyBotService

logger = get_logger(__name__)


async def log_request(request: httpx.Request) -> None:
    """Event hook to log requests with redacted sensitive data."""
    log_with_context(
        logger,
        "debug",
        "HTTP Request",
        method=request.method,
        url=redact_sensitive_data(str(request.url)),
        headers=redact_headers(request.headers),
        event_type="http_request",
    )


async def log_response(response: httpx.Response) -> None:
    """Event hook to log responses with redacted sensitive data."""
    await response.aread()  # Ensure response is read
    log_with_context(
        logger,
        "debug",
        "HTTP Response",
        status_code=response.status_code,
        url=redact_sensitive_data(str(response.request.url)),
        event_type="http_response",
    )


def create_http_client() -> httpx.AsyncClient:
    """Create the shared HTTP client with granular timeouts and logging hooks."""
    event_hooks: dict[str, list[Callable[..., Any]]] = {
        "request": [log_request],
        "response": [log_response],
    }

    proxy = os.getenv("HTTPS_PROXY") or os.getenv("HTTP_PROXY")
    if proxy:
        log_with_context(
            logger,
            "info",
            "Using HTTP proxy",
            proxy=redact_sensitive_data(proxy),
            event_type="proxy_config",
        )

    return httpx.AsyncClient(
        timeout=httpx.Timeout(
            connect=5.0,  # Connection establishment timeout
            read=10.0,  # Read response timeout
            write=5.0,  # Write operation timeout
            pool=5.0,  # Pool checkout timeout
        ),
        limits=httpx.Limits(
            max_keepalive_connections=5,
            max_connections=10,
            keepalive_expiry=30.0,  # How long to keep idle connections
        ),
        follow_redirects=True,
        proxy=proxy or None,
        event_hooks=event_hooks,
    )


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Manage application lifespan - startup and shutdown events.

    Exceptions after yield are re-raised so cleanup always runs.
    """
    app.state.startup_time = time.time()
    app.state.request_count = 0
    settings = get_settings()

    log_with_context(
        logger,
        "info",
        "Starting spotbot",
        version=__version__,
        event_type="app_startup",
    )

    client = create_http_client()
    app.state.http_client = client
    log_with_context(
        logger,
        "info",
        "HTTP client initialized successfully",
        event_type="http_client_ready",
    )

    # Tests may install their own engine before startup
    spotify_service: SpotifyBotService = getattr(app.state, "spotify_service", None) or SpotifyBotService(
        settings, client
    )
    app.state.spotify_service = spotify_service
    await spotify_service.initialize()
    log_with_context(
        logger,
        "info",
        "Spotify engine started",
        event_type="engine_started",
    )

    try:
        yield
    except Exception as e:
        log_with_context(
            logger,
            "error",
            "Application error during lifespan",
            error=str(e),
            error_type=type(e).__name__,
            event_type="app_error",
        )
        raise
    finally:
        log_with_context(
            logger,
            "info",
            "Shutting down spotbot",
            event_type="app_shutdown",
        )

        await spotify_service.cleanup()
        log_with_context(
            logger,
            "info",
            "Spotify engine stopped",
            event_type="engine_stopped",
        )

        await client.aclose()
        log_with_context(
            logger,
            "info",
            "HTTP client closed",
            event_type="http_client_cleanup",
        )
