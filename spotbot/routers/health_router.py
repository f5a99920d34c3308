"""Health and debug endpoints."""

import platform
import sys
import time
from datetime import UTC, datetime

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse
from slowapi import Limiter
from slowapi.util import get_remote_address

from spotbot import __version__
from spotbot.cache import get_cache
from spotbot.config import get_settings
from spotbot.core.middleware import DEFAULT_RATE_LIMIT
from spotbot.dependencies import get_spotify_service
from spotbot.models import DebugInfo, DetailedHealthResponse, HealthResponse
from spotbot.security import get_trusted_hosts, verify_api_key
from spotbot.services.realtime import ConnectionState
from spotbot.services.spotify_service import SpotifyBotService

router = APIRouter()
limiter = Limiter(key_func=get_remote_address)


@router.get("/health", response_model=HealthResponse)
async def health_check():
    """Basic health check endpoint.

    For engine status, use `/health/ready`.
    """
    return HealthResponse(status="ok", version=__version__)


@router.get("/health/ready", response_model=DetailedHealthResponse)
@limiter.limit("30/minute")
async def readiness_check(
    request: Request,
    service: SpotifyBotService = Depends(get_spotify_service),
):
    """Readiness probe - can the engine serve commands?

    Checks that the bot is authorized, holds a valid official token and
    has a live realtime connection.

    **Returns:**
    - 200: Engine is ready
    - 503: Engine is not ready

    **Rate Limited:** 30 requests/minute
    """
    status_info = await service.status()
    checks = {
        "spotify_auth": "ok" if status_info["authorized"] else "not_authenticated",
        "official_token": "ok" if status_info["official_token_valid"] else "expired",
        "realtime": "ok" if status_info["realtime_state"] == ConnectionState.LIVE.value else status_info["realtime_state"],
    }
    all_healthy = all(value == "ok" for value in checks.values())

    return JSONResponse(
        status_code=200 if all_healthy else 503,
        content=DetailedHealthResponse(
            status="healthy" if all_healthy else "unhealthy",
            version=__version__,
            timestamp=datetime.now(UTC),
            checks=checks,
        ).model_dump(mode="json"),
    )


@router.get(
    "/debug",
    response_model=DebugInfo,
    dependencies=[Depends(verify_api_key)],
    responses={
        200: {"description": "System diagnostics and state information"},
        401: {"description": "Unauthorized - missing or invalid API key"},
    },
)
async def debug_info(
    request: Request,
    service: SpotifyBotService = Depends(get_spotify_service),
):
    """Debug endpoint with system state and diagnostics.

    **Authentication Required.**

    Returns system info, engine state (credentials, realtime connection,
    automation channel, playback model), sanitized configuration and
    request statistics.
    """
    settings = get_settings()
    cache = get_cache()

    system_info = {
        "version": __version__,
        "python_version": f"{sys.version_info.major}.{sys.version_info.minor}.{sys.version_info.micro}",
        "platform": platform.system(),
        "uptime_seconds": int(time.time() - request.app.state.startup_time),
        "log_level": settings.log_level,
    }

    state_info = await service.status()
    state_info["cache_size"] = len(cache)

    # Sanitized - no secrets
    config_info = {
        "api_host": settings.api_host,
        "api_port": settings.api_port,
        "spotify_redirect_uri": settings.spotify_redirect_uri,
        "spotify_preferred_device_id": settings.spotify_preferred_device_id,
        "spotify_fallback_playlist_uri": settings.spotify_fallback_playlist_uri,
        "browser_headless": settings.browser_headless,
        "retry_attempts": settings.retry_attempts,
        "heartbeat_interval": settings.heartbeat_interval,
        "staleness_window": settings.staleness_window,
        "trusted_hosts": get_trusted_hosts(settings),
        "rate_limit_default": DEFAULT_RATE_LIMIT,
    }

    return DebugInfo(
        system=system_info,
        state=state_info,
        config=config_info,
        requests={"total_requests": request.app.state.request_count},
    )
