"""Spotify operator routes.

Every route requires the API key. Engine errors propagate as spotbot
exceptions and are rendered by the registered exception handlers.
"""

import tempfile
from pathlib import Path
from typing import Any, Literal

from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import FileResponse, PlainTextResponse
from slowapi import Limiter
from slowapi.util import get_remote_address

from spotbot.dependencies import get_spotify_service
from spotbot.logging_config import get_logger, log_with_context
from spotbot.models import Device, PlayContextRequest
from spotbot.security import verify_api_key
from spotbot.services.spotify_service import SpotifyBotService

router = APIRouter(dependencies=[Depends(verify_api_key)])
limiter = Limiter(key_func=get_remote_address)
logger = get_logger(__name__)

DEBUG_DIR = Path(tempfile.gettempdir())


@router.get(
    "/status",
    summary="Get what is playing and queued",
    description="""
    Returns the cached playback state maintained from realtime events.

    When the cached state is older than the staleness window it is
    refreshed with a poll first. `null` means nothing has been seen playing yet.
    """,
    responses={
        200: {
            "description": "Successful response",
            "content": {
                "application/json": {
                    "example": {
                        "now_playing": {"id": "4u7EnebtmKWzUH433cf5Qv", "song_title": "Bohemian Rhapsody", "artists": ["Queen"]},
                        "queued_tracks": [],
                        "context": {
                            "type": "album",
                            "is_radio": False,
                            "name": "A Night at the Opera",
                            "artists": "Queen",
                            "uri": "spotify:album:1GbtB4zTqAsyfZEsm1RZfx",
                        },
                        "last_updated": "2024-01-01T12:00:00Z",
                    }
                }
            },
        },
    },
)
@limiter.limit("60/minute")
async def get_status(
    request: Request,
    service: SpotifyBotService = Depends(get_spotify_service),
) -> dict[str, Any] | None:
    state = await service.get_cached_status()
    return state.model_dump(mode="json") if state else None


@router.get("/devices", response_model=list[Device], summary="List Spotify Connect devices")
@limiter.limit("60/minute")
async def get_devices(
    request: Request,
    service: SpotifyBotService = Depends(get_spotify_service),
):
    return await service.get_devices()


@router.get("/playback-state", summary="Raw playback state from the official API")
@limiter.limit("60/minute")
async def get_playback_state(
    request: Request,
    service: SpotifyBotService = Depends(get_spotify_service),
):
    return await service.get_playback_state()


@router.get("/search", summary="Search the Spotify catalog")
@limiter.limit("60/minute")
async def search(
    request: Request,
    q: str = Query(..., min_length=1, description="Search terms"),
    type: Literal["track", "album", "artist", "playlist", "all"] = Query(default="track"),
    offset: int = Query(default=0, ge=0),
    limit: int = Query(default=10, ge=1, le=50),
    service: SpotifyBotService = Depends(get_spotify_service),
):
    """Search tracks, or any catalog type.

    Args:
        q: Search terms
        type: Item type to search, 'all' for every type
    """
    if type == "track":
        return await service.search_tracks(q, offset=offset, limit=limit)
    types = "track,album,artist,playlist" if type == "all" else type
    return await service.search(q, types=types, limit=limit)


@router.post("/queue/{track_id}", summary="Queue a track on the preferred device")
@limiter.limit("30/minute")
async def queue_track(
    request: Request,
    track_id: str,
    service: SpotifyBotService = Depends(get_spotify_service),
):
    await service.queue_track(track_id)
    return {"status": "queued", "track_id": track_id}


@router.post(
    "/play",
    summary="Start a context",
    description="""
    Start an album, playlist, artist or radio context on the preferred device.
    Radio and station URIs are started through the web player.

    **Rate Limited:** 30 requests/minute
    """,
)
@limiter.limit("30/minute")
async def play_context(
    request: Request,
    body: PlayContextRequest,
    service: SpotifyBotService = Depends(get_spotify_service),
):
    await service.play_context(body.uri)
    return {"status": "playing", "uri": body.uri}


@router.post("/radio/{kind}/{item_id}", summary="Start radio seeded by an artist, album or playlist")
@limiter.limit("30/minute")
async def play_radio(
    request: Request,
    kind: str,
    item_id: str,
    service: SpotifyBotService = Depends(get_spotify_service),
):
    uri = await service.play_radio(kind, item_id)
    return {"status": "playing", "uri": uri}


@router.get("/volume", summary="Current volume of the active device")
@limiter.limit("60/minute")
async def get_volume(
    request: Request,
    service: SpotifyBotService = Depends(get_spotify_service),
):
    return {"volume_percent": await service.get_volume()}


@router.put("/volume/{percent}", summary="Set the preferred device volume (0-100)")
@limiter.limit("30/minute")
async def set_volume(
    request: Request,
    percent: str,
    service: SpotifyBotService = Depends(get_spotify_service),
):
    volume = await service.set_volume(percent)
    return {"status": "ok", "volume_percent": volume}


@router.post("/skip", summary="Skip to the next track")
@limiter.limit("30/minute")
async def skip(
    request: Request,
    service: SpotifyBotService = Depends(get_spotify_service),
):
    await service.skip()
    return {"status": "skipped"}


@router.post("/pause", summary="Pause playback")
@limiter.limit("30/minute")
async def pause(
    request: Request,
    service: SpotifyBotService = Depends(get_spotify_service),
):
    await service.pause()
    return {"status": "paused"}


@router.post("/resume", summary="Resume playback on the preferred device")
@limiter.limit("30/minute")
async def resume(
    request: Request,
    service: SpotifyBotService = Depends(get_spotify_service),
):
    await service.resume()
    return {"status": "playing"}


@router.post("/transfer/{device_id}", summary="Transfer playback to another device")
@limiter.limit("30/minute")
async def transfer_playback(
    request: Request,
    device_id: str,
    play: bool = Query(default=True, description="Start playing after the transfer"),
    service: SpotifyBotService = Depends(get_spotify_service),
):
    await service.transfer_playback(device_id, play=play)
    return {"status": "transferred", "device_id": device_id}


@router.get("/debug/screenshot", summary="Screenshot of the automation browser", response_class=FileResponse)
@limiter.limit("10/minute")
async def dump_screenshot(
    request: Request,
    service: SpotifyBotService = Depends(get_spotify_service),
):
    path = await service.save_screenshot(DEBUG_DIR / "spotbot-screenshot.png")
    log_with_context(logger, "info", "Captured browser screenshot", path=str(path), event_type="debug_screenshot")
    return FileResponse(path, media_type="image/png")


@router.get("/debug/page-source", summary="HTML of the automation browser's page", response_class=PlainTextResponse)
@limiter.limit("10/minute")
async def dump_page_source(
    request: Request,
    service: SpotifyBotService = Depends(get_spotify_service),
):
    path = await service.save_page_source(DEBUG_DIR / "spotbot-page.html")
    return PlainTextResponse(path.read_text(encoding="utf-8"))
