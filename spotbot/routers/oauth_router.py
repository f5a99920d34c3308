"""Spotify OAuth redirect callback."""

from fastapi import APIRouter, Depends, HTTPException, Query
from fastapi.responses import HTMLResponse

from spotbot.dependencies import get_spotify_service
from spotbot.logging_config import get_logger, log_with_context
from spotbot.services.credentials import AUTHORIZE_STATE
from spotbot.services.spotify_service import SpotifyBotService

router = APIRouter()
logger = get_logger(__name__)


@router.get(
    "/spotify",
    response_class=HTMLResponse,
    summary="Spotify OAuth redirect callback",
    responses={
        200: {"description": "Authorization code exchanged"},
        400: {"description": "Spotify reported an error or the request is malformed"},
        401: {"description": "Code exchange failed"},
    },
)
async def spotify_callback(
    code: str | None = Query(default=None),
    state: str | None = Query(default=None),
    error: str | None = Query(default=None),
    service: SpotifyBotService = Depends(get_spotify_service),
):
    """Receive the authorization code after the consent page.

    The automation browser is the only client that reaches this endpoint,
    so it is not protected by the API key.
    """
    if error:
        log_with_context(logger, "warning", "Spotify authorization denied", error=error, event_type="oauth_denied")
        raise HTTPException(status_code=400, detail=f"Spotify auth failed: {error}")

    if state != AUTHORIZE_STATE:
        raise HTTPException(status_code=400, detail="Invalid state parameter")

    if not code:
        raise HTTPException(status_code=400, detail="No authorization code received")

    await service.credentials.receive_auth_code(code)
    return HTMLResponse(content="<html><body>Spotify authorization complete. You can close this window.</body></html>")
