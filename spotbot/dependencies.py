"""FastAPI dependencies for dependency injection."""

from fastapi import Request

from spotbot.services.spotify_service import SpotifyBotService


async def get_spotify_service(request: Request) -> SpotifyBotService:
    """
    Get the Spotify engine from app state.

    Args:
        request: The FastAPI request object.

    Returns:
        The shared SpotifyBotService instance.

    Raises:
        RuntimeError: If the engine is not initialized.
    """
    service: SpotifyBotService | None = getattr(request.app.state, "spotify_service", None)

    if service is None:
        raise RuntimeError("Spotify engine not initialized.")

    return service
