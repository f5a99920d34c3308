"""Spotify Web API client.

Every method performs exactly one remote call wrapped in the bounded retry
wrapper. HTTP failures are classified into typed errors here, at the call
boundary, so nothing above this layer inspects status codes or message text.
"""

import json
from typing import Any

import httpx

from spotbot.config import Settings
from spotbot.exceptions import ErrorKind, NotFoundError, SpotifyAPIException, UnauthorizedError
from spotbot.logging_config import get_logger, log_with_context
from spotbot.middleware.logging_middleware import redact_sensitive_data
from spotbot.models import CredentialKind, Device
from spotbot.services.retry import retrying

logger = get_logger(__name__)

MAX_TRACKS_PER_REQUEST = 50
REQUEST_TIMEOUT = 10.0  # seconds


def raise_for_spotify_status(
    response: httpx.Response,
    operation: str,
    credential_kind: CredentialKind = CredentialKind.OFFICIAL,
) -> None:
    """Raise the typed error matching a non-2xx response.

    Raises:
        UnauthorizedError: 401, tagged with the credential kind that was used
        NotFoundError: 404
        SpotifyAPIException: anything else (rate limit, server, client)
    """
    if 200 <= response.status_code < 300:
        return

    kind = ErrorKind.from_status(response.status_code)
    details = {
        "operation": operation,
        "upstream_status": response.status_code,
        "body": response.text[:200],
    }

    if kind is ErrorKind.UNAUTHORIZED:
        raise UnauthorizedError(
            f"{operation}: Spotify rejected the {credential_kind.value} token",
            credential_kind=credential_kind.value,
            details=details,
        )
    if kind is ErrorKind.NOT_FOUND:
        raise NotFoundError(f"{operation}: resource not found", details=details)

    raise SpotifyAPIException(
        f"{operation} failed with HTTP {response.status_code}",
        kind=kind,
        status_code=429 if kind is ErrorKind.RATE_LIMITED else 502,
        details=details,
    )


def parse_body(response: httpx.Response) -> Any:
    """Decode a JSON body from the raw text; empty or non-JSON bodies yield None."""
    if response.status_code == 204 or not response.text:
        return None
    try:
        return json.loads(response.text)
    except ValueError:
        return None


class SpotifyAPI:
    """Official Spotify Web API calls used by the bot."""

    def __init__(self, client: httpx.AsyncClient, credentials: Any, settings: Settings):
        """Initialize the client.

        Args:
            client: Shared HTTP client
            credentials: CredentialLifecycle supplying official tokens
            settings: Application settings
        """
        self._client = client
        self.credentials = credentials
        self.retries = settings.retry_attempts
        self._base_url = settings.spotify_api_url.rstrip("/")

    async def _request(
        self,
        method: str,
        path: str,
        operation: str,
        params: dict[str, Any] | None = None,
        json_body: dict[str, Any] | None = None,
    ) -> Any:
        token = await self.credentials.get_token(CredentialKind.OFFICIAL)
        url = f"{self._base_url}{path}"
        try:
            response = await self._client.request(
                method,
                url,
                params=params,
                json=json_body,
                headers={"Authorization": f"Bearer {token}"},
                timeout=REQUEST_TIMEOUT,
            )
        except httpx.TransportError as e:
            raise SpotifyAPIException(
                f"{operation}: could not reach Spotify: {e}",
                kind=ErrorKind.TRANSPORT,
                details={"operation": operation},
            ) from e

        log_with_context(
            logger,
            "debug",
            f"Spotify API {method} {path}",
            url=redact_sensitive_data(url),
            upstream_status=response.status_code,
            event_type="spotify_api_call",
        )
        raise_for_spotify_status(response, operation)
        return parse_body(response)

    # Catalog

    @retrying("search tracks")
    async def search_tracks(self, terms: str, offset: int = 0, limit: int = 10) -> dict[str, Any]:
        data = await self._request(
            "GET", "/search", "search tracks", params={"q": terms, "type": "track", "offset": offset, "limit": limit}
        )
        return (data or {}).get("tracks") or {}

    @retrying("search")
    async def search(self, terms: str, types: str = "track,album,artist,playlist", limit: int = 10) -> dict[str, Any]:
        return await self._request("GET", "/search", "search", params={"q": terms, "type": types, "limit": limit}) or {}

    @retrying("get playlist")
    async def get_playlist(self, playlist_id: str, fields: str | None = None) -> dict[str, Any]:
        params = {"fields": fields} if fields else None
        return await self._request("GET", f"/playlists/{playlist_id}", "get playlist", params=params) or {}

    @retrying("get playlist tracks")
    async def get_playlist_tracks(self, playlist_id: str, offset: int = 0, limit: int = 100) -> dict[str, Any]:
        return (
            await self._request(
                "GET",
                f"/playlists/{playlist_id}/tracks",
                "get playlist tracks",
                params={"offset": offset, "limit": limit},
            )
            or {}
        )

    @retrying("get album")
    async def get_album(self, album_id: str) -> dict[str, Any]:
        return await self._request("GET", f"/albums/{album_id}", "get album") or {}

    @retrying("get artist")
    async def get_artist(self, artist_id: str) -> dict[str, Any]:
        return await self._request("GET", f"/artists/{artist_id}", "get artist") or {}

    @retrying("get artist albums")
    async def get_artist_albums(self, artist_id: str, offset: int = 0, limit: int = 20) -> dict[str, Any]:
        return (
            await self._request(
                "GET",
                f"/artists/{artist_id}/albums",
                "get artist albums",
                params={"offset": offset, "limit": limit},
            )
            or {}
        )

    @retrying("get track")
    async def get_track(self, track_id: str) -> dict[str, Any]:
        return await self._request("GET", f"/tracks/{track_id}", "get track") or {}

    @retrying("get tracks")
    async def get_tracks(self, track_ids: list[str]) -> list[dict[str, Any] | None]:
        """Fetch up to 50 tracks in one call, in the order given.

        Unknown ids come back as None entries.
        """
        if not track_ids:
            return []
        ids = track_ids[:MAX_TRACKS_PER_REQUEST]
        data = await self._request("GET", "/tracks", "get tracks", params={"ids": ",".join(ids)})
        return list((data or {}).get("tracks") or [])

    # Player

    @retrying("get devices")
    async def get_devices(self) -> list[Device]:
        data = await self._request("GET", "/me/player/devices", "get devices")
        return [Device.from_api(device) for device in (data or {}).get("devices") or []]

    @retrying("get playback state")
    async def get_playback_state(self) -> dict[str, Any] | None:
        """Current playback, or None when nothing is active (HTTP 204)."""
        return await self._request("GET", "/me/player", "get playback state")

    @retrying("transfer playback")
    async def transfer_playback(self, device_id: str, play: bool = False) -> None:
        await self._request(
            "PUT", "/me/player", "transfer playback", json_body={"device_ids": [device_id], "play": play}
        )

    @retrying("play")
    async def play(
        self,
        device_id: str | None = None,
        context_uri: str | None = None,
        uris: list[str] | None = None,
    ) -> None:
        """Start or resume playback. With no context or uris this resumes."""
        body: dict[str, Any] = {}
        if context_uri:
            body["context_uri"] = context_uri
        if uris:
            body["uris"] = uris
        params = {"device_id": device_id} if device_id else None
        await self._request("PUT", "/me/player/play", "play", params=params, json_body=body or None)

    @retrying("pause")
    async def pause(self, device_id: str | None = None) -> None:
        params = {"device_id": device_id} if device_id else None
        await self._request("PUT", "/me/player/pause", "pause", params=params)

    @retrying("skip to next")
    async def skip_to_next(self, device_id: str | None = None) -> None:
        params = {"device_id": device_id} if device_id else None
        await self._request("POST", "/me/player/next", "skip to next", params=params)

    @retrying("set volume")
    async def set_volume(self, percent: int, device_id: str | None = None) -> None:
        params: dict[str, Any] = {"volume_percent": percent}
        if device_id:
            params["device_id"] = device_id
        await self._request("PUT", "/me/player/volume", "set volume", params=params)

    @retrying("set shuffle")
    async def set_shuffle(self, state: bool, device_id: str | None = None) -> None:
        params: dict[str, Any] = {"state": "true" if state else "false"}
        if device_id:
            params["device_id"] = device_id
        await self._request("PUT", "/me/player/shuffle", "set shuffle", params=params)

    @retrying("set repeat")
    async def set_repeat(self, state: str, device_id: str | None = None) -> None:
        """Set repeat mode: 'track', 'context' or 'off'."""
        params: dict[str, Any] = {"state": state}
        if device_id:
            params["device_id"] = device_id
        await self._request("PUT", "/me/player/repeat", "set repeat", params=params)

    @retrying("add to queue")
    async def add_to_queue(self, uri: str, device_id: str | None = None) -> None:
        params: dict[str, Any] = {"uri": uri}
        if device_id:
            params["device_id"] = device_id
        await self._request("POST", "/me/player/queue", "add to queue", params=params)
