"""Pytest configuration and shared fixtures."""

from datetime import UTC, datetime, timedelta
from unittest.mock import AsyncMock

import httpx
import pytest

from spotbot.config import Settings
from spotbot.models import PlaybackContext, PlaybackState, TrackInfo


@pytest.fixture
def mock_settings():
    """Settings instance with test values (never reads a real .env)."""
    return Settings(
        _env_file=None,
        api_host="0.0.0.0",
        api_port=8000,
        bot_api_key="test-api-key",
        spotify_client_id="test-spotify-client-id",
        spotify_client_secret="test-spotify-client-secret",
        spotify_redirect_uri="http://localhost:8000/spotify",
        spotify_refresh_token="test-refresh-token",
        spotify_preferred_device_id="test-device-id",
        spotify_fallback_playlist_uri="spotify:playlist:fallback123",
        spotify_username="bot@example.com",
        spotify_password="hunter2",
        automation_reset_delay=0,
        retry_attempts=2,
        heartbeat_interval=30.0,
        reconnect_delay=2.0,
        handshake_timeout=1.0,
        staleness_window=600.0,
    )


@pytest.fixture
def mock_http_client():
    """Mock httpx.AsyncClient for external API calls."""
    mock_client = AsyncMock(spec=httpx.AsyncClient)
    mock_client.get = AsyncMock()
    mock_client.post = AsyncMock()
    mock_client.request = AsyncMock()
    mock_client.aclose = AsyncMock()
    return mock_client


@pytest.fixture
def make_response():
    """Factory for real httpx responses bound to a request."""

    def _make(status_code: int = 200, json_data=None, text: str | None = None, method: str = "GET"):
        request = httpx.Request(method, "https://api.spotify.com/v1/test")
        if json_data is not None:
            return httpx.Response(status_code, json=json_data, request=request)
        return httpx.Response(status_code, text=text or "", request=request)

    return _make


@pytest.fixture
def mock_session():
    """Mock automation session that is already started."""
    session = AsyncMock()
    session.is_started = True
    session.get_cookies = AsyncMock(
        return_value=[
            {"name": "sp_dc", "value": "cookie-value", "domain": ".spotify.com"},
            {"name": "tracker", "value": "nope", "domain": ".example.com"},
        ]
    )
    return session


@pytest.fixture
def mock_credentials():
    """Mock credential lifecycle handing out fixed tokens."""
    credentials = AsyncMock()
    credentials.get_token = AsyncMock(return_value="mock-access-token")
    credentials.reauthenticate = AsyncMock()
    credentials.is_valid = AsyncMock(return_value=True)
    return credentials


@pytest.fixture
def track_payload():
    """Factory for official API track objects."""

    def _track(track_id: str, name: str | None = None, artists: tuple[str, ...] = ("Test Artist",)):
        return {
            "id": track_id,
            "name": name or f"Song {track_id}",
            "artists": [{"name": artist} for artist in artists],
            "uri": f"spotify:track:{track_id}",
        }

    return _track


@pytest.fixture
def player_state():
    """Connect-state player_state with one current track and a mixed next_tracks list."""
    return {
        "track": {"uri": "spotify:track:current1"},
        "context_uri": "spotify:album:album1",
        "next_tracks": [
            {"uri": "spotify:track:queued1", "metadata": {"is_queued": "true"}},
            {"uri": "spotify:track:context1", "metadata": {}},
            {"uri": "spotify:track:queued2", "metadata": {"is_queued": True}},
        ],
    }


@pytest.fixture
def playback_state_factory():
    """Factory for PlaybackState instances."""

    def _state(track_id: str = "current1", context_uri: str | None = None, age_seconds: float = 0):
        context = (
            PlaybackContext(type="playlist", name="Stored Playlist", uri=context_uri) if context_uri else None
        )
        return PlaybackState(
            now_playing=TrackInfo(id=track_id, song_title="Test Song", artists=("Test Artist",)),
            context=context,
            last_updated=datetime.now(UTC) - timedelta(seconds=age_seconds),
        )

    return _state


@pytest.fixture
def mock_spotify_playback_response():
    """Mock Spotify playback state response."""
    return {
        "device": {"id": "test-device-id", "is_active": True, "name": "Living Room", "volume_percent": 50},
        "is_playing": True,
        "item": {
            "id": "test123",
            "name": "Test Song",
            "artists": [{"name": "Test Artist"}],
            "uri": "spotify:track:test123",
        },
        "context": {"uri": "spotify:playlist:pl1"},
        "shuffle_state": True,
        "repeat_state": "context",
        "actions": {"disallows": {}},
    }


@pytest.fixture
def mock_spotify_devices_response():
    """Mock Spotify devices list response."""
    return {
        "devices": [
            {"id": "test-device-id", "is_active": True, "name": "Living Room", "type": "Speaker", "volume_percent": 50},
            {"id": "web-player-id", "is_active": False, "name": "Web Player (Chrome)", "type": "Computer"},
        ]
    }


@pytest.fixture
def mock_websocket():
    """Mock dealer websocket connection."""
    ws = AsyncMock()
    ws.send = AsyncMock()
    ws.recv = AsyncMock(return_value='{"headers": {"Spotify-Connection-Id": "conn-1"}}')
    ws.close = AsyncMock()
    ws.__aenter__ = AsyncMock(return_value=ws)
    ws.__aexit__ = AsyncMock(return_value=None)
    return ws
