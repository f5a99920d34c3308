"""Unit tests for the Spotify bot engine facade."""

from unittest.mock import AsyncMock, MagicMock, patch

import pytest
import pytest_asyncio

from spotbot.cache import ContextCache
from spotbot.exceptions import (
    DeviceNotFoundError,
    InvalidRadioKindError,
    InvalidVolumeError,
    SpotifyAPIException,
)
from spotbot.models import CredentialKind, Device
from spotbot.services.playback_state import is_radio_uri
from spotbot.services.realtime import ConnectionState
from spotbot.services.spotify_service import SpotifyBotService, parse_volume, track_uri

# Helpers


@pytest.mark.parametrize(("value", "expected"), [("0", 0), ("7", 7), ("55", 55), ("100", 100), (" 42 ", 42), (80, 80)])
def test_parse_volume_valid(value, expected):
    """Test whole numbers from 0 to 100 are accepted."""
    assert parse_volume(value) == expected


@pytest.mark.parametrize("value", ["", "101", "199", "1000", "-1", "5.5", "abc", "10%"])
def test_parse_volume_invalid(value):
    """Test anything else is rejected."""
    with pytest.raises(InvalidVolumeError):
        parse_volume(value)


def test_is_radio_uri():
    """Test radio and station contexts are recognized."""
    assert is_radio_uri("spotify:radio:artist:a1")
    assert is_radio_uri("spotify:station:playlist:p1")
    assert not is_radio_uri("spotify:album:a1")


def test_is_radio_uri_ignores_marker_inside_id():
    """Test an id that merely contains 'radio' is not a radio context."""
    assert not is_radio_uri("spotify:playlist:37iRadioXYZ")
    assert not is_radio_uri("spotify:album:6stationAbc")
    assert not is_radio_uri("spotify:playlist:3radiohead1")


def test_track_uri():
    """Test bare ids become track URIs."""
    assert track_uri("abc") == "spotify:track:abc"
    assert track_uri("spotify:track:abc") == "spotify:track:abc"


# Facade


@pytest_asyncio.fixture
async def service(mock_settings, mock_http_client, mock_session, tmp_path):
    """Engine with its remote collaborators replaced by mocks."""
    service = SpotifyBotService(
        mock_settings,
        mock_http_client,
        session=mock_session,
        cache=ContextCache(),
        env_path=tmp_path / ".env",
    )
    service.api = AsyncMock()
    service.web_api = AsyncMock()
    service.verifier = AsyncMock()
    service.ensure_ready = AsyncMock()
    yield service
    await service.channel.close()


@pytest.mark.asyncio
async def test_set_volume(service):
    """Test volume is set on the preferred device."""
    assert await service.set_volume("35") == 35

    service.ensure_ready.assert_awaited_once()
    service.api.set_volume.assert_awaited_once_with(35, device_id="test-device-id")


@pytest.mark.asyncio
async def test_set_volume_invalid_rejected_before_remote_calls(service):
    """Test bad input never reaches Spotify."""
    with pytest.raises(InvalidVolumeError):
        await service.set_volume("loud")

    service.ensure_ready.assert_not_awaited()
    service.api.set_volume.assert_not_awaited()


@pytest.mark.asyncio
async def test_get_volume_without_device(service):
    """Test no active device is reported as such."""
    service.api.get_playback_state.return_value = None

    with pytest.raises(DeviceNotFoundError):
        await service.get_volume()


@pytest.mark.asyncio
async def test_get_volume(service, mock_spotify_playback_response):
    """Test the active device's volume is returned."""
    service.api.get_playback_state.return_value = mock_spotify_playback_response

    assert await service.get_volume() == 50


@pytest.mark.asyncio
async def test_queue_track_verifies_first(service):
    """Test the verifier runs before the track is queued on the preferred device."""
    order = []
    service.verifier.verify_and_recover.side_effect = lambda: order.append("verify")
    service.api.add_to_queue.side_effect = lambda uri, device_id: order.append(("queue", uri, device_id))

    await service.queue_track("abc")

    assert order == ["verify", ("queue", "spotify:track:abc", "test-device-id")]


@pytest.mark.asyncio
async def test_queue_track_missing_device(service):
    """Test a missing device aborts the command."""
    service.verifier.verify_and_recover.side_effect = DeviceNotFoundError()

    with pytest.raises(DeviceNotFoundError):
        await service.queue_track("abc")

    service.api.add_to_queue.assert_not_awaited()


@pytest.mark.asyncio
async def test_skip_verifies_first(service):
    """Test skipping goes through the verifier."""
    await service.skip()

    service.verifier.verify_and_recover.assert_awaited_once()
    service.api.skip_to_next.assert_awaited_once_with(device_id="test-device-id")


@pytest.mark.asyncio
async def test_pause_and_resume(service):
    """Test pause and resume target the preferred device."""
    await service.pause()
    await service.resume()

    service.api.pause.assert_awaited_once_with(device_id="test-device-id")
    service.api.play.assert_awaited_once_with(device_id="test-device-id")


@pytest.mark.asyncio
async def test_play_context_uses_official_api(service):
    """Test ordinary contexts are started through the official API."""
    await service.play_context("spotify:album:album1")

    service.api.play.assert_awaited_once_with(device_id="test-device-id", context_uri="spotify:album:album1")
    service.web_api.send_play_command.assert_not_awaited()
    service.verifier.force_repeat_shuffle.assert_awaited_once()


@pytest.mark.asyncio
async def test_play_context_id_containing_radio_uses_official_api(service):
    """Test a playlist whose id contains 'radio' is not routed to the web player."""
    await service.play_context("spotify:playlist:3radiohead1")

    service.api.play.assert_awaited_once_with(device_id="test-device-id", context_uri="spotify:playlist:3radiohead1")
    service.web_api.send_play_command.assert_not_awaited()


@pytest.mark.asyncio
async def test_play_context_radio_uses_web_player(service):
    """Test radio contexts are commanded from the web player through the automation channel."""
    service.api.get_devices.return_value = [
        Device(id="test-device-id", name="Living Room"),
        Device(id="web123", name="Web Player (Chrome)"),
    ]

    await service.play_context("spotify:radio:artist:a1")

    service.web_api.send_play_command.assert_awaited_once_with("spotify:radio:artist:a1", "web123", "test-device-id")
    service.api.play.assert_not_awaited()


@pytest.mark.asyncio
async def test_play_radio_builds_radio_uri(service):
    """Test radio is seeded from the looked-up item."""
    service.api.get_artist.return_value = {"id": "a1", "type": "artist", "name": "Queen"}
    service.api.get_devices.return_value = [Device(id="web123", name="Web Player (Chrome)")]

    uri = await service.play_radio("artist", "a1")

    assert uri == "spotify:radio:artist:a1"
    service.verifier.verify_and_recover.assert_awaited_once()
    service.web_api.send_play_command.assert_awaited_once_with(uri, "web123", "test-device-id")


@pytest.mark.asyncio
async def test_play_radio_rejects_unknown_kind(service):
    """Test radio can only be seeded by artists, albums and playlists."""
    with pytest.raises(InvalidRadioKindError):
        await service.play_radio("track", "t1")

    service.ensure_ready.assert_not_awaited()


@pytest.mark.asyncio
async def test_web_player_missing_after_reload(service):
    """Test the web player lookup reloads the player once, then gives up."""
    service.api.get_devices.return_value = [Device(id="test-device-id", name="Living Room")]

    with patch("spotbot.services.web_login.ensure_logged_in", new_callable=AsyncMock) as mock_login:
        with pytest.raises(DeviceNotFoundError):
            await service.get_web_player_id()

    mock_login.assert_awaited_once()
    assert service.api.get_devices.await_count == 2


@pytest.mark.asyncio
async def test_web_player_found_after_reload(service):
    """Test the web player appears once the page is loaded."""
    service.api.get_devices.side_effect = [[], [Device(id="web123", name="Web Player (Chrome)")]]

    with patch("spotbot.services.web_login.ensure_logged_in", new_callable=AsyncMock):
        assert await service.get_web_player_id() == "web123"


# Cached status


@pytest.mark.asyncio
async def test_cached_status_fresh(service, playback_state_factory):
    """Test a fresh cached state is served without polling."""
    fresh = playback_state_factory(age_seconds=5)
    service.state_model = AsyncMock()
    service.state_model.read.return_value = fresh

    assert await service.get_cached_status() is fresh
    service.api.get_playback_state.assert_not_awaited()


@pytest.mark.asyncio
async def test_cached_status_stale_polls_official_api(service, playback_state_factory, mock_spotify_playback_response):
    """Test a stale state is refreshed by a poll when there is no realtime connection."""
    stale = playback_state_factory(age_seconds=3600)
    polled = playback_state_factory(track_id="new-track")
    service.state_model = AsyncMock()
    service.state_model.read.return_value = stale
    service.state_model.update_from_playback.return_value = polled
    service.api.get_playback_state.return_value = mock_spotify_playback_response

    assert await service.get_cached_status() is polled
    service.state_model.update_from_playback.assert_awaited_once_with(mock_spotify_playback_response)


@pytest.mark.asyncio
async def test_cached_status_poll_failure_serves_cache(service, playback_state_factory):
    """Test a failed poll falls back to the cached state."""
    stale = playback_state_factory(age_seconds=3600)
    service.state_model = AsyncMock()
    service.state_model.read.return_value = stale
    service.api.get_playback_state.side_effect = SpotifyAPIException("Boom")

    assert await service.get_cached_status() is stale


@pytest.mark.asyncio
async def test_cached_status_uses_realtime_poll_when_connected(service, playback_state_factory):
    """Test polling goes through the realtime snapshot when connected."""
    polled = playback_state_factory()
    service.state_model = AsyncMock()
    service.state_model.read.return_value = None
    service.realtime = MagicMock(connection_id="conn-1")
    service.realtime.poll = AsyncMock(return_value=polled)

    assert await service.get_cached_status() is polled
    service.api.get_playback_state.assert_not_awaited()


# Readiness


@pytest.mark.asyncio
async def test_ensure_ready_authorizes_once(mock_settings, mock_http_client, mock_session, tmp_path):
    """Test the first call authorizes, later calls only check the official token."""
    service = SpotifyBotService(mock_settings, mock_http_client, session=mock_session, env_path=tmp_path / ".env")
    service.credentials = AsyncMock()
    service.realtime = MagicMock(is_running=False)
    service.realtime.initialize = AsyncMock(side_effect=lambda: setattr(service.realtime, "is_running", True))

    await service.ensure_ready()
    await service.ensure_ready()

    service.credentials.initialize.assert_awaited_once()
    service.credentials.get_token.assert_awaited_once_with(CredentialKind.OFFICIAL)
    service.realtime.initialize.assert_awaited_once()
    assert service.is_authorized


@pytest.mark.asyncio
async def test_status_reports_engine_state(service):
    """Test status exposes credential, realtime and automation state."""
    status = await service.status()

    assert status["authorized"] is False
    assert status["official_token_valid"] is False
    assert status["realtime_state"] == ConnectionState.DISCONNECTED.value
    assert status["realtime_connected"] is False
    assert status["automation_resets"] == 0
    assert status["playback_last_updated"] is None
