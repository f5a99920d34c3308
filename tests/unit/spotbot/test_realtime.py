"""Unit tests for the realtime supervisor."""

import asyncio
import json
from datetime import UTC, datetime, timedelta
from unittest.mock import AsyncMock, call, patch

import pytest
from websockets.exceptions import InvalidHandshake, InvalidURI

from spotbot.exceptions import DeviceNotFoundError, RealtimeConnectionError, SpotifyAPIException
from spotbot.models import CredentialKind
from spotbot.services.realtime import (
    PING_FRAME,
    ConnectionSession,
    ConnectionState,
    RealtimeSupervisor,
    connection_id_from_frame,
    parse_frame,
    player_state_for_device,
)

HANDSHAKE_FRAME = json.dumps({"headers": {"Spotify-Connection-Id": "conn-1"}})


def cluster_frame(device_id: str, player_state: dict) -> str:
    return json.dumps(
        {
            "type": "message",
            "uri": "hm://connect-state/v1/cluster",
            "payloads": [{"devices_that_changed": [device_id], "cluster": {"player_state": player_state}}],
        }
    )


@pytest.fixture
def web_api(player_state):
    web_api = AsyncMock()
    web_api.get_connect_state = AsyncMock(return_value={"player_state": player_state})
    return web_api


@pytest.fixture
def state_model():
    model = AsyncMock()
    model.read = AsyncMock(return_value=None)
    model.update = AsyncMock(return_value=None)
    return model


@pytest.fixture
def resync():
    return AsyncMock()


@pytest.fixture
def supervisor(mock_settings, mock_credentials, web_api, state_model, resync):
    return RealtimeSupervisor(
        mock_settings,
        mock_credentials,
        web_api,
        state_model,
        web_player_id=AsyncMock(return_value="webplayer123"),
        resync=resync,
    )


# Frame helpers


def test_parse_frame():
    """Test only JSON objects are frames."""
    assert parse_frame('{"type": "pong"}') == {"type": "pong"}
    assert parse_frame("not json") is None
    assert parse_frame("[1, 2]") is None


def test_connection_id_from_frame():
    """Test the connection id is read from the frame headers."""
    assert connection_id_from_frame(json.loads(HANDSHAKE_FRAME)) == "conn-1"
    assert connection_id_from_frame({"headers": {}}) is None
    assert connection_id_from_frame({"type": "pong"}) is None


def test_player_state_for_device_filters_by_device(player_state):
    """Test only payloads naming the preferred device are used."""
    frame = json.loads(cluster_frame("test-device-id", player_state))

    assert player_state_for_device(frame, "test-device-id") == player_state
    assert player_state_for_device(frame, "another-device") is None
    assert player_state_for_device({"payloads": ["junk"]}, "test-device-id") is None


# Frame handling


@pytest.mark.asyncio
async def test_pong_marks_connection_alive(supervisor):
    """Test a pong answers the outstanding ping."""
    supervisor._session = ConnectionSession(connection_id="conn-1", alive=False)

    supervisor._handle_frame('{"type": "pong"}')

    assert supervisor._session.alive is True


@pytest.mark.asyncio
async def test_cluster_update_for_preferred_device_applied(supervisor, state_model, player_state):
    """Test a push naming the preferred device updates the model."""
    supervisor._session = ConnectionSession(connection_id="conn-1")

    supervisor._handle_frame(cluster_frame("test-device-id", player_state))
    await asyncio.gather(*supervisor._background)

    state_model.update.assert_awaited_once_with(player_state)


@pytest.mark.asyncio
async def test_cluster_update_for_other_device_ignored(supervisor, state_model, player_state):
    """Test pushes about other devices are dropped."""
    supervisor._session = ConnectionSession(connection_id="conn-1")

    supervisor._handle_frame(cluster_frame("another-device", player_state))
    supervisor._handle_frame("garbage")

    assert not supervisor._background
    state_model.update.assert_not_awaited()


@pytest.mark.asyncio
async def test_new_connection_id_reregisters(supervisor, web_api):
    """Test a changed connection id is registered and re-polled."""
    supervisor._session = ConnectionSession(connection_id="conn-1")

    supervisor._handle_frame(json.dumps({"headers": {"Spotify-Connection-Id": "conn-2"}}))
    await asyncio.gather(*supervisor._background)

    assert supervisor.connection_id == "conn-2"
    web_api.register_notifications.assert_awaited_once_with("conn-2")
    web_api.get_connect_state.assert_awaited_once_with("conn-2", "webplayer123")


@pytest.mark.asyncio
async def test_failed_reregistration_forces_reconnect(supervisor, web_api, mock_websocket):
    """Test a rotated connection id that cannot be registered closes the socket."""
    web_api.register_notifications.side_effect = SpotifyAPIException("Registration rejected")
    supervisor.state = ConnectionState.LIVE
    supervisor._session = ConnectionSession(connection_id="conn-1", websocket=mock_websocket)

    supervisor._handle_frame(json.dumps({"headers": {"Spotify-Connection-Id": "conn-2"}}))
    await asyncio.gather(*supervisor._background)

    assert supervisor._session.alive is False
    assert supervisor.state is ConnectionState.DISCONNECTED
    mock_websocket.close.assert_awaited_once()
    web_api.get_connect_state.assert_not_awaited()


@pytest.mark.asyncio
async def test_failed_reregistration_fails_next_heartbeat(supervisor, web_api, mock_websocket):
    """Test the dead session is closed by the heartbeat even without a socket handle."""
    web_api.register_notifications.side_effect = SpotifyAPIException("Registration rejected")
    supervisor.state = ConnectionState.LIVE
    supervisor._session = ConnectionSession(connection_id="conn-1")

    supervisor._handle_frame(json.dumps({"headers": {"Spotify-Connection-Id": "conn-2"}}))
    await asyncio.gather(*supervisor._background)

    assert supervisor._session.alive is False
    assert await supervisor._heartbeat_tick(mock_websocket) is False
    mock_websocket.close.assert_awaited_once()


# Heartbeat


@pytest.mark.asyncio
async def test_heartbeat_pings_when_alive(supervisor, mock_websocket):
    """Test an answered connection is pinged again."""
    supervisor._session = ConnectionSession(connection_id="conn-1", alive=True)

    assert await supervisor._heartbeat_tick(mock_websocket) is True

    mock_websocket.send.assert_awaited_once_with(PING_FRAME)
    assert supervisor._session.alive is False


@pytest.mark.asyncio
async def test_heartbeat_closes_dead_connection(supervisor, mock_websocket):
    """Test an unanswered ping forces a disconnect."""
    supervisor.state = ConnectionState.LIVE
    supervisor._session = ConnectionSession(connection_id="conn-1", alive=False)

    assert await supervisor._heartbeat_tick(mock_websocket) is False

    assert supervisor.state is ConnectionState.DISCONNECTED
    mock_websocket.close.assert_awaited_once()
    mock_websocket.send.assert_not_awaited()


@pytest.mark.asyncio
async def test_stale_state_triggers_resync(supervisor, mock_websocket, resync, web_api):
    """Test a quiet model beyond the staleness window runs the resync and a poll."""
    supervisor.state = ConnectionState.LIVE
    supervisor._session = ConnectionSession(
        connection_id="conn-1",
        live_since=datetime.now(UTC) - timedelta(seconds=700),
    )

    await supervisor._heartbeat_tick(mock_websocket)
    await supervisor._resync_task

    resync.assert_awaited_once()
    web_api.get_connect_state.assert_awaited_once_with("conn-1", "webplayer123")


@pytest.mark.asyncio
async def test_stale_state_polls_when_recovery_fails(supervisor, resync, web_api):
    """Test the resync still re-polls when the playback recovery raises."""
    resync.side_effect = DeviceNotFoundError("Device test-device-id not found")
    supervisor.state = ConnectionState.LIVE
    supervisor._session = ConnectionSession(
        connection_id="conn-1",
        live_since=datetime.now(UTC) - timedelta(hours=1),
    )

    await supervisor._check_staleness()
    await supervisor._resync_task

    resync.assert_awaited_once()
    web_api.get_connect_state.assert_awaited_once_with("conn-1", "webplayer123")


@pytest.mark.asyncio
async def test_heartbeat_survives_failed_tick(supervisor, mock_websocket):
    """Test an unexpected error in one tick does not stop the heartbeat."""
    supervisor._session = ConnectionSession(connection_id="conn-1")
    tick = AsyncMock(side_effect=[RuntimeError("boom"), True, False])

    with (
        patch("asyncio.sleep", new_callable=AsyncMock) as mock_sleep,
        patch.object(supervisor, "_heartbeat_tick", tick),
    ):
        await supervisor._heartbeat(mock_websocket)

    assert tick.await_count == 3
    assert mock_sleep.await_count == 3


@pytest.mark.asyncio
async def test_recent_update_prevents_resync(
    supervisor, mock_websocket, resync, state_model, playback_state_factory
):
    """Test no resync while updates keep arriving."""
    supervisor.state = ConnectionState.LIVE
    supervisor._session = ConnectionSession(
        connection_id="conn-1",
        live_since=datetime.now(UTC) - timedelta(seconds=700),
    )
    state_model.read.return_value = playback_state_factory(age_seconds=10)

    await supervisor._heartbeat_tick(mock_websocket)

    assert supervisor._resync_task is None
    resync.assert_not_awaited()


@pytest.mark.asyncio
async def test_resync_not_repeated_within_window(supervisor, mock_websocket, resync):
    """Test a resync resets the staleness clock."""
    supervisor.state = ConnectionState.LIVE
    supervisor._session = ConnectionSession(
        connection_id="conn-1",
        live_since=datetime.now(UTC) - timedelta(seconds=700),
    )

    await supervisor._heartbeat_tick(mock_websocket)
    await supervisor._resync_task
    supervisor._session.alive = True
    await supervisor._heartbeat_tick(mock_websocket)
    if supervisor._resync_task is not None:
        await supervisor._resync_task

    resync.assert_awaited_once()


# Polling


@pytest.mark.asyncio
async def test_poll_requires_connection(supervisor):
    """Test polling without a connection id fails."""
    with pytest.raises(RealtimeConnectionError):
        await supervisor.poll()


# Connection lifecycle


@pytest.mark.asyncio
async def test_connect_and_serve(supervisor, mock_websocket, mock_credentials, web_api, state_model, player_state):
    """Test handshake, registration, seeding and push handling on one connection."""
    pushed = dict(player_state, context_uri="spotify:playlist:pl1")
    mock_websocket.recv = AsyncMock(side_effect=["noise", HANDSHAKE_FRAME])
    mock_websocket.__aiter__.return_value = [cluster_frame("test-device-id", pushed)]

    with patch("spotbot.services.realtime.websockets.connect") as mock_connect:
        mock_connect.return_value.__aenter__.return_value = mock_websocket

        await supervisor._connect_and_serve()
        await asyncio.gather(*supervisor._background)

        url = mock_connect.call_args.args[0]
        assert url == "wss://gew1-dealer.spotify.com/?access_token=mock-access-token"
        mock_credentials.get_token.assert_awaited_with(CredentialKind.WEB)
        assert supervisor.state is ConnectionState.LIVE
        assert supervisor.connection_id == "conn-1"
        web_api.register_notifications.assert_awaited_once_with("conn-1")
        assert state_model.update.await_args_list == [call(player_state), call(pushed)]

        await supervisor._teardown()

    assert supervisor.state is ConnectionState.DISCONNECTED
    assert supervisor.connection_id is None


@pytest.mark.asyncio
async def test_handshake_timeout(supervisor, mock_websocket):
    """Test a connection that never sends its id is abandoned."""
    mock_websocket.recv = AsyncMock(side_effect=TimeoutError())

    with patch("spotbot.services.realtime.websockets.connect") as mock_connect:
        mock_connect.return_value.__aenter__.return_value = mock_websocket

        with pytest.raises(RealtimeConnectionError) as exc_info:
            await supervisor._connect_and_serve()

    assert "connection id" in exc_info.value.message


@pytest.mark.asyncio
async def test_connect_network_error(supervisor):
    """Test an unreachable dealer is a realtime connection error."""
    with patch("spotbot.services.realtime.websockets.connect") as mock_connect:
        mock_connect.side_effect = OSError("Connection refused")

        with pytest.raises(RealtimeConnectionError) as exc_info:
            await supervisor._connect_and_serve()

    assert "Cannot reach dealer" in exc_info.value.message
    assert exc_info.value.details["error_type"] == "network_error"


@pytest.mark.asyncio
async def test_connect_invalid_handshake(supervisor):
    """Test a rejected upgrade is a realtime connection error."""
    with patch("spotbot.services.realtime.websockets.connect") as mock_connect:
        mock_connect.side_effect = InvalidHandshake("Invalid handshake")

        with pytest.raises(RealtimeConnectionError) as exc_info:
            await supervisor._connect_and_serve()

    assert exc_info.value.details["error_type"] == "invalid_handshake"


@pytest.mark.asyncio
async def test_connect_invalid_uri(supervisor):
    """Test a malformed dealer URL is a realtime connection error."""
    with patch("spotbot.services.realtime.websockets.connect") as mock_connect:
        mock_connect.side_effect = InvalidURI("wss://bad", "Invalid URI")

        with pytest.raises(RealtimeConnectionError) as exc_info:
            await supervisor._connect_and_serve()

    assert "access_token=***REDACTED***" in exc_info.value.message


@pytest.mark.asyncio
async def test_run_reconnects_after_fixed_delay(supervisor):
    """Test every disconnect is followed by the reconnect delay and a new attempt."""
    supervisor._connect_and_serve = AsyncMock(
        side_effect=[RealtimeConnectionError("dropped"), None, asyncio.CancelledError()]
    )

    with patch("asyncio.sleep", new_callable=AsyncMock) as mock_sleep:
        with pytest.raises(asyncio.CancelledError):
            await supervisor.run()

    assert supervisor._connect_and_serve.await_count == 3
    assert mock_sleep.await_args_list == [call(2.0), call(2.0)]
    assert supervisor.reconnects == 2
    assert supervisor.state is ConnectionState.DISCONNECTED


@pytest.mark.asyncio
async def test_initialize_and_cleanup(supervisor):
    """Test the supervisor loop runs in the background until cleanup."""
    supervisor._connect_and_serve = AsyncMock(side_effect=RealtimeConnectionError("dropped"))

    await supervisor.initialize()
    assert supervisor.is_running

    await supervisor.cleanup()

    assert not supervisor.is_running
    assert supervisor.state is ConnectionState.DISCONNECTED
