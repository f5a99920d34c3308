"""Realtime connection to Spotify's dealer socket.

State machine::

    DISCONNECTED -> CONNECTING -> HANDSHAKING -> LIVE -> DISCONNECTED -> ...

The supervisor loop never terminates on its own: every disconnect is
followed by a fixed delay and a fresh connection. While LIVE a heartbeat
pings every interval and declares the socket dead when the previous ping
went unanswered; it also triggers a resync when the playback model has gone
quiet for longer than the staleness window.
"""

import asyncio
import json
from collections.abc import AsyncGenerator, Awaitable, Callable, Coroutine
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import Any

import websockets
from websockets.exceptions import (
    ConnectionClosed,
    ConnectionClosedError,
    ConnectionClosedOK,
    InvalidHandshake,
    InvalidURI,
)

from spotbot.config import Settings
from spotbot.exceptions import RealtimeConnectionError
from spotbot.logging_config import get_logger, log_with_context
from spotbot.middleware.logging_middleware import redact_sensitive_data
from spotbot.models import CredentialKind, PlaybackState
from spotbot.services.playback_state import PlaybackStateModel
from spotbot.services.web_api import SpotifyWebPlayerAPI
from spotbot.state_managers import StateManager

logger = get_logger(__name__)

PING_FRAME = json.dumps({"type": "ping"})
CONNECTION_ID_HEADER = "Spotify-Connection-Id"


class ConnectionState(str, Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    HANDSHAKING = "handshaking"
    LIVE = "live"


@dataclass
class ConnectionSession:
    """Per-connection state; recreated on every reconnect."""

    connection_id: str | None = None
    alive: bool = True
    heartbeat: asyncio.Task | None = field(default=None, repr=False)
    live_since: datetime | None = None
    websocket: Any = field(default=None, repr=False)


def parse_frame(raw: str | bytes) -> dict[str, Any] | None:
    """Decode a dealer frame; anything that is not a JSON object yields None."""
    try:
        frame = json.loads(raw)
    except ValueError:
        return None
    return frame if isinstance(frame, dict) else None


def connection_id_from_frame(frame: dict[str, Any]) -> str | None:
    headers = frame.get("headers") or {}
    return headers.get(CONNECTION_ID_HEADER) if isinstance(headers, dict) else None


def player_state_for_device(frame: dict[str, Any], device_id: str) -> dict[str, Any] | None:
    """The cluster player_state of the first payload that names device_id as changed."""
    for payload in frame.get("payloads") or []:
        if not isinstance(payload, dict):
            continue
        if device_id in (payload.get("devices_that_changed") or []):
            return (payload.get("cluster") or {}).get("player_state")
    return None


@asynccontextmanager
async def _connect_to_dealer(url: str, settings: Settings) -> AsyncGenerator:
    """Open the dealer socket, translating websockets failures.

    Yields:
        WebSocket connection

    Raises:
        RealtimeConnectionError: If the connection cannot be opened or drops abnormally
    """
    safe_url = redact_sensitive_data(url)
    try:
        async with websockets.connect(
            url,
            ping_interval=None,  # application-level heartbeat
            close_timeout=5,
            open_timeout=settings.handshake_timeout,
            max_size=None,
        ) as websocket:
            yield websocket

    except ConnectionClosedOK:
        log_with_context(logger, "info", "Realtime connection closed normally", event_type="realtime_closed")

    except ConnectionClosedError as e:
        raise RealtimeConnectionError(
            f"Realtime connection closed with error: {e}",
            details={"error_type": "connection_closed"},
        ) from e

    except InvalidURI as e:
        raise RealtimeConnectionError(
            f"Invalid dealer URI: {safe_url}",
            details={"error_type": "invalid_uri"},
        ) from e

    except InvalidHandshake as e:
        raise RealtimeConnectionError(
            f"Dealer handshake failed: {e}",
            details={"error_type": "invalid_handshake"},
        ) from e

    except OSError as e:
        raise RealtimeConnectionError(
            f"Cannot reach dealer: {e}",
            details={"error_type": "network_error"},
        ) from e

    except TimeoutError:
        raise RealtimeConnectionError(
            "Dealer connection timeout",
            details={"error_type": "connection_timeout"},
        ) from None


class RealtimeSupervisor(StateManager):
    """Keeps a live dealer connection feeding the playback state model."""

    def __init__(
        self,
        settings: Settings,
        credentials: Any,
        web_api: SpotifyWebPlayerAPI,
        state_model: PlaybackStateModel,
        web_player_id: Callable[[], Awaitable[str]],
        resync: Callable[[], Awaitable[Any]] | None = None,
    ):
        """Initialize the supervisor.

        Args:
            settings: Application settings
            credentials: CredentialLifecycle supplying the web token
            web_api: Web-player API client
            state_model: Model updated from push frames
            web_player_id: Returns the browser's Connect device id
            resync: Extra recovery run on staleness before re-polling
        """
        self._settings = settings
        self._credentials = credentials
        self._web_api = web_api
        self._state_model = state_model
        self._web_player_id = web_player_id
        self._resync = resync

        self.state = ConnectionState.DISCONNECTED
        self.reconnects = 0
        self._session: ConnectionSession | None = None
        self._task: asyncio.Task | None = None
        self._resync_task: asyncio.Task | None = None
        self._last_resync: datetime | None = None
        self._update_lock = asyncio.Lock()
        self._background: set[asyncio.Task] = set()

    @property
    def connection_id(self) -> str | None:
        return self._session.connection_id if self._session else None

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def initialize(self) -> None:
        """Start the supervisor loop in the background."""
        if not self.is_running:
            self._task = asyncio.create_task(self.run(), name="realtime-supervisor")

    async def cleanup(self) -> None:
        """Stop the loop, cancelling any pending reconnect delay."""
        if self._task is not None:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        await self._teardown()

    async def run(self) -> None:
        """Connect, serve and reconnect until cancelled."""
        while True:
            try:
                await self._connect_and_serve()
            except asyncio.CancelledError:
                raise
            except Exception as e:
                log_with_context(
                    logger,
                    "error",
                    "Realtime connection failed",
                    error=str(e),
                    error_type=type(e).__name__,
                    event_type="realtime_error",
                )
            finally:
                await self._teardown()

            self.reconnects += 1
            log_with_context(
                logger,
                "info",
                "Reconnecting realtime socket",
                delay=self._settings.reconnect_delay,
                reconnects=self.reconnects,
                event_type="realtime_reconnect",
            )
            await asyncio.sleep(self._settings.reconnect_delay)

    async def _connect_and_serve(self) -> None:
        self.state = ConnectionState.CONNECTING
        token = await self._credentials.get_token(CredentialKind.WEB)
        url = f"{self._settings.spotify_dealer_url}?access_token={token}"
        log_with_context(
            logger,
            "info",
            "Connecting realtime socket",
            url=redact_sensitive_data(url),
            event_type="realtime_connecting",
        )

        async with _connect_to_dealer(url, self._settings) as websocket:
            self._session = ConnectionSession(websocket=websocket)
            self.state = ConnectionState.HANDSHAKING
            connection_id = await self._await_handshake(websocket)
            await self._establish(connection_id)

            self.state = ConnectionState.LIVE
            self._session.live_since = datetime.now(UTC)
            self._session.heartbeat = asyncio.create_task(self._heartbeat(websocket), name="realtime-heartbeat")
            log_with_context(logger, "info", "Realtime connection live", event_type="realtime_live")

            async for raw in websocket:
                self._handle_frame(raw)

    async def _await_handshake(self, websocket: Any) -> str:
        """Read frames until one carries the connection id, within the handshake timeout."""
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self._settings.handshake_timeout
        while True:
            remaining = deadline - loop.time()
            if remaining <= 0:
                raise RealtimeConnectionError("Timed out waiting for connection id")
            try:
                raw = await asyncio.wait_for(websocket.recv(), timeout=remaining)
            except TimeoutError:
                raise RealtimeConnectionError(
                    "Timed out waiting for connection id",
                    details={"timeout": self._settings.handshake_timeout},
                ) from None

            frame = parse_frame(raw)
            connection_id = connection_id_from_frame(frame) if frame else None
            if connection_id:
                return connection_id

    async def _establish(self, connection_id: str) -> None:
        """Register the connection for notifications and seed the model."""
        if self._session is None:
            return
        self._session.connection_id = connection_id
        log_with_context(logger, "info", "Realtime connection id received", event_type="realtime_handshake")
        await self._web_api.register_notifications(connection_id)
        await self.poll()

    async def _reregister(self, connection_id: str) -> None:
        """Register a connection id the dealer rotated to while LIVE.

        An unregistered socket still answers pings but never receives push
        updates, so a failed registration forces a reconnect.
        """
        session = self._session
        try:
            await self._establish(connection_id)
        except Exception as e:
            log_with_context(
                logger,
                "error",
                "Realtime re-registration failed, forcing reconnect",
                error=str(e),
                error_type=type(e).__name__,
                event_type="realtime_reregister_failed",
            )
            if session is None or session is not self._session:
                return
            session.alive = False
            self.state = ConnectionState.DISCONNECTED
            if session.websocket is not None:
                await session.websocket.close()

    async def poll(self) -> PlaybackState | None:
        """Fetch a connect-state snapshot and apply it to the model.

        Raises:
            RealtimeConnectionError: If there is no connection id to poll with
        """
        connection_id = self.connection_id
        if not connection_id:
            raise RealtimeConnectionError("Realtime connection not established")
        web_player_id = await self._web_player_id()
        snapshot = await self._web_api.get_connect_state(connection_id, web_player_id)
        return await self._apply_update(snapshot.get("player_state"))

    async def _apply_update(self, player_state: dict[str, Any] | None) -> PlaybackState | None:
        # Serialized so updates land in arrival order
        async with self._update_lock:
            return await self._state_model.update(player_state)

    def _handle_frame(self, raw: str | bytes) -> None:
        frame = parse_frame(raw)
        if frame is None:
            log_with_context(logger, "debug", "Ignoring non-JSON realtime frame", event_type="realtime_frame_ignored")
            return

        if frame.get("type") == "pong":
            if self._session is not None:
                self._session.alive = True
            return

        connection_id = connection_id_from_frame(frame)
        if connection_id:
            if connection_id != self.connection_id:
                self._spawn(self._reregister(connection_id))
            return

        player_state = player_state_for_device(frame, self._settings.spotify_preferred_device_id)
        if player_state is not None:
            self._spawn(self._apply_update(player_state))

    async def _heartbeat(self, websocket: Any) -> None:
        while True:
            await asyncio.sleep(self._settings.heartbeat_interval)
            try:
                if not await self._heartbeat_tick(websocket):
                    return
            except ConnectionClosed:
                return
            except Exception as e:
                # Keep ticking; an unanswered ping still closes the socket next time
                log_with_context(
                    logger,
                    "error",
                    "Realtime heartbeat tick failed",
                    error=str(e),
                    error_type=type(e).__name__,
                    event_type="realtime_heartbeat_error",
                )

    async def _heartbeat_tick(self, websocket: Any) -> bool:
        """One heartbeat: close a dead socket, else ping and check staleness.

        Returns:
            False once the connection has been declared dead
        """
        session = self._session
        if session is None:
            return False

        if not session.alive:
            log_with_context(
                logger,
                "warning",
                "No pong since last ping, forcing disconnect",
                event_type="realtime_dead",
            )
            self.state = ConnectionState.DISCONNECTED
            await websocket.close()
            return False

        session.alive = False
        await websocket.send(PING_FRAME)
        await self._check_staleness()
        return True

    async def _check_staleness(self) -> None:
        if self.state is not ConnectionState.LIVE:
            return
        if self._resync_task is not None and not self._resync_task.done():
            return

        state = await self._state_model.read()
        marks = [
            mark
            for mark in (
                state.last_updated if state else None,
                self._last_resync,
                self._session.live_since if self._session else None,
            )
            if mark is not None
        ]
        if not marks:
            return

        now = datetime.now(UTC)
        quiet_for = (now - max(marks)).total_seconds()
        if quiet_for <= self._settings.staleness_window:
            return

        log_with_context(
            logger,
            "warning",
            "Playback state is stale, resyncing",
            quiet_seconds=round(quiet_for),
            event_type="realtime_stale",
        )
        self._last_resync = now
        self._resync_task = self._spawn(self._run_resync())

    async def _run_resync(self) -> None:
        """Recover playback, then re-poll even when recovery failed."""
        if self._resync is not None:
            try:
                await self._resync()
            except Exception as e:
                log_with_context(
                    logger,
                    "warning",
                    "Staleness recovery failed, polling anyway",
                    error=str(e),
                    error_type=type(e).__name__,
                    event_type="realtime_resync_failed",
                )
        await self.poll()

    def _spawn(self, coro: Coroutine[Any, Any, Any]) -> asyncio.Task:
        task = asyncio.create_task(coro)
        self._background.add(task)
        task.add_done_callback(self._on_background_done)
        return task

    def _on_background_done(self, task: asyncio.Task) -> None:
        self._background.discard(task)
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            log_with_context(
                logger,
                "warning",
                "Realtime background update failed",
                error=str(error),
                error_type=type(error).__name__,
                event_type="realtime_update_failed",
            )

    async def _teardown(self) -> None:
        self.state = ConnectionState.DISCONNECTED
        session, self._session = self._session, None
        pending = list(self._background)
        if session is not None and session.heartbeat is not None:
            pending.append(session.heartbeat)
        for task in pending:
            task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)
        self._resync_task = None
