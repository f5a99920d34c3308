"""Spotify bot engine facade.

Wires the credential lifecycle, automation channel, API clients, playback
state model, verifier and realtime supervisor together, and exposes the
operations the command-handling layer calls.
"""

import asyncio
import re
from pathlib import Path
from typing import Any

import httpx

from spotbot.cache import ContextCache
from spotbot.config import Settings
from spotbot.exceptions import (
    DeviceNotFoundError,
    InvalidRadioKindError,
    InvalidVolumeError,
    SpotbotException,
)
from spotbot.logging_config import get_logger, log_with_context
from spotbot.models import CredentialKind, Device, PlaybackState
from spotbot.protocols import AutomationSessionProtocol
from spotbot.services import web_login
from spotbot.services.automation import AutomationSession
from spotbot.services.automation_channel import AutomationChannel
from spotbot.services.credentials import CredentialLifecycle
from spotbot.services.playback_state import PlaybackStateModel, is_radio_uri
from spotbot.services.playback_verifier import PlaybackVerifier
from spotbot.services.realtime import RealtimeSupervisor
from spotbot.services.spotify_api import SpotifyAPI
from spotbot.services.web_api import SpotifyWebPlayerAPI
from spotbot.state_managers import CredentialStore, NowPlayingManager, StateManager

logger = get_logger(__name__)

VOLUME_PATTERN = re.compile(r"^1?\d{0,2}$")
RADIO_KINDS = ("artist", "album", "playlist")


def parse_volume(value: str | int) -> int:
    """Validate a volume given as text or int.

    Raises:
        InvalidVolumeError: Unless value is a whole number from 0 to 100
    """
    text = str(value).strip()
    if not text or not VOLUME_PATTERN.match(text):
        raise InvalidVolumeError(details={"value": str(value)})
    percent = int(text)
    if percent > 100:
        raise InvalidVolumeError(details={"value": str(value)})
    return percent


def track_uri(track_id: str) -> str:
    return track_id if track_id.startswith("spotify:") else f"spotify:track:{track_id}"


class SpotifyBotService(StateManager):
    """The engine as seen by the command-handling layer."""

    def __init__(
        self,
        settings: Settings,
        client: httpx.AsyncClient,
        session: AutomationSessionProtocol | None = None,
        cache: ContextCache | None = None,
        env_path: Path | None = None,
    ):
        """Build the engine.

        Args:
            settings: Application settings
            client: Shared HTTP client
            session: Browser session; a Playwright session is created when None
            cache: Cache for context summaries
            env_path: .env file receiving rotated refresh tokens
        """
        self._settings = settings
        self._device_id = settings.spotify_preferred_device_id

        self.credential_store = CredentialStore()
        self.now_playing = NowPlayingManager()
        self.channel = AutomationChannel(
            session or AutomationSession(settings),
            reset_delay=settings.automation_reset_delay,
        )
        self.credentials = CredentialLifecycle(client, self.credential_store, self.channel, settings, env_path)
        self.channel.set_reinitializer(self.credentials.reinitialize)

        self.api = SpotifyAPI(client, self.credentials, settings)
        self.web_api = SpotifyWebPlayerAPI(client, self.credentials, settings)
        self.state_model = PlaybackStateModel(self.api, self.now_playing, cache)
        self.verifier = PlaybackVerifier(self.api, self.state_model, settings)
        self.realtime = RealtimeSupervisor(
            settings,
            self.credentials,
            self.web_api,
            self.state_model,
            web_player_id=self.get_web_player_id,
            resync=self.verifier.verify_and_recover,
        )

        self._authorized = False
        self._ready_lock = asyncio.Lock()
        self._bootstrap: asyncio.Task | None = None

    @property
    def is_authorized(self) -> bool:
        return self._authorized

    async def initialize(self) -> None:
        """Authorize and start the realtime supervisor without blocking startup."""
        await self.credential_store.initialize()
        await self.now_playing.initialize()
        self._bootstrap = asyncio.create_task(self._bootstrap_engine(), name="spotbot-bootstrap")

    async def _bootstrap_engine(self) -> None:
        try:
            await self.ensure_ready()
        except SpotbotException as e:
            log_with_context(
                logger,
                "error",
                "Engine startup authorization failed; it will be retried on the next command",
                error=e.message,
                error_code=e.code.value,
                event_type="engine_bootstrap_failed",
            )

    async def cleanup(self) -> None:
        """Stop background work and close the browser."""
        if self._bootstrap is not None and not self._bootstrap.done():
            self._bootstrap.cancel()
            try:
                await self._bootstrap
            except asyncio.CancelledError:
                pass
        await self.realtime.cleanup()
        await self.channel.close()
        await self.now_playing.cleanup()
        await self.credential_store.cleanup()

    async def ensure_ready(self) -> None:
        """Make sure the bot is authorized and the realtime supervisor runs.

        The first call performs the interactive authorization; later calls
        only refresh the official token when it has expired.

        Raises:
            AuthError: If authorization fails
        """
        async with self._ready_lock:
            if not self._authorized:
                await self.credentials.initialize()
                self._authorized = True
                log_with_context(logger, "info", "Spotify is ready", event_type="engine_ready")
            else:
                await self.credentials.get_token(CredentialKind.OFFICIAL)

        if not self.realtime.is_running:
            await self.realtime.initialize()

    async def get_cached_status(self) -> PlaybackState | None:
        """Return the playback state, polling when the cached one is stale.

        Poll failures fall back to whatever is cached.
        """
        state = await self.state_model.read()
        if state is not None and state.age_seconds() <= self._settings.staleness_window:
            return state

        try:
            return await self._poll() or state
        except SpotbotException as e:
            log_with_context(
                logger,
                "warning",
                "Playback poll failed, serving cached state",
                error=e.message,
                error_code=e.code.value,
                event_type="playback_poll_failed",
            )
            return state

    async def _poll(self) -> PlaybackState | None:
        if self.realtime.connection_id:
            return await self.realtime.poll()
        playback = await self.api.get_playback_state()
        return await self.state_model.update_from_playback(playback)

    async def get_web_player_id(self) -> str:
        """Connect device id of the automation browser.

        Reloads the web player once when the device is not listed.

        Raises:
            DeviceNotFoundError: If the web player still does not show up
        """
        device = await self._find_web_player()
        if device is None:
            await self.channel.submit(
                lambda session: web_login.ensure_logged_in(session, self._settings),
                "verify logged in",
            )
            device = await self._find_web_player()
            if device is None:
                raise DeviceNotFoundError(
                    "Error looking up web player device. Please try again later.",
                    details={"device_name": self._settings.spotify_web_player_name},
                )
        return device.id

    async def _find_web_player(self) -> Device | None:
        for device in await self.api.get_devices():
            if device.name == self._settings.spotify_web_player_name:
                return device
        return None

    # Playback commands

    async def queue_track(self, track_id: str) -> None:
        """Add a track to the queue of the preferred device."""
        await self.ensure_ready()
        await self.verifier.verify_and_recover()
        uri = track_uri(track_id)
        await self.api.add_to_queue(uri, device_id=self._device_id)
        log_with_context(logger, "info", "Queued track", track_uri=uri, event_type="track_queued")

    async def play_context(self, uri: str) -> None:
        """Start an album, playlist, artist, track or radio context."""
        await self.ensure_ready()
        await self._start_context(uri)

    async def _start_context(self, uri: str) -> None:
        if is_radio_uri(uri):
            await self.channel.submit(lambda session: self._play_from_web_player(uri), "play radio")
        else:
            await self.api.play(device_id=self._device_id, context_uri=uri)
        log_with_context(logger, "info", "Started playback context", context_uri=uri, event_type="context_started")
        await self.verifier.force_repeat_shuffle()

    async def _play_from_web_player(self, uri: str) -> None:
        web_player_id = await self.get_web_player_id()
        await self.web_api.send_play_command(uri, web_player_id, self._device_id)

    async def play_radio(self, kind: str, item_id: str) -> str:
        """Start radio seeded by an artist, album or playlist.

        Returns:
            The radio context URI that was started
        """
        if kind not in RADIO_KINDS:
            raise InvalidRadioKindError(kind)

        await self.ensure_ready()
        await self.verifier.verify_and_recover()

        lookup = {
            "artist": self.api.get_artist,
            "album": self.api.get_album,
            "playlist": self.api.get_playlist,
        }[kind]
        item = await lookup(item_id)
        uri = f"spotify:radio:{item.get('type') or kind}:{item.get('id') or item_id}"
        log_with_context(
            logger,
            "info",
            f"Attempting to set {item.get('name', item_id)} {kind} radio",
            context_uri=uri,
            event_type="radio_requested",
        )
        await self._start_context(uri)
        return uri

    async def set_volume(self, percent: str | int) -> int:
        """Set the preferred device volume.

        Raises:
            InvalidVolumeError: Unless percent is a whole number from 0 to 100
        """
        volume = parse_volume(percent)
        await self.ensure_ready()
        await self.api.set_volume(volume, device_id=self._device_id)
        return volume

    async def get_volume(self) -> int:
        await self.ensure_ready()
        playback = await self.api.get_playback_state()
        device = (playback or {}).get("device")
        if not device:
            raise DeviceNotFoundError("No playback device found.")
        return device.get("volume_percent") or 0

    async def skip(self) -> None:
        await self.ensure_ready()
        await self.verifier.verify_and_recover()
        await self.api.skip_to_next(device_id=self._device_id)

    async def pause(self) -> None:
        await self.ensure_ready()
        await self.api.pause(device_id=self._device_id)

    async def resume(self) -> None:
        await self.ensure_ready()
        await self.api.play(device_id=self._device_id)

    # Read passthroughs

    async def search_tracks(self, terms: str, offset: int = 0, limit: int = 10) -> dict[str, Any]:
        await self.ensure_ready()
        return await self.api.search_tracks(terms, offset=offset, limit=limit)

    async def search(self, terms: str, types: str = "track,album,artist,playlist", limit: int = 10) -> dict[str, Any]:
        await self.ensure_ready()
        return await self.api.search(terms, types=types, limit=limit)

    async def get_devices(self) -> list[Device]:
        await self.ensure_ready()
        return await self.api.get_devices()

    async def get_playback_state(self) -> dict[str, Any] | None:
        await self.ensure_ready()
        return await self.api.get_playback_state()

    async def transfer_playback(self, device_id: str, play: bool = True) -> None:
        await self.ensure_ready()
        await self.api.transfer_playback(device_id, play=play)

    async def get_playlist(self, playlist_id: str, fields: str | None = None) -> dict[str, Any]:
        await self.ensure_ready()
        return await self.api.get_playlist(playlist_id, fields=fields)

    async def get_playlist_tracks(self, playlist_id: str, offset: int = 0, limit: int = 100) -> dict[str, Any]:
        await self.ensure_ready()
        return await self.api.get_playlist_tracks(playlist_id, offset=offset, limit=limit)

    async def get_album(self, album_id: str) -> dict[str, Any]:
        await self.ensure_ready()
        return await self.api.get_album(album_id)

    async def get_artist(self, artist_id: str) -> dict[str, Any]:
        await self.ensure_ready()
        return await self.api.get_artist(artist_id)

    async def get_artist_albums(self, artist_id: str, offset: int = 0, limit: int = 20) -> dict[str, Any]:
        await self.ensure_ready()
        return await self.api.get_artist_albums(artist_id, offset=offset, limit=limit)

    # Diagnostics

    async def save_screenshot(self, path: Path) -> Path:
        return await self.channel.submit(lambda session: session.save_screenshot(path), "screenshot")

    async def save_page_source(self, path: Path) -> Path:
        return await self.channel.submit(lambda session: session.save_page_source(path), "page source")

    async def status(self) -> dict[str, Any]:
        """Engine internals for health and debug endpoints."""
        state = await self.state_model.read()
        return {
            "authorized": self._authorized,
            "official_token_valid": await self.credentials.is_valid(CredentialKind.OFFICIAL),
            "web_token_valid": await self.credentials.is_valid(CredentialKind.WEB),
            "realtime_state": self.realtime.state.value,
            "realtime_connected": self.realtime.connection_id is not None,
            "realtime_reconnects": self.realtime.reconnects,
            "automation_session_started": self.channel.session_started,
            "automation_pending": self.channel.pending,
            "automation_resets": self.channel.resets,
            "playback_last_updated": state.last_updated.isoformat() if state else None,
        }
