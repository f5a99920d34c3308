"""Pre-flight check run before every mutating playback command."""

from typing import Any

from spotbot.config import Settings
from spotbot.exceptions import DeviceNotFoundError
from spotbot.logging_config import get_logger, log_with_context
from spotbot.models import Device
from spotbot.services.playback_state import PlaybackStateModel
from spotbot.services.spotify_api import SpotifyAPI

logger = get_logger(__name__)


class PlaybackVerifier:
    """Makes sure the preferred device is active and playing.

    If it is not, playback is resumed when Spotify still remembers what was
    playing; otherwise the last known context (or the configured fallback
    playlist) is started. Repeat-context and shuffle are then switched on
    whenever Spotify allows it.
    """

    def __init__(self, api: SpotifyAPI, state_model: PlaybackStateModel, settings: Settings):
        self._api = api
        self._state_model = state_model
        self._device_id = settings.spotify_preferred_device_id
        self._fallback_uri = settings.spotify_fallback_playlist_uri

    async def find_preferred_device(self) -> Device:
        """Raises DeviceNotFoundError when the preferred device is not listed."""
        devices = await self._api.get_devices()
        for device in devices:
            if device.id == self._device_id:
                return device

        log_with_context(
            logger,
            "error",
            "Preferred playback device not found",
            device_id=self._device_id,
            available=[device.name for device in devices],
            event_type="device_not_found",
        )
        raise DeviceNotFoundError(
            f"Device {self._device_id} not found",
            details={"device_id": self._device_id},
        )

    async def verify_and_recover(self) -> dict[str, Any] | None:
        """Ensure playback is running on the preferred device.

        Returns:
            The playback state as read before any recovery

        Raises:
            DeviceNotFoundError: If the preferred device is missing
        """
        device = await self.find_preferred_device()
        playback = await self._api.get_playback_state()
        is_playing = bool(playback and playback.get("is_playing"))

        if device.is_active and is_playing:
            await self.force_repeat_shuffle(playback)
            return playback

        if playback and (playback.get("context") or playback.get("item")):
            log_with_context(
                logger,
                "info",
                "Resuming playback on preferred device",
                device_id=device.id,
                device_active=device.is_active,
                event_type="playback_resume",
            )
            await self._api.play(device_id=device.id)
        else:
            context_uri = await self._recovery_context_uri()
            if context_uri is None:
                log_with_context(
                    logger,
                    "warning",
                    "Nothing to resume and no fallback playlist configured",
                    device_id=device.id,
                    event_type="playback_no_fallback",
                )
            else:
                log_with_context(
                    logger,
                    "info",
                    "Starting playback context on idle device",
                    device_id=device.id,
                    context_uri=context_uri,
                    event_type="playback_fallback",
                )
            await self._api.play(device_id=device.id, context_uri=context_uri)

        await self.force_repeat_shuffle()
        return playback

    async def _recovery_context_uri(self) -> str | None:
        state = await self._state_model.read()
        if state is not None and state.context is not None:
            return state.context.uri
        return self._fallback_uri or None

    async def force_repeat_shuffle(self, playback: dict[str, Any] | None = None) -> None:
        """Turn repeat-context and shuffle on where they are off and allowed.

        Args:
            playback: Playback state to inspect; re-read when None
        """
        if playback is None:
            playback = await self._api.get_playback_state()
        if not playback:
            return

        disallows = (playback.get("actions") or {}).get("disallows") or {}

        if not disallows.get("toggling_repeat_context") and playback.get("repeat_state") == "off":
            await self._api.set_repeat("context", device_id=self._device_id)
            log_with_context(logger, "info", "Enabled repeat context", event_type="repeat_enabled")

        if not disallows.get("toggling_shuffle") and playback.get("shuffle_state") is False:
            await self._api.set_shuffle(True, device_id=self._device_id)
            log_with_context(logger, "info", "Enabled shuffle", event_type="shuffle_enabled")
