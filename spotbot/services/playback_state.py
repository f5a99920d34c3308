"""Materialized view of what is playing, what is queued and in which context.

Built from a connect-state ``player_state`` (realtime push or snapshot) or,
without a realtime connection, from an official playback-state response.
"""

from typing import Any

from spotbot.cache import ContextCache, get_cache
from spotbot.exceptions import SpotbotException
from spotbot.logging_config import get_logger, log_with_context
from spotbot.models import ContextType, PlaybackContext, PlaybackState, TrackInfo
from spotbot.services.spotify_api import MAX_TRACKS_PER_REQUEST, SpotifyAPI
from spotbot.state_managers import NowPlayingManager

logger = get_logger(__name__)

RADIO_MARKERS = ("radio", "station")
# Checked in this order; "spotify:user:x:playlist:y" is a playlist
CONTEXT_PRECEDENCE = (ContextType.PLAYLIST, ContextType.ALBUM, ContextType.ARTIST, ContextType.TRACK)


def track_id_from_uri(uri: str | None) -> str | None:
    """'spotify:track:abc' -> 'abc'; anything that is not a track -> None."""
    if not uri:
        return None
    segments = uri.split(":")
    if len(segments) >= 3 and segments[-2] == "track" and segments[-1]:
        return segments[-1]
    return None


def is_queued(entry: dict[str, Any]) -> bool:
    """True when a next_tracks entry was explicitly queued by a user."""
    flag = (entry.get("metadata") or {}).get("is_queued")
    return flag is True or str(flag).lower() == "true"


def is_radio_uri(uri: str | None) -> bool:
    """True when a whole URI segment marks a radio or station context."""
    if not uri:
        return False
    segments = uri.split(":")
    return any(marker in segments for marker in RADIO_MARKERS)


def parse_context_uri(uri: str | None) -> tuple[ContextType, bool, str] | None:
    """Split a context URI into (type, is_radio, item id).

    Returns:
        None for empty or unrecognized URIs (e.g. collections)
    """
    if not uri:
        return None
    segments = uri.split(":")
    is_radio = is_radio_uri(uri)
    for context_type in CONTEXT_PRECEDENCE:
        if context_type.value in segments:
            return context_type, is_radio, segments[-1]
    return None


def _artist_names(item: dict[str, Any]) -> str:
    return ", ".join(artist.get("name", "") for artist in item.get("artists") or [])


class PlaybackStateModel:
    """Builds PlaybackState instances and stores them in the NowPlayingManager."""

    def __init__(self, api: SpotifyAPI, store: NowPlayingManager, cache: ContextCache | None = None):
        self._api = api
        self._store = store
        self._cache = cache or get_cache()

    async def read(self) -> PlaybackState | None:
        return await self._store.get()

    async def is_stale(self, window_seconds: float) -> bool:
        """True when there is no state or it is older than the window."""
        state = await self._store.get()
        return state is None or state.age_seconds() > window_seconds

    async def update(self, player_state: dict[str, Any] | None) -> PlaybackState | None:
        """Rebuild the state from a connect-state ``player_state``.

        Returns:
            The stored state, or None when there is no current track (the
            previous state is kept).
        """
        player_state = player_state or {}
        current_id = track_id_from_uri((player_state.get("track") or {}).get("uri"))
        if not current_id:
            log_with_context(logger, "debug", "No current track in player state", event_type="playback_no_track")
            return None

        queued_ids = [
            track_id
            for entry in player_state.get("next_tracks") or []
            if is_queued(entry) and (track_id := track_id_from_uri(entry.get("uri")))
        ]
        track_ids = ([current_id] + queued_ids)[:MAX_TRACKS_PER_REQUEST]

        tracks = await self._api.get_tracks(track_ids)
        if not tracks or tracks[0] is None:
            log_with_context(
                logger,
                "warning",
                "Current track could not be resolved",
                track_id=current_id,
                event_type="playback_unresolved",
            )
            return None

        state = PlaybackState(
            now_playing=TrackInfo.from_api(tracks[0]),
            queued_tracks=tuple(TrackInfo.from_api(track) for track in tracks[1:] if track),
            context=await self.resolve_context(player_state.get("context_uri")),
        )
        state = await self._store.replace(state)

        log_with_context(
            logger,
            "info",
            "Playback state updated",
            track_id=state.now_playing.id,
            queued=len(state.queued_tracks),
            context_uri=state.context.uri if state.context else None,
            event_type="playback_updated",
        )
        return state

    async def update_from_playback(self, playback: dict[str, Any] | None) -> PlaybackState | None:
        """Rebuild the state from an official playback-state response (empty queue)."""
        playback = playback or {}
        return await self.update(
            {
                "track": {"uri": (playback.get("item") or {}).get("uri")},
                "next_tracks": [],
                "context_uri": (playback.get("context") or {}).get("uri"),
            }
        )

    async def resolve_context(self, uri: str | None) -> PlaybackContext | None:
        """Summarize a context URI; lookup failures leave the context empty."""
        parsed = parse_context_uri(uri)
        if parsed is None:
            if uri:
                log_with_context(logger, "warning", "Unrecognized context URI", context_uri=uri, event_type="context_unknown")
            return None

        context_type, is_radio, item_id = parsed
        try:
            return await self._cache.get_or_lookup(
                uri,
                lambda: self._lookup_context(context_type, is_radio, item_id, uri),
            )
        except SpotbotException as e:
            log_with_context(
                logger,
                "warning",
                "Context lookup failed",
                context_uri=uri,
                error=e.message,
                event_type="context_lookup_failed",
            )
            return None

    async def _lookup_context(self, context_type: ContextType, is_radio: bool, item_id: str, uri: str) -> PlaybackContext:
        artists: str | None = None
        if context_type is ContextType.PLAYLIST:
            item = await self._api.get_playlist(item_id, fields="name,description")
        elif context_type is ContextType.ALBUM:
            item = await self._api.get_album(item_id)
            artists = _artist_names(item)
        elif context_type is ContextType.ARTIST:
            item = await self._api.get_artist(item_id)
        else:
            item = await self._api.get_track(item_id)
            artists = _artist_names(item)

        return PlaybackContext(
            type=context_type,
            is_radio=is_radio,
            name=item.get("name", ""),
            artists=artists,
            uri=uri,
        )
