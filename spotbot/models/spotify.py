"""Pydantic models for credentials, devices and playback state."""

from datetime import UTC, datetime
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field


class CredentialKind(str, Enum):
    """The two bearer tokens the bot tracks."""

    OFFICIAL = "official"
    WEB = "web"


class Credential(BaseModel):
    """A bearer token with its expiry. Replaced wholesale on refresh."""

    model_config = ConfigDict(frozen=True)

    kind: CredentialKind
    token: str
    expires_at: datetime
    refresh_token: str | None = None

    def is_valid(self, now: datetime | None = None) -> bool:
        """True iff the expiry is strictly in the future."""
        return self.expires_at > (now or datetime.now(UTC))


class Device(BaseModel):
    """Playback device as reported by the official API."""

    id: str
    name: str
    is_active: bool = False
    volume_percent: int | None = None

    @classmethod
    def from_api(cls, data: dict) -> "Device":
        return cls(
            id=data.get("id") or "",
            name=data.get("name") or "",
            is_active=bool(data.get("is_active")),
            volume_percent=data.get("volume_percent"),
        )


class TrackInfo(BaseModel):
    """Display metadata for a single track."""

    model_config = ConfigDict(frozen=True)

    id: str
    song_title: str
    artists: tuple[str, ...] = ()

    @property
    def artist(self) -> str:
        return ", ".join(self.artists)

    @classmethod
    def from_api(cls, track: dict) -> "TrackInfo":
        return cls(
            id=track["id"],
            song_title=track.get("name", ""),
            artists=tuple(a.get("name", "") for a in track.get("artists") or []),
        )


class ContextType(str, Enum):
    """Kinds of Spotify context that can drive playback."""

    TRACK = "track"
    ALBUM = "album"
    ARTIST = "artist"
    PLAYLIST = "playlist"


class PlaybackContext(BaseModel):
    """Human-readable summary of the context currently driving playback."""

    model_config = ConfigDict(frozen=True)

    type: ContextType
    is_radio: bool = False
    name: str
    artists: str | None = None
    uri: str

    @property
    def label(self) -> str:
        """e.g. 'album' or 'playlist radio'."""
        return f"{self.type.value} radio" if self.is_radio else self.type.value


class PlaybackState(BaseModel):
    """What is playing, what is queued, and the context it belongs to.

    Instances are immutable; the playback state model replaces the whole
    object on every update so readers never see a half-applied change.
    """

    model_config = ConfigDict(frozen=True)

    now_playing: TrackInfo
    queued_tracks: tuple[TrackInfo, ...] = ()
    context: PlaybackContext | None = None
    last_updated: datetime = Field(default_factory=lambda: datetime.now(UTC))

    def age_seconds(self, now: datetime | None = None) -> float:
        return ((now or datetime.now(UTC)) - self.last_updated).total_seconds()
