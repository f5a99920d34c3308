from pathlib import Path

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

BASE_DIR = Path(__file__).resolve().parent.parent  # spotbot project root


class Settings(BaseSettings):
    """Application settings with validation.

    Critical fields are required and will raise validation errors if missing.
    All secrets must be provided via environment variables or .env file.
    """

    # API server settings
    api_host: str = Field(default="127.0.0.1", min_length=1, description="API server host")
    api_port: int = Field(ge=1, le=65535, default=8000, description="API server port")
    bot_api_key: str = Field(default="", description="Bearer key protecting operator endpoints")
    trusted_hosts: str = Field(default="localhost,127.0.0.1,testserver", description="Comma-separated host patterns")
    log_level: str = Field(default="INFO", description="Root log level")

    # Spotify API - required
    spotify_client_id: str = Field(min_length=1, description="Spotify OAuth client ID")
    spotify_client_secret: str = Field(min_length=1, description="Spotify OAuth client secret")
    spotify_redirect_uri: str = Field(pattern=r"^https?://", description="Spotify OAuth redirect URI")
    spotify_refresh_token: str = Field(default="", description="Spotify refresh token (populated after OAuth)")

    # Playback policy
    spotify_preferred_device_id: str = Field(min_length=1, description="Device the bot plays on")
    spotify_fallback_playlist_uri: str = Field(default="", description="Context started when nothing is playing")
    spotify_web_player_name: str = Field(default="Web Player (Chrome)", description="Device name of the browser player")

    # Login credentials for the browser session; Facebook login is used when no Spotify username is set
    spotify_username: str = Field(default="", description="Spotify account username")
    spotify_password: str = Field(default="", description="Spotify account password")
    fb_email: str = Field(default="", description="Facebook account email")
    fb_password: str = Field(default="", description="Facebook account password")

    # Browser automation
    browser_headless: bool = Field(default=True, description="Run the automation browser headless")
    browser_profile_dir: Path = Field(default=BASE_DIR / "chromeprofile", description="Persistent browser profile")
    browser_args: str = Field(default="--disable-gpu", description="Space-separated extra browser arguments")
    automation_wait_ms: int = Field(default=30000, ge=1000, description="Wait ceiling per UI step")
    automation_reset_delay: float = Field(default=2.0, ge=0, description="Pause before reinitializing the session")

    # Retry and realtime tuning
    retry_attempts: int = Field(default=5, ge=0, le=10, description="Retries after the first failed remote call")
    heartbeat_interval: float = Field(default=30.0, gt=0, description="Seconds between realtime pings")
    reconnect_delay: float = Field(default=2.0, ge=0, description="Seconds before reconnecting the realtime socket")
    handshake_timeout: float = Field(default=30.0, gt=0, description="Seconds to wait for a connection id")
    staleness_window: float = Field(default=600.0, gt=0, description="Seconds without updates before a resync")

    # Endpoints
    spotify_api_url: str = Field(default="https://api.spotify.com/v1", pattern=r"^https?://")
    spotify_accounts_url: str = Field(default="https://accounts.spotify.com", pattern=r"^https?://")
    spotify_web_url: str = Field(default="https://open.spotify.com", pattern=r"^https?://")
    spotify_spclient_url: str = Field(default="https://gew-spclient.spotify.com", pattern=r"^https?://")
    spotify_dealer_url: str = Field(default="wss://gew1-dealer.spotify.com/", pattern=r"^wss?://")

    model_config = SettingsConfigDict(
        env_file=Path(BASE_DIR / ".env"),
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
        validate_default=True,
    )

    @field_validator("spotify_preferred_device_id", mode="after")
    @classmethod
    def validate_preferred_device(cls, v: str) -> str:
        """Ensure the preferred device id is not whitespace."""
        v = v.strip()
        if not v:
            raise ValueError("spotify_preferred_device_id must not be empty")
        return v

    @field_validator("spotify_fallback_playlist_uri", mode="after")
    @classmethod
    def validate_fallback_uri(cls, v: str) -> str:
        """Ensure the fallback context is a Spotify URI when set."""
        v = v.strip()
        if v and not v.startswith("spotify:"):
            raise ValueError("spotify_fallback_playlist_uri must be a spotify: URI")
        return v

    @field_validator("spotify_redirect_uri", mode="after")
    @classmethod
    def validate_spotify_redirect_uri(cls, v: str) -> str:
        """Ensure redirect URI is a valid http(s) URL."""
        if not v.startswith(("http://", "https://")):
            raise ValueError("spotify_redirect_uri must be a valid http:// or https:// URL")
        return v

    @property
    def has_login_credentials(self) -> bool:
        """True when the browser session can log in without a human."""
        return bool((self.spotify_username and self.spotify_password) or (self.fb_email and self.fb_password))


_settings_instance: Settings | None = None


def get_settings() -> Settings:
    """Get singleton Settings instance for dependency injection.

    Avoids re-reading the .env file on every request.
    """
    global _settings_instance
    if _settings_instance is None:
        _settings_instance = Settings()
    return _settings_instance
