"""Web-player endpoints authorized with the web credential.

These are the private endpoints the browser client itself uses: notification
registration for the realtime socket, connect-state snapshots and player
commands that the official API cannot issue (radio contexts).
"""

from typing import Any

import httpx

from spotbot.config import Settings
from spotbot.exceptions import ErrorKind, SpotifyAPIException
from spotbot.logging_config import get_logger, log_with_context
from spotbot.models import CredentialKind
from spotbot.services.retry import retrying
from spotbot.services.spotify_api import REQUEST_TIMEOUT, parse_body, raise_for_spotify_status

logger = get_logger(__name__)

CONNECTION_ID_HEADER = "X-Spotify-Connection-Id"
USER_AGENT = (
    "Mozilla/5.0 (X11; Linux x86_64) AppleWebKit/537.36 (KHTML, like Gecko) HeadlessChrome/120.0.0.0 Safari/537.36"
)
WEB_DEVICE_PREFIX = "hobs_"
WEB_DEVICE_ID_LENGTH = 35

# The bot only observes; it never becomes a Connect target itself
OBSERVER_DEVICE = {
    "member_type": "CONNECT_STATE",
    "device": {"device_info": {"capabilities": {"can_be_player": False, "hidden": True}}},
}

PLAY_ORIGIN = {"feature_identifier": "harmony", "feature_version": "4.9.0-d242618"}


def observer_device_id(web_player_id: str) -> str:
    """Connect-state device id derived from the web player's device id."""
    return f"{WEB_DEVICE_PREFIX}{web_player_id[:WEB_DEVICE_ID_LENGTH]}"


class SpotifyWebPlayerAPI:
    """Calls to web-player endpoints."""

    def __init__(self, client: httpx.AsyncClient, credentials: Any, settings: Settings):
        self._client = client
        self.credentials = credentials
        self.retries = settings.retry_attempts
        self._api_url = settings.spotify_api_url.rstrip("/")
        self._spclient_url = settings.spotify_spclient_url.rstrip("/")

    async def _request(
        self,
        method: str,
        url: str,
        operation: str,
        params: dict[str, Any] | None = None,
        json_body: dict[str, Any] | None = None,
        headers: dict[str, str] | None = None,
    ) -> Any:
        token = await self.credentials.get_token(CredentialKind.WEB)
        try:
            response = await self._client.request(
                method,
                url,
                params=params,
                json=json_body,
                headers={"Authorization": f"Bearer {token}", "User-Agent": USER_AGENT, **(headers or {})},
                timeout=REQUEST_TIMEOUT,
            )
        except httpx.TransportError as e:
            raise SpotifyAPIException(
                f"{operation}: could not reach Spotify: {e}",
                kind=ErrorKind.TRANSPORT,
                details={"operation": operation},
            ) from e

        raise_for_spotify_status(response, operation, credential_kind=CredentialKind.WEB)
        return parse_body(response)

    @retrying("register notifications")
    async def register_notifications(self, connection_id: str) -> None:
        """Subscribe the realtime connection to this user's player events."""
        await self._request(
            "PUT",
            f"{self._api_url}/me/notifications/user",
            "register notifications",
            params={"connection_id": connection_id},
        )
        log_with_context(
            logger,
            "info",
            "Registered realtime connection for notifications",
            event_type="realtime_registered",
        )

    @retrying("get connect state")
    async def get_connect_state(self, connection_id: str, web_player_id: str) -> dict[str, Any]:
        """Fetch a full connect-state snapshot.

        Returns:
            The cluster, including ``player_state``
        """
        data = await self._request(
            "PUT",
            f"{self._spclient_url}/connect-state/v1/devices/{observer_device_id(web_player_id)}",
            "get connect state",
            json_body=OBSERVER_DEVICE,
            headers={CONNECTION_ID_HEADER: connection_id},
        )
        return data or {}

    @retrying("send play command")
    async def send_play_command(self, context_uri: str, from_device_id: str, to_device_id: str) -> None:
        """Start a context (including radio) on to_device_id, issued from the web player."""
        command = {
            "command": {
                "context": {"uri": context_uri, "url": f"context://{context_uri}", "metadata": {}},
                "play_origin": PLAY_ORIGIN,
                "options": {
                    "license": "premium",
                    "skip_to": {},
                    "player_options_override": {"repeating_track": False, "repeating_context": True},
                },
                "endpoint": "play",
            }
        }
        await self._request(
            "POST",
            f"{self._spclient_url}/connect-state/v1/player/command/from/{from_device_id}/to/{to_device_id}",
            "send play command",
            json_body=command,
        )
