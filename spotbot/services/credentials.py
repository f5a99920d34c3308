"""Credential lifecycle for the official and web bearer tokens.

The official token comes from the OAuth refresh-token grant; the web token
is exchanged from the automation session's cookies. Both are stored in the
CredentialStore and only token strings leave this module.
"""

import asyncio
from datetime import UTC, datetime
from pathlib import Path
from typing import Any
from urllib.parse import urlencode

import httpx

from spotbot.config import Settings
from spotbot.exceptions import AuthError
from spotbot.logging_config import get_logger, log_with_context
from spotbot.models import CredentialKind
from spotbot.protocols import AutomationSessionProtocol
from spotbot.services import web_login
from spotbot.services.web_api import USER_AGENT
from spotbot.state_managers import CredentialStore
from spotbot.utils.env_updater import get_env_path, update_env_file

logger = get_logger(__name__)

SCOPES = (
    "user-modify-playback-state",
    "user-read-currently-playing",
    "user-read-playback-state",
    "streaming",
)
AUTHORIZE_STATE = "default-state"
REFRESH_TOKEN_ENV_KEY = "SPOTIFY_REFRESH_TOKEN"
TOKEN_TIMEOUT = 10.0  # seconds


def cookie_header(cookies: list[dict[str, Any]]) -> str:
    """Render browser cookies for spotify.com as a Cookie header value."""
    return "; ".join(
        f"{cookie['name']}={cookie['value']}"
        for cookie in cookies
        if str(cookie.get("domain", "")).lstrip(".").endswith("spotify.com")
    )


class CredentialLifecycle:
    """Keeps the official and web credentials valid.

    Refreshes of one kind are serialized so a burst of 401s produces a
    single exchange. Official refreshes serialize on a lock; web refreshes
    run as automation channel tasks, which the channel already serializes.
    """

    def __init__(
        self,
        client: httpx.AsyncClient,
        store: CredentialStore,
        channel: Any,
        settings: Settings,
        env_path: Path | None = None,
    ):
        """Initialize the lifecycle.

        Args:
            client: Shared HTTP client
            store: Credential store holding both tokens
            channel: AutomationChannel owning the browser session
            settings: Application settings
            env_path: .env file receiving rotated refresh tokens
        """
        self._client = client
        self._store = store
        self._channel = channel
        self._settings = settings
        self._env_path = env_path or get_env_path()
        self._official_lock = asyncio.Lock()
        self._code_received = asyncio.Event()

    def authorize_url(self) -> str:
        """Consent URL for the authorization-code flow."""
        query = urlencode(
            {
                "client_id": self._settings.spotify_client_id,
                "response_type": "code",
                "redirect_uri": self._settings.spotify_redirect_uri,
                "scope": " ".join(SCOPES),
                "state": AUTHORIZE_STATE,
            }
        )
        return f"{self._settings.spotify_accounts_url}/authorize?{query}"

    async def is_valid(self, kind: CredentialKind) -> bool:
        return await self._store.is_valid(kind)

    async def expires_at(self, kind: CredentialKind) -> datetime | None:
        return await self._store.expires_at(kind)

    async def get_token(self, kind: CredentialKind) -> str:
        """Return a valid token of the given kind, refreshing first if needed.

        Raises:
            AuthError: If the refresh exchange fails
        """
        token = await self._store.get_token(kind)
        if token:
            return token

        await self._refresh(kind, force=False)

        token = await self._store.get_token(kind)
        if not token:
            raise AuthError(f"Spotify issued an already expired {kind.value} token")
        return token

    async def refresh(self, kind: CredentialKind) -> None:
        """Exchange for a new credential of the given kind and store it.

        Raises:
            AuthError: If the exchange itself fails
        """
        await self._refresh(kind, force=True)

    async def reauthenticate(self, kind: CredentialKind) -> None:
        """Repair action after a downstream 401: drop the token and get a new one."""
        log_with_context(
            logger,
            "warning",
            f"Spotify rejected the {kind.value} token, re-authenticating",
            credential_kind=kind.value,
            event_type="token_rejected",
        )
        await self._store.invalidate(kind)
        await self.get_token(kind)

    async def _refresh(self, kind: CredentialKind, force: bool) -> None:
        if kind is CredentialKind.WEB:
            await self._channel.submit(
                lambda session: self._refresh_web(session, force),
                "refresh web token",
            )
            return

        async with self._official_lock:
            # Another caller may have refreshed while we waited
            if force or not await self._store.is_valid(CredentialKind.OFFICIAL):
                await self._refresh_official()

    async def _refresh_official(self) -> None:
        refresh_token = await self._store.get_refresh_token(CredentialKind.OFFICIAL) or self._settings.spotify_refresh_token
        if not refresh_token:
            raise AuthError("No refresh token available. Please authenticate first.")

        data = await self._token_request(
            {"grant_type": "refresh_token", "refresh_token": refresh_token},
            "refresh",
        )
        await self._store_official(data, fallback_refresh_token=refresh_token)
        log_with_context(logger, "info", "Refreshed official access token", event_type="token_refreshed")

    async def _refresh_web(self, session: AutomationSessionProtocol, force: bool) -> None:
        if not force and await self._store.is_valid(CredentialKind.WEB):
            return

        cookies = await session.get_cookies()
        try:
            response = await self._client.get(
                f"{self._settings.spotify_web_url}/get_access_token",
                params={"reason": "transport", "productType": "web_player"},
                headers={
                    "Content-Type": "application/json",
                    "User-Agent": USER_AGENT,
                    "Cookie": cookie_header(cookies),
                },
                timeout=TOKEN_TIMEOUT,
            )
            response.raise_for_status()
            data = response.json()
            token = data["accessToken"]
            expires_at = datetime.fromtimestamp(int(data["accessTokenExpirationTimestampMs"]) / 1000, tz=UTC)
        except httpx.HTTPError as e:
            raise AuthError(f"Spotify web token error: {str(e)}") from e
        except (KeyError, ValueError, TypeError) as e:
            raise AuthError(f"Invalid Spotify web token response: {str(e)}") from e

        if data.get("isAnonymous"):
            raise AuthError("Browser session is not logged in; web token is anonymous")

        await self._store.set_token(CredentialKind.WEB, token, expires_at=expires_at)
        log_with_context(
            logger,
            "info",
            "Refreshed web access token",
            expires_at=expires_at.isoformat(),
            event_type="web_token_refreshed",
        )

    async def _token_request(self, form: dict[str, str], grant: str) -> dict[str, Any]:
        try:
            response = await self._client.post(
                f"{self._settings.spotify_accounts_url}/api/token",
                auth=(self._settings.spotify_client_id, self._settings.spotify_client_secret),
                data=form,
                timeout=TOKEN_TIMEOUT,
            )
            response.raise_for_status()
            data = response.json()
        except httpx.HTTPError as e:
            raise AuthError(f"Spotify auth error: {str(e)}", details={"grant": grant}) from e
        except ValueError as e:
            raise AuthError(f"Invalid Spotify auth response: {str(e)}", details={"grant": grant}) from e

        if not isinstance(data, dict) or "access_token" not in data:
            raise AuthError("Invalid Spotify auth response: missing access_token", details={"grant": grant})
        return data

    async def _store_official(self, data: dict[str, Any], fallback_refresh_token: str | None = None) -> None:
        new_refresh_token = data.get("refresh_token")
        await self._store.set_token(
            CredentialKind.OFFICIAL,
            data["access_token"],
            expires_in=data.get("expires_in", 3600),
            refresh_token=new_refresh_token or fallback_refresh_token,
        )
        if new_refresh_token and new_refresh_token != fallback_refresh_token:
            self._persist_refresh_token(new_refresh_token)

    def _persist_refresh_token(self, refresh_token: str) -> None:
        try:
            update_env_file(self._env_path, REFRESH_TOKEN_ENV_KEY, refresh_token)
        except (FileNotFoundError, PermissionError, ValueError) as e:
            log_with_context(
                logger,
                "warning",
                "Could not persist refresh token",
                error=str(e),
                event_type="refresh_token_not_persisted",
            )

    async def receive_auth_code(self, code: str) -> None:
        """Exchange an authorization code delivered to the redirect callback.

        Raises:
            AuthError: If the code exchange fails
        """
        async with self._official_lock:
            data = await self._token_request(
                {
                    "grant_type": "authorization_code",
                    "code": code,
                    "redirect_uri": self._settings.spotify_redirect_uri,
                },
                "authorization_code",
            )
            await self._store_official(data)
        self._code_received.set()
        log_with_context(logger, "info", "Received Spotify authorization", event_type="auth_code_exchanged")

    async def initialize(self, force: bool = False) -> None:
        """Authorize the bot end-to-end on the automation session.

        Skips interactive steps the browser has already completed. With
        ``force`` both tokens are re-derived even if still valid.

        Raises:
            AuthError: If no credential can be obtained
        """
        if force:
            await self._store.invalidate(CredentialKind.OFFICIAL)
            await self._store.invalidate(CredentialKind.WEB)
        elif await self.is_valid(CredentialKind.OFFICIAL) and await self.is_valid(CredentialKind.WEB):
            return

        await self._channel.submit(self._authorize, "initialize credentials")

    async def reinitialize(self) -> None:
        """Reinitialization hook for the automation channel's reset tier."""
        await self.initialize(force=True)

    async def _authorize(self, session: AutomationSessionProtocol) -> None:
        await web_login.ensure_logged_in(session, self._settings)

        has_refresh_token = bool(
            await self._store.get_refresh_token(CredentialKind.OFFICIAL) or self._settings.spotify_refresh_token
        )
        if has_refresh_token:
            await self.get_token(CredentialKind.OFFICIAL)
        else:
            log_with_context(
                logger,
                "info",
                "Authorization required, driving consent page",
                redirect_uri=self._settings.spotify_redirect_uri,
                event_type="auth_consent_required",
            )
            self._code_received.clear()
            await web_login.grant_authorization(session, self._settings, self.authorize_url())
            try:
                await asyncio.wait_for(
                    self._code_received.wait(),
                    timeout=self._settings.automation_wait_ms / 1000,
                )
            except TimeoutError as e:
                raise AuthError("Authorization code was not delivered to the redirect callback") from e

        await self.get_token(CredentialKind.WEB)
        log_with_context(logger, "info", "Spotify credentials initialized", event_type="credentials_initialized")
