"""State managers for handling process-wide mutable state.

This module provides task-safe state management using asyncio.Lock.
All state managers inherit from StateManager ABC.
"""

import asyncio
from abc import ABC, abstractmethod
from datetime import UTC, datetime, timedelta

from spotbot.models import Credential, CredentialKind, PlaybackState


class StateManager(ABC):
    """Base class for all state managers.

    State managers provide task-safe access to mutable application state.
    All subclasses must implement lifecycle methods.
    """

    @abstractmethod
    async def initialize(self) -> None:
        """Initialize the state manager (called during app startup)."""
        pass

    @abstractmethod
    async def cleanup(self) -> None:
        """Cleanup resources (called during app shutdown)."""
        pass


class CredentialStore(StateManager):
    """Holds the official and web bearer tokens with their expiry.

    Each credential is replaced atomically; callers only ever receive the
    token string, never the stored credential.
    """

    def __init__(self):
        """Initialize the credential store."""
        self._credentials: dict[CredentialKind, Credential] = {}
        self._lock = asyncio.Lock()

    async def initialize(self) -> None:
        """Initialize the credential store."""
        pass

    async def cleanup(self) -> None:
        """Forget all tokens on shutdown."""
        async with self._lock:
            self._credentials.clear()

    async def get_token(self, kind: CredentialKind) -> str | None:
        """Get the token of the given kind if present and not expired.

        Returns:
            Token string or None if expired/not set
        """
        async with self._lock:
            credential = self._credentials.get(kind)
            if credential and credential.is_valid():
                return credential.token
            return None

    async def get_refresh_token(self, kind: CredentialKind) -> str | None:
        """Get the refresh token stored alongside a credential, if any."""
        async with self._lock:
            credential = self._credentials.get(kind)
            return credential.refresh_token if credential else None

    async def is_valid(self, kind: CredentialKind) -> bool:
        """True iff a credential of that kind exists and expires in the future."""
        return await self.get_token(kind) is not None

    async def expires_at(self, kind: CredentialKind) -> datetime | None:
        async with self._lock:
            credential = self._credentials.get(kind)
            return credential.expires_at if credential else None

    async def set_token(
        self,
        kind: CredentialKind,
        token: str,
        expires_in: float | None = None,
        expires_at: datetime | None = None,
        refresh_token: str | None = None,
    ) -> None:
        """Replace the credential of the given kind.

        Args:
            kind: Which credential is being replaced
            token: The bearer token string
            expires_in: Lifetime in seconds (used when expires_at is not given)
            expires_at: Absolute expiry instant
            refresh_token: Refresh token to keep; the previous one is kept when None
        """
        if expires_at is None:
            expires_at = datetime.now(UTC) + timedelta(seconds=expires_in or 0)
        async with self._lock:
            previous = self._credentials.get(kind)
            if refresh_token is None and previous is not None:
                refresh_token = previous.refresh_token
            self._credentials[kind] = Credential(
                kind=kind,
                token=token,
                expires_at=expires_at,
                refresh_token=refresh_token,
            )

    async def invalidate(self, kind: CredentialKind) -> None:
        """Expire a credential while keeping its refresh token."""
        async with self._lock:
            credential = self._credentials.get(kind)
            if credential:
                self._credentials[kind] = credential.model_copy(update={"expires_at": datetime.now(UTC)})


class NowPlayingManager(StateManager):
    """Holds the single PlaybackState instance of the process.

    Replacement is wholesale and last_updated never goes backwards, so a
    reader can never observe a state older than one it already saw.
    """

    def __init__(self):
        """Initialize the now-playing manager."""
        self._state: PlaybackState | None = None
        self._lock = asyncio.Lock()

    async def initialize(self) -> None:
        """Initialize the now-playing manager."""
        pass

    async def cleanup(self) -> None:
        """Drop the cached state on shutdown."""
        async with self._lock:
            self._state = None

    async def get(self) -> PlaybackState | None:
        """Get the current playback state (None until the first update)."""
        async with self._lock:
            return self._state

    async def replace(self, state: PlaybackState) -> PlaybackState:
        """Store a new state, stamping it with a monotonic last_updated.

        Returns:
            The state as stored
        """
        async with self._lock:
            stamp = datetime.now(UTC)
            if self._state is not None and self._state.last_updated > stamp:
                stamp = self._state.last_updated
            self._state = state.model_copy(update={"last_updated": stamp})
            return self._state
