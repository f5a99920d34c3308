"""Custom exceptions for spotbot with error codes and retry semantics."""

from enum import Enum
from typing import Any


class ErrorCode(str, Enum):
    """Error codes for structured error responses."""

    # Generic errors
    BOT_ERROR = "BOT_ERROR"
    INTERNAL_ERROR = "INTERNAL_ERROR"
    VALIDATION_ERROR = "VALIDATION_ERROR"

    # Credential errors
    AUTH_ERROR = "AUTH_ERROR"
    UNAUTHORIZED = "UNAUTHORIZED"

    # Spotify errors
    SPOTIFY_API_ERROR = "SPOTIFY_API_ERROR"
    SPOTIFY_RATE_LIMIT = "SPOTIFY_RATE_LIMIT"
    NOT_FOUND = "NOT_FOUND"
    DEVICE_NOT_FOUND = "DEVICE_NOT_FOUND"

    # Browser automation errors
    AUTOMATION_FAILURE = "AUTOMATION_FAILURE"

    # Realtime connection errors
    REALTIME_ERROR = "REALTIME_ERROR"

    # Configuration errors
    CONFIG_ERROR = "CONFIG_ERROR"


class ErrorKind(str, Enum):
    """Classification of a failed remote call, decided at the call boundary."""

    UNAUTHORIZED = "unauthorized"
    NOT_FOUND = "not_found"
    RATE_LIMITED = "rate_limited"
    SERVER = "server"
    CLIENT = "client"
    TRANSPORT = "transport"

    @classmethod
    def from_status(cls, status_code: int) -> "ErrorKind":
        """Map an HTTP status code to an error kind."""
        if status_code == 401:
            return cls.UNAUTHORIZED
        if status_code == 404:
            return cls.NOT_FOUND
        if status_code == 429:
            return cls.RATE_LIMITED
        if status_code >= 500:
            return cls.SERVER
        return cls.CLIENT


class SpotbotException(Exception):
    """Base exception for spotbot errors with HTTP status code support.

    All custom exceptions inherit from this class. ``retryable`` tells the
    bounded retry wrapper and the automation channel whether another attempt
    may succeed; non-retryable errors propagate immediately.
    """

    retryable = True

    def __init__(
        self,
        message: str,
        code: ErrorCode = ErrorCode.BOT_ERROR,
        status_code: int = 500,
        details: dict[str, Any] | None = None,
    ):
        """Initialize spotbot exception.

        Args:
            message: Human-readable error message
            code: Error code from ErrorCode enum
            status_code: HTTP status code (default 500)
            details: Additional error context/details
        """
        self.message = message
        self.code = code
        self.status_code = status_code
        self.details = details or {}
        super().__init__(message)


class AuthError(SpotbotException):
    """A credential exchange itself failed. Terminal for the current call chain."""

    retryable = False

    def __init__(self, message: str = "Spotify authentication failed", details: dict[str, Any] | None = None):
        super().__init__(
            message,
            code=ErrorCode.AUTH_ERROR,
            status_code=401,
            details=details,
        )


class UnauthorizedError(SpotbotException):
    """A downstream call rejected the current bearer token."""

    def __init__(
        self,
        message: str = "Spotify rejected the access token",
        credential_kind: str = "official",
        details: dict[str, Any] | None = None,
    ):
        self.credential_kind = credential_kind
        super().__init__(
            message,
            code=ErrorCode.UNAUTHORIZED,
            status_code=401,
            details={"credential_kind": credential_kind, **(details or {})},
        )


class SpotifyAPIException(SpotbotException):
    """Spotify request failed for a reason other than auth or a missing resource."""

    def __init__(
        self,
        message: str,
        kind: ErrorKind = ErrorKind.SERVER,
        status_code: int = 502,
        details: dict[str, Any] | None = None,
    ):
        self.kind = kind
        super().__init__(
            message,
            code=ErrorCode.SPOTIFY_RATE_LIMIT if kind is ErrorKind.RATE_LIMITED else ErrorCode.SPOTIFY_API_ERROR,
            status_code=status_code,
            details=details,
        )


class NotFoundError(SpotbotException):
    """Target resource (track, playlist, device...) does not exist."""

    retryable = False

    def __init__(self, message: str = "Resource not found", details: dict[str, Any] | None = None):
        super().__init__(
            message,
            code=ErrorCode.NOT_FOUND,
            status_code=404,
            details=details,
        )


class DeviceNotFoundError(SpotbotException):
    """No usable playback device. Fatal for the calling operation."""

    retryable = False

    def __init__(self, message: str = "Playback device not found", details: dict[str, Any] | None = None):
        super().__init__(
            message,
            code=ErrorCode.DEVICE_NOT_FOUND,
            status_code=503,
            details=details,
        )


class AutomationFailure(SpotbotException):
    """A browser-driven step failed or timed out."""

    def __init__(self, message: str = "Browser automation step failed", details: dict[str, Any] | None = None):
        super().__init__(
            message,
            code=ErrorCode.AUTOMATION_FAILURE,
            status_code=502,
            details=details,
        )


class RealtimeConnectionError(SpotbotException):
    """The realtime dealer connection could not be established or was lost."""

    def __init__(self, message: str = "Realtime connection failed", details: dict[str, Any] | None = None):
        super().__init__(
            message,
            code=ErrorCode.REALTIME_ERROR,
            status_code=503,
            details=details,
        )


class InvalidVolumeError(SpotbotException):
    """Requested volume is not a whole number between 0 and 100."""

    retryable = False

    def __init__(
        self,
        message: str = "Volume can only be set to a whole number between 0 and 100.",
        details: dict[str, Any] | None = None,
    ):
        super().__init__(
            message,
            code=ErrorCode.VALIDATION_ERROR,
            status_code=400,
            details=details,
        )


class InvalidRadioKindError(SpotbotException):
    """Radio can only be started from an artist, album or playlist."""

    retryable = False

    def __init__(self, kind: str, details: dict[str, Any] | None = None):
        super().__init__(
            f"Cannot start radio from '{kind}'; expected artist, album or playlist.",
            code=ErrorCode.VALIDATION_ERROR,
            status_code=400,
            details={"kind": kind, **(details or {})},
        )


class ConfigurationException(SpotbotException):
    """Configuration errors."""

    retryable = False

    def __init__(
        self,
        message: str,
        code: ErrorCode = ErrorCode.CONFIG_ERROR,
        status_code: int = 500,
        details: dict[str, Any] | None = None,
    ):
        super().__init__(message, code, status_code, details)


def is_retryable(exc: BaseException) -> bool:
    """Return True if another attempt at the failed operation may succeed."""
    return getattr(exc, "retryable", True)
