"""Spotbot models"""

from spotbot.models.base_models import DebugInfo, DetailedHealthResponse, HealthResponse, PlayContextRequest
from spotbot.models.spotify import (
    ContextType,
    Credential,
    CredentialKind,
    Device,
    PlaybackContext,
    PlaybackState,
    TrackInfo,
)

__all__ = [
    "DebugInfo",
    "DetailedHealthResponse",
    "HealthResponse",
    "PlayContextRequest",
    "ContextType",
    "Credential",
    "CredentialKind",
    "Device",
    "PlaybackContext",
    "PlaybackState",
    "TrackInfo",
]
