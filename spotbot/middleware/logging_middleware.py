"""Redaction helpers for logging URLs and headers that carry credentials."""

import re
from collections.abc import Mapping

# Query parameters to redact from URLs (the dealer socket URL carries access_token)
SENSITIVE_PARAMS = [
    "access_token",
    "refresh_token",
    "client_secret",
    "code",
    "token",
    "password",
    "secret",
    "key",
]

# Headers whose values are never logged
SENSITIVE_HEADERS = {"authorization", "cookie", "set-cookie", "x-spotify-connection-id"}


def redact_sensitive_data(url: str) -> str:
    """Redact sensitive query parameters from URL."""
    redacted = url
    for param in SENSITIVE_PARAMS:
        pattern = rf"([?&]){param}=([^&\s\"]+)"
        redacted = re.sub(pattern, rf"\g<1>{param}=***REDACTED***", redacted)
    return redacted


def redact_headers(headers: Mapping[str, str]) -> dict[str, str]:
    """Return a copy of headers with credential-bearing values masked."""
    return {
        name: "***REDACTED***" if name.lower() in SENSITIVE_HEADERS else value
        for name, value in headers.items()
    }
