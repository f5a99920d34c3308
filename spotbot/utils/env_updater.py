"""Persist rotated credentials to the .env file read by Settings."""

import os
import tempfile
from pathlib import Path

from spotbot.config import BASE_DIR
from spotbot.logging_config import get_logger, log_with_context

logger = get_logger(__name__)


def update_env_file(env_path: Path, key: str, value: str) -> None:
    """Update or add a key-value pair in .env file.

    The file is rewritten through a temporary file in the same directory and
    swapped in with ``os.replace``, so a crash never leaves a truncated .env
    behind (losing the refresh token would force a new interactive login).

    Args:
        env_path: Path to .env file
        key: Environment variable name (e.g., "SPOTIFY_REFRESH_TOKEN")
        value: New value for the variable

    Raises:
        FileNotFoundError: If .env file doesn't exist
        PermissionError: If .env file is not writable
        ValueError: If key or value would corrupt the file
    """
    if not key or "=" in key or "\n" in key:
        raise ValueError(f"Invalid environment variable key: {key}")
    if "\n" in value:
        raise ValueError(f"Invalid value for {key}: must be a single line")

    if not env_path.exists():
        raise FileNotFoundError(f".env file not found at {env_path}")

    lines = env_path.read_text(encoding="utf-8").splitlines()

    index = next(
        (i for i, line in enumerate(lines) if not line.lstrip().startswith("#") and line.startswith(f"{key}=")),
        None,
    )
    if index is not None:
        lines[index] = f"{key}={value}"
    else:
        if lines and lines[-1].strip():
            lines.append("")
        lines.append(f"# Auto-saved {key}")
        lines.append(f"{key}={value}")

    fd, tmp_name = tempfile.mkstemp(dir=env_path.parent, prefix=".env.", suffix=".tmp")
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as tmp:
            tmp.write("\n".join(lines) + "\n")
        os.replace(tmp_name, env_path)
    except BaseException:
        Path(tmp_name).unlink(missing_ok=True)
        raise

    log_with_context(
        logger,
        "info",
        "Saved setting to .env",
        key=key,
        action="updated" if index is not None else "added",
        event_type="env_updated",
    )


def get_env_path() -> Path:
    """Path to the .env file read by Settings."""
    return BASE_DIR / ".env"
