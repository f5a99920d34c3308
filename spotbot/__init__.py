"""Spotbot session and playback-state engine"""

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("spotbot")
except PackageNotFoundError:
    __version__ = "dev"
