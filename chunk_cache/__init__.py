"""Disk-backed, chunk-granular read-through cache for remote objects."""

from .errors import (
    CacheMissError,
    CacheWriteError,
    ChunkCacheError,
    ConfigurationError,
    DownloadError,
)
from .manager import ChunkManager, ChunkStream
from .models import ChunkRequest, ChunkResponse, ChunkWindow, RemoteObject
from .settings import CacheSettings, RemoteSettings

__all__ = [
    "CacheMissError",
    "CacheSettings",
    "CacheWriteError",
    "ChunkCacheError",
    "ChunkManager",
    "ChunkRequest",
    "ChunkResponse",
    "ChunkStream",
    "ChunkWindow",
    "ConfigurationError",
    "DownloadError",
    "RemoteObject",
    "RemoteSettings",
]
