from __future__ import annotations


class ChunkCacheError(Exception):
    """Base class for chunk cache errors."""


class ConfigurationError(ChunkCacheError):
    """Raised when the chunk manager is constructed with invalid parameters."""


class CacheMissError(ChunkCacheError):
    """A chunk could not be served from disk. Always recovered via download."""


class CacheWriteError(ChunkCacheError):
    """A downloaded chunk could not be persisted. Logged and ignored."""


class DownloadError(ChunkCacheError):
    """The download gateway failed to fetch a chunk window."""
