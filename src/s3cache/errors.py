"""Exceptions raised by the cache engine."""


class CacheError(Exception):
    """Base exception for cache-related errors."""

    pass


class DecodeError(CacheError):
    """Raised when a stored hash value cannot be decoded."""

    pass


class UploadError(CacheError):
    """Raised when transferring a cache to remote storage fails."""

    pass


class DecompressionError(CacheError):
    """Raised when a cached stream cannot be decompressed."""

    pass
