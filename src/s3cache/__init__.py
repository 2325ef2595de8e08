"""s3cache: content-addressed build caches on S3-compatible object storage."""

__version__ = "0.1.0"

from s3cache.config import CacheConfig, CacheContext, CacheTarget
from s3cache.digest import Digest, HashAlgorithm, lookup_algorithm
from s3cache.errors import CacheError, DecodeError, DecompressionError, UploadError
from s3cache.metadata import Compression
from s3cache.remote import delete, download, has_changed, upload

__all__ = [
    "CacheConfig",
    "CacheContext",
    "CacheTarget",
    "CacheError",
    "Compression",
    "DecodeError",
    "DecompressionError",
    "Digest",
    "HashAlgorithm",
    "UploadError",
    "delete",
    "download",
    "has_changed",
    "lookup_algorithm",
    "upload",
    "__version__",
]
