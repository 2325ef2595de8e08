"""Cache object metadata.

Every cache object carries three user metadata fields:

- ``hash``: name of the hash algorithm used, e.g. ``SHA256``
- ``<algorithm name>``: base64 encoded hash of the uncompressed content
- ``compression``: name of the compression scheme

The hash value is keyed by the algorithm name itself, so metadata written with
one algorithm is never mistaken for a hash produced by another.
"""

from enum import Enum
from typing import Dict, Mapping, Optional

HASH_ALGORITHM_KEY = "hash"
COMPRESSION_KEY = "compression"


class Compression(Enum):
    """Compression schemes a cache can be stored with.

    Examples:
        >>> Compression.GZIP.name_tag
        'gzip'
        >>> Compression.from_name("lz4")
        <Compression.LZ4: 'lz4'>
        >>> Compression.from_name("zstd") is None
        True
    """

    GZIP = "gzip"
    LZ4 = "lz4"

    @property
    def name_tag(self) -> str:
        """Canonical name stored in metadata."""
        return self.value

    @classmethod
    def from_name(cls, name: str) -> Optional["Compression"]:
        """Reconstruct a scheme from its metadata name, None if unsupported."""
        lowered = name.strip().lower()
        for compression in cls:
            if compression.value == lowered:
                return compression
        return None


def hash_metadata_key(algorithm_name: str) -> str:
    """Metadata key under which a hash computed by ``algorithm_name`` is stored."""
    return algorithm_name


def build_upload_metadata(
    algorithm_name: str, hash_text: str, compression_name: str
) -> Dict[str, str]:
    """Build the metadata attached to a cache object on upload.

    Args:
        algorithm_name: Hash algorithm name
        hash_text: Encoded hash value
        compression_name: Canonical compression name

    Returns:
        Mapping with exactly the three cache metadata fields
    """
    return {
        HASH_ALGORITHM_KEY: algorithm_name,
        hash_metadata_key(algorithm_name): hash_text,
        COMPRESSION_KEY: compression_name,
    }


def read_field(metadata: Mapping[str, str], key: str) -> Optional[str]:
    """Look up a metadata field.

    S3 hands user metadata keys back lower-cased, so an exact match is tried
    first and a case-insensitive one second.

    Returns:
        Field value, or None if missing
    """
    if key in metadata:
        return metadata[key]
    lowered = key.lower()
    for name, value in metadata.items():
        if name.lower() == lowered:
            return value
    return None
