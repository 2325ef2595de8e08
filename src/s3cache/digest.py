"""Content digests and the hash algorithms that produce them.

A digest is always tagged with the name of the algorithm that computed it, so
two digests are only equal when both the algorithm and the raw bytes agree.
Algorithms are looked up at runtime by name, since the name is what gets
stored alongside a cache in remote metadata.
"""

import base64
import binascii
import hashlib
from dataclasses import dataclass
from typing import Any, Callable, Dict, Iterable, List, Optional

from s3cache.errors import DecodeError


@dataclass(frozen=True)
class Digest:
    """Hash value tagged with the algorithm that produced it.

    Attributes:
        algorithm: Algorithm name, e.g. 'SHA256'
        value: Raw digest bytes
    """

    algorithm: str
    value: bytes

    def __str__(self) -> str:
        return f"{self.algorithm}:{encode_digest(self)}"


class HashAlgorithm:
    """Handle on a concrete hashing implementation.

    Examples:
        >>> sha = HashAlgorithm("SHA256", hashlib.sha256)
        >>> hasher = sha.new()
        >>> hasher.update(b"data")
        >>> sha.digest(hasher).algorithm
        'SHA256'
    """

    def __init__(self, name: str, factory: Callable[[], Any]):
        self.name = name
        self._factory = factory
        self.hash_length = factory().digest_size

    def new(self) -> Any:
        """Create a fresh incremental hasher with an ``update(bytes)`` method."""
        return self._factory()

    def digest(self, hasher: Any) -> Digest:
        """Finalize a hasher created by :meth:`new` into a Digest."""
        return Digest(self.name, hasher.digest())

    def hash_bytes(self, data: bytes) -> Digest:
        hasher = self.new()
        hasher.update(data)
        return self.digest(hasher)

    def hash_stream(self, chunks: Iterable[bytes]) -> Digest:
        """Hash a stream of chunks without buffering it."""
        hasher = self.new()
        for chunk in chunks:
            hasher.update(chunk)
        return self.digest(hasher)

    def __repr__(self) -> str:
        return f"HashAlgorithm({self.name!r}, hash_length={self.hash_length})"


class AlgorithmRegistry:
    """Registry mapping algorithm names to HashAlgorithm handles.

    Names are matched case-insensitively: remote object stores are free to
    change the case of metadata they hand back.
    """

    def __init__(self):
        self._algorithms: Dict[str, HashAlgorithm] = {}

    def register(self, algorithm: HashAlgorithm) -> None:
        """Register an algorithm.

        Raises:
            ValueError: If an algorithm with the same name is already registered
        """
        lookup_name = algorithm.name.lower()
        if lookup_name in self._algorithms:
            raise ValueError(
                f"Hash algorithm already registered: {algorithm.name}"
            )
        self._algorithms[lookup_name] = algorithm

    def lookup(self, name: str) -> Optional[HashAlgorithm]:
        """Resolve an algorithm by name.

        Returns:
            HashAlgorithm handle, or None if the algorithm is not supported
        """
        return self._algorithms.get(name.lower())

    def list_algorithms(self) -> List[str]:
        return [algorithm.name for algorithm in self._algorithms.values()]


_registry = AlgorithmRegistry()

for _name, _factory in [
    ("MD5", hashlib.md5),
    ("SHA1", hashlib.sha1),
    ("SHA224", hashlib.sha224),
    ("SHA256", hashlib.sha256),
    ("SHA384", hashlib.sha384),
    ("SHA512", hashlib.sha512),
    ("SHA3_224", hashlib.sha3_224),
    ("SHA3_256", hashlib.sha3_256),
    ("SHA3_384", hashlib.sha3_384),
    ("SHA3_512", hashlib.sha3_512),
    ("Blake2b_512", hashlib.blake2b),
    ("Blake2s_256", hashlib.blake2s),
]:
    _registry.register(HashAlgorithm(_name, _factory))


def get_registry() -> AlgorithmRegistry:
    """Get the global algorithm registry."""
    return _registry


def register_algorithm(algorithm: HashAlgorithm) -> None:
    """Register an algorithm in the global registry."""
    _registry.register(algorithm)


def lookup_algorithm(name: str) -> Optional[HashAlgorithm]:
    """Resolve an algorithm from the global registry.

    An unsupported name is an expected outcome (for instance when a cache was
    written by a newer version with a different algorithm), so None is
    returned instead of raising.

    Args:
        name: Algorithm name as stored in cache metadata

    Returns:
        HashAlgorithm handle, or None if unsupported

    Examples:
        >>> lookup_algorithm("SHA256").hash_length
        32
        >>> lookup_algorithm("CRC32") is None
        True
    """
    return _registry.lookup(name)


def list_algorithms() -> List[str]:
    return _registry.list_algorithms()


def encode_digest(digest: Digest) -> str:
    """Encode raw digest bytes as standard base64 text.

    Examples:
        >>> encode_digest(Digest("MD5", bytes(16)))
        'AAAAAAAAAAAAAAAAAAAAAA=='
    """
    return base64.b64encode(digest.value).decode("ascii")


def decode_digest(text: str, algorithm: HashAlgorithm) -> Digest:
    """Decode base64 text into a Digest for the given algorithm.

    Args:
        text: Base64 encoded digest
        algorithm: Algorithm the digest is expected to belong to

    Returns:
        Decoded Digest

    Raises:
        DecodeError: If the text is not valid base64 or the decoded length does
            not match the algorithm's hash length
    """
    try:
        raw = base64.b64decode(text.encode("ascii"), validate=True)
    except (binascii.Error, UnicodeEncodeError) as e:
        raise DecodeError(f"Invalid base64 hash value {text!r}: {e}") from e

    if len(raw) != algorithm.hash_length:
        raise DecodeError(
            f"Hash value {text!r} has {len(raw)} bytes, "
            f"expected {algorithm.hash_length} for {algorithm.name}"
        )
    return Digest(algorithm.name, raw)
