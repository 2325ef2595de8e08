"""Default stream adapters for compressing and restoring caches.

The remote engine only knows compression schemes by name. These adapters plug
concrete codecs in: gzip through ``zlib`` and lz4 frames through the ``lz4``
package. Hashing always covers the uncompressed content, and both directions
work chunk by chunk so memory use does not grow with the cache size.
"""

import zlib
from typing import Any, BinaryIO, Iterator

from s3cache.digest import Digest, HashAlgorithm
from s3cache.errors import DecompressionError
from s3cache.metadata import Compression

DEFAULT_CHUNK_SIZE = 64 * 1024
_GZIP_WBITS = 31  # zlib container with gzip header and trailer


def _import_lz4_frame():
    try:
        import lz4.frame
    except ImportError:
        raise ImportError(
            "lz4 is required for lz4 compressed caches. Install with: pip install lz4"
        )
    return lz4.frame


class _GzipCompressor:
    def __init__(self):
        self._compressor = zlib.compressobj(wbits=_GZIP_WBITS)

    def compress(self, data: bytes) -> bytes:
        return self._compressor.compress(data)

    def flush(self) -> bytes:
        return self._compressor.flush()


class _GzipDecompressor:
    def __init__(self, max_output: int = DEFAULT_CHUNK_SIZE):
        self._decompressor = zlib.decompressobj(wbits=_GZIP_WBITS)
        self._max_output = max_output

    def decompress(self, data: bytes) -> Iterator[bytes]:
        while True:
            try:
                out = self._decompressor.decompress(data, self._max_output)
            except zlib.error as e:
                raise DecompressionError(f"Corrupt gzip stream: {e}") from e
            if out:
                yield out
            data = self._decompressor.unconsumed_tail
            if not data and len(out) < self._max_output:
                return

    def flush(self) -> bytes:
        if not self._decompressor.eof:
            raise DecompressionError("Truncated gzip stream")
        return self._decompressor.flush(self._max_output)


class _Lz4Compressor:
    def __init__(self):
        self._compressor = _import_lz4_frame().LZ4FrameCompressor()
        self._started = False

    def compress(self, data: bytes) -> bytes:
        header = b""
        if not self._started:
            header = self._compressor.begin()
            self._started = True
        return header + self._compressor.compress(data)

    def flush(self) -> bytes:
        header = b"" if self._started else self._compressor.begin()
        self._started = True
        return header + self._compressor.flush()


class _Lz4Decompressor:
    def __init__(self, max_output: int = DEFAULT_CHUNK_SIZE):
        self._decompressor = _import_lz4_frame().LZ4FrameDecompressor()
        self._max_output = max_output

    def decompress(self, data: bytes) -> Iterator[bytes]:
        while True:
            try:
                out = self._decompressor.decompress(data, self._max_output)
            except RuntimeError as e:
                raise DecompressionError(f"Corrupt lz4 stream: {e}") from e
            if out:
                yield out
            # leftover input stays buffered in the decompressor
            data = b""
            if self._decompressor.needs_input or self._decompressor.eof:
                return

    def flush(self) -> bytes:
        if not self._decompressor.eof:
            raise DecompressionError("Truncated lz4 stream")
        return b""


def get_compressor(compression: Compression) -> Any:
    """Create an incremental compressor with ``compress`` and ``flush``."""
    if compression is Compression.GZIP:
        return _GzipCompressor()
    return _Lz4Compressor()


def get_decompressor(
    compression: Compression, max_output: int = DEFAULT_CHUNK_SIZE
) -> Any:
    """Create an incremental decompressor with ``decompress`` and ``flush``.

    ``decompress`` yields pieces of at most ``max_output`` bytes, so a small
    input chunk never expands into one large buffer. Both methods raise
    DecompressionError on corrupt or truncated input.
    """
    if compression is Compression.GZIP:
        return _GzipDecompressor(max_output)
    return _Lz4Decompressor(max_output)


def compress_stream(
    source: BinaryIO,
    destination: BinaryIO,
    compression: Compression,
    algorithm: HashAlgorithm,
    chunk_size: int = DEFAULT_CHUNK_SIZE,
) -> Digest:
    """Compress ``source`` into ``destination`` while hashing it.

    Args:
        source: Uncompressed input
        destination: Receives the compressed bytes
        compression: Compression scheme
        algorithm: Hash algorithm applied to the uncompressed bytes
        chunk_size: Read size

    Returns:
        Digest of the uncompressed content
    """
    compressor = get_compressor(compression)
    hasher = algorithm.new()
    while chunk := source.read(chunk_size):
        hasher.update(chunk)
        destination.write(compressor.compress(chunk))
    destination.write(compressor.flush())
    return algorithm.digest(hasher)


def restore_sink(destination: BinaryIO, max_output: int = DEFAULT_CHUNK_SIZE):
    """Build a sink factory writing decompressed content to ``destination``.

    Each write to ``destination`` holds at most ``max_output`` bytes.

    Examples:
        >>> with open("restored.tar", "wb") as f:
        ...     download(context, restore_sink(f))
    """

    def factory(compression: Compression, algorithm: HashAlgorithm):
        def sink(chunks: Iterator[bytes]) -> Digest:
            decompressor = get_decompressor(compression, max_output)
            hasher = algorithm.new()
            for chunk in chunks:
                for data in decompressor.decompress(chunk):
                    hasher.update(data)
                    destination.write(data)
            tail = decompressor.flush()
            hasher.update(tail)
            destination.write(tail)
            return algorithm.digest(hasher)

        return sink

    return factory
