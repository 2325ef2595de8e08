"""Change detection, upload and restore of a single remote cache entry.

All backend calls go through :mod:`s3cache.executor`, so apart from a failed
upload no storage failure escapes these functions: each is logged at a level
chosen for its kind and turned into a conservative default (re-upload on
doubt, abort restore on doubt).
"""

import logging
from datetime import datetime, timedelta, timezone
from typing import BinaryIO, Callable, Dict, Iterator, List, Optional

from s3cache.config import CacheContext
from s3cache.digest import (
    Digest,
    HashAlgorithm,
    decode_digest,
    encode_digest,
    lookup_algorithm,
)
from s3cache.errors import CacheError, DecodeError, UploadError
from s3cache.executor import RemoteError, execute, execute_discarding_result
from s3cache.metadata import (
    COMPRESSION_KEY,
    HASH_ALGORITHM_KEY,
    Compression,
    build_upload_metadata,
    hash_metadata_key,
    read_field,
)

# Consumes the downloaded byte stream and returns the digest of its content
Sink = Callable[[Iterator[bytes]], Digest]
SinkFactory = Callable[[Compression, HashAlgorithm], Sink]


def _log_error(_error: RemoteError):
    return logging.ERROR, None


def has_changed(context: CacheContext, new_digest: Digest) -> bool:
    """Check whether ``new_digest`` differs from the hash of the stored cache.

    Only object metadata is fetched. Anything short of a confirmed exact match
    (no previous cache, a failed request, a missing or malformed hash) counts
    as a change, preferring a redundant upload over skipping a real one.

    Args:
        context: Operation context
        new_digest: Digest of the data about to be cached

    Returns:
        False only if the stored digest equals ``new_digest``
    """
    log = context.logger
    target = context.target
    hash_key = hash_metadata_key(new_digest.algorithm)

    def on_error(error: RemoteError):
        if error.is_not_found:
            log.info("No previously stored cache was found.")
            return None, None
        return logging.ERROR, None

    def on_success(response) -> Optional[str]:
        log.debug("Discovered previous cache.")
        old_hash = read_field(response.get("Metadata", {}), hash_key)
        if old_hash is None:
            log.warning(f"Previous cache is missing a hash value '{hash_key}'")
        else:
            log.debug(f"Hash value for previous cache is {hash_key}: {old_hash}")
        return old_hash

    old_hash_text = execute(
        context,
        lambda client: client.head_object(Bucket=target.bucket, Key=target.key),
        on_error,
        on_success,
    )
    if old_hash_text is None:
        return True

    algorithm = lookup_algorithm(new_digest.algorithm)
    if algorithm is None:
        log.warning(f"Hash algorithm is not supported: {new_digest.algorithm}")
        return True

    try:
        old_digest = decode_digest(old_hash_text, algorithm)
    except DecodeError as e:
        log.error(
            f"Problem decoding cache's hash value: {old_hash_text} Decoding Error: {e}"
        )
        return True

    return old_digest != Digest(algorithm.name, new_digest.value)


def _read_part(source: BinaryIO, size: int) -> bytes:
    """Read up to ``size`` bytes, tolerating short reads from pipes."""
    chunks = []
    remaining = size
    while remaining > 0:
        chunk = source.read(remaining)
        if not chunk:
            break
        chunks.append(chunk)
        remaining -= len(chunk)
    return b"".join(chunks)


def _upload_parts(
    context: CacheContext, source: BinaryIO, upload_id: str
) -> Optional[List[Dict]]:
    """Stream ``source`` as sequential parts; None if any part fails."""
    target = context.target
    part_size = context.config.part_size
    parts: List[Dict] = []
    part_number = 1

    while True:
        data = _read_part(source, part_size)
        # An empty source still needs one (empty) part
        if not data and parts:
            break

        def request(client, data=data, part_number=part_number):
            return client.upload_part(
                Bucket=target.bucket,
                Key=target.key,
                UploadId=upload_id,
                PartNumber=part_number,
                Body=data,
            )

        etag = execute(context, request, _log_error, lambda response: response["ETag"])
        if etag is None:
            return None
        context.logger.debug(f"Uploaded part {part_number} ({len(data)} bytes)")
        parts.append({"PartNumber": part_number, "ETag": etag})

        if len(data) < part_size:
            break
        part_number += 1

    return parts


def _abort_upload(context: CacheContext, upload_id: str) -> None:
    target = context.target
    context.logger.debug(f"Aborting multipart upload {upload_id}")
    execute_discarding_result(
        context,
        lambda client: client.abort_multipart_upload(
            Bucket=target.bucket, Key=target.key, UploadId=upload_id
        ),
    )


def upload(
    context: CacheContext,
    source: BinaryIO,
    new_digest: Digest,
    compression: Compression,
) -> bool:
    """Upload a cache if its content changed.

    Metadata is attached when the multipart upload is created, since it
    cannot be changed once content starts streaming.

    Args:
        context: Operation context
        source: Binary stream with the (already compressed) cache content
        new_digest: Digest of the uncompressed content
        compression: Compression applied to ``source``

    Returns:
        True if the cache was uploaded, False if it was unchanged

    Raises:
        UploadError: If the transfer failed. A failed upload is never
            reported as success.
    """
    log = context.logger
    target = context.target

    if not has_changed(context, new_digest):
        log.info("No change to cache was detected.")
        return False

    hash_key = hash_metadata_key(new_digest.algorithm)
    hash_text = encode_digest(new_digest)
    metadata = build_upload_metadata(
        new_digest.algorithm, hash_text, compression.name_tag
    )
    log.info(
        f"Data change detected, uploading cache to S3 with {hash_key}: {hash_text}"
    )

    upload_id = execute(
        context,
        lambda client: client.create_multipart_upload(
            Bucket=target.bucket, Key=target.key, Metadata=metadata
        ),
        _log_error,
        lambda response: response["UploadId"],
    )
    if upload_id is None:
        raise UploadError(f"Could not start uploading cache to {target}")

    try:
        parts = _upload_parts(context, source, upload_id)
        completed = parts is not None and execute(
            context,
            lambda client: client.complete_multipart_upload(
                Bucket=target.bucket,
                Key=target.key,
                UploadId=upload_id,
                MultipartUpload={"Parts": parts},
            ),
            _log_error,
            lambda response: True,
        )
    except Exception:
        _abort_upload(context, upload_id)
        raise

    if not completed:
        _abort_upload(context, upload_id)
        raise UploadError(f"Failed to upload cache to {target}")

    log.info("Finished uploading. Files are cached on S3.")
    return True


def _is_too_old(
    context: CacheContext, response, max_age: Optional[timedelta]
) -> bool:
    last_modified = response.get("LastModified")
    if max_age is None or last_modified is None:
        return False
    if last_modified.tzinfo is None:
        last_modified = last_modified.replace(tzinfo=timezone.utc)
    age = datetime.now(timezone.utc) - last_modified
    if age > max_age:
        context.logger.info(
            f"Previous cache is {int(age.total_seconds())} seconds old, "
            f"exceeding the maximum of {int(max_age.total_seconds())} seconds."
        )
        return True
    return False


def _restore(
    context: CacheContext,
    response,
    sink_factory: SinkFactory,
    max_age: Optional[timedelta],
) -> bool:
    """Verify metadata, then stream the body through the sink.

    Each missing or invalid piece of information aborts the restore.
    """
    log = context.logger
    metadata = response.get("Metadata", {})
    log.debug("Starting to download previous cache.")

    if _is_too_old(context, response, max_age):
        return False

    compression_name = read_field(metadata, COMPRESSION_KEY)
    if compression_name is None:
        log.warning("Missing information on compression algorithm.")
        return False
    compression = Compression.from_name(compression_name)
    if compression is None:
        log.warning(f"Compression algorithm is not supported: {compression_name}")
        return False
    log.debug(f"Compression algorithm used: {compression_name}")

    algorithm_name = read_field(metadata, HASH_ALGORITHM_KEY)
    if algorithm_name is None:
        log.warning("Missing information on hashing algorithm.")
        return False
    log.debug(f"Hashing algorithm used: {algorithm_name}")
    algorithm = lookup_algorithm(algorithm_name)
    if algorithm is None:
        log.warning(
            f"Hash algorithm used for the cache is not supported: {algorithm_name}"
        )
        return False

    hash_key = hash_metadata_key(algorithm_name)
    hash_text = read_field(metadata, hash_key)
    if hash_text is None:
        log.warning(f"Cache is missing a hash value '{hash_key}'")
        return False
    log.debug(f"Hash value is {hash_key}: {hash_text}")

    try:
        expected = decode_digest(hash_text, algorithm)
    except DecodeError as e:
        log.error(f"Problem decoding cache's hash value: {hash_text} ({e})")
        return False

    sink = sink_factory(compression, algorithm)
    chunks = response["Body"].iter_chunks(chunk_size=context.config.chunk_size)
    log.info("Restoring cache.")
    try:
        computed = execute(
            context, lambda _client: sink(chunks), _log_error, lambda digest: digest
        )
    except CacheError as e:
        log.error(f"Problem restoring cache: {e}")
        return False
    if computed is None:
        return False

    if computed != expected:
        log.error(
            f"Computed '{algorithm.name}' hash mismatch: "
            f"{encode_digest(computed)} /= {encode_digest(expected)}"
        )
        return False

    log.info("Successfully restored previous cache.")
    return True


def download(
    context: CacheContext,
    sink_factory: SinkFactory,
    max_age: Optional[timedelta] = None,
) -> bool:
    """Restore a cache, verifying its hash while it streams.

    The sink returned by ``sink_factory(compression, algorithm)`` receives the
    raw object body chunk by chunk and returns the digest of the decompressed
    content. Any data the sink produced must be discarded by the caller unless
    True is returned.

    Args:
        context: Operation context
        sink_factory: Builds the decompress-and-hash sink from cache metadata
        max_age: Ignore caches last modified longer ago than this

    Returns:
        True if the cache was restored and verified; False if there was no
        usable cache. Details of why are only available in the log.
    """
    log = context.logger
    target = context.target
    log.info("Checking for previously stored cache.")

    def on_error(error: RemoteError):
        if error.is_not_found:
            log.info("No previously stored cache was found.")
            return None, False
        return logging.ERROR, False

    def on_success(response) -> bool:
        try:
            return _restore(context, response, sink_factory, max_age)
        finally:
            response["Body"].close()

    return execute(
        context,
        lambda client: client.get_object(Bucket=target.bucket, Key=target.key),
        on_error,
        on_success,
    )


def delete(context: CacheContext) -> bool:
    """Remove the cache entry.

    Failures are logged, never raised. Returns True when the store accepted
    the delete.
    """
    target = context.target
    context.logger.info("Clearing cache.")
    return execute(
        context,
        lambda client: client.delete_object(Bucket=target.bucket, Key=target.key),
        lambda _error: (logging.ERROR, False),
        lambda _response: True,
    )
