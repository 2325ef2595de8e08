"""Shared fixtures: an in-memory stand-in for the boto3 S3 client."""

import hashlib
import io
import logging
from datetime import datetime, timezone

import pytest
from botocore.exceptions import ClientError, EndpointConnectionError
from botocore.response import StreamingBody

from s3cache.config import MIN_PART_SIZE, CacheConfig, CacheContext, CacheTarget


def _client_error(code: str, status: int, operation: str) -> ClientError:
    """Build a ClientError shaped like the ones botocore raises."""
    return ClientError(
        {
            "Error": {"Code": code, "Message": f"{code} message"},
            "ResponseMetadata": {"HTTPStatusCode": status},
        },
        operation,
    )


class FakeS3Client:
    """Minimal in-memory S3 client.

    Like real S3, user metadata keys come back lower-cased. Failures can be
    injected per method through ``fail``.
    """

    def __init__(self):
        self.objects = {}
        self.uploads = {}
        self.calls = []
        self.fail = {}
        self._next_upload = 0

    def _record(self, name):
        self.calls.append(name)
        if name in self.fail:
            raise self.fail[name]

    def _lookup(self, bucket, key, code, operation):
        try:
            return self.objects[(bucket, key)]
        except KeyError:
            raise _client_error(code, 404, operation)

    def put(self, bucket, key, body, metadata, last_modified=None):
        self.objects[(bucket, key)] = {
            "Body": body,
            "Metadata": {k.lower(): v for k, v in metadata.items()},
            "LastModified": last_modified or datetime.now(timezone.utc),
        }

    def count(self, name):
        return self.calls.count(name)

    def head_object(self, Bucket, Key):
        self._record("head_object")
        obj = self._lookup(Bucket, Key, "404", "HeadObject")
        return {
            "Metadata": dict(obj["Metadata"]),
            "ContentLength": len(obj["Body"]),
            "LastModified": obj["LastModified"],
        }

    def get_object(self, Bucket, Key):
        self._record("get_object")
        obj = self._lookup(Bucket, Key, "NoSuchKey", "GetObject")
        body = obj["Body"]
        return {
            "Body": StreamingBody(io.BytesIO(body), len(body)),
            "Metadata": dict(obj["Metadata"]),
            "ContentLength": len(body),
            "LastModified": obj["LastModified"],
        }

    def create_multipart_upload(self, Bucket, Key, Metadata=None):
        self._record("create_multipart_upload")
        self._next_upload += 1
        upload_id = f"upload-{self._next_upload}"
        self.uploads[upload_id] = {
            "Bucket": Bucket,
            "Key": Key,
            "Metadata": dict(Metadata or {}),
            "Parts": {},
        }
        return {"Bucket": Bucket, "Key": Key, "UploadId": upload_id}

    def upload_part(self, Bucket, Key, UploadId, PartNumber, Body):
        self._record("upload_part")
        etag = f'"{hashlib.md5(Body).hexdigest()}"'
        self.uploads[UploadId]["Parts"][PartNumber] = (etag, bytes(Body))
        return {"ETag": etag}

    def complete_multipart_upload(self, Bucket, Key, UploadId, MultipartUpload):
        self._record("complete_multipart_upload")
        upload = self.uploads.pop(UploadId)
        stored = upload["Parts"]
        body = b""
        for part in MultipartUpload["Parts"]:
            etag, data = stored[part["PartNumber"]]
            assert etag == part["ETag"]
            body += data
        self.put(Bucket, Key, body, upload["Metadata"])
        return {"Bucket": Bucket, "Key": Key}

    def abort_multipart_upload(self, Bucket, Key, UploadId):
        self._record("abort_multipart_upload")
        self.uploads.pop(UploadId, None)
        return {}

    def delete_object(self, Bucket, Key):
        self._record("delete_object")
        self.objects.pop((Bucket, Key), None)
        return {}


@pytest.fixture
def s3_client():
    return FakeS3Client()


@pytest.fixture
def target():
    return CacheTarget(bucket="test-bucket", key="linux/main.cache")


@pytest.fixture
def cache_config():
    return CacheConfig(part_size=MIN_PART_SIZE, chunk_size=1024)


@pytest.fixture
def context(s3_client, target, cache_config):
    return CacheContext(client=s3_client, target=target, config=cache_config)


@pytest.fixture
def s3_logs(caplog):
    """Capture every s3cache log record."""
    caplog.set_level(logging.DEBUG, logger="s3cache")
    return caplog


@pytest.fixture
def connection_error():
    return EndpointConnectionError(endpoint_url="https://s3.amazonaws.com")


@pytest.fixture
def client_error():
    """Factory for botocore ClientErrors: ``client_error(code, status, operation)``."""
    return _client_error
