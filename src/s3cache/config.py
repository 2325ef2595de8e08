"""Cache configuration and per-operation context."""

import json
import logging
import os
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any, Optional

from s3cache.executor import CacheLogAdapter

MIN_PART_SIZE = 5 * 1024 * 1024  # S3 minimum for all but the last part


@dataclass
class CacheConfig:
    """Configuration for remote caching.

    Attributes:
        region: AWS region of the bucket
        endpoint_url: Custom endpoint for S3-compatible stores (MinIO, SeaweedFS)
        hash_algorithm: Algorithm used to hash new caches ('SHA256', 'MD5', ...)
        compression: Compression used for new caches ('gzip', 'lz4')
        part_size: Size in bytes of each multipart upload part (8 MiB)
        chunk_size: Read size in bytes while streaming a download (64 KiB)
        max_age_seconds: Ignore caches older than this on restore (None = any age)
    """

    region: str = "us-east-1"
    endpoint_url: Optional[str] = None
    hash_algorithm: str = "SHA256"
    compression: str = "gzip"
    part_size: int = 8 * 1024 * 1024
    chunk_size: int = 64 * 1024
    max_age_seconds: Optional[int] = None

    def __post_init__(self):
        """Validate sizes."""
        if self.part_size < MIN_PART_SIZE:
            raise ValueError(
                f"part_size must be at least {MIN_PART_SIZE} bytes, got {self.part_size}"
            )
        if self.chunk_size <= 0:
            raise ValueError(f"chunk_size must be positive, got {self.chunk_size}")

    @classmethod
    def load(cls, config_path: Optional[Path] = None) -> "CacheConfig":
        """Load configuration from a JSON file.

        Args:
            config_path: Path to config file. If None, uses ~/.s3cache/config.json

        Returns:
            CacheConfig instance (defaults if the file does not exist)
        """
        if config_path is None:
            config_path = Path.home() / ".s3cache" / "config.json"

        if not config_path.exists():
            return cls()

        with open(config_path, "r") as f:
            data = json.load(f)

        return cls(**data)

    def save(self, config_path: Path) -> None:
        """Save configuration to a JSON file."""
        config_path.parent.mkdir(parents=True, exist_ok=True)

        data = {
            "region": self.region,
            "endpoint_url": self.endpoint_url,
            "hash_algorithm": self.hash_algorithm,
            "compression": self.compression,
            "part_size": self.part_size,
            "chunk_size": self.chunk_size,
            "max_age_seconds": self.max_age_seconds,
        }

        with open(config_path, "w") as f:
            json.dump(data, f, indent=2)

    @classmethod
    def from_env(cls, base: Optional["CacheConfig"] = None) -> "CacheConfig":
        """Create configuration from environment variables.

        Environment variables:
            S3CACHE_REGION: AWS region (falls back to AWS_DEFAULT_REGION)
            S3CACHE_ENDPOINT_URL: Custom S3 endpoint
            S3CACHE_HASH: Hash algorithm name
            S3CACHE_COMPRESSION: Compression name
            S3CACHE_PART_SIZE: Multipart part size in bytes
            S3CACHE_MAX_AGE: Maximum cache age in seconds

        Args:
            base: Configuration to start from, left unchanged (defaults if None)

        Returns:
            CacheConfig instance
        """
        config = replace(base) if base is not None else cls()

        region = os.getenv("S3CACHE_REGION") or os.getenv("AWS_DEFAULT_REGION")
        if region:
            config.region = region

        if os.getenv("S3CACHE_ENDPOINT_URL"):
            config.endpoint_url = os.getenv("S3CACHE_ENDPOINT_URL")

        if os.getenv("S3CACHE_HASH"):
            config.hash_algorithm = os.getenv("S3CACHE_HASH")

        if os.getenv("S3CACHE_COMPRESSION"):
            config.compression = os.getenv("S3CACHE_COMPRESSION")

        if os.getenv("S3CACHE_PART_SIZE"):
            config.part_size = int(os.getenv("S3CACHE_PART_SIZE"))

        if os.getenv("S3CACHE_MAX_AGE"):
            config.max_age_seconds = int(os.getenv("S3CACHE_MAX_AGE"))

        return config


@dataclass(frozen=True)
class CacheTarget:
    """Remote location of a single cache entry."""

    bucket: str
    key: str

    def __str__(self) -> str:
        return f"s3://{self.bucket}/{self.key}"


@dataclass
class CacheContext:
    """Everything a remote cache operation needs.

    Passed explicitly to every remote call instead of living in global state.

    Attributes:
        client: boto3 S3 client (or anything with the same methods)
        target: Bucket and key of the cache entry
        config: Cache configuration
        logger: Logger adapter prefixing messages with the object key
    """

    client: Any
    target: CacheTarget
    config: CacheConfig = field(default_factory=CacheConfig)
    logger: Optional[logging.LoggerAdapter] = None

    def __post_init__(self):
        if self.logger is None:
            self.logger = CacheLogAdapter(
                logging.getLogger("s3cache"), self.target.key
            )

    @classmethod
    def create(
        cls,
        target: CacheTarget,
        config: Optional[CacheConfig] = None,
        aws_access_key_id: Optional[str] = None,
        aws_secret_access_key: Optional[str] = None,
        aws_session_token: Optional[str] = None,
    ) -> "CacheContext":
        """Build a context with a boto3 S3 client.

        Credentials default to the standard boto3 resolution chain
        (environment, shared config, instance role) unless given explicitly.
        """
        import boto3
        from botocore.config import Config

        config = config or CacheConfig()

        kwargs: dict = {
            "config": Config(
                region_name=config.region,
                signature_version="s3v4",
                retries={"max_attempts": 3, "mode": "standard"},
            ),
        }
        if aws_access_key_id and aws_secret_access_key:
            kwargs["aws_access_key_id"] = aws_access_key_id
            kwargs["aws_secret_access_key"] = aws_secret_access_key
        if aws_session_token:
            kwargs["aws_session_token"] = aws_session_token
        if config.endpoint_url:
            kwargs["endpoint_url"] = config.endpoint_url

        client = boto3.client("s3", **kwargs)
        return cls(client=client, target=target, config=config)
