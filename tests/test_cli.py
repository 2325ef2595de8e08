"""Tests for the s3cache CLI.

These tests verify:
- save/restore round trips through the commands
- Unchanged data is not uploaded twice
- Unusable caches never replace the destination
- Error handling and exit codes
"""

from unittest.mock import patch

import pytest
from click.testing import CliRunner

from s3cache.cli.main import cli

BASE_ARGS = ["--bucket", "test-bucket", "--key", "linux/main.cache"]


@pytest.fixture
def runner(s3_client, monkeypatch):
    """CliRunner whose boto3 clients are the in-memory fake."""
    for name in ("S3CACHE_HASH", "S3CACHE_COMPRESSION", "S3CACHE_PART_SIZE", "S3CACHE_MAX_AGE"):
        monkeypatch.delenv(name, raising=False)
    with patch("boto3.client", return_value=s3_client):
        yield CliRunner()


@pytest.fixture
def source_file(tmp_path):
    path = tmp_path / "deps.tar"
    path.write_bytes(b"dependency archive contents\n" * 1000)
    return path


class TestSave:
    """Test the save command."""

    def test_save_uploads(self, runner, s3_client, source_file):
        result = runner.invoke(cli, BASE_ARGS + ["save", str(source_file)])

        assert result.exit_code == 0, result.output
        assert "Cached" in result.output
        stored = s3_client.objects[("test-bucket", "linux/main.cache")]
        assert stored["Metadata"]["hash"] == "SHA256"
        assert stored["Metadata"]["compression"] == "gzip"

    def test_save_twice_skips_upload(self, runner, s3_client, source_file):
        runner.invoke(cli, BASE_ARGS + ["save", str(source_file)])
        result = runner.invoke(cli, BASE_ARGS + ["save", str(source_file)])

        assert result.exit_code == 0
        assert "up to date" in result.output
        assert s3_client.count("create_multipart_upload") == 1

    def test_save_with_options(self, runner, s3_client, source_file):
        result = runner.invoke(
            cli,
            BASE_ARGS + ["save", str(source_file), "--hash", "SHA512", "--compression", "lz4"],
        )

        assert result.exit_code == 0, result.output
        stored = s3_client.objects[("test-bucket", "linux/main.cache")]
        assert stored["Metadata"]["hash"] == "SHA512"
        assert "sha512" in stored["Metadata"]
        assert stored["Metadata"]["compression"] == "lz4"

    def test_save_unsupported_hash(self, runner, source_file):
        result = runner.invoke(cli, BASE_ARGS + ["save", str(source_file), "--hash", "CRC32"])
        assert result.exit_code == 2
        assert "Unsupported hash algorithm" in result.output

    def test_save_failure_exits_nonzero(self, runner, s3_client, source_file, connection_error):
        s3_client.fail["upload_part"] = connection_error
        result = runner.invoke(cli, BASE_ARGS + ["save", str(source_file)])

        assert result.exit_code == 1
        assert "Error" in result.output

    def test_bucket_required(self, runner, source_file, monkeypatch):
        monkeypatch.delenv("S3CACHE_BUCKET", raising=False)
        result = runner.invoke(cli, ["--key", "k", "save", str(source_file)])
        assert result.exit_code == 2


class TestRestore:
    """Test the restore command."""

    def test_roundtrip(self, runner, source_file, tmp_path):
        runner.invoke(cli, BASE_ARGS + ["save", str(source_file)])
        destination = tmp_path / "out" / "restored.tar"

        result = runner.invoke(cli, BASE_ARGS + ["restore", str(destination)])

        assert result.exit_code == 0, result.output
        assert "Restored" in result.output
        assert destination.read_bytes() == source_file.read_bytes()

    def test_roundtrip_lz4(self, runner, source_file, tmp_path):
        runner.invoke(cli, BASE_ARGS + ["save", str(source_file), "--compression", "lz4"])
        destination = tmp_path / "restored.tar"

        result = runner.invoke(cli, BASE_ARGS + ["restore", str(destination)])

        assert result.exit_code == 0, result.output
        assert destination.read_bytes() == source_file.read_bytes()

    def test_no_cache(self, runner, tmp_path):
        destination = tmp_path / "restored.tar"
        result = runner.invoke(cli, BASE_ARGS + ["restore", str(destination)])

        assert result.exit_code == 0
        assert "No cache restored" in result.output
        assert not destination.exists()
        assert list(tmp_path.iterdir()) == []

    def test_tampered_cache_keeps_destination(self, runner, s3_client, source_file, tmp_path):
        """Test that content failing verification never replaces the destination."""
        runner.invoke(cli, BASE_ARGS + ["save", str(source_file)])
        stored = s3_client.objects[("test-bucket", "linux/main.cache")]
        stored["Metadata"]["sha256"] = "A" * 43 + "="

        destination = tmp_path / "restored.tar"
        destination.write_bytes(b"previous contents")
        result = runner.invoke(cli, BASE_ARGS + ["restore", str(destination)])

        assert result.exit_code == 0
        assert "No cache restored" in result.output
        assert destination.read_bytes() == b"previous contents"
        assert sorted(p.name for p in tmp_path.iterdir()) == ["deps.tar", "restored.tar"]

    def test_max_age(self, runner, s3_client, source_file, tmp_path):
        from datetime import datetime, timedelta, timezone

        runner.invoke(cli, BASE_ARGS + ["save", str(source_file)])
        stored = s3_client.objects[("test-bucket", "linux/main.cache")]
        stored["LastModified"] = datetime.now(timezone.utc) - timedelta(days=2)

        destination = tmp_path / "restored.tar"
        result = runner.invoke(
            cli, BASE_ARGS + ["restore", str(destination), "--max-age", "3600"]
        )

        assert result.exit_code == 0
        assert not destination.exists()


class TestClear:
    """Test the clear command."""

    def test_clear(self, runner, s3_client, source_file):
        runner.invoke(cli, BASE_ARGS + ["save", str(source_file)])
        result = runner.invoke(cli, BASE_ARGS + ["clear"])

        assert result.exit_code == 0
        assert "Cleared" in result.output
        assert s3_client.objects == {}

    def test_clear_failure_exits_nonzero(self, runner, s3_client, source_file, client_error):
        """Test that a rejected delete is reported as an error."""
        runner.invoke(cli, BASE_ARGS + ["save", str(source_file)])
        s3_client.fail["delete_object"] = client_error("AccessDenied", 403, "DeleteObject")
        result = runner.invoke(cli, BASE_ARGS + ["clear"])

        assert result.exit_code == 1
        assert "Error" in result.output
        assert "Cleared" not in result.output
        assert ("test-bucket", "linux/main.cache") in s3_client.objects
