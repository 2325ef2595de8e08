"""Main CLI entry point for s3cache.

Provides commands to save a file to, restore it from, and clear a remote
cache entry.
"""

import logging
import os
import sys
import tempfile
from datetime import timedelta
from pathlib import Path
from typing import Optional

import click
from rich.console import Console
from rich.logging import RichHandler

from s3cache.config import CacheConfig, CacheContext, CacheTarget
from s3cache.digest import list_algorithms, lookup_algorithm
from s3cache.errors import CacheError
from s3cache.metadata import Compression
from s3cache.remote import delete, download, upload
from s3cache.sinks import compress_stream, restore_sink

# Global console for Rich output
console = Console()
err_console = Console(stderr=True)


def setup_logging(verbosity: int) -> None:
    """Route s3cache log records to a Rich handler on stderr."""
    if verbosity >= 2:
        level = logging.DEBUG
    elif verbosity == 1:
        level = logging.INFO
    else:
        level = logging.WARNING

    package_logger = logging.getLogger("s3cache")
    package_logger.setLevel(level)
    if not any(isinstance(h, RichHandler) for h in package_logger.handlers):
        package_logger.addHandler(
            RichHandler(console=err_console, show_path=False, markup=False)
        )


def load_config(
    config_path: Optional[str],
    region: Optional[str],
    endpoint_url: Optional[str],
) -> CacheConfig:
    """Assemble configuration: file, then environment, then flags."""
    config = CacheConfig.load(Path(config_path) if config_path else None)
    config = CacheConfig.from_env(config)
    if region:
        config.region = region
    if endpoint_url:
        config.endpoint_url = endpoint_url
    return config


def make_context(ctx: click.Context) -> CacheContext:
    obj = ctx.obj
    target = CacheTarget(bucket=obj["bucket"], key=obj["key"])
    return CacheContext.create(target, obj["config"])


@click.group()
@click.option("--bucket", "-b", required=True, envvar="S3CACHE_BUCKET", help="S3 bucket name")
@click.option("--key", "-k", required=True, envvar="S3CACHE_KEY", help="Object key of the cache")
@click.option("--region", help="AWS region (default: us-east-1 or S3CACHE_REGION)")
@click.option("--endpoint-url", help="Endpoint of an S3-compatible store")
@click.option(
    "--config",
    "config_path",
    type=click.Path(dir_okay=False),
    help="Path to a JSON config file (default: ~/.s3cache/config.json)",
)
@click.option("-v", "--verbose", count=True, help="Increase log verbosity (-v, -vv)")
@click.pass_context
def cli(ctx, bucket, key, region, endpoint_url, config_path, verbose):
    """s3cache - Cache build artifacts in S3.

    Data is only uploaded when its hash differs from the stored cache, and is
    verified against the stored hash when restored.
    """
    setup_logging(verbose)
    ctx.ensure_object(dict)
    try:
        ctx.obj["config"] = load_config(config_path, region, endpoint_url)
    except (ValueError, TypeError, OSError) as e:
        raise click.ClickException(f"Invalid configuration: {e}")
    ctx.obj["bucket"] = bucket
    ctx.obj["key"] = key


@cli.command("save")
@click.argument("path", type=click.Path(exists=True, dir_okay=False))
@click.option("--hash", "hash_name", help="Hash algorithm (default: SHA256)")
@click.option(
    "--compression",
    type=click.Choice([c.value for c in Compression]),
    help="Compression scheme (default: gzip)",
)
@click.pass_context
def save(ctx, path, hash_name, compression):
    """Upload PATH to the cache if it changed.

    Example:
        s3cache -b my-bucket -k linux/deps.cache save deps.tar
    """
    config = ctx.obj["config"]
    hash_name = hash_name or config.hash_algorithm
    algorithm = lookup_algorithm(hash_name)
    if algorithm is None:
        raise click.BadParameter(
            f"Unsupported hash algorithm '{hash_name}'. "
            f"Available: {', '.join(list_algorithms())}",
            param_hint="--hash",
        )
    compression = Compression.from_name(compression or config.compression)
    if compression is None:
        raise click.BadParameter(
            f"Unsupported compression '{config.compression}'",
            param_hint="--compression",
        )

    context = make_context(ctx)
    try:
        with tempfile.TemporaryFile() as compressed, open(path, "rb") as source:
            digest = compress_stream(
                source, compressed, compression, algorithm, config.chunk_size
            )
            compressed.seek(0)
            uploaded = upload(context, compressed, digest, compression)
    except CacheError as e:
        console.print(f"[red]✗[/red] Error: {e}", style="red")
        sys.exit(1)

    if uploaded:
        console.print(f"[green]✓[/green] Cached '{path}' at {context.target}")
    else:
        console.print(f"[yellow]Cache at {context.target} is up to date[/yellow]")


@cli.command("restore")
@click.argument("path", type=click.Path(dir_okay=False))
@click.option(
    "--max-age",
    type=click.IntRange(min=0),
    help="Ignore caches older than this many seconds",
)
@click.pass_context
def restore(ctx, path, max_age):
    """Restore the cache into PATH.

    PATH is only replaced once the restored content matches the stored hash.
    A missing or unusable cache is not an error.

    Example:
        s3cache -b my-bucket -k linux/deps.cache restore deps.tar
    """
    config = ctx.obj["config"]
    if max_age is None:
        max_age = config.max_age_seconds
    context = make_context(ctx)

    destination = Path(path)
    destination.parent.mkdir(parents=True, exist_ok=True)
    # Write to temp file first (atomic replace on success)
    fd, temp_name = tempfile.mkstemp(
        dir=destination.parent, prefix=f".{destination.name}.", suffix=".tmp"
    )
    restored = False
    try:
        with os.fdopen(fd, "wb") as temp_file:
            restored = download(
                context,
                restore_sink(temp_file),
                timedelta(seconds=max_age) if max_age is not None else None,
            )
        if restored:
            os.replace(temp_name, destination)
    finally:
        if not restored and os.path.exists(temp_name):
            os.unlink(temp_name)

    if restored:
        console.print(f"[green]✓[/green] Restored '{path}' from {context.target}")
    else:
        console.print(f"[yellow]No cache restored from {context.target}[/yellow]")


@cli.command("clear")
@click.pass_context
def clear(ctx):
    """Delete the cache entry."""
    context = make_context(ctx)
    if not delete(context):
        console.print(f"[red]✗[/red] Error: could not clear {context.target}", style="red")
        sys.exit(1)
    console.print(f"[green]✓[/green] Cleared {context.target}")


def main():
    cli(obj={})


if __name__ == "__main__":
    main()
