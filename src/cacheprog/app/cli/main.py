"""CLI main entry point."""

import json
import sys
from pathlib import Path

import click

from ...client_operations import check_bucket_access, get_prefix_stats
from ...core import CacheProgConfig, ConfigError, StorageError
from ..runner import create_logger, create_storage, run


def connection_options(func):
    """Options shared by every command that talks to the bucket."""
    func = click.option("--profile", help="AWS profile name")(func)
    func = click.option("--endpoint-url", help="Custom S3 endpoint URL")(func)
    func = click.option("--prefix", help="Key prefix inside the bucket")(func)
    func = click.option("--region", help="Bucket region")(func)
    func = click.option("--bucket", help="Cache bucket (default: $CACHEPROG_BUCKET)")(func)
    return func


def load_config(ctx: click.Context, **overrides) -> CacheProgConfig:
    config = CacheProgConfig.from_env(log_level=ctx.obj["log_level"], **overrides)
    try:
        config.validate()
    except ConfigError as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(2)
    return config


@click.group()
@click.option("--debug", is_flag=True, help="Enable debug logging")
@click.pass_context
def cli(ctx: click.Context, debug: bool) -> None:
    """cacheprog - GOCACHEPROG build cache backed by S3."""
    ctx.obj = {"log_level": "DEBUG" if debug else "INFO"}


@cli.command()
@connection_options
@click.option(
    "--stage-dir",
    type=click.Path(file_okay=False, path_type=Path),
    help="Local staging directory for cache objects",
)
@click.pass_context
def serve(
    ctx: click.Context,
    bucket: str | None,
    region: str | None,
    prefix: str | None,
    endpoint_url: str | None,
    profile: str | None,
    stage_dir: Path | None,
) -> None:
    """Serve the cache protocol on stdin/stdout.

    Point the Go toolchain at it with:

        GOCACHEPROG="cacheprog serve --bucket my-cache"
    """
    config = CacheProgConfig.from_env(
        bucket=bucket,
        region=region,
        prefix=prefix,
        endpoint_url=endpoint_url,
        profile=profile,
        stage_dir=stage_dir,
        log_level=ctx.obj["log_level"],
    )
    sys.exit(run(config))


@cli.command()
@connection_options
@click.pass_context
def check(
    ctx: click.Context,
    bucket: str | None,
    region: str | None,
    prefix: str | None,
    endpoint_url: str | None,
    profile: str | None,
) -> None:
    """Check that the cache bucket is reachable."""
    config = load_config(
        ctx, bucket=bucket, region=region, prefix=prefix, endpoint_url=endpoint_url, profile=profile
    )
    result = check_bucket_access(create_storage(config), config.bucket, create_logger(config))
    click.echo(json.dumps(result, indent=2))
    if not result["reachable"]:
        sys.exit(1)


@cli.command()
@connection_options
@click.option("--top", type=int, default=10, show_default=True, help="Largest objects to list")
@click.pass_context
def stats(
    ctx: click.Context,
    bucket: str | None,
    region: str | None,
    prefix: str | None,
    endpoint_url: str | None,
    profile: str | None,
    top: int,
) -> None:
    """Show what the cache prefix holds in the bucket."""
    config = load_config(
        ctx, bucket=bucket, region=region, prefix=prefix, endpoint_url=endpoint_url, profile=profile
    )
    try:
        result = get_prefix_stats(
            create_storage(config), config.prefix, create_logger(config), top=top
        )
    except (RuntimeError, StorageError) as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)
    click.echo(json.dumps(result.to_dict(), indent=2))


def main() -> None:
    """Main entry point."""
    cli()
