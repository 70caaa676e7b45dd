"""Process entry point: wires adapters and runs one session."""

import asyncio
import sys
from typing import Any

from ..adapters import (
    FsCacheAdapter,
    LoggingMetricsAdapter,
    NoopMetricsAdapter,
    S3StorageAdapter,
    StdLoggerAdapter,
    UtcClockAdapter,
)
from ..core import (
    CacheProgConfig,
    CacheService,
    ConfigError,
    Dispatcher,
    RemoteStore,
    RequestReader,
    ResponseWriter,
    StorageError,
)
from ..ports import LoggerPort, MetricsPort, StoragePort

EXIT_CONFIG_ERROR = 2
EXIT_UNREACHABLE = 3

# Largest body line the stdin reader buffers in one piece
STREAM_LIMIT = 64 * 1024 * 1024


def create_logger(config: CacheProgConfig) -> StdLoggerAdapter:
    return StdLoggerAdapter(level=config.log_level, log_file=config.log_file)


def create_metrics(config: CacheProgConfig, logger: LoggerPort) -> MetricsPort:
    if config.metrics_type == "noop":
        return NoopMetricsAdapter()
    return LoggingMetricsAdapter(logger)


def create_storage(config: CacheProgConfig) -> S3StorageAdapter:
    return S3StorageAdapter(
        config.bucket,
        region=config.region,
        endpoint_url=config.endpoint_url,
        profile=config.profile,
        timeout=config.op_timeout,
        max_pool_connections=config.max_concurrency,
    )


def create_service(
    config: CacheProgConfig,
    storage: StoragePort,
    logger: LoggerPort,
) -> CacheService:
    """Create service with wired adapters."""
    clock = UtcClockAdapter()
    metrics = create_metrics(config, logger)
    cache = FsCacheAdapter(config.stage_dir, clock, logger, max_bytes=config.max_stage_bytes)
    remote = RemoteStore(
        storage,
        logger,
        metrics,
        max_concurrency=config.max_concurrency,
        max_attempts=config.max_attempts,
        backoff_base=config.backoff_base,
        backoff_max=config.backoff_max,
        op_timeout=config.op_timeout,
    )
    return CacheService(
        cache=cache,
        remote=remote,
        clock=clock,
        logger=logger,
        metrics=metrics,
        prefix=config.prefix,
        key_size=config.key_size,
        max_uploads=config.max_uploads,
        get_timeout=config.get_timeout,
        clean_stage=config.clean_stage,
    )


async def connect_stdio() -> tuple[asyncio.StreamReader, asyncio.StreamWriter]:
    """Wrap the process's stdin/stdout pipes in asyncio streams."""
    loop = asyncio.get_running_loop()
    reader = asyncio.StreamReader(limit=STREAM_LIMIT)
    await loop.connect_read_pipe(lambda: asyncio.StreamReaderProtocol(reader), sys.stdin.buffer)
    transport, protocol = await loop.connect_write_pipe(
        asyncio.streams.FlowControlMixin, sys.stdout.buffer
    )
    writer = asyncio.StreamWriter(transport, protocol, reader, loop)
    return reader, writer


async def serve(
    config: CacheProgConfig,
    input_stream: asyncio.StreamReader,
    output_stream: Any,
    *,
    storage: StoragePort,
    logger: LoggerPort,
) -> int:
    """Run a session over the given streams. Returns an exit status."""
    service = create_service(config, storage, logger)

    if config.check_on_start:
        try:
            await service.remote.check()
        except (StorageError, asyncio.TimeoutError, OSError) as e:
            logger.error("Remote store unreachable", bucket=config.bucket, error=str(e))
            await service.aclose()
            return EXIT_UNREACHABLE
        logger.info("Remote store reachable", bucket=config.bucket, prefix=config.prefix)

    dispatcher = Dispatcher(
        service,
        RequestReader(input_stream),
        ResponseWriter(output_stream),
        logger,
        close_grace=config.close_grace,
    )
    return await dispatcher.run()


async def _main(config: CacheProgConfig, storage: StoragePort | None) -> int:
    logger = create_logger(config)
    if storage is None:
        storage = create_storage(config)
    reader, writer = await connect_stdio()
    try:
        return await serve(config, reader, writer, storage=storage, logger=logger)
    finally:
        writer.close()


def run(config: CacheProgConfig, storage: StoragePort | None = None) -> int:
    """Run the proxy on stdin/stdout until close or end of input.

    Returns 0 on clean shutdown, 1 on a framing failure, 2 on invalid
    configuration and 3 when the remote store is unreachable at startup.
    """
    try:
        config.validate()
    except ConfigError as e:
        create_logger(config).error("Invalid configuration", error=str(e))
        return EXIT_CONFIG_ERROR
    return asyncio.run(_main(config, storage))
