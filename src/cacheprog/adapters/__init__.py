"""Adapters for ports."""

from .cache_fs import FsCacheAdapter
from .clock_utc import UtcClockAdapter
from .logger_std import StdLoggerAdapter
from .metrics import LoggingMetricsAdapter, NoopMetricsAdapter
from .storage_s3 import S3StorageAdapter

__all__ = [
    "FsCacheAdapter",
    "LoggingMetricsAdapter",
    "NoopMetricsAdapter",
    "S3StorageAdapter",
    "StdLoggerAdapter",
    "UtcClockAdapter",
]
