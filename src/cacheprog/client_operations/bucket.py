"""Bucket access checks for the cache bucket.

This module contains:
- check_bucket_access
"""

import time
from typing import Any

from ..core.errors import StorageError
from ..ports import LoggerPort, StoragePort


def check_bucket_access(
    storage: StoragePort,
    bucket: str,
    logger: LoggerPort,
) -> dict[str, Any]:
    """Verify the cache bucket is reachable with the current credentials.

    Args:
        storage: Storage adapter for the cache bucket
        bucket: Bucket name (for reporting)
        logger: Logger instance

    Returns:
        Dict with "bucket", "reachable", "latency_ms" and, on failure, "error"

    Example:
        >>> result = check_bucket_access(storage, "ci-build-cache", logger)
        >>> result["reachable"]
        True
    """
    start = time.monotonic()
    try:
        storage.check_bucket()
    except StorageError as e:
        logger.warning("Bucket check failed", bucket=bucket, error=str(e))
        return {
            "bucket": bucket,
            "reachable": False,
            "latency_ms": round((time.monotonic() - start) * 1000, 1),
            "error": str(e),
        }

    latency = round((time.monotonic() - start) * 1000, 1)
    logger.debug("Bucket reachable", bucket=bucket, latency_ms=latency)
    return {"bucket": bucket, "reachable": True, "latency_ms": latency}
