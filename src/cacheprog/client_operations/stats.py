"""Remote cache usage statistics.

This module summarizes what a cache prefix holds in the bucket:
- get_prefix_stats
"""

from dataclasses import dataclass, field
from typing import Any

from ..ports import LoggerPort, StoragePort

# ============================================================================
# Internal Helper Functions
# ============================================================================


def _collect_objects_with_pagination(
    storage: StoragePort,
    prefix: str,
    logger: LoggerPort,
    max_iterations: int = 10000,
) -> list[dict[str, Any]]:
    """Collect all objects under a prefix with pagination safety.

    Args:
        storage: Storage adapter
        prefix: Key prefix to list
        logger: Logger instance
        max_iterations: Max pagination iterations (default: 10000 = 10M objects)

    Returns:
        List of object dicts with 'key' and 'size' fields

    Raises:
        RuntimeError: If listing fails with no objects collected
    """
    raw_objects: list[dict[str, Any]] = []
    start_after = None
    iteration_count = 0

    while True:
        iteration_count += 1
        if iteration_count > max_iterations:
            logger.warning(
                "Reached max list iterations, returning partial results",
                max_iterations=max_iterations,
                objects=len(raw_objects),
            )
            break

        try:
            response = storage.list_objects(prefix=prefix, max_keys=1000, start_after=start_after)
        except Exception as e:
            if not raw_objects:
                raise RuntimeError(f"Failed to list objects under '{prefix}': {e}") from e
            logger.warning(
                "Pagination error, returning partial results",
                objects=len(raw_objects),
                error=str(e),
            )
            break

        raw_objects.extend(response.get("objects", []))

        if not response.get("is_truncated"):
            break

        start_after = response.get("next_continuation_token")

        # Safety: missing token with truncated=True indicates broken pagination
        if not start_after:
            logger.warning("Pagination bug (truncated=True, no token)", objects=len(raw_objects))
            break

    return raw_objects


@dataclass(slots=True)
class PrefixStats:
    """What one cache prefix holds remotely."""

    prefix: str
    action_count: int = 0
    action_bytes: int = 0
    object_count: int = 0
    object_bytes: int = 0
    other_count: int = 0
    largest_objects: list[dict[str, Any]] = field(default_factory=list)

    @property
    def total_bytes(self) -> int:
        return self.action_bytes + self.object_bytes

    def to_dict(self) -> dict[str, Any]:
        return {
            "prefix": self.prefix,
            "actions": {"count": self.action_count, "bytes": self.action_bytes},
            "objects": {"count": self.object_count, "bytes": self.object_bytes},
            "other": self.other_count,
            "total_bytes": self.total_bytes,
            "largest_objects": self.largest_objects,
        }


def get_prefix_stats(
    storage: StoragePort,
    prefix: str,
    logger: LoggerPort,
    top: int = 10,
) -> PrefixStats:
    """Count actions and objects stored under a cache prefix.

    Args:
        storage: Storage adapter for the cache bucket
        prefix: Cache key prefix ("" for the bucket root)
        logger: Logger instance
        top: How many of the largest objects to report

    Returns:
        PrefixStats with counts and byte totals
    """
    base = f"{prefix.strip('/')}/" if prefix.strip("/") else ""
    stats = PrefixStats(prefix=prefix)
    objects = []

    for obj in _collect_objects_with_pagination(storage, base, logger):
        relative = obj["key"][len(base):]
        size = int(obj.get("size", 0))
        if relative.startswith("action/"):
            stats.action_count += 1
            stats.action_bytes += size
        elif relative.startswith("object/"):
            stats.object_count += 1
            stats.object_bytes += size
            objects.append({"key": obj["key"], "size": size})
        else:
            stats.other_count += 1

    objects.sort(key=lambda o: o["size"], reverse=True)
    stats.largest_objects = objects[:top]
    logger.debug("Collected prefix stats", prefix=prefix, objects=stats.object_count)
    return stats
