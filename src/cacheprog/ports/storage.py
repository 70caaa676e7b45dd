"""Storage port interface."""

from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Any, BinaryIO, Protocol


@dataclass(slots=True)
class ObjectHead:
    """S3 object metadata."""

    key: str
    size: int
    etag: str
    last_modified: datetime | None
    metadata: dict[str, str]


class StoragePort(Protocol):
    """Port for remote object storage.

    Implementations raise ``TransientStorageError`` for failures worth
    retrying and ``StorageError`` for everything else except not-found.
    """

    def head(self, key: str) -> ObjectHead | None:
        """Get object metadata, None if the object does not exist."""
        ...

    def get(self, key: str) -> BinaryIO:
        """Get object content as a stream. Raises NotFoundError."""
        ...

    def put(self, key: str, body: BinaryIO | Path | bytes, metadata: dict[str, str]) -> None:
        """Store an object."""
        ...

    def list_objects(
        self,
        prefix: str = "",
        max_keys: int = 1000,
        start_after: str | None = None,
    ) -> dict[str, Any]:
        """List one page of objects.

        Returns a dict with "objects" (dicts with "key" and "size"),
        "is_truncated" and "next_continuation_token".
        """
        ...

    def check_bucket(self) -> None:
        """Verify the bucket is reachable with the current credentials."""
        ...
