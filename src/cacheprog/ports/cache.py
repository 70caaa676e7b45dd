"""Cache port interface."""

from pathlib import Path
from typing import TYPE_CHECKING, Protocol

if TYPE_CHECKING:
    from ..core.models import StagedObject


class CachePort(Protocol):
    """Port for the local, content-addressed staging area."""

    def object_path(self, object_key: bytes) -> Path:
        """Get path where an object is materialized."""
        ...

    def new_temp_path(self) -> Path:
        """Reserve a unique temporary path on the staging filesystem."""
        ...

    def commit(self, temp_path: Path, object_key: bytes, pin: bool = False) -> "StagedObject":
        """Atomically move a fully written temp file to its final name.

        With ``pin`` the object is pinned before any eviction can see it.
        """
        ...

    def write_object(self, object_key: bytes, data: bytes, pin: bool = False) -> "StagedObject":
        """Write and commit object bytes."""
        ...

    def lookup_object(self, object_key: bytes) -> "StagedObject | None":
        """Return the staged object if present."""
        ...

    def bind_action(self, action_key: bytes, staged: "StagedObject") -> None:
        """Record that an action produced a staged object."""
        ...

    def lookup_action(self, action_key: bytes) -> "StagedObject | None":
        """Return the staged object bound to an action, if still present."""
        ...

    def pin(self, object_key: bytes) -> None:
        """Protect an object from eviction."""
        ...

    def unpin(self, object_key: bytes) -> None:
        """Release one pin on an object."""
        ...

    def total_bytes(self) -> int:
        """Bytes currently staged."""
        ...

    def cleanup(self) -> None:
        """Remove everything staged by this process."""
        ...
