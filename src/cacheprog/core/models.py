"""Data models for cacheprog."""

import json
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from pathlib import Path

from .errors import InvalidKeyError


class Command(str, Enum):
    """Commands understood by the proxy."""

    GET = "get"
    PUT = "put"
    CLOSE = "close"


KNOWN_COMMANDS = (Command.GET.value, Command.PUT.value, Command.CLOSE.value)


@dataclass(slots=True)
class Request:
    """A decoded protocol request."""

    id: int
    command: str
    action_key: bytes = b""
    object_key: bytes | None = None
    body_size: int = 0
    body: bytes = b""

    @property
    def has_body(self) -> bool:
        return self.body_size > 0


@dataclass(slots=True)
class Response:
    """A protocol response. Empty fields are omitted on the wire."""

    id: int
    error: str | None = None
    known_commands: list[str] | None = None
    miss: bool = False
    object_key: bytes | None = None
    size: int = 0
    time: datetime | None = None
    disk_path: str | None = None

    @classmethod
    def handshake(cls) -> "Response":
        return cls(id=0, known_commands=list(KNOWN_COMMANDS))

    @classmethod
    def miss_for(cls, request_id: int) -> "Response":
        return cls(id=request_id, miss=True)

    @classmethod
    def error_for(cls, request_id: int, message: str) -> "Response":
        return cls(id=request_id, error=message)

    @classmethod
    def from_staged(cls, request_id: int, staged: "StagedObject") -> "Response":
        return cls(
            id=request_id,
            object_key=staged.object_key,
            size=staged.size,
            time=staged.mod_time,
            disk_path=str(staged.path),
        )


@dataclass(slots=True)
class StagedObject:
    """A committed, immutable object in the local staging area."""

    object_key: bytes
    path: Path
    size: int
    mod_time: datetime
    last_access: float = 0.0

    @property
    def hex_key(self) -> str:
        return self.object_key.hex()


@dataclass(frozen=True, slots=True)
class ActionRecord:
    """Remote binding of an action to the object it produced."""

    object_key: bytes
    size: int
    time: datetime

    def to_bytes(self) -> bytes:
        doc = {"object": self.object_key.hex(), "size": self.size, "time": self.time.isoformat()}
        return json.dumps(doc, separators=(",", ":"), sort_keys=True).encode()

    @classmethod
    def from_bytes(cls, data: bytes) -> "ActionRecord":
        """Parse a stored action record.

        Raises:
            ValueError: If the document is not a valid action record.
        """
        doc = json.loads(data)
        if not isinstance(doc, dict):
            raise ValueError("action record is not a JSON object")
        try:
            object_key = bytes.fromhex(doc["object"])
            size = int(doc["size"])
            time = datetime.fromisoformat(doc["time"])
        except (KeyError, TypeError) as e:
            raise ValueError(f"malformed action record: {e}") from e
        if size < 0:
            raise ValueError(f"negative size in action record: {size}")
        return cls(object_key=object_key, size=size, time=time)


@dataclass(slots=True)
class SessionStats:
    """Counters for one proxy session."""

    gets: int = 0
    local_hits: int = 0
    remote_hits: int = 0
    misses: int = 0
    remote_errors: int = 0
    puts: int = 0
    uploads: int = 0
    uploads_skipped: int = 0
    upload_errors: int = 0
    bytes_downloaded: int = 0
    bytes_uploaded: int = 0
    abandoned_uploads: int = 0

    def to_dict(self) -> dict[str, int]:
        return {
            "gets": self.gets,
            "local_hits": self.local_hits,
            "remote_hits": self.remote_hits,
            "misses": self.misses,
            "remote_errors": self.remote_errors,
            "puts": self.puts,
            "uploads": self.uploads,
            "uploads_skipped": self.uploads_skipped,
            "upload_errors": self.upload_errors,
            "bytes_downloaded": self.bytes_downloaded,
            "bytes_uploaded": self.bytes_uploaded,
            "abandoned_uploads": self.abandoned_uploads,
        }


def check_key(key: bytes | None, key_size: int, what: str) -> bytes:
    """Validate an action or object key, returning it unchanged."""
    if not key:
        raise InvalidKeyError(f"missing {what}")
    if key_size and len(key) != key_size:
        raise InvalidKeyError(f"{what} must be {key_size} bytes, got {len(key)}")
    return key


def _join(prefix: str, kind: str, key: bytes) -> str:
    prefix = prefix.strip("/")
    if prefix:
        return f"{prefix}/{kind}/{key.hex()}"
    return f"{kind}/{key.hex()}"


def remote_action_key(prefix: str, action_key: bytes) -> str:
    """Remote key holding the action record for ``action_key``."""
    return _join(prefix, "action", action_key)


def remote_object_key(prefix: str, object_key: bytes) -> str:
    """Remote key holding the bytes of ``object_key``."""
    return _join(prefix, "object", object_key)
