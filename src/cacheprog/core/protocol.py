"""GOCACHEPROG wire codec.

Each record is one JSON object terminated by a newline. A ``put`` request
with a non-zero ``BodySize`` is immediately followed by its body, encoded as
a single JSON string of standard base64 on its own line. Byte fields
(``ActionID``, ``OutputID``) are base64 strings, as Go encodes ``[]byte``.

Example session::

    <- {"ID":0,"KnownCommands":["get","put","close"]}
    -> {"ID":1,"Command":"put","ActionID":"...","OutputID":"...","BodySize":5}
    -> "aGVsbG8="
    <- {"ID":1,"OutputID":"...","Size":5,"Time":"...","DiskPath":"/stage/..."}
"""

import asyncio
import base64
import binascii
import json
from datetime import UTC, datetime
from typing import Any

from .errors import FramingError
from .models import Request, Response

DEFAULT_CHUNK_SIZE = 64 * 1024


def format_time(value: datetime) -> str:
    """RFC 3339 timestamp with fractional seconds, as Go's time.Time expects."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=UTC)
    return value.astimezone(UTC).isoformat().replace("+00:00", "Z")


def _decode_bytes(value: Any, field: str) -> bytes:
    if value is None:
        return b""
    if not isinstance(value, str):
        raise FramingError(f"{field} must be a base64 string")
    try:
        return base64.b64decode(value, validate=True)
    except (binascii.Error, ValueError) as e:
        raise FramingError(f"{field} is not valid base64: {e}") from e


def parse_header(line: bytes) -> Request:
    """Parse one request header line."""
    try:
        doc = json.loads(line)
    except ValueError as e:
        raise FramingError(f"malformed request header: {e}") from e
    if not isinstance(doc, dict):
        raise FramingError("request header is not a JSON object")

    request_id = doc.get("ID")
    if not isinstance(request_id, int) or isinstance(request_id, bool):
        raise FramingError("request header has no integer ID")
    command = doc.get("Command")
    if not isinstance(command, str):
        raise FramingError(f"request {request_id} has no Command")
    body_size = doc.get("BodySize", 0)
    if not isinstance(body_size, int) or isinstance(body_size, bool) or body_size < 0:
        raise FramingError(f"request {request_id} has invalid BodySize {body_size!r}")

    object_field = doc.get("OutputID", doc.get("ObjectID"))
    return Request(
        id=request_id,
        command=command,
        action_key=_decode_bytes(doc.get("ActionID"), "ActionID"),
        object_key=_decode_bytes(object_field, "OutputID") or None,
        body_size=body_size,
    )


def parse_body(line: bytes, body_size: int) -> bytes:
    """Parse the base64 body line that follows a put header."""
    try:
        value = json.loads(line)
    except ValueError as e:
        raise FramingError(f"malformed request body: {e}") from e
    body = _decode_bytes(value, "body")
    if len(body) != body_size:
        raise FramingError(f"body is {len(body)} bytes, header declared {body_size}")
    return body


class FrameDecoder:
    """Incremental request decoder.

    Holds partial input between ``feed`` calls, so callers may hand it bytes
    in whatever chunks the transport delivers.
    """

    def __init__(self) -> None:
        self._buffer = bytearray()
        self._scan_from = 0
        self._pending: Request | None = None

    def feed(self, data: bytes) -> None:
        self._buffer.extend(data)

    def next_request(self) -> Request | None:
        """Return the next complete request, or None if more input is needed."""
        while True:
            line = self._take_line()
            if line is None:
                return None
            if not line.strip():
                continue
            if self._pending is None:
                request = parse_header(line)
                if not request.has_body:
                    return request
                self._pending = request
                continue
            request, self._pending = self._pending, None
            request.body = parse_body(line, request.body_size)
            return request

    def finish(self) -> Request | None:
        """Flush at end of input.

        A final header missing only its newline is still accepted; anything
        else left over means the stream was cut mid-record.
        """
        rest = bytes(self._buffer).strip()
        self._buffer.clear()
        self._scan_from = 0
        if self._pending is not None:
            pending, self._pending = self._pending, None
            if not rest:
                raise FramingError(f"input ended before body of request {pending.id}")
            pending.body = parse_body(rest, pending.body_size)
            return pending
        if not rest:
            return None
        request = parse_header(rest)
        if request.has_body:
            raise FramingError(f"input ended before body of request {request.id}")
        return request

    def _take_line(self) -> bytes | None:
        end = self._buffer.find(b"\n", self._scan_from)
        if end < 0:
            self._scan_from = len(self._buffer)
            return None
        line = bytes(self._buffer[:end])
        del self._buffer[: end + 1]
        self._scan_from = 0
        return line


def encode_response(response: Response) -> bytes:
    """Encode a response record, omitting empty fields."""
    doc: dict[str, Any] = {"ID": response.id}
    if response.error:
        doc["Err"] = response.error
    if response.known_commands:
        doc["KnownCommands"] = response.known_commands
    if response.miss:
        doc["Miss"] = True
    if response.object_key:
        doc["OutputID"] = base64.b64encode(response.object_key).decode("ascii")
    if response.size:
        doc["Size"] = response.size
    if response.time is not None:
        doc["Time"] = format_time(response.time)
    if response.disk_path:
        doc["DiskPath"] = response.disk_path
    return (json.dumps(doc, separators=(",", ":")) + "\n").encode()


class RequestReader:
    """Reads requests from an asyncio stream."""

    def __init__(self, stream: asyncio.StreamReader, chunk_size: int = DEFAULT_CHUNK_SIZE):
        self.stream = stream
        self.chunk_size = chunk_size
        self.decoder = FrameDecoder()
        self._eof = False

    async def next_request(self) -> Request | None:
        """Next request, or None at a clean end of input.

        Raises:
            FramingError: If the stream is malformed or truncated.
        """
        while True:
            request = self.decoder.next_request()
            if request is not None:
                return request
            if self._eof:
                return None
            chunk = await self.stream.read(self.chunk_size)
            if not chunk:
                self._eof = True
                return self.decoder.finish()
            self.decoder.feed(chunk)


class ResponseWriter:
    """Serialises responses onto the output stream.

    ``stream`` needs ``write(bytes)``; an async ``drain()`` is awaited when
    present. At most one response is written per request id, and nothing is
    written once the writer is closed.
    """

    def __init__(self, stream: Any):
        self.stream = stream
        self.closed = False
        self._answered: set[int] = set()
        self._lock = asyncio.Lock()

    async def send_handshake(self) -> None:
        async with self._lock:
            await self._write(Response.handshake())

    async def send(self, response: Response) -> bool:
        async with self._lock:
            if self.closed or response.id in self._answered:
                return False
            self._answered.add(response.id)
            await self._write(response)
            return True

    def answered(self, request_id: int) -> bool:
        return request_id in self._answered

    def close(self) -> None:
        self.closed = True

    async def _write(self, response: Response) -> None:
        self.stream.write(encode_response(response))
        drain = getattr(self.stream, "drain", None)
        if drain is not None:
            await drain()
