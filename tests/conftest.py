"""Shared fixtures and test doubles."""

import base64
import io
import json
import threading
import time
from collections import Counter
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

import pytest

from cacheprog.adapters import FsCacheAdapter, NoopMetricsAdapter, UtcClockAdapter
from cacheprog.core import CacheService, NotFoundError, RemoteStore
from cacheprog.core.config import CacheProgConfig
from cacheprog.ports import ObjectHead

ACTION_A = bytes(range(32))
ACTION_B = bytes(range(1, 33))
OBJECT_A = bytes([0xAB] * 32)
OBJECT_B = bytes([0xCD] * 32)


def b64(data: bytes) -> str:
    return base64.b64encode(data).decode("ascii")


def get_line(request_id: int, action: bytes) -> bytes:
    return (json.dumps({"ID": request_id, "Command": "get", "ActionID": b64(action)}) + "\n").encode()


def put_lines(request_id: int, action: bytes, obj: bytes, body: bytes) -> bytes:
    header = {"ID": request_id, "Command": "put", "ActionID": b64(action), "OutputID": b64(obj)}
    if body:
        header["BodySize"] = len(body)
    out = json.dumps(header) + "\n"
    if body:
        out += json.dumps(b64(body)) + "\n"
    return out.encode()


def close_line(request_id: int) -> bytes:
    return (json.dumps({"ID": request_id, "Command": "close"}) + "\n").encode()


class MemoryStorage:
    """In-memory StoragePort with failure injection and call counting."""

    def __init__(self) -> None:
        self.objects: dict[str, bytes] = {}
        self.metadata: dict[str, dict[str, str]] = {}
        self.calls: Counter[str] = Counter()
        self.failures: dict[str, Exception] = {}
        self.fail_times: dict[str, int] = {}
        self.delays: dict[str, float] = {}
        self.active = 0
        self.max_active = 0
        self._lock = threading.Lock()

    def _enter(self, op: str, key: str) -> None:
        with self._lock:
            self.calls[op] += 1
            self.calls[f"{op}:{key}"] += 1
            self.active += 1
            self.max_active = max(self.max_active, self.active)
        try:
            delay = self.delays.get(op)
            if delay:
                time.sleep(delay)
            error = self.failures.get(op)
            if error is not None:
                remaining = self.fail_times.get(op)
                if remaining is None:
                    raise error
                if remaining > 0:
                    self.fail_times[op] = remaining - 1
                    raise error
        finally:
            with self._lock:
                self.active -= 1

    def head(self, key: str) -> ObjectHead | None:
        self._enter("head", key)
        if key not in self.objects:
            return None
        return ObjectHead(
            key=key,
            size=len(self.objects[key]),
            etag="",
            last_modified=datetime.now(UTC),
            metadata=self.metadata.get(key, {}),
        )

    def get(self, key: str) -> io.BytesIO:
        self._enter("get", key)
        if key not in self.objects:
            raise NotFoundError(f"Object not found: {key}")
        return io.BytesIO(self.objects[key])

    def put(self, key: str, body: Any, metadata: dict[str, str]) -> None:
        self._enter("put", key)
        if isinstance(body, Path):
            data = body.read_bytes()
        elif isinstance(body, bytes):
            data = body
        else:
            data = body.read()
        self.objects[key] = data
        self.metadata[key] = metadata

    def list_objects(
        self,
        prefix: str = "",
        max_keys: int = 1000,
        start_after: str | None = None,
    ) -> dict[str, Any]:
        self._enter("list", prefix)
        keys = sorted(k for k in self.objects if k.startswith(prefix))
        if start_after:
            keys = [k for k in keys if k > start_after]
        page = keys[:max_keys]
        truncated = len(keys) > max_keys
        return {
            "objects": [{"key": k, "size": len(self.objects[k])} for k in page],
            "is_truncated": truncated,
            "next_continuation_token": page[-1] if truncated else None,
        }

    def check_bucket(self) -> None:
        self._enter("check", "")


class RecordingLogger:
    """LoggerPort that keeps every record for assertions."""

    def __init__(self) -> None:
        self.records: list[tuple[str, str, dict[str, Any]]] = []

    def _record(self, level: str, message: str, fields: dict[str, Any]) -> None:
        self.records.append((level, message, fields))

    def debug(self, message: str, **kwargs: Any) -> None:
        self._record("debug", message, kwargs)

    def info(self, message: str, **kwargs: Any) -> None:
        self._record("info", message, kwargs)

    def warning(self, message: str, **kwargs: Any) -> None:
        self._record("warning", message, kwargs)

    def error(self, message: str, **kwargs: Any) -> None:
        self._record("error", message, kwargs)

    def log_operation(self, op, key, sizes, durations, cache_hit=False) -> None:
        self._record("debug", f"{op} complete", {"key": key, "cache_hit": cache_hit})

    def messages(self, level: str) -> list[str]:
        return [message for lvl, message, _ in self.records if lvl == level]


class OutputCollector:
    """Stand-in for stdout: collects written records."""

    def __init__(self) -> None:
        self.data = bytearray()

    def write(self, data: bytes) -> None:
        self.data.extend(data)

    async def drain(self) -> None:
        pass

    def records(self) -> list[dict[str, Any]]:
        return [json.loads(line) for line in self.data.decode().splitlines() if line.strip()]


@pytest.fixture
def storage() -> MemoryStorage:
    return MemoryStorage()


@pytest.fixture
def logger() -> RecordingLogger:
    return RecordingLogger()


@pytest.fixture
def config(tmp_path: Path) -> CacheProgConfig:
    return CacheProgConfig(
        bucket="test-bucket",
        prefix="ci",
        stage_dir=tmp_path / "stage",
        max_attempts=2,
        backoff_base=0.0,
        backoff_max=0.0,
        op_timeout=2.0,
        get_timeout=2.0,
        close_grace=2.0,
        metrics_type="noop",
    )


@pytest.fixture
def make_service(tmp_path: Path, logger: RecordingLogger):
    """Factory for a CacheService over a MemoryStorage."""

    def _make(
        storage: MemoryStorage,
        stage: str = "stage",
        max_stage_bytes: int = 0,
        **kwargs: Any,
    ) -> CacheService:
        clock = UtcClockAdapter()
        metrics = NoopMetricsAdapter()
        cache = FsCacheAdapter(tmp_path / stage, clock, logger, max_bytes=max_stage_bytes)
        remote = RemoteStore(
            storage,
            logger,
            metrics,
            max_attempts=kwargs.pop("max_attempts", 2),
            backoff_base=0.0,
            backoff_max=0.0,
            op_timeout=kwargs.pop("op_timeout", 2.0),
        )
        return CacheService(cache, remote, clock, logger, metrics, prefix="ci", **kwargs)

    return _make
