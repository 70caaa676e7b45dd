"""Remote store client with retry and concurrency limits."""

import asyncio
import functools
import os
import random
import tempfile
from collections.abc import Callable
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path
from typing import Any, TypeVar

from ..ports import LoggerPort, MetricsPort, StoragePort
from .errors import NotFoundError, RemoteStoreError, TransientStorageError

T = TypeVar("T")

CHUNK_SIZE = 1024 * 1024


class RemoteStore:
    """Async front for a blocking StoragePort.

    Every storage call runs in a worker thread, bounded by ``max_concurrency``
    simultaneous calls and ``op_timeout`` seconds per attempt. Transient
    failures and timeouts are retried with capped exponential backoff and full
    jitter; after ``max_attempts`` the call raises ``RemoteStoreError``.
    Not-found is reported as a value, never as an error.
    """

    def __init__(
        self,
        storage: StoragePort,
        logger: LoggerPort,
        metrics: MetricsPort,
        *,
        max_concurrency: int = 16,
        max_attempts: int = 4,
        backoff_base: float = 0.2,
        backoff_max: float = 5.0,
        op_timeout: float = 30.0,
        rng: random.Random | None = None,
    ):
        self.storage = storage
        self.logger = logger
        self.metrics = metrics
        self.max_attempts = max_attempts
        self.backoff_base = backoff_base
        self.backoff_max = backoff_max
        self.op_timeout = op_timeout
        self._slots = asyncio.Semaphore(max_concurrency)
        self._executor = ThreadPoolExecutor(
            max_workers=max_concurrency, thread_name_prefix="cacheprog-remote"
        )
        self._rng = rng or random.Random()

    def backoff_delay(self, attempt: int) -> float:
        """Full-jitter delay before retry number ``attempt`` (1-based)."""
        cap = min(self.backoff_max, self.backoff_base * (2 ** (attempt - 1)))
        return self._rng.uniform(0, cap)

    async def read(self, remote_key: str) -> bytes | None:
        """Fetch a small object fully into memory."""

        def _read() -> bytes | None:
            try:
                stream = self.storage.get(remote_key)
            except NotFoundError:
                return None
            try:
                return stream.read()
            finally:
                _close(stream)

        return await self._call("read", remote_key, _read)

    async def download(self, remote_key: str, dest: Path) -> int | None:
        """Stream an object into ``dest``. Returns its size, or None if missing."""

        def _download() -> int | None:
            try:
                stream = self.storage.get(remote_key)
            except NotFoundError:
                return None
            size = 0
            # Each attempt writes its own part file; an attempt abandoned on
            # timeout can never interleave with its retry.
            fd, part_name = tempfile.mkstemp(dir=dest.parent, prefix=f"{dest.name}.", suffix=".part")
            part = Path(part_name)
            try:
                with os.fdopen(fd, "wb") as f:
                    for chunk in iter(lambda: stream.read(CHUNK_SIZE), b""):
                        f.write(chunk)
                        size += len(chunk)
                    f.flush()
                    os.fsync(f.fileno())
                os.replace(part, dest)
            except BaseException:
                part.unlink(missing_ok=True)
                raise
            finally:
                _close(stream)
            return size

        size = await self._call("download", remote_key, _download)
        if size is not None:
            self.metrics.increment("cacheprog.remote.bytes_downloaded", size)
        return size

    async def exists(self, remote_key: str) -> int | None:
        """Size of the remote object, or None if it does not exist."""

        def _head() -> int | None:
            head = self.storage.head(remote_key)
            return head.size if head is not None else None

        return await self._call("head", remote_key, _head)

    async def write(
        self,
        remote_key: str,
        body: Path | bytes,
        metadata: dict[str, str] | None = None,
    ) -> None:
        await self._call("write", remote_key, self.storage.put, remote_key, body, metadata or {})
        size = body.stat().st_size if isinstance(body, Path) else len(body)
        self.metrics.increment("cacheprog.remote.bytes_uploaded", size)

    def close(self) -> None:
        """Stop accepting calls; threads still running finish on their own."""
        self._executor.shutdown(wait=False, cancel_futures=True)

    async def check(self) -> None:
        """Single-attempt connectivity check for startup."""
        await self._run(self.storage.check_bucket)

    async def _run(self, func: Callable[..., T], *args: Any) -> T:
        """Run one blocking call in a worker thread within ``op_timeout``.

        The concurrency slot is held until the thread itself finishes, so a
        call abandoned on timeout still counts against ``max_concurrency``.
        """
        await self._slots.acquire()
        try:
            future = asyncio.get_running_loop().run_in_executor(
                self._executor, functools.partial(func, *args)
            )
        except BaseException:
            self._slots.release()
            raise
        future.add_done_callback(self._release_slot)
        return await asyncio.wait_for(asyncio.shield(future), self.op_timeout)

    def _release_slot(self, future: asyncio.Future) -> None:
        self._slots.release()
        if not future.cancelled():
            # Marks the error of an abandoned call as retrieved
            future.exception()

    async def _call(self, op: str, remote_key: str, func: Callable[..., T], *args: Any) -> T:
        attempt = 0
        while True:
            attempt += 1
            try:
                return await self._run(func, *args)
            except (TransientStorageError, asyncio.TimeoutError) as e:
                self.metrics.increment("cacheprog.remote.transient_error", tags={"op": op})
                if attempt >= self.max_attempts:
                    raise RemoteStoreError(op, remote_key, attempt, e) from e
                delay = self.backoff_delay(attempt)
                self.logger.debug(
                    "Retrying remote operation",
                    op=op,
                    key=remote_key,
                    attempt=attempt,
                    delay=round(delay, 3),
                    error=str(e) or type(e).__name__,
                )
                if delay:
                    await asyncio.sleep(delay)


def _close(stream: Any) -> None:
    close = getattr(stream, "close", None)
    if close is not None:
        close()
