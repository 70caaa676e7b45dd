"""Core CacheService orchestration."""

import asyncio
import time

from ..ports import CachePort, ClockPort, LoggerPort, MetricsPort
from .dedup import TransferDeduplicator
from .errors import RemoteStoreError, StorageError
from .models import (
    ActionRecord,
    SessionStats,
    StagedObject,
    check_key,
    remote_action_key,
    remote_object_key,
)
from .remote import RemoteStore

# Failures of the remote cache that a get turns into a miss
REMOTE_FAILURES = (RemoteStoreError, StorageError, asyncio.TimeoutError, OSError, ValueError)


class CacheService:
    """Get/put handlers backed by local staging and a remote store."""

    def __init__(
        self,
        cache: CachePort,
        remote: RemoteStore,
        clock: ClockPort,
        logger: LoggerPort,
        metrics: MetricsPort,
        *,
        prefix: str = "",
        key_size: int = 32,
        max_uploads: int = 8,
        get_timeout: float = 60.0,
        clean_stage: bool = True,
    ):
        self.cache = cache
        self.remote = remote
        self.clock = clock
        self.logger = logger
        self.metrics = metrics
        self.prefix = prefix
        self.key_size = key_size
        self.get_timeout = get_timeout
        self.clean_stage = clean_stage

        self.stats = SessionStats()
        self._get_transfers = TransferDeduplicator("get")
        self._put_transfers = TransferDeduplicator("put", keep_completed=True)
        self._upload_slots = asyncio.Semaphore(max_uploads)
        self._uploads: set[asyncio.Task] = set()
        self._closed = False

    async def get(self, action_key: bytes) -> StagedObject | None:
        """Look up the output of an action. None means miss.

        Remote failures are logged and reported as a miss; only an invalid
        key raises.
        """
        check_key(action_key, self.key_size, "ActionID")
        start = time.monotonic()
        self.stats.gets += 1

        staged = self.cache.lookup_action(action_key)
        if staged is not None:
            self.stats.local_hits += 1
            self.metrics.increment("cacheprog.get.local_hit")
            self.logger.log_operation(
                op="get",
                key=action_key.hex(),
                sizes={"object": staged.size},
                durations={"total": time.monotonic() - start},
                cache_hit=True,
            )
            return staged

        remote_key = remote_action_key(self.prefix, action_key)
        try:
            staged = await asyncio.wait_for(
                self._get_transfers.start(remote_key, lambda: self._fetch_action(action_key)),
                self.get_timeout,
            )
        except REMOTE_FAILURES as e:
            self.stats.remote_errors += 1
            self.stats.misses += 1
            self.metrics.increment("cacheprog.get.remote_error")
            self.logger.warning(
                "Remote get failed, reporting miss",
                action=action_key.hex(),
                error=str(e) or type(e).__name__,
            )
            return None

        duration = time.monotonic() - start
        self.metrics.timing("cacheprog.get.duration", duration)
        if staged is None:
            self.stats.misses += 1
            self.metrics.increment("cacheprog.get.miss")
            self.logger.debug("Cache miss", action=action_key.hex())
            return None

        self.cache.bind_action(action_key, staged)
        self.stats.remote_hits += 1
        self.metrics.increment("cacheprog.get.remote_hit")
        self.logger.log_operation(
            op="get",
            key=action_key.hex(),
            sizes={"object": staged.size},
            durations={"total": duration},
            cache_hit=True,
        )
        return staged

    async def put(self, action_key: bytes, object_key: bytes | None, body: bytes) -> StagedObject:
        """Stage an object locally and schedule its upload.

        Returns once the object is committed on local disk; the upload runs
        in the background.
        """
        check_key(action_key, self.key_size, "ActionID")
        object_key = check_key(object_key, self.key_size, "OutputID")
        start = time.monotonic()
        self.stats.puts += 1

        # Pinned at commit until its upload finishes
        staged = await asyncio.to_thread(self.cache.write_object, object_key, body, pin=True)
        self.cache.bind_action(action_key, staged)

        self.logger.log_operation(
            op="put",
            key=action_key.hex(),
            sizes={"object": staged.size},
            durations={"stage": time.monotonic() - start},
        )
        self.metrics.timing("cacheprog.put.stage_duration", time.monotonic() - start)

        if self._closed:
            self.cache.unpin(object_key)
        else:
            self._enqueue_upload(action_key, staged)
        return staged

    async def drain(self, grace: float) -> None:
        """Wait up to ``grace`` seconds for enqueued uploads, then abandon the rest."""
        self._closed = True
        pending = set(self._uploads)
        if pending:
            self.logger.info("Waiting for uploads", count=len(pending), grace=grace)
            _, pending = await asyncio.wait(pending, timeout=grace)
        if pending:
            self.stats.abandoned_uploads += len(pending)
            self.logger.warning(
                "Abandoning unfinished uploads after grace period",
                count=len(pending),
                grace=grace,
            )
            for task in pending:
                task.cancel()
            await asyncio.gather(*pending, return_exceptions=True)

    async def aclose(self) -> None:
        """Tear down: stop background work and release the staging area."""
        self._closed = True
        for task in list(self._uploads):
            task.cancel()
        if self._uploads:
            await asyncio.gather(*self._uploads, return_exceptions=True)
        await self._get_transfers.cancel_all()
        await self._put_transfers.cancel_all()
        stage_bytes = self.cache.total_bytes()
        if self.clean_stage:
            await asyncio.to_thread(self.cache.cleanup)
        self.remote.close()
        self.logger.info("Session summary", stage_bytes=stage_bytes, **self.stats.to_dict())

    async def _fetch_action(self, action_key: bytes) -> StagedObject | None:
        """Resolve an action remotely and materialize its object."""
        record_key = remote_action_key(self.prefix, action_key)
        data = await self.remote.read(record_key)
        if data is None:
            return None
        record = ActionRecord.from_bytes(data)

        staged = self.cache.lookup_object(record.object_key)
        if staged is not None and staged.size == record.size:
            return staged

        object_key = remote_object_key(self.prefix, record.object_key)
        return await self._get_transfers.start(
            object_key, lambda: self._download_object(record, object_key)
        )

    async def _download_object(self, record: ActionRecord, remote_key: str) -> StagedObject | None:
        temp_path = await asyncio.to_thread(self.cache.new_temp_path)
        try:
            size = await self.remote.download(remote_key, temp_path)
            if size is None:
                self.logger.info("Action record points at missing object", key=remote_key)
                return None
            if size != record.size:
                raise ValueError(
                    f"object {remote_key} is {size} bytes, action record says {record.size}"
                )
            staged = await asyncio.to_thread(self.cache.commit, temp_path, record.object_key)
        finally:
            temp_path.unlink(missing_ok=True)
        self.stats.bytes_downloaded += size
        return staged

    def _enqueue_upload(self, action_key: bytes, staged: StagedObject) -> None:
        task = asyncio.create_task(self._upload(action_key, staged))
        self._uploads.add(task)
        task.add_done_callback(self._uploads.discard)
        task.add_done_callback(lambda _, key=staged.object_key: self.cache.unpin(key))

    async def _upload(self, action_key: bytes, staged: StagedObject) -> None:
        object_key = remote_object_key(self.prefix, staged.object_key)
        action_key_remote = remote_action_key(self.prefix, action_key)
        start = time.monotonic()
        try:
            await self._put_transfers.start(object_key, lambda: self._upload_object(staged, object_key))
            record = ActionRecord(object_key=staged.object_key, size=staged.size, time=staged.mod_time)
            await self._put_transfers.start(
                action_key_remote, lambda: self._upload_record(action_key_remote, record)
            )
        except (RemoteStoreError, StorageError, OSError) as e:
            self.stats.upload_errors += 1
            self.metrics.increment("cacheprog.put.upload_error")
            self.logger.warning(
                "Upload failed",
                action=action_key.hex(),
                object=staged.hex_key,
                error=str(e),
            )
        else:
            self.metrics.timing("cacheprog.put.upload_duration", time.monotonic() - start)

    async def _upload_object(self, staged: StagedObject, remote_key: str) -> None:
        async with self._upload_slots:
            existing = await self.remote.exists(remote_key)
            if existing == staged.size:
                self.stats.uploads_skipped += 1
                self.logger.debug("Object already in remote store", key=remote_key)
                return
            await self.remote.write(remote_key, staged.path)
            self.stats.uploads += 1
            self.stats.bytes_uploaded += staged.size

    async def _upload_record(self, remote_key: str, record: ActionRecord) -> None:
        async with self._upload_slots:
            await self.remote.write(remote_key, record.to_bytes(), {"object": record.object_key.hex()})
